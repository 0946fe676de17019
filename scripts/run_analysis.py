#!/usr/bin/env python
"""
充電ログのコンプライアンス分析を実行する
"""

import argparse
import os
import sys
from datetime import datetime

from dotenv import load_dotenv

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from analysis_session import AnalysisSession, analyze
from charging_models import DiscrepancyFlag
from compliance_config import load_engine_config
from dashboard import ViewState
from errors import LogParseError, SummarizerError
from reference_data import load_detections, load_registry
from report_exporter import ReportSections
from summarizer import ComplianceSummarizer

load_dotenv()


def _flag(value: str) -> DiscrepancyFlag:
    for f in DiscrepancyFlag:
        if value.lower() in (f.value.lower(), f.name.lower()):
            return f
    raise argparse.ArgumentTypeError(f"unknown flag: {value}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="EV charging compliance analysis")
    p.add_argument("--log", required=True, help="transaction log (CSV)")
    p.add_argument("--detections", help="AI detection fixtures (JSON)")
    p.add_argument("--registry", help="RTO registry fixtures (JSON)")
    p.add_argument("--config", help="YAML config file")
    p.add_argument("--video", help="charging-bay video (accepted, not analyzed)")
    p.add_argument("--report-dir", help="write a PDF report into this directory")
    p.add_argument("--no-details", action="store_true", help="omit the compliance details table")
    p.add_argument("--no-discrepancies", action="store_true", help="omit the discrepancy table")
    p.add_argument("--summaries", action="store_true", help="request AI summaries (CLAUDE_API_KEY)")
    p.add_argument("--query", default="", help="filter vehicles by plate / violation text")
    p.add_argument("--flag", type=_flag, help="filter by charging flag")
    return p


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    print("=== EV充電コンプライアンス分析を開始します ===")
    print(f"実行時刻: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    try:
        cfg = load_engine_config(args.config)
        detections = load_detections(args.detections) if args.detections else None
        registry = load_registry(args.registry) if args.registry else None
        with open(args.log, "r", encoding="utf-8") as f:
            log_text = f.read()
    except (OSError, ValueError) as e:
        print(f"❌ 入力ファイルの読み込みに失敗しました: {e}")
        return 1

    try:
        result = analyze(log_text, detections=detections, registry=registry, cfg=cfg, video_path=args.video)
    except LogParseError as e:
        print(f"❌ ログの読み込みに失敗しました: {e}")
        return 1

    summarizer = None
    if args.summaries:
        try:
            summarizer = ComplianceSummarizer.from_config(cfg)
        except SummarizerError as e:
            print(f"⚠️ AI要約をスキップ: {e}")
    session = AnalysisSession(result, summarizer=summarizer, cfg=cfg)

    state = ViewState(query=args.query, flag=args.flag)
    rows = session.view(state)
    for v in rows:
        icon = "✅" if not v.compliance.overall_status else "⚠️"
        print(f"{icon} {v.plate:<12} {v.vehicle_type.value:<10} score={v.compliance.score:>3} "
              f"charging={v.charging.discrepancy_flag.value}")
        for message in v.compliance.overall_status:
            print(f"    - {message}")
        if summarizer:
            summary = session.summarize(v.plate)
            print(f"    🧠 {summary.text if summary.ok else summary.error}")

    stats = result.stats
    print("\n=== 集計 ===")
    print(f"車両数: {stats.vehicle_count}件")
    print(f"平均スコア: {stats.mean_score:.2f} / 100")
    print(f"充電不一致: {stats.discrepancy_count}件")
    for kind, count in sorted(stats.violation_histogram.items(), key=lambda x: x[1], reverse=True):
        print(f"  {kind}: {count}")

    if args.report_dir:
        if not rows:
            print("⚠️ 出力対象の車両がないためレポートをスキップしました")
            return 0
        sections = ReportSections(
            include_compliance_details=not args.no_details,
            include_charging_discrepancies=not args.no_discrepancies,
            include_narratives=bool(summarizer),
        )
        path = session.export_report(state=state, sections=sections, output_dir=args.report_dir)
        print(f"📄 レポートを保存しました: {path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
