"""
1回分の分析セッション
ログのパース → スコアリング → 集計を同期的に実行し、結果は読み取り専用で保持する
"""

from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from app_logger import get_logger
from charging_models import FleetStats, ScoredVehicle, Transaction
from compliance_config import load_engine_config
from compliance_engine import DetectionSource, RegistrySource, process_transactions, summarize_fleet
from dashboard import ViewState, apply_view, selected_vehicles
from log_parser import parse_transactions
from reference_data import MOCK_AI_DETECTIONS, MOCK_RTO_DATABASE
from report_exporter import ReportSections, generate_report
from summarizer import ComplianceSummarizer, SummaryCache, SummaryResult

logger = get_logger(__name__)


@dataclass(frozen=True)
class AnalysisResult:
    transactions: Tuple[Transaction, ...]
    vehicles: Tuple[ScoredVehicle, ...]
    stats: FleetStats
    analyzed_at: datetime
    video_path: Optional[str] = None


def analyze(log_text: str, detections: DetectionSource = None, registry: RegistrySource = None,
            cfg: Optional[dict] = None, today: Optional[date] = None,
            video_path: Optional[str] = None, delimiter: str = ",") -> AnalysisResult:
    """ログを分析する。パースエラーはそのまま呼び出し元に送出する。"""
    if video_path:
        # 映像は受け付けるが解析はしない（検出結果は参照データから取得）
        logger.info(f"Video received but not analyzed: {Path(video_path).name}")
    cfg = cfg or load_engine_config()
    if detections is None:
        detections = MOCK_AI_DETECTIONS
    if registry is None:
        registry = MOCK_RTO_DATABASE

    transactions = parse_transactions(log_text, delimiter=delimiter)
    vehicles = process_transactions(transactions, detections, registry, cfg=cfg, today=today)
    stats = summarize_fleet(vehicles)
    logger.info(
        f"Analysis complete: {stats.vehicle_count} vehicle(s), mean score {stats.mean_score:.2f}, "
        f"{stats.discrepancy_count} discrepancy(ies)"
    )
    return AnalysisResult(
        transactions=tuple(transactions),
        vehicles=tuple(vehicles),
        stats=stats,
        analyzed_at=datetime.now(),
        video_path=video_path,
    )


class AnalysisSession:
    """分析結果と要約キャッシュをまとめて保持する"""

    def __init__(self, result: AnalysisResult, summarizer: Optional[ComplianceSummarizer] = None,
                 cfg: Optional[dict] = None):
        self.result = result
        self.cfg = cfg or load_engine_config()
        self.summaries = SummaryCache(summarizer) if summarizer else None

    @classmethod
    def from_log(cls, log_text: str, summarizer: Optional[ComplianceSummarizer] = None,
                 cfg: Optional[dict] = None, **kwargs) -> "AnalysisSession":
        cfg = cfg or load_engine_config()
        return cls(analyze(log_text, cfg=cfg, **kwargs), summarizer=summarizer, cfg=cfg)

    def view(self, state: ViewState) -> List[ScoredVehicle]:
        return apply_view(list(self.result.vehicles), state)

    def find(self, plate: str) -> Optional[ScoredVehicle]:
        for v in self.result.vehicles:
            if v.plate == plate:
                return v
        return None

    def summarize(self, plate: str, force: bool = False) -> SummaryResult:
        vehicle = self.find(plate)
        if vehicle is None:
            raise KeyError(plate)
        if self.summaries is None:
            return SummaryResult(plate, error="AI summaries are not configured.")
        return self.summaries.get_or_request(vehicle, force=force)

    def summarize_fleet(self, force: bool = False) -> Optional[SummaryResult]:
        if self.summaries is None:
            return None
        return self.summaries.get_or_request_fleet(self.result.stats, force=force)

    def summary_texts(self) -> Dict[str, str]:
        return self.summaries.texts() if self.summaries else {}

    def export_report(self, state: Optional[ViewState] = None, sections: Optional[ReportSections] = None,
                      output_dir: Optional[str] = None, generated_at: Optional[datetime] = None) -> Path:
        """選択中（なければ絞り込み後の全件）の車両でレポートを出力"""
        state = state or ViewState()
        vehicles = selected_vehicles(self.view(state), state)
        output_dir = output_dir or self.cfg.get("report", {}).get("output_dir", ".")
        return generate_report(
            vehicles,
            sections=sections,
            output_dir=output_dir,
            summaries=self.summary_texts(),
            generated_at=generated_at,
        )
