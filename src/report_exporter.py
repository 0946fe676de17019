"""
コンプライアンスレポート（PDF）の出力
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import LongTable, Paragraph, SimpleDocTemplate, Spacer, TableStyle

from app_logger import get_logger
from charging_models import DiscrepancyFlag, ScoredVehicle
from compliance_engine import summarize_fleet
from dashboard import helmet_label

logger = get_logger(__name__)

HEADER_FILL = colors.Color(9 / 255, 98 / 255, 76 / 255)


@dataclass(frozen=True)
class ReportSections:
    include_compliance_details: bool = True
    include_charging_discrepancies: bool = True
    include_narratives: bool = False


def report_filename(generated_at: datetime) -> str:
    return f"compliance-report-{generated_at.date().isoformat()}.pdf"


def _table(head: List[str], body: List[List[str]]) -> LongTable:
    # repeatRows=1 でページ送り時にヘッダー行を繰り返す
    table = LongTable([head] + body, repeatRows=1)
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), HEADER_FILL),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
    ]))
    return table


def compliance_rows(vehicles: List[ScoredVehicle]) -> List[List[str]]:
    return [
        [
            v.plate,
            v.vehicle_type.value,
            helmet_label(v.helmet),
            str(v.pending_fine),
            v.compliance.insurance_status.value,
            v.compliance.puc_status.value,
            v.compliance.tax_status.value,
            v.charging.discrepancy_flag.value,
            str(v.compliance.score),
        ]
        for v in vehicles
    ]


def discrepancy_rows(vehicles: List[ScoredVehicle]) -> List[List[str]]:
    return [
        [
            v.plate,
            f"{v.charging.billed:.2f}",
            f"{v.charging.detected:.2f}",
            f"{v.charging.difference:.2f}",
            v.charging.discrepancy_flag.value,
        ]
        for v in vehicles
    ]


def build_story(vehicles: List[ScoredVehicle], sections: ReportSections,
                summaries: Optional[Dict[str, str]], generated_at: datetime) -> list:
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("ReportTitle", parent=styles["Heading1"], fontSize=22, alignment=TA_CENTER)
    center = ParagraphStyle("Centered", parent=styles["Normal"], fontSize=12, alignment=TA_CENTER)
    heading = styles["Heading2"]
    body = styles["BodyText"]

    stats = summarize_fleet(vehicles)
    story = [
        Paragraph("AI Vehicle Compliance Report", title_style),
        Paragraph(f"Generated: {generated_at.strftime('%Y-%m-%d %H:%M:%S')}", center),
        Paragraph(f"Overall Compliance Score: {stats.mean_score:.2f} / 100", center),
        Spacer(1, 8 * mm),
    ]

    if sections.include_compliance_details:
        story.append(Paragraph("Unified Compliance Details", heading))
        story.append(_table(
            ["Plate", "Vehicle", "Helmet", "Fine (Rs)", "Insurance", "PUC", "Tax", "Charging", "Score"],
            compliance_rows(vehicles),
        ))
        story.append(Spacer(1, 6 * mm))

    flagged = [v for v in vehicles if v.charging.discrepancy_flag != DiscrepancyFlag.OK]
    if sections.include_charging_discrepancies and flagged:
        story.append(Paragraph("Charging Discrepancy Analysis", heading))
        story.append(_table(
            ["Plate", "Billed (kWh)", "Detected (kWh)", "Difference (kWh)", "Flag"],
            discrepancy_rows(flagged),
        ))
        story.append(Spacer(1, 6 * mm))

    if sections.include_narratives:
        story.append(Paragraph("AI Compliance Narratives", heading))
        summaries = summaries or {}
        for v in vehicles:
            text = summaries.get(v.plate)
            if not text:
                continue
            story.append(Paragraph(f"<b>{escape(v.plate)}</b>", body))
            for line in text.splitlines():
                if line.strip():
                    story.append(Paragraph(escape(line.strip()), body))
            story.append(Spacer(1, 3 * mm))

    return story


def generate_report(vehicles: List[ScoredVehicle], sections: ReportSections = None,
                    output_dir: str = ".", summaries: Optional[Dict[str, str]] = None,
                    generated_at: Optional[datetime] = None) -> Path:
    """PDFレポートを生成して保存先パスを返す

    Args:
        vehicles: 出力対象（選択済み・絞り込み済み）の車両
        sections: 出力するセクション
        output_dir: 保存先ディレクトリ
        summaries: {ナンバー: 要約文}
        generated_at: 生成日時（ファイル名の日付にも使用）
    """
    if not vehicles:
        raise ValueError("No vehicles selected for the report")
    sections = sections or ReportSections()
    generated_at = generated_at or datetime.now()

    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / report_filename(generated_at)

    doc = SimpleDocTemplate(
        str(path),
        pagesize=A4,
        leftMargin=14 * mm,
        rightMargin=14 * mm,
        topMargin=16 * mm,
        bottomMargin=16 * mm,
        title="AI Vehicle Compliance Report",
    )
    doc.build(build_story(vehicles, sections, summaries, generated_at))
    logger.info(f"Report written: {path} ({len(vehicles)} vehicle(s))")
    return path
