from collections import Counter, defaultdict
from datetime import date
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from app_logger import get_logger
from charging_models import (
    ChargingCheck,
    ComplianceResult,
    Detection,
    DiscrepancyFlag,
    FleetStats,
    InsuranceStatus,
    PollutionStatus,
    RegistrationStatus,
    RegistryRecord,
    ScoredVehicle,
    TaxStatus,
    Transaction,
    VehicleType,
)
from compliance_config import DEFAULTS

logger = get_logger(__name__)

DetectionSource = Union[Mapping[str, Detection], Callable[[str], Optional[Detection]], Iterable[Detection]]
RegistrySource = Union[Mapping[str, RegistryRecord], Callable[[str], Optional[RegistryRecord]]]

# overall_status のメッセージ種別（集計用）
VIOLATION_KINDS = (
    ("Registration Expired", "Registration Expired for "),
    ("Insurance Expired", "Insurance Expired for "),
    ("PUC Expired", "PUC Expired for "),
    ("Fine Pending", "Fine Pending: "),
    ("Tax Due", "Tax Due for "),
    ("Charging Discrepancy", "Charging Discrepancy on "),
    ("No Helmet", "No Helmet on "),
)


def index_detections(detections: Iterable[Detection]) -> Dict[str, Detection]:
    """ナンバーごとに最初の検出結果を採用"""
    index: Dict[str, Detection] = {}
    for d in detections:
        index.setdefault(d.plate, d)
    return index


def _as_lookup(source) -> Callable[[str], Optional[object]]:
    if source is None:
        return lambda plate: None
    if isinstance(source, Mapping):
        return source.get
    if callable(source):
        return source
    return index_detections(source).get


def _thresholds(cfg: Optional[dict]) -> Tuple[float, int, int]:
    cfg = cfg or DEFAULTS
    tolerance = float(cfg.get("tolerances", {}).get("discrepancy_kwh", DEFAULTS["tolerances"]["discrepancy_kwh"]))
    fault_threshold = int(cfg.get("thresholds", {}).get("charger_fault", DEFAULTS["thresholds"]["charger_fault"]))
    penalty = int(cfg.get("penalties", {}).get("per_check", DEFAULTS["penalties"]["per_check"]))
    return tolerance, fault_threshold, penalty


def scan_discrepancies(
    transactions: List[Transaction],
    find_detection: Callable[[str], Optional[Detection]],
    tolerance: float,
) -> Tuple[Set[str], Dict[str, int]]:
    """1パス目: 課金量と検出量の差が許容範囲を超えるものを洗い出す

    Returns:
        (不審なナンバーの集合, 充電器ごとの不一致件数)
    """
    suspicious: Set[str] = set()
    charger_counts: Dict[str, int] = defaultdict(int)
    for tx in transactions:
        detection = find_detection(tx.plate)
        if detection is None:
            continue
        difference = tx.billed_kwh - detection.detected_kwh
        if abs(difference) > tolerance:
            suspicious.add(tx.plate)
            charger_counts[tx.charger_id] += 1
    return suspicious, dict(charger_counts)


def _discrepancy_flag(tx: Transaction, suspicious: Set[str], charger_counts: Dict[str, int],
                      fault_threshold: int) -> DiscrepancyFlag:
    # 充電器単位の異常は車両単位の判定より優先
    if charger_counts.get(tx.charger_id, 0) >= fault_threshold:
        return DiscrepancyFlag.POTENTIAL_CHARGER_FAULT
    if tx.plate in suspicious:
        return DiscrepancyFlag.SUSPICIOUS
    return DiscrepancyFlag.OK


def score_vehicle(
    tx: Transaction,
    detection: Optional[Detection],
    registry: Optional[RegistryRecord],
    flag: DiscrepancyFlag,
    today: date,
    penalty: int = DEFAULTS["penalties"]["per_check"],
) -> ScoredVehicle:
    """2パス目: 1台分のコンプライアンススコアを計算する"""
    plate = tx.plate
    detected = detection.detected_kwh if detection else tx.billed_kwh
    difference = tx.billed_kwh - detected

    is_reg_valid = registry is not None and registry.registration_valid_till > today
    is_puc_valid = registry is not None and registry.pollution_valid_till > today
    insurance = registry.insurance_status if registry else InsuranceStatus.EXPIRED
    tax = registry.road_tax_status if registry else TaxStatus.DUE
    pending_fine = registry.pending_fine if registry else 0

    score = 100
    overall_status: List[str] = []

    if not is_reg_valid:
        score -= penalty
        overall_status.append(f"Registration Expired for {plate}")
    if insurance != InsuranceStatus.ACTIVE:
        score -= penalty
        overall_status.append(f"Insurance Expired for {plate}")
    if not is_puc_valid:
        score -= penalty
        overall_status.append(f"PUC Expired for {plate}")
    if pending_fine > 0:
        score -= penalty
        overall_status.append(f"Fine Pending: ₹{pending_fine} on {plate}")
    if tax != TaxStatus.PAID:
        score -= penalty
        overall_status.append(f"Tax Due for {plate}")
    if flag != DiscrepancyFlag.OK:
        score -= penalty
        overall_status.append(f"Charging Discrepancy on {plate}")
    # ヘルメットは注意喚起のみ（減点なし）
    if detection and detection.vehicle_type == VehicleType.TWO_WHEELER and detection.helmet is not True:
        overall_status.append(f"No Helmet on {plate}")

    return ScoredVehicle(
        plate=plate,
        vehicle_type=detection.vehicle_type if detection else VehicleType.OTHER,
        helmet=detection.helmet if detection else None,
        registry=registry,
        charging=ChargingCheck(
            billed=tx.billed_kwh,
            detected=detected,
            difference=difference,
            discrepancy_flag=flag,
        ),
        compliance=ComplianceResult(
            score=max(0, score),
            registration_status=RegistrationStatus.VALID if is_reg_valid else RegistrationStatus.EXPIRED,
            insurance_status=insurance,
            puc_status=PollutionStatus.VALID if is_puc_valid else PollutionStatus.EXPIRED,
            tax_status=tax,
            fine_status=f"₹{pending_fine}" if pending_fine > 0 else "OK",
            overall_status=tuple(overall_status),
        ),
        registry_found=registry is not None,
        detection_found=detection is not None,
    )


def process_transactions(
    transactions: List[Transaction],
    detections: DetectionSource,
    registry: RegistrySource,
    cfg: Optional[dict] = None,
    today: Optional[date] = None,
) -> List[ScoredVehicle]:
    """トランザクションを検出結果・RTOデータと結合してスコアリングする

    Args:
        transactions: パース済みトランザクション
        detections: ナンバー -> Detection の参照（dict / 関数 / リスト）
        registry: ナンバー -> RegistryRecord の参照（dict / 関数）
        cfg: load_engine_config() の結果
        today: 有効期限判定の基準日（省略時は本日）

    Returns:
        List[ScoredVehicle]: トランザクションと同じ順序・同じ件数
    """
    tolerance, fault_threshold, penalty = _thresholds(cfg)
    today = today or date.today()
    find_detection = _as_lookup(detections)
    find_registry = _as_lookup(registry)

    suspicious, charger_counts = scan_discrepancies(transactions, find_detection, tolerance)
    faulty = sorted(c for c, n in charger_counts.items() if n >= fault_threshold)
    if faulty:
        logger.warning(f"Potential charger fault on: {', '.join(faulty)}")

    scored = [
        score_vehicle(
            tx,
            find_detection(tx.plate),
            find_registry(tx.plate),
            _discrepancy_flag(tx, suspicious, charger_counts, fault_threshold),
            today,
            penalty,
        )
        for tx in transactions
    ]
    logger.info(f"Scored {len(scored)} vehicle(s); {len(suspicious)} suspicious plate(s)")
    return scored


def violation_kind(message: str) -> str:
    for kind, prefix in VIOLATION_KINDS:
        if message.startswith(prefix):
            return kind
    return "Other"


def summarize_fleet(vehicles: List[ScoredVehicle]) -> FleetStats:
    """ダッシュボード・レポート用の集計"""
    histogram = Counter(violation_kind(m) for v in vehicles for m in v.compliance.overall_status)
    count = len(vehicles)
    mean_score = sum(v.compliance.score for v in vehicles) / count if count else 0.0
    discrepancies = sum(1 for v in vehicles if v.charging.discrepancy_flag != DiscrepancyFlag.OK)
    return FleetStats(
        vehicle_count=count,
        mean_score=mean_score,
        violation_histogram=dict(histogram),
        discrepancy_count=discrepancies,
    )
