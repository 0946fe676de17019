"""
参照データ（AI検出結果・RTOデータ）のフィクスチャとローダー
実運用では映像解析やRTO APIに置き換える前提
"""

import json
from datetime import date
from pathlib import Path
from typing import Any, Dict, List

from charging_models import Detection, InsuranceStatus, RegistryRecord, TaxStatus, VehicleType


def _pick(row: Dict[str, Any], *keys: str, default=None):
    for k in keys:
        if k in row and row[k] is not None:
            return row[k]
    return default


def detection_from_dict(row: Dict[str, Any]) -> Detection:
    """camelCase / snake_case どちらのキーでも受け付ける"""
    return Detection(
        plate=str(_pick(row, "plate", default="")),
        vehicle_type=VehicleType.parse(_pick(row, "vehicleType", "vehicle_type", default="Other")),
        helmet=_pick(row, "helmet"),
        detected_kwh=float(_pick(row, "detectedKwh", "detected_kwh", default=0.0)),
        timestamp=str(_pick(row, "timestamp", default="")),
    )


def _required_date(row: Dict[str, Any], plate: str, *keys: str) -> date:
    value = _pick(row, *keys)
    if value is None:
        raise ValueError(f"Registry record for {plate or '?'} is missing '{keys[0]}'")
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise ValueError(f"Registry record for {plate or '?'} has invalid '{keys[0]}': {value!r}") from e


def registry_from_dict(row: Dict[str, Any], plate: str = "") -> RegistryRecord:
    plate = plate or str(_pick(row, "plate", default=""))
    insurance = _pick(row, "insuranceStatus", "insurance_status", default="Expired")
    tax = _pick(row, "roadTaxStatus", "road_tax_status", default="Due")
    return RegistryRecord(
        owner=str(_pick(row, "owner", default="")),
        vehicle_type=str(_pick(row, "vehicleType", "vehicle_type", default="")),
        registration_valid_till=_required_date(row, plate, "registrationValidTill", "registration_valid_till"),
        insurance_status=InsuranceStatus.ACTIVE if insurance == "Active" else InsuranceStatus.EXPIRED,
        pollution_valid_till=_required_date(row, plate, "pollutionValidTill", "pollution_valid_till"),
        pending_fine=int(_pick(row, "pendingFine", "pending_fine", default=0)),
        fine_reason=str(_pick(row, "fineReason", "fine_reason", default="None")),
        road_tax_status=TaxStatus.PAID if tax == "Paid" else TaxStatus.DUE,
    )


def load_detections(path: str) -> List[Detection]:
    with open(path, "r", encoding="utf-8") as f:
        rows = json.load(f)
    return [detection_from_dict(r) for r in rows]


def load_registry(path: str) -> Dict[str, RegistryRecord]:
    """{ナンバー: レコード} 形式、またはplateキーを持つレコードのリスト"""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, list):
        registry = {}
        for r in data:
            plate = _pick(r, "plate")
            if not plate:
                raise ValueError(f"Registry record without 'plate': {r}")
            registry[str(plate)] = registry_from_dict(r, str(plate))
        return registry
    return {plate: registry_from_dict(r, plate) for plate, r in data.items()}


MOCK_AI_DETECTIONS: List[Detection] = [
    Detection("KA03AB1234", VehicleType.TWO_WHEELER, False, 12.5, "2025-10-31T10:20:00"),
    Detection("TN10CD5678", VehicleType.FOUR_WHEELER, None, 45.0, "2025-10-31T10:22:30"),
    Detection("MH12EF9012", VehicleType.FOUR_WHEELER, None, 30.2, "2025-11-01T10:25:10"),
    Detection("DL05GH3456", VehicleType.TWO_WHEELER, True, 14.8, "2025-11-01T10:28:05"),
]

MOCK_RTO_DATABASE: Dict[str, RegistryRecord] = {
    "KA03AB1234": RegistryRecord(
        owner="Ravi Kumar",
        vehicle_type="2-Wheeler",
        registration_valid_till=date(2027, 3, 30),
        insurance_status=InsuranceStatus.ACTIVE,
        pollution_valid_till=date(2026, 2, 12),
        pending_fine=500,
        fine_reason="No Helmet",
        road_tax_status=TaxStatus.PAID,
    ),
    "TN10CD5678": RegistryRecord(
        owner="Priya Sharma",
        vehicle_type="4-Wheeler",
        registration_valid_till=date(2029, 11, 2),
        insurance_status=InsuranceStatus.EXPIRED,
        pollution_valid_till=date(2025, 8, 14),
        pending_fine=0,
        fine_reason="None",
        road_tax_status=TaxStatus.DUE,
    ),
    "MH12EF9012": RegistryRecord(
        owner="Amit Patel",
        vehicle_type="4-Wheeler",
        registration_valid_till=date(2023, 12, 15),
        insurance_status=InsuranceStatus.ACTIVE,
        pollution_valid_till=date(2025, 1, 20),
        pending_fine=1500,
        fine_reason="Overspeeding",
        road_tax_status=TaxStatus.PAID,
    ),
    "DL05GH3456": RegistryRecord(
        owner="Sunita Devi",
        vehicle_type="2-Wheeler",
        registration_valid_till=date(2028, 6, 10),
        insurance_status=InsuranceStatus.ACTIVE,
        pollution_valid_till=date(2024, 7, 22),
        pending_fine=0,
        fine_reason="None",
        road_tax_status=TaxStatus.PAID,
    ),
}


def get_mock_transaction_csv() -> str:
    return (
        "Timestamp,Plate,Billed_kWh,Amount (₹),Charger_ID\n"
        "2025-10-31T10:20:00,KA03AB1234,15.0,750,EV-CH-01\n"
        "2025-10-31T10:22:30,TN10CD5678,45.0,2250,EV-CH-01\n"
        "2025-11-01T10:25:10,MH12EF9012,35.0,1750,EV-CH-02\n"
        "2025-11-01T10:28:05,DL05GH3456,15.0,755,EV-CH-01\n"
    )


def write_sample_files(directory: str) -> Dict[str, Path]:
    """サンプルのログとフィクスチャJSONを書き出す（CLIの動作確認用）"""
    out = Path(directory)
    out.mkdir(parents=True, exist_ok=True)
    paths = {
        "log": out / "transactions.csv",
        "detections": out / "detections.json",
        "registry": out / "registry.json",
    }
    paths["log"].write_text(get_mock_transaction_csv(), encoding="utf-8")
    paths["detections"].write_text(json.dumps([
        {
            "plate": d.plate,
            "vehicleType": d.vehicle_type.value,
            "helmet": d.helmet,
            "detectedKwh": d.detected_kwh,
            "timestamp": d.timestamp,
        }
        for d in MOCK_AI_DETECTIONS
    ], ensure_ascii=False, indent=2), encoding="utf-8")
    paths["registry"].write_text(json.dumps({
        plate: {
            "owner": r.owner,
            "vehicleType": r.vehicle_type,
            "registrationValidTill": r.registration_valid_till.isoformat(),
            "insuranceStatus": r.insurance_status.value,
            "pollutionValidTill": r.pollution_valid_till.isoformat(),
            "pendingFine": r.pending_fine,
            "fineReason": r.fine_reason,
            "roadTaxStatus": r.road_tax_status.value,
        }
        for plate, r in MOCK_RTO_DATABASE.items()
    }, ensure_ascii=False, indent=2), encoding="utf-8")
    return paths
