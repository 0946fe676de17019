import os
import sys
from datetime import date

import pytest

# srcディレクトリをパスに追加
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from charging_models import (
    Detection,
    DiscrepancyFlag,
    InsuranceStatus,
    PollutionStatus,
    RegistrationStatus,
    RegistryRecord,
    TaxStatus,
    Transaction,
    VehicleType,
)
from compliance_config import load_engine_config
from compliance_engine import process_transactions, summarize_fleet, violation_kind
from log_parser import parse_transactions
from reference_data import MOCK_AI_DETECTIONS, MOCK_RTO_DATABASE, get_mock_transaction_csv

TODAY = date(2025, 11, 1)


def _tx(plate, billed=10.0, charger="EV-CH-01"):
    return Transaction("2025-11-01T10:00:00", plate, billed, billed * 50, charger)


def _det(plate, detected=10.0, vehicle_type=VehicleType.FOUR_WHEELER, helmet=None):
    return Detection(plate, vehicle_type, helmet, detected, "2025-11-01T10:00:00")


def _clean_record(**overrides):
    base = dict(
        owner="Test Owner",
        vehicle_type="4-Wheeler",
        registration_valid_till=date(2030, 1, 1),
        insurance_status=InsuranceStatus.ACTIVE,
        pollution_valid_till=date(2030, 1, 1),
        pending_fine=0,
        fine_reason="None",
        road_tax_status=TaxStatus.PAID,
    )
    base.update(overrides)
    return RegistryRecord(**base)


@pytest.fixture
def sample_scored():
    txs = parse_transactions(get_mock_transaction_csv())
    return process_transactions(txs, MOCK_AI_DETECTIONS, MOCK_RTO_DATABASE, today=TODAY)


def test_sample_dataset_scores(sample_scored):
    by_plate = {v.plate: v for v in sample_scored}
    assert {p: v.compliance.score for p, v in by_plate.items()} == {
        "KA03AB1234": 60,
        "TN10CD5678": 40,
        "MH12EF9012": 20,
        "DL05GH3456": 80,
    }
    assert by_plate["KA03AB1234"].charging.discrepancy_flag == DiscrepancyFlag.SUSPICIOUS
    assert by_plate["MH12EF9012"].charging.discrepancy_flag == DiscrepancyFlag.SUSPICIOUS
    assert by_plate["TN10CD5678"].charging.discrepancy_flag == DiscrepancyFlag.OK
    assert by_plate["DL05GH3456"].charging.discrepancy_flag == DiscrepancyFlag.OK


def test_scenario_billed_vs_detected_difference(sample_scored):
    v = sample_scored[0]
    assert v.plate == "KA03AB1234"
    assert v.charging.billed == 15.0
    assert v.charging.detected == 12.5
    assert v.charging.difference == pytest.approx(2.5)
    assert v.compliance.overall_status == (
        "Fine Pending: ₹500 on KA03AB1234",
        "Charging Discrepancy on KA03AB1234",
        "No Helmet on KA03AB1234",
    )
    assert v.compliance.fine_status == "₹500"


def test_violation_order_is_fixed(sample_scored):
    mh = next(v for v in sample_scored if v.plate == "MH12EF9012")
    assert mh.compliance.overall_status == (
        "Registration Expired for MH12EF9012",
        "PUC Expired for MH12EF9012",
        "Fine Pending: ₹1500 on MH12EF9012",
        "Charging Discrepancy on MH12EF9012",
    )
    assert mh.compliance.registration_status == RegistrationStatus.EXPIRED
    assert mh.compliance.puc_status == PollutionStatus.EXPIRED


def test_one_scored_vehicle_per_transaction_even_with_repeated_plates():
    txs = [_tx("A1"), _tx("A1"), _tx("UNKNOWN"), _tx("B2")]
    scored = process_transactions(txs, [_det("A1"), _det("B2")], {}, today=TODAY)
    assert len(scored) == len(txs)
    assert [v.plate for v in scored] == ["A1", "A1", "UNKNOWN", "B2"]


def test_within_tolerance_is_ok():
    txs = [_tx("A1", billed=12.0)]
    scored = process_transactions(txs, [_det("A1", detected=10.0)], {"A1": _clean_record()}, today=TODAY)
    assert scored[0].charging.discrepancy_flag == DiscrepancyFlag.OK
    assert scored[0].compliance.score == 100
    assert scored[0].compliance.overall_status == ()


def test_negative_difference_beyond_tolerance_is_suspicious():
    scored = process_transactions([_tx("A1", billed=10.0)], [_det("A1", detected=12.5)],
                                  {"A1": _clean_record()}, today=TODAY)
    assert scored[0].charging.difference == pytest.approx(-2.5)
    assert scored[0].charging.discrepancy_flag == DiscrepancyFlag.SUSPICIOUS
    assert scored[0].compliance.score == 80


def test_three_flagged_sessions_on_one_charger_mark_charger_fault():
    txs = [
        _tx("A1", billed=20.0, charger="EV-CH-09"),
        _tx("B2", billed=20.0, charger="EV-CH-09"),
        _tx("C3", billed=20.0, charger="EV-CH-09"),
        _tx("D4", billed=20.0, charger="EV-CH-02"),
    ]
    dets = [_det(p, detected=10.0) for p in ("A1", "B2", "C3", "D4")]
    registry = {p: _clean_record() for p in ("A1", "B2", "C3", "D4")}
    scored = process_transactions(txs, dets, registry, today=TODAY)
    flags = [v.charging.discrepancy_flag for v in scored]
    assert flags[:3] == [DiscrepancyFlag.POTENTIAL_CHARGER_FAULT] * 3
    assert flags[3] == DiscrepancyFlag.SUSPICIOUS
    assert all(v.compliance.score == 80 for v in scored)


def test_charger_fault_overrides_vehicle_level_flag_for_the_whole_charger():
    txs = [_tx(p, billed=20.0, charger="EV-CH-09") for p in ("A1", "B2", "C3")]
    txs.append(_tx("D4", billed=10.0, charger="EV-CH-09"))
    dets = [_det(p, detected=10.0) for p in ("A1", "B2", "C3", "D4")]
    scored = process_transactions(txs, dets, {}, today=TODAY)
    assert scored[3].charging.difference == 0
    assert scored[3].charging.discrepancy_flag == DiscrepancyFlag.POTENTIAL_CHARGER_FAULT


def test_two_flags_stay_below_fault_threshold():
    txs = [_tx(p, billed=20.0, charger="EV-CH-09") for p in ("A1", "B2")]
    scored = process_transactions(txs, [_det("A1"), _det("B2")], {}, today=TODAY)
    assert {v.charging.discrepancy_flag for v in scored} == {DiscrepancyFlag.SUSPICIOUS}


def test_missing_detection_defaults():
    scored = process_transactions([_tx("ZZ99", billed=33.0)], [], {"ZZ99": _clean_record()}, today=TODAY)
    v = scored[0]
    assert v.vehicle_type == VehicleType.OTHER
    assert v.helmet is None
    assert v.charging.detected == 33.0
    assert v.charging.difference == 0
    assert v.charging.discrepancy_flag == DiscrepancyFlag.OK
    assert v.detection_found is False
    assert v.compliance.score == 100


def test_missing_registry_defaults_to_failing_statuses():
    scored = process_transactions([_tx("A1")], [_det("A1")], {}, today=TODAY)
    v = scored[0]
    assert v.registry is None
    assert v.registry_found is False
    assert v.compliance.insurance_status == InsuranceStatus.EXPIRED
    assert v.compliance.tax_status == TaxStatus.DUE
    assert "Insurance Expired for A1" in v.compliance.overall_status
    assert "Tax Due for A1" in v.compliance.overall_status
    assert v.compliance.fine_status == "OK"
    # 登録・PUCの期限も不明扱いで失効となるため4項目減点
    assert v.compliance.score == 20


def test_insurance_and_tax_failures_cost_forty_points():
    record = _clean_record(insurance_status=InsuranceStatus.EXPIRED, road_tax_status=TaxStatus.DUE)
    scored = process_transactions([_tx("A1")], [_det("A1")], {"A1": record}, today=TODAY)
    assert scored[0].compliance.score == 60
    assert scored[0].compliance.overall_status == ("Insurance Expired for A1", "Tax Due for A1")


def test_expiry_on_today_is_not_valid():
    record = _clean_record(registration_valid_till=TODAY, pollution_valid_till=TODAY)
    scored = process_transactions([_tx("A1")], [_det("A1")], {"A1": record}, today=TODAY)
    assert scored[0].compliance.registration_status == RegistrationStatus.EXPIRED
    assert scored[0].compliance.puc_status == PollutionStatus.EXPIRED
    assert scored[0].compliance.score == 60


def test_score_floors_at_zero():
    scored = process_transactions([_tx("A1", billed=30.0)], [_det("A1", detected=1.0)], {}, today=TODAY)
    v = scored[0]
    assert len(v.compliance.overall_status) == 5
    assert v.compliance.score == 0


def test_helmet_advisory_does_not_change_score():
    two_wheeler = _det("A1", vehicle_type=VehicleType.TWO_WHEELER, helmet=False)
    unknown = _det("B2", vehicle_type=VehicleType.TWO_WHEELER, helmet=None)
    worn = _det("C3", vehicle_type=VehicleType.TWO_WHEELER, helmet=True)
    car = _det("D4", helmet=False)
    registry = {p: _clean_record() for p in ("A1", "B2", "C3", "D4")}
    scored = process_transactions([_tx(p) for p in ("A1", "B2", "C3", "D4")],
                                  [two_wheeler, unknown, worn, car], registry, today=TODAY)
    assert [v.compliance.overall_status for v in scored] == [
        ("No Helmet on A1",), ("No Helmet on B2",), (), (),
    ]
    assert all(v.compliance.score == 100 for v in scored)


def test_all_scores_within_bounds(sample_scored):
    assert all(0 <= v.compliance.score <= 100 for v in sample_scored)


def test_engine_is_idempotent():
    txs = parse_transactions(get_mock_transaction_csv())
    first = process_transactions(txs, MOCK_AI_DETECTIONS, MOCK_RTO_DATABASE, today=TODAY)
    second = process_transactions(txs, MOCK_AI_DETECTIONS, MOCK_RTO_DATABASE, today=TODAY)
    assert first == second


def test_callable_and_mapping_lookups_are_equivalent():
    txs = parse_transactions(get_mock_transaction_csv())
    by_plate = {d.plate: d for d in MOCK_AI_DETECTIONS}
    from_list = process_transactions(txs, MOCK_AI_DETECTIONS, MOCK_RTO_DATABASE, today=TODAY)
    from_callable = process_transactions(txs, by_plate.get, MOCK_RTO_DATABASE.get, today=TODAY)
    assert from_list == from_callable


def test_first_detection_wins_for_duplicate_plates():
    dets = [_det("A1", detected=10.0), _det("A1", detected=50.0)]
    scored = process_transactions([_tx("A1", billed=10.0)], dets, {}, today=TODAY)
    assert scored[0].charging.detected == 10.0


def test_config_overrides_tolerance_threshold_and_penalty(tmp_path):
    cfg_file = tmp_path / "compliance.yml"
    cfg_file.write_text(
        "tolerances:\n  discrepancy_kwh: 5.0\nthresholds:\n  charger_fault: 2\npenalties:\n  per_check: 10\n",
        encoding="utf-8",
    )
    cfg = load_engine_config(str(cfg_file))
    txs = [_tx("A1", billed=14.0), _tx("B2", billed=20.0), _tx("C3", billed=20.0)]
    dets = [_det("A1"), _det("B2"), _det("C3")]
    registry = {p: _clean_record() for p in ("A1", "B2", "C3")}
    scored = process_transactions(txs, dets, registry, cfg=cfg, today=TODAY)
    assert [v.charging.discrepancy_flag for v in scored] == [
        DiscrepancyFlag.POTENTIAL_CHARGER_FAULT,
        DiscrepancyFlag.POTENTIAL_CHARGER_FAULT,
        DiscrepancyFlag.POTENTIAL_CHARGER_FAULT,
    ]
    assert all(v.compliance.score == 90 for v in scored)


def test_summarize_fleet(sample_scored):
    stats = summarize_fleet(sample_scored)
    assert stats.vehicle_count == 4
    assert stats.mean_score == pytest.approx(50.0)
    assert stats.discrepancy_count == 2
    assert stats.violation_histogram["PUC Expired"] == 3
    assert stats.violation_histogram["Charging Discrepancy"] == 2
    assert stats.violation_histogram["No Helmet"] == 1


def test_summarize_empty_fleet():
    stats = summarize_fleet([])
    assert stats.vehicle_count == 0
    assert stats.mean_score == 0.0
    assert stats.violation_histogram == {}


def test_violation_kind():
    assert violation_kind("Fine Pending: ₹500 on X") == "Fine Pending"
    assert violation_kind("something else") == "Other"
