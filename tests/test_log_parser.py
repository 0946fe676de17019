import os
import sys

import pytest

# srcディレクトリをパスに追加
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from errors import (
    EmptyInputError,
    InvalidValueError,
    LogParseError,
    MalformedRowError,
    MissingColumnsError,
    MissingDataError,
)
from log_parser import parse_transactions
from reference_data import get_mock_transaction_csv

HEADER = "Timestamp,Plate,Billed_kWh,Amount (₹),Charger_ID"


def test_parse_sample_log_preserves_order_and_types():
    txs = parse_transactions(get_mock_transaction_csv())
    assert [t.plate for t in txs] == ["KA03AB1234", "TN10CD5678", "MH12EF9012", "DL05GH3456"]
    first = txs[0]
    assert first.timestamp == "2025-10-31T10:20:00"
    assert first.billed_kwh == 15.0
    assert first.amount == 750.0
    assert first.charger_id == "EV-CH-01"
    assert first.extra == {}


@pytest.mark.parametrize("text", ["", "   ", "\n\n\t"])
def test_empty_input(text):
    with pytest.raises(EmptyInputError):
        parse_transactions(text)


def test_header_only_is_missing_data():
    with pytest.raises(MissingDataError):
        parse_transactions(HEADER + "\n")


def test_header_with_blank_rows_only_is_missing_data():
    with pytest.raises(MissingDataError):
        parse_transactions(HEADER + "\n   \n\n")


def test_missing_plate_column_is_named():
    text = "Timestamp,Billed_kWh,Amount (₹),Charger_ID\n2025-10-31T10:20:00,15.0,750,EV-CH-01\n"
    with pytest.raises(MissingColumnsError) as exc:
        parse_transactions(text)
    assert exc.value.missing == ["Plate"]
    assert "plate" in str(exc.value).lower()


def test_missing_several_columns_listed_in_order():
    text = "Plate,Timestamp\nKA03AB1234,2025-10-31T10:20:00\n"
    with pytest.raises(MissingColumnsError) as exc:
        parse_transactions(text)
    assert exc.value.missing == ["Billed_kWh", "Amount (₹)", "Charger_ID"]


def test_malformed_row_reports_line_number_and_counts():
    text = (
        HEADER + "\n"
        "2025-10-31T10:20:00,KA03AB1234,15.0,750,EV-CH-01\n"
        "2025-10-31T10:22:30,TN10CD5678,45.0,2250\n"
    )
    with pytest.raises(MalformedRowError) as exc:
        parse_transactions(text)
    assert exc.value.row == 3
    assert exc.value.expected == 5
    assert exc.value.actual == 4
    assert "Row 3" in str(exc.value)


def test_blank_lines_are_skipped_and_crlf_accepted():
    text = (
        HEADER + "\r\n"
        "2025-10-31T10:20:00,KA03AB1234,15.0,750,EV-CH-01\r\n"
        "\r\n"
        "2025-10-31T10:22:30,TN10CD5678,45.0,2250,EV-CH-01\r\n"
    )
    txs = parse_transactions(text)
    assert len(txs) == 2
    assert txs[1].plate == "TN10CD5678"


def test_extra_columns_pass_through_lowercased_as_text():
    text = (
        "Timestamp,Plate,Billed_kWh,Amount (₹),Charger_ID,Session_Ref,Bay\n"
        "2025-10-31T10:20:00,KA03AB1234,15.0,750,EV-CH-01,S-001,42\n"
    )
    tx = parse_transactions(text)[0]
    assert tx.extra == {"session_ref": "S-001", "bay": "42"}


def test_fields_are_trimmed_and_columns_may_be_reordered():
    text = "Plate , Charger_ID,Timestamp,Amount (₹),Billed_kWh\n KA03AB1234 ,EV-CH-01, t1 , 750 , 15 \n"
    tx = parse_transactions(text)[0]
    assert tx.plate == "KA03AB1234"
    assert tx.timestamp == "t1"
    assert tx.billed_kwh == 15.0


def test_numeric_plate_stays_text():
    text = HEADER + "\n2025-10-31T10:20:00,12345,15.0,750,7\n"
    tx = parse_transactions(text)[0]
    assert tx.plate == "12345"
    assert tx.charger_id == "7"


@pytest.mark.parametrize("billed", ["abc", "", "-1.5", "nan"])
def test_invalid_billed_energy_is_rejected(billed):
    text = HEADER + f"\n2025-10-31T10:20:00,KA03AB1234,{billed},750,EV-CH-01\n"
    with pytest.raises(InvalidValueError) as exc:
        parse_transactions(text)
    assert exc.value.row == 2
    assert exc.value.column == "Billed_kWh"


def test_custom_delimiter():
    text = HEADER.replace(",", ";") + "\n2025-10-31T10:20:00;KA03AB1234;15.0;750;EV-CH-01\n"
    assert parse_transactions(text, delimiter=";")[0].billed_kwh == 15.0


def test_parse_errors_share_base_class():
    for text in ["", HEADER, "Plate\nX\n"]:
        with pytest.raises(LogParseError):
            parse_transactions(text)
