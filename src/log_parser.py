"""
充電トランザクションログのパーサー
区切り文字付きテキストを Transaction のリストに変換する
"""

import math
from typing import Callable, Dict, List, Tuple

from app_logger import get_logger
from charging_models import Transaction
from errors import (
    EmptyInputError,
    InvalidValueError,
    MalformedRowError,
    MissingColumnsError,
    MissingDataError,
)

logger = get_logger(__name__)

DEFAULT_DELIMITER = ","


def _text(value: str) -> str:
    return value


def _number(value: str) -> float:
    if value == "":
        raise ValueError("empty")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError("not finite")
    return number


def _non_negative_number(value: str) -> float:
    number = _number(value)
    if number < 0:
        raise ValueError("negative")
    return number


# 必須カラム: ヘッダー名 -> (Transaction のフィールド名, 型変換)
REQUIRED_COLUMNS: Dict[str, Tuple[str, Callable[[str], object]]] = {
    "Timestamp": ("timestamp", _text),
    "Plate": ("plate", _text),
    "Billed_kWh": ("billed_kwh", _non_negative_number),
    "Amount (₹)": ("amount", _number),
    "Charger_ID": ("charger_id", _text),
}


def _split(line: str, delimiter: str) -> List[str]:
    return [v.strip() for v in line.split(delimiter)]


def _convert(header: str, raw: str, row_number: int) -> object:
    _, converter = REQUIRED_COLUMNS[header]
    try:
        return converter(raw)
    except ValueError as e:
        reason = "must not be negative" if str(e) == "negative" else "is not a valid number"
        raise InvalidValueError(row_number, header, raw, reason) from e


def parse_transactions(text: str, delimiter: str = DEFAULT_DELIMITER) -> List[Transaction]:
    """ログ全体をパースする。途中でエラーがあれば部分結果は返さない。

    Args:
        text: ログファイルの内容
        delimiter: 区切り文字

    Returns:
        List[Transaction]: 入力順のトランザクション
    """
    if not text or not text.strip():
        raise EmptyInputError()

    lines = text.strip().splitlines()
    if len(lines) < 2:
        raise MissingDataError()

    headers = _split(lines[0], delimiter)
    missing = [h for h in REQUIRED_COLUMNS if h not in headers]
    if missing:
        raise MissingColumnsError(missing)

    transactions: List[Transaction] = []
    for index, line in enumerate(lines[1:], start=2):
        if not line.strip():
            continue
        values = _split(line, delimiter)
        if len(values) != len(headers):
            raise MalformedRowError(index, len(headers), len(values))

        fields: Dict[str, object] = {}
        extra: Dict[str, str] = {}
        for header, value in zip(headers, values):
            if header in REQUIRED_COLUMNS:
                fields[REQUIRED_COLUMNS[header][0]] = _convert(header, value, index)
            else:
                extra[header.lower()] = value
        transactions.append(Transaction(extra=extra, **fields))

    if not transactions:
        raise MissingDataError()

    logger.info(f"Parsed {len(transactions)} transaction(s) with {len(headers)} column(s)")
    return transactions
