"""
ダッシュボード表示用のビュー状態と絞り込み・並び替え
元データは変更せず、ViewState から表示用リストを都度生成する
"""

import re
from dataclasses import dataclass, field, replace
from typing import FrozenSet, List, Optional

from rapidfuzz.distance import JaroWinkler

from charging_models import DiscrepancyFlag, ScoredVehicle

SORT_KEYS = {
    "plate": lambda v: v.plate,
    "score": lambda v: v.compliance.score,
    "difference": lambda v: abs(v.charging.difference),
    "violations": lambda v: len(v.compliance.overall_status),
    "fine": lambda v: v.pending_fine,
}

_GOOD = {"active", "valid", "paid", "ok"}
_BAD = {"expired", "due"}
_WARN = {"suspicious", "potential charger fault"}


@dataclass(frozen=True)
class ViewState:
    query: str = ""
    flag: Optional[DiscrepancyFlag] = None
    min_score: int = 0
    max_score: int = 100
    sort_key: Optional[str] = None
    descending: bool = False
    selected: FrozenSet[str] = field(default_factory=frozenset)
    fuzzy_threshold: float = 0.85

    def with_query(self, query: str) -> "ViewState":
        return replace(self, query=query)

    def with_flag(self, flag: Optional[DiscrepancyFlag]) -> "ViewState":
        return replace(self, flag=flag)

    def sorted_by(self, sort_key: str, descending: bool = False) -> "ViewState":
        if sort_key not in SORT_KEYS:
            raise ValueError(f"unknown sort key: {sort_key}")
        return replace(self, sort_key=sort_key, descending=descending)

    def toggle_selected(self, plate: str) -> "ViewState":
        if plate in self.selected:
            return replace(self, selected=self.selected - {plate})
        return replace(self, selected=self.selected | {plate})

    def clear_selection(self) -> "ViewState":
        return replace(self, selected=frozenset())


def _normalize_plate(text: str) -> str:
    return re.sub(r"[\s\-]+", "", text or "").upper()


def matches_query(vehicle: ScoredVehicle, query: str, fuzzy_threshold: float = 0.85) -> bool:
    """ナンバー・車種・違反メッセージを対象に検索（ナンバーは表記ゆれを許容）"""
    if not query or not query.strip():
        return True
    q = query.strip().lower()
    haystack = [vehicle.plate, vehicle.vehicle_type.value, *vehicle.compliance.overall_status]
    if any(q in h.lower() for h in haystack):
        return True
    plate_q = _normalize_plate(query)
    plate = _normalize_plate(vehicle.plate)
    if plate_q and plate_q in plate:
        return True
    # OCRの読み違い程度の差はJaro-Winklerで拾う
    return len(plate_q) >= 4 and JaroWinkler.normalized_similarity(plate_q, plate) >= fuzzy_threshold


def apply_view(vehicles: List[ScoredVehicle], state: ViewState) -> List[ScoredVehicle]:
    rows = [
        v for v in vehicles
        if (state.flag is None or v.charging.discrepancy_flag == state.flag)
        and state.min_score <= v.compliance.score <= state.max_score
        and matches_query(v, state.query, state.fuzzy_threshold)
    ]
    # 並び替え未指定ならログの入力順のまま
    if state.sort_key is None:
        return rows
    return sorted(rows, key=SORT_KEYS[state.sort_key], reverse=state.descending)


def selected_vehicles(vehicles: List[ScoredVehicle], state: ViewState) -> List[ScoredVehicle]:
    """選択がなければ全件（レポート出力対象）"""
    if not state.selected:
        return list(vehicles)
    return [v for v in vehicles if v.plate in state.selected]


def status_tone(status) -> str:
    value = getattr(status, "value", status)
    s = str(value).strip().lower()
    if s in _GOOD:
        return "good"
    if s in _BAD:
        return "bad"
    if s in _WARN:
        return "warn"
    return "neutral"


def score_band(score: float) -> str:
    if score > 80:
        return "high"
    if score > 50:
        return "medium"
    return "low"


def helmet_label(helmet: Optional[bool]) -> str:
    if helmet is None:
        return "N/A"
    return "Yes" if helmet else "No"
