"""
AIによるコンプライアンス要約
スコアには影響しない表示専用の補助機能
"""

import json
import os
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

import requests

from app_logger import get_logger
from charging_models import FleetStats, ScoredVehicle
from compliance_config import DEFAULTS
from errors import SummarizerError

logger = get_logger(__name__)

FLEET_KEY = "__fleet__"
RETRY_STATUS = (429, 500, 502, 503, 504)

SYSTEM_PROMPT = """
You are an AI EV Fleet Specialist, providing compliance summaries for a smart charging network.
Your task is to analyze the provided vehicle data and generate a concise, human-readable compliance summary.

Rules:
- Start with the vehicle's number plate.
- Use bullet points for clarity.
- Focus ONLY on issues, violations, or warnings.
- If there are no issues, simply state "All systems nominal. Full compliance achieved."
- Keep the summary brief and to the point.
"""

FLEET_SYSTEM_PROMPT = """
You are an AI EV Fleet Specialist reviewing one analysis run of a smart charging network.
Summarize the fleet-wide compliance picture in a short paragraph followed by at most five bullet points.
Mention the most frequent violation types and any charging discrepancies.
"""


def _helmet_text(helmet: Optional[bool]) -> str:
    if helmet is None:
        return "N/A"
    return "Worn" if helmet else "Not Worn"


def build_vehicle_prompt(vehicle: ScoredVehicle) -> str:
    compliance = vehicle.compliance
    prompt_data = {
        "plate": vehicle.plate,
        "vehicleType": vehicle.vehicle_type.value,
        "helmet": _helmet_text(vehicle.helmet),
        "complianceIssues": list(compliance.overall_status),
        "rtoDetails": {
            "registration": compliance.registration_status.value,
            "insurance": compliance.insurance_status.value,
            "puc": compliance.puc_status.value,
            "tax": compliance.tax_status.value,
            "fine": f"₹{vehicle.pending_fine} for {vehicle.fine_reason}" if vehicle.pending_fine > 0 else "None",
            "recordFound": vehicle.registry_found,
        },
        "chargingCheck": {
            "status": vehicle.charging.discrepancy_flag.value,
            "discrepancy": f"{vehicle.charging.difference:.2f} kWh",
        },
    }
    return (
        "Here is the data for the vehicle:\n"
        f"{json.dumps(prompt_data, ensure_ascii=False, indent=2)}\n\n"
        "Generate the compliance summary now."
    )


def build_fleet_prompt(stats: FleetStats) -> str:
    prompt_data = {
        "vehicleCount": stats.vehicle_count,
        "meanScore": round(stats.mean_score, 2),
        "violationTypes": stats.violation_histogram,
        "chargingDiscrepancies": stats.discrepancy_count,
    }
    return (
        "Here are the aggregate statistics for this analysis run:\n"
        f"{json.dumps(prompt_data, ensure_ascii=False, indent=2)}\n\n"
        "Generate the fleet summary now."
    )


class ComplianceSummarizer:
    """Claude API クライアント（要約専用）"""

    def __init__(self, api_key: str, model: str = None, max_tokens: int = None,
                 temperature: float = None, endpoint: str = None, max_retries: int = None,
                 timeout: float = 30.0):
        defaults = DEFAULTS["summarizer"]
        self.api_key = api_key
        self.base_url = endpoint or defaults["endpoint"]
        self.model = model or defaults["model"]
        self.max_tokens = max_tokens or defaults["max_tokens"]
        self.temperature = defaults["temperature"] if temperature is None else temperature
        self.max_retries = max_retries or defaults["max_retries"]
        self.timeout = timeout
        self.headers = {
            "x-api-key": api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json"
        }

    @classmethod
    def from_config(cls, cfg: dict, api_key: str = None) -> "ComplianceSummarizer":
        sc = (cfg or DEFAULTS).get("summarizer", {})
        api_key = api_key or os.getenv("CLAUDE_API_KEY")
        if not api_key:
            raise SummarizerError("CLAUDE_API_KEY is not set")
        return cls(
            api_key,
            model=sc.get("model"),
            max_tokens=sc.get("max_tokens"),
            temperature=sc.get("temperature"),
            endpoint=sc.get("endpoint"),
            max_retries=sc.get("max_retries"),
        )

    def _post_with_backoff(self, data: Dict) -> requests.Response:
        backoff = 1
        response = None
        for attempt in range(self.max_retries):
            response = requests.post(self.base_url, headers=self.headers, json=data, timeout=self.timeout)
            if response.status_code not in RETRY_STATUS:
                response.raise_for_status()
                return response
            logger.warning(f"Summarizer HTTP {response.status_code}, retry {attempt + 1}/{self.max_retries}")
            if attempt + 1 < self.max_retries:
                time.sleep(backoff)
                backoff = min(backoff * 2, 16)
        response.raise_for_status()
        return response

    def _generate(self, system: str, user_message: str) -> str:
        data = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system": system,
            "messages": [
                {"role": "user", "content": user_message}
            ]
        }
        try:
            response = self._post_with_backoff(data)
            content = response.json()["content"][0]["text"]
        except requests.RequestException as e:
            raise SummarizerError(f"Failed to generate AI summary: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise SummarizerError(f"Unexpected response from summarizer: {e}") from e
        if not isinstance(content, str):
            raise SummarizerError(f"Unexpected response from summarizer: text is {type(content).__name__}")
        text = content.strip()
        if not text:
            raise SummarizerError("Summarizer returned an empty summary")
        return text

    def summarize_vehicle(self, vehicle: ScoredVehicle) -> str:
        return self._generate(SYSTEM_PROMPT, build_vehicle_prompt(vehicle))

    def summarize_fleet(self, stats: FleetStats) -> str:
        return self._generate(FLEET_SYSTEM_PROMPT, build_fleet_prompt(stats))


@dataclass(frozen=True)
class SummaryResult:
    plate: str
    text: Optional[str] = None
    error: Optional[str] = None
    pending: bool = False

    @property
    def ok(self) -> bool:
        return self.text is not None and self.error is None


class SummaryCache:
    """セッション内の要約キャッシュ（ナンバーごとに同時実行は1件まで）"""

    def __init__(self, summarizer: ComplianceSummarizer):
        self.summarizer = summarizer
        self._results: Dict[str, SummaryResult] = {}
        self._in_flight = set()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[SummaryResult]:
        with self._lock:
            return self._results.get(key)

    def texts(self) -> Dict[str, str]:
        """成功した要約のみ（レポート出力用）"""
        with self._lock:
            return {k: r.text for k, r in self._results.items() if r.ok and k != FLEET_KEY}

    def _run(self, key: str, force: bool, produce) -> SummaryResult:
        with self._lock:
            if key in self._in_flight:
                return SummaryResult(key, pending=True)
            cached = self._results.get(key)
            if cached is not None and not force:
                return cached
            self._in_flight.add(key)

        try:
            result = SummaryResult(key, text=produce())
        except (SummarizerError, requests.RequestException) as e:
            logger.error(f"Failed to get AI summary for {key}: {e}")
            result = SummaryResult(key, error="Error generating summary.")
        except Exception as e:
            # 要約の失敗で分析全体を止めない
            logger.exception(f"Unexpected error in AI summary for {key}: {e}")
            result = SummaryResult(key, error="Error generating summary.")

        with self._lock:
            self._results[key] = result
            self._in_flight.discard(key)
        return result

    def get_or_request(self, vehicle: ScoredVehicle, force: bool = False) -> SummaryResult:
        return self._run(vehicle.plate, force, lambda: self.summarizer.summarize_vehicle(vehicle))

    def get_or_request_fleet(self, stats: FleetStats, force: bool = False) -> SummaryResult:
        return self._run(FLEET_KEY, force, lambda: self.summarizer.summarize_fleet(stats))
