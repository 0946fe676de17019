import os
import yaml


DEFAULTS = {
    "tolerances": {"discrepancy_kwh": 2.0},
    "thresholds": {"charger_fault": 3},
    "penalties": {"per_check": 20},
    "summarizer": {
        "endpoint": "https://api.anthropic.com/v1/messages",
        "model": "claude-3-5-haiku-20241022",
        "max_tokens": 600,
        "temperature": 0.2,
        "max_retries": 3,
    },
    "report": {"output_dir": "reports"},
}


def _get_config_path() -> str:
    """環境変数から毎回設定ファイルパスを取得（テストでの monkeypatch に追従するため）。"""
    default = os.path.join(os.path.dirname(os.path.dirname(__file__)), "config", "compliance.yml")
    return os.getenv("COMPLIANCE_CONFIG", default)


def _merge(base: dict, override: dict) -> dict:
    # shallow merge defaults
    merged = {k: (dict(v) if isinstance(v, dict) else v) for k, v in base.items()}
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            mv = dict(merged[k])
            mv.update(v)
            merged[k] = mv
        else:
            merged[k] = v
    return merged


def _validate(cfg: dict) -> dict:
    if float(cfg["tolerances"]["discrepancy_kwh"]) < 0:
        raise ValueError("tolerances.discrepancy_kwh must be >= 0")
    if int(cfg["thresholds"]["charger_fault"]) < 1:
        raise ValueError("thresholds.charger_fault must be >= 1")
    if int(cfg["penalties"]["per_check"]) < 0:
        raise ValueError("penalties.per_check must be >= 0")
    return cfg


def load_engine_config(path: str = None, overrides: dict = None) -> dict:
    """設定ファイルを読み込み、DEFAULTSとマージして返す。

    Args:
        path: YAMLファイルのパス（省略時は COMPLIANCE_CONFIG または config/compliance.yml）
        overrides: ファイルの後に適用する上書き設定
    """
    path = path or _get_config_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        cfg = {}

    merged = _merge(DEFAULTS, cfg)
    if overrides:
        merged = _merge(merged, overrides)
    return _validate(merged)
