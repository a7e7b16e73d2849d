import os
import yaml

from custom_rules import CATEGORY_OVERRIDES, NAME_PATTERNS


# 提案日から30日を超えた入金は分割払い（手技なし）とみなす
PAYMENT_ONLY_DAYS = 30

DEFAULTS = {
    "thresholds": {
        "payment_only_days": PAYMENT_ONLY_DAYS,
        "min_invoice_overlap": 2,
        "appointment_window_days": 7,
    },
    "retry": {"max_attempts": 3, "backoff_seconds": 0.5, "timeout_seconds": 30},
    "report": {"account_type_ids": [3]},  # 3 = 患者
    "rules": {},
}


def _default_path() -> str:
    return os.path.join(os.path.dirname(os.path.dirname(__file__)), "config", "reconcile.yml")


def load_reconcile_config(path: str = None) -> dict:
    path = path or os.getenv("RECONCILE_CONFIG") or _default_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        return {k: (dict(v) if isinstance(v, dict) else v) for k, v in DEFAULTS.items()}

    # shallow merge defaults
    merged = {k: (dict(v) if isinstance(v, dict) else v) for k, v in DEFAULTS.items()}
    for k, v in (cfg or {}).items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            mv = dict(merged[k])
            mv.update(v)
            merged[k] = mv
        else:
            merged[k] = v
    return merged


def load_rule_tables(cfg: dict):
    """設定ファイルのルール表を読み込む。未指定なら custom_rules の既定値。

    Returns:
        (overrides, name_patterns) のタプル
    """
    rules = cfg.get("rules") or {}
    overrides = dict(CATEGORY_OVERRIDES)
    if "overrides" in rules:
        overrides = {int(k): v for k, v in (rules["overrides"] or {}).items()}

    name_patterns = list(NAME_PATTERNS)
    if "name_patterns" in rules:
        name_patterns = [(str(p).lower(), c) for p, c in (rules["name_patterns"] or [])]
    return overrides, name_patterns
