import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from config_loader import DEFAULTS, load_reconcile_config, load_rule_tables
from custom_rules import CATEGORY_OVERRIDES, NAME_PATTERNS


def test_missing_file_returns_defaults(tmp_path):
    cfg = load_reconcile_config(str(tmp_path / "missing.yml"))
    assert cfg == DEFAULTS
    # 既定値のコピーを返す
    cfg["thresholds"]["payment_only_days"] = 1
    assert DEFAULTS["thresholds"]["payment_only_days"] == 30


def test_file_values_are_merged_per_section(tmp_path):
    path = tmp_path / "reconcile.yml"
    path.write_text(
        "thresholds:\n"
        "  payment_only_days: 45\n"
        "retry:\n"
        "  max_attempts: 5\n",
        encoding="utf-8",
    )

    cfg = load_reconcile_config(str(path))

    assert cfg["thresholds"]["payment_only_days"] == 45
    assert cfg["thresholds"]["min_invoice_overlap"] == 2
    assert cfg["retry"] == {"max_attempts": 5, "backoff_seconds": 0.5, "timeout_seconds": 30}
    assert cfg["report"] == {"account_type_ids": [3]}


def test_env_variable_selects_file(tmp_path, monkeypatch):
    path = tmp_path / "other.yml"
    path.write_text("report:\n  account_type_ids: [3, 5]\n", encoding="utf-8")
    monkeypatch.setenv("RECONCILE_CONFIG", str(path))

    assert load_reconcile_config()["report"]["account_type_ids"] == [3, 5]


def test_empty_file_returns_defaults(tmp_path):
    path = tmp_path / "empty.yml"
    path.write_text("", encoding="utf-8")
    assert load_reconcile_config(str(path)) == DEFAULTS


def test_rule_tables_default_to_builtin():
    overrides, patterns = load_rule_tables({"rules": {}})
    assert overrides == CATEGORY_OVERRIDES
    assert patterns == NAME_PATTERNS


def test_rule_tables_replaced_from_config():
    cfg = {"rules": {
        "overrides": {"200": "IMPLANTE", "201": None},
        "name_patterns": [["Laser", "EXTRA"], ["consulta", "AVALIACAO"]],
    }}

    overrides, patterns = load_rule_tables(cfg)

    assert overrides == {200: "IMPLANTE", 201: None}
    assert patterns == [("laser", "EXTRA"), ("consulta", "AVALIACAO")]
