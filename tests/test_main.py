import json
import logging
import os
import sys
import unittest
from datetime import date
from unittest.mock import MagicMock, patch

# srcディレクトリをパスに追加
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from batch_reconciler import DayResult, group_transactions
from config_loader import DEFAULTS
from environment_validator import EnvironmentValidator
from feegow_client import FeegowAuthError
from ledger_models import EnrichedTransaction, Transaction
import main

ENV = {"FEEGOW_API_TOKEN": "token-123"}


def _day_result(day=date(2026, 2, 5)):
    enriched = EnrichedTransaction(Transaction(1, "Ana", day, 100.0), "report-single")
    return DayResult(day, [enriched], group_transactions([enriched]))


class TestMain(unittest.TestCase):

    @patch.dict(os.environ, {}, clear=True)
    def test_missing_token_exits_with_error(self):
        self.assertEqual(main.main(["--start", "2026-02-05"]), 1)

    @patch.dict(os.environ, ENV, clear=True)
    def test_end_before_start(self):
        self.assertEqual(main.main(["--start", "2026-02-05", "--end", "2026-02-01"]), 1)

    @patch.dict(os.environ, ENV, clear=True)
    def test_invalid_date(self):
        self.assertEqual(main.main(["--start", "amanha"]), 1)

    @patch.dict(os.environ, ENV, clear=True)
    @patch('main.save_results')
    @patch('main.BatchReconciler')
    @patch('main.load_reconcile_config', return_value=DEFAULTS)
    def test_fatal_error_writes_nothing(self, _cfg, mock_reconciler_cls, mock_save):
        mock_reconciler_cls.from_config.return_value.run.side_effect = FeegowAuthError("401")

        self.assertEqual(main.main(["--start", "05/02/2026"]), 1)
        mock_save.assert_not_called()

    @patch.dict(os.environ, ENV, clear=True)
    @patch('main.save_results')
    @patch('main.BatchReconciler')
    @patch('main.load_reconcile_config', return_value=DEFAULTS)
    def test_successful_run_saves_results(self, _cfg, mock_reconciler_cls, mock_save):
        results = [_day_result()]
        reconciler = MagicMock()
        reconciler.run.return_value = results
        mock_reconciler_cls.from_config.return_value = reconciler

        self.assertEqual(main.main(["--start", "05/02/2026", "--output", "out.json"]), 0)
        reconciler.run.assert_called_once_with(date(2026, 2, 5), date(2026, 2, 5))
        mock_save.assert_called_once_with(results, "out.json")

    @patch.dict(os.environ, ENV, clear=True)
    @patch('main.save_results')
    @patch('main.BatchReconciler')
    @patch('main.load_reconcile_config', return_value=DEFAULTS)
    def test_no_transactions_skips_output(self, _cfg, mock_reconciler_cls, mock_save):
        mock_reconciler_cls.from_config.return_value.run.return_value = [DayResult(date(2026, 2, 5))]

        self.assertEqual(main.main(["--start", "2026-02-05"]), 0)
        mock_save.assert_not_called()


def test_save_results_writes_json(tmp_path):
    path = tmp_path / "results.json"
    main.save_results([_day_result()], str(path))

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["days"][0]["date"] == "2026-02-05"
    assert data["days"][0]["groups"][0]["patient_name"] == "Ana"


def test_default_reference_date(monkeypatch):
    monkeypatch.setenv("FETCH_PREVIOUS_DAY", "true")
    assert main.default_reference_date(date(2026, 3, 1)) == date(2026, 2, 28)
    monkeypatch.setenv("FETCH_PREVIOUS_DAY", "false")
    assert main.default_reference_date(date(2026, 3, 1)) == date(2026, 3, 1)


def test_log_level(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    assert main.log_level() == logging.DEBUG
    monkeypatch.setenv("LOG_LEVEL", "LOUD")
    assert main.log_level() == logging.INFO
    monkeypatch.delenv("LOG_LEVEL")
    assert main.log_level() == logging.INFO


@patch.dict(os.environ, {"FEEGOW_API_TOKEN": "token-123", "LOG_LEVEL": "LOUD"}, clear=True)
def test_unknown_log_level_does_not_crash():
    assert main.main(["--start", "2026-02-05", "--end", "2026-02-01"]) == 1


def test_environment_validator():
    assert EnvironmentValidator({"FEEGOW_API_TOKEN": "abc"}).validate_all()["status"] == "pass"

    result = EnvironmentValidator({}).validate_all()
    assert result["status"] == "fail"
    assert result["missing_required"] == ["FEEGOW_API_TOKEN"]

    result = EnvironmentValidator({"FEEGOW_API_TOKEN": "abc", "FEEGOW_API_URL": "ftp:/x"}).validate_all()
    assert result["status"] == "fail"

    result = EnvironmentValidator({"FEEGOW_API_TOKEN": "abc", "LOG_LEVEL": "LOUD"}).validate_all()
    assert result["status"] == "pass"
    assert result["warnings"][0]["name"] == "LOG_LEVEL"
