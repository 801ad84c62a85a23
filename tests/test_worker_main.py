from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
import unittest
from unittest.mock import MagicMock, patch

from hazard_ingest.service.pipeline import IngestionReport
from hazard_ingest.worker import main as worker
from tests._helpers import make_settings


def _report(**fields) -> IngestionReport:
    return IngestionReport(started_at=datetime(2026, 10, 19, tzinfo=timezone.utc), **fields)


@contextmanager
def _fake_session(database_url: str):
    yield MagicMock(name=f"session:{database_url}")


class ExitCodeTests(unittest.TestCase):
    def test_either_branch_succeeding_exits_zero(self) -> None:
        self.assertEqual(worker.exit_code(_report(roads="ok", imagery="failed")), 0)
        self.assertEqual(worker.exit_code(_report(roads="failed", imagery="ok")), 0)

    def test_both_failing_exits_one(self) -> None:
        self.assertEqual(worker.exit_code(_report(roads="failed", imagery="failed")), 1)

    def test_fatal_error_exits_one(self) -> None:
        self.assertEqual(worker.exit_code(_report(roads="ok", imagery="ok", fatal_error="boom")), 1)


@patch("hazard_ingest.worker.main.get_session", side_effect=_fake_session)
@patch("hazard_ingest.worker.main.run_ingestion")
@patch("hazard_ingest.worker.main.load_settings")
class MainTests(unittest.TestCase):
    def test_success_returns_zero(self, mock_settings, mock_run, mock_session) -> None:
        mock_settings.return_value = make_settings()
        mock_run.return_value = _report(roads="ok", imagery="ok", clustering="ok")

        self.assertEqual(worker.main([]), 0)
        self.assertIsNone(mock_run.call_args.kwargs["settings"].force_start_date)

    def test_failed_run_returns_one(self, mock_settings, mock_run, mock_session) -> None:
        mock_settings.return_value = make_settings()
        mock_run.return_value = _report(roads="failed", imagery="failed")

        self.assertEqual(worker.main([]), 1)

    def test_force_start_date_flag_enables_backfill(self, mock_settings, mock_run, mock_session) -> None:
        mock_settings.return_value = make_settings()
        mock_run.return_value = _report(roads="ok")

        worker.main(["--force-start-date", "2024-01-01T00:00:00Z"])

        settings = mock_run.call_args.kwargs["settings"]
        self.assertEqual(settings.force_start_date, datetime(2024, 1, 1, tzinfo=timezone.utc))

    def test_missing_token_fails_without_running(self, mock_settings, mock_run, mock_session) -> None:
        mock_settings.return_value = make_settings(mapillary_access_token="")

        with self.assertLogs("hazard_ingest.worker", level="ERROR"):
            exit_code = worker.main([])

        self.assertEqual(exit_code, 1)
        mock_run.assert_not_called()

    def test_startup_error_is_logged_and_mapped_to_one(self, mock_settings, mock_run, mock_session) -> None:
        mock_settings.side_effect = RuntimeError("Invalid integer for OSM_BATCH_SIZE: abc")

        with self.assertLogs("hazard_ingest.worker", level="ERROR") as logs:
            exit_code = worker.main([])

        self.assertEqual(exit_code, 1)
        self.assertIn("OSM_BATCH_SIZE", "\n".join(logs.output))


if __name__ == "__main__":
    unittest.main()
