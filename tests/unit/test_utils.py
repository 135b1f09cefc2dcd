"""Unit tests for utility modules."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest
import requests

from src.models.batch_record import TargetOutcome, TargetResult
from src.utils import health_checks
from src.utils.logger import configure_logging, get_logger
from src.utils.progress import DispatchProgress
from src.utils.retry import TransientServiceError, retry_with_logging


def _result(target_id: int, outcome: TargetOutcome, error: str | None = None) -> TargetResult:
    return TargetResult(
        target_id=target_id,
        display_name=f"t{target_id}",
        display_path=f"/t{target_id}",
        outcome=outcome,
        error=error,
        skip_reason="batch cancelled" if outcome == TargetOutcome.SKIPPED else None,
    )


class TestDispatchProgress:
    """Tests for DispatchProgress."""

    def test_counts_outcomes(self) -> None:
        dispatch = DispatchProgress(batch_id="batch_1", eligible=3, concurrency=2)
        dispatch.record(_result(1, TargetOutcome.SUCCESS))
        dispatch.record(_result(2, TargetOutcome.FAILED, "boom"))
        dispatch.record(_result(3, TargetOutcome.SKIPPED))
        assert dispatch.done == 3
        assert dispatch.failures == [(2, "boom")]
        assert dispatch.summary()["failed"] == 1

    def test_peak_in_flight(self) -> None:
        dispatch = DispatchProgress(batch_id="batch_1", eligible=3, concurrency=2)
        dispatch.target_started()
        dispatch.target_started()
        dispatch.target_released()
        dispatch.target_started()
        assert dispatch.in_flight == 2
        assert dispatch.peak_in_flight == 2

    def test_log_progress_does_not_raise(self) -> None:
        dispatch = DispatchProgress(batch_id="batch_1", eligible=1, concurrency=1)
        dispatch.log_progress()
        dispatch.record(_result(1, TargetOutcome.SUCCESS))
        dispatch.log_progress()


class TestTransientServiceError:
    """Tests for TransientServiceError."""

    def test_message(self) -> None:
        error = TransientServiceError("prefect", 503, "unavailable")
        assert str(error) == "prefect returned HTTP 503: unavailable"
        assert error.status_code == 503

    def test_message_without_body(self) -> None:
        assert str(TransientServiceError("directory", 502)) == "directory returned HTTP 502"


class TestRetryWithLogging:
    """Tests for retry_with_logging."""

    @pytest.fixture(autouse=True)
    def _no_sleep(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("time.sleep", lambda seconds: None)

    def test_retries_transient_then_succeeds(self) -> None:
        calls = MagicMock(side_effect=[TransientServiceError("prefect", 502), "ok"])

        @retry_with_logging(max_attempts=3)
        def flaky() -> str:
            return calls()

        assert flaky() == "ok"
        assert calls.call_count == 2

    def test_reraises_after_max_attempts(self) -> None:
        calls = MagicMock(side_effect=requests.ConnectionError("refused"))

        @retry_with_logging(max_attempts=2)
        def down() -> None:
            calls()

        with pytest.raises(requests.ConnectionError):
            down()
        assert calls.call_count == 2

    def test_does_not_retry_other_errors(self) -> None:
        calls = MagicMock(side_effect=ValueError("bad input"))

        @retry_with_logging(max_attempts=3)
        def broken() -> None:
            calls()

        with pytest.raises(ValueError, match="bad input"):
            broken()
        assert calls.call_count == 1


class TestLogging:
    """Tests for configure_logging."""

    def test_sets_root_level(self) -> None:
        configure_logging("WARNING")
        assert logging.getLogger().level == logging.WARNING
        configure_logging("INFO")

    def test_quiets_noisy_loggers(self) -> None:
        configure_logging("DEBUG", json_output=True)
        assert logging.getLogger("urllib3").level == logging.WARNING
        configure_logging("INFO")

    def test_get_logger_accepts_events(self) -> None:
        configure_logging("INFO")
        get_logger("tests").info("test_event", answer=42)


class TestHealthChecks:
    """Tests for the reachability checks."""

    def test_directory_ready(self, monkeypatch: pytest.MonkeyPatch) -> None:
        get = MagicMock(return_value=MagicMock(status_code=200))
        monkeypatch.setattr(health_checks.requests, "get", get)
        assert health_checks.check_directory_health("http://directory.test/", api_key="k") is True
        assert get.call_args.args[0] == "http://directory.test/ready"
        assert get.call_args.kwargs["headers"] == {"x-api-key": "k"}

    def test_prefect_unreachable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        get = MagicMock(side_effect=requests.ConnectionError("refused"))
        monkeypatch.setattr(health_checks.requests, "get", get)
        assert health_checks.check_prefect_health("http://prefect.test") is False

    def test_prefect_unhealthy_status(self, monkeypatch: pytest.MonkeyPatch) -> None:
        get = MagicMock(return_value=MagicMock(status_code=500))
        monkeypatch.setattr(health_checks.requests, "get", get)
        assert health_checks.check_prefect_health("http://prefect.test") is False
        assert get.call_args.args[0] == "http://prefect.test/api/health"
