"""
test_observability.py — Logging formatters, the estimate log adapter and the
performance tracker.
"""

import json
import logging

import pytest

from app.services.logging_config import (
    JSONFormatter,
    PlainFormatter,
    estimate_logger,
    setup_logging,
)
from app.services.perf_monitor import PerformanceTracker, timed


def _record(msg="hello", **extra):
    record = logging.LogRecord("elinstall-test", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:

    def test_json_carries_extras(self):
        line = JSONFormatter().format(_record(stage="pricing", duration_ms=1.5, estimate_name="Job"))
        entry = json.loads(line)
        assert entry["message"] == "hello"
        assert entry["logger"] == "elinstall-test"
        assert (entry["stage"], entry["duration_ms"], entry["estimate_name"]) == ("pricing", 1.5, "Job")

    def test_json_without_extras(self):
        entry = json.loads(JSONFormatter().format(_record()))
        assert "stage" not in entry
        assert entry["level"] == "INFO"

    def test_plain_appends_context(self):
        line = PlainFormatter().format(_record(stage="risk", duration_ms=3.2))
        assert line.endswith("hello [stage=risk 3.2ms]")

    def test_plain_without_context(self):
        assert PlainFormatter().format(_record()).endswith("hello")


class TestEstimateLogger:

    def test_adapter_binds_name(self, caplog):
        log = estimate_logger(logging.getLogger("elinstall-test"), "Family house")
        with caplog.at_level(logging.INFO, logger="elinstall-test"):
            log.info("done", extra={"stage": "pricing"})
        record = caplog.records[-1]
        assert record.estimate_name == "Family house"
        assert record.stage == "pricing"


class TestSetupLogging:

    def test_env_selects_plain_format(self, monkeypatch):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        monkeypatch.setenv("ESTIMATOR_LOG_JSON", "false")
        monkeypatch.setenv("ESTIMATOR_LOG_LEVEL", "debug")
        try:
            handler = setup_logging()
            assert isinstance(handler.formatter, PlainFormatter)
            assert root.level == logging.DEBUG
            assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
        finally:
            root.handlers = saved_handlers
            root.setLevel(saved_level)


class TestPerformanceTracker:

    def test_measure_records_duration(self):
        tracker = PerformanceTracker()
        with tracker.measure("components"):
            pass
        stats = tracker.stage("components")
        assert stats.calls == 1
        assert stats.errors == 0
        assert tracker.get_metrics()["slowest_stage"] == "components"

    def test_measure_counts_errors_and_reraises(self):
        tracker = PerformanceTracker()
        with pytest.raises(ValueError):
            with tracker.measure("catalog"):
                raise ValueError("bad row")
        metrics = tracker.get_metrics()
        assert metrics["error_count"] == 1
        assert metrics["error_count_by_stage"] == {"catalog": 1}
        assert tracker.stage("catalog").calls == 1

    def test_averages(self):
        tracker = PerformanceTracker()
        tracker.record_stage_duration("pricing", 2.0)
        tracker.record_stage_duration("pricing", 4.0)
        tracker.record_estimate_complete(10.0)
        tracker.record_estimate_complete(20.0)
        metrics = tracker.get_metrics()
        assert metrics["stage_avg_durations_ms"] == {"pricing": 3.0}
        assert metrics["slowest_stage_ms"] == 4.0
        assert metrics["avg_duration_ms"] == 15.0

    def test_error_only_stage_has_no_duration(self):
        tracker = PerformanceTracker()
        tracker.record_stage_error("snapshot")
        metrics = tracker.get_metrics()
        assert metrics["stage_avg_durations_ms"] == {}
        assert metrics["slowest_stage"] is None

    def test_reset(self):
        tracker = PerformanceTracker()
        tracker.record_stage_error("risk")
        tracker.reset()
        assert tracker.get_metrics()["error_count"] == 0
        assert tracker.stage("risk") is None

    def test_stage_returns_copy(self):
        tracker = PerformanceTracker()
        tracker.record_stage_duration("risk", 1.0)
        tracker.stage("risk").calls = 99
        assert tracker.stage("risk").calls == 1


class TestTimed:

    def test_timed_preserves_result_and_name(self, caplog):
        @timed
        def add(a, b):
            return a + b

        with caplog.at_level(logging.DEBUG, logger="elinstall-perf"):
            assert add(2, 3) == 5
        assert add.__name__ == "add"
        assert any(getattr(r, "duration_ms", None) is not None for r in caplog.records)
