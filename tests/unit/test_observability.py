"""
Unit tests for logging, metrics and tracing helpers.
"""

import logging

import pytest
import structlog
from prometheus_client import CollectorRegistry

from jobstore.config import Settings
from jobstore.db.recovery import POLICIES
from jobstore.observability.logging import (
    add_trace_context,
    log_context,
    setup_logging,
)
from jobstore.observability.metrics import MetricsCollector
from jobstore.observability.tracing import get_tracer


class TestLogging:
    """Tests for structured logging setup."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)
        structlog.reset_defaults()

    def test_setup_logging_json(self, capsys):
        setup_logging(Settings(log_level="INFO", log_format="json"))

        logging.getLogger("jobstore.test").info("hello", extra={"job_id": "j1"})

        out = capsys.readouterr().out
        assert '"event": "hello"' in out
        assert '"job_id": "j1"' in out

    def test_sqlalchemy_echo_is_quiet_above_debug(self):
        setup_logging(Settings(log_level="WARNING", log_format="console"))

        assert logging.getLogger().level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_log_context_scopes_fields(self, capsys):
        """Test that fields bound by log_context appear only inside the block."""
        setup_logging(Settings(log_level="INFO", log_format="json"))
        log = logging.getLogger("jobstore.test")

        with log_context(worker_id="w1"):
            log.info("inside")
            assert structlog.contextvars.get_contextvars() == {"worker_id": "w1"}
        log.info("outside")

        inside, outside = capsys.readouterr().out.strip().splitlines()
        assert '"worker_id": "w1"' in inside
        assert "worker_id" not in outside
        assert structlog.contextvars.get_contextvars() == {}

    def test_sqlalchemy_echo_kept_at_debug(self):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.NOTSET)

        setup_logging(Settings(log_level="DEBUG", log_format="console"))

        assert logging.getLogger("sqlalchemy.engine").level == logging.NOTSET
        assert logging.getLogger("aiosqlite").level == logging.WARNING

    def test_trace_context_without_span(self):
        event = add_trace_context(None, "info", {"event": "x"})

        assert event == {"event": "x"}


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_records_on_private_registry(self):
        registry = CollectorRegistry()
        metrics = MetricsCollector(registry=registry)

        metrics.record_requeued("expired", 0)
        metrics.record_requeued("expired", 2)
        metrics.record_removed(3)
        metrics.record_job_finished("failed", 0.5)

        assert registry.get_sample_value(
            "jobstore_jobs_requeued_total", {"policy": "expired"}
        ) == 2
        assert registry.get_sample_value("jobstore_jobs_removed_total") == 3
        assert registry.get_sample_value(
            "jobstore_jobs_finished_total", {"status": "failed"}
        ) == 1
        assert b"jobstore_job_duration_seconds" in metrics.get_metrics()

    def test_policy_names_are_metric_labels(self):
        assert [policy.name for policy in POLICIES] == ["expired", "stalled"]


class TestTracing:
    """Tests for tracer lookup."""

    def test_get_tracer_without_setup(self):
        tracer = get_tracer()

        with tracer.start_as_current_span("test-span") as span:
            span.set_attribute("job_id", "j1")
