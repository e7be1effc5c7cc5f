"""Tests for jobspine.core.logging — structlog configuration and context."""

from __future__ import annotations

import logging

import pytest
import structlog
from structlog.testing import capture_logs

from jobspine.core.errors import ConfigError
from jobspine.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_from_settings,
    configure_logging,
    get_logger,
    unbind_context,
)
from jobspine.core.settings import SchedulerSettings


class TestContextBinding:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_bind_and_unbind(self):
        bind_context(job_id="j-1", job_type="backup_database")
        assert structlog.contextvars.get_contextvars() == {
            "job_id": "j-1",
            "job_type": "backup_database",
        }
        unbind_context("job_type")
        assert structlog.contextvars.get_contextvars() == {"job_id": "j-1"}

    def test_log_context_is_scoped(self):
        bind_context(service_run="outer")
        with LogContext(execution_id="ex-1"):
            assert structlog.contextvars.get_contextvars()["execution_id"] == "ex-1"
        assert structlog.contextvars.get_contextvars() == {"service_run": "outer"}

    def test_logger_emits_events(self):
        with capture_logs() as logs:
            get_logger("jobspine.test").info("job.started", attempt=1)
        assert logs == [{"event": "job.started", "attempt": 1, "log_level": "info"}]


class TestConfigureLogging:
    def teardown_method(self):
        structlog.reset_defaults()

    def test_json_output(self, caplog):
        caplog.set_level(logging.INFO)
        configure_logging(level="INFO", json_format=True, service="jobspine-test")
        with LogContext(job_id="j-9"):
            get_logger("jobspine.test").info("scheduler.tick", dispatched=2)
        get_logger("jobspine.test").debug("hidden")

        out = caplog.text
        assert '"event": "scheduler.tick"' in out
        assert '"service": "jobspine-test"' in out
        assert '"dispatched": 2' in out
        assert '"job_id": "j-9"' in out
        assert "hidden" not in out

    def test_unknown_level_rejected(self):
        with pytest.raises(ConfigError):
            configure_logging(level="CHATTY")

    def test_from_settings(self, caplog):
        caplog.set_level(logging.DEBUG)
        configure_from_settings(SchedulerSettings(_env_file=None, log_level="warning", json_logs=True))
        get_logger("jobspine.test").info("quiet")
        get_logger("jobspine.test").warning("pool.saturated", queued=100)

        assert "quiet" not in caplog.text
        assert '"event": "pool.saturated"' in caplog.text
