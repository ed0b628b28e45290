"""Tests for podspine.core.logging."""

from __future__ import annotations

import json

import structlog
from structlog.testing import capture_logs

from podspine.core.logging import (
    SUPERVISOR_CONTEXT,
    ProcessLogContext,
    configure_logging,
    get_logger,
)


class TestProcessLogContext:
    def test_defaults_describe_supervisor_work(self):
        assert SUPERVISOR_CONTEXT.to_dict() == {
            "container": "*",
            "pid": "*",
            "source": "supervisor",
        }

    def test_with_pid_and_source_return_new_values(self):
        ctx = ProcessLogContext(container="PODSPINE-unit-ABC")
        derived = ctx.with_pid(4242).with_source("run: stderr")
        assert derived == ProcessLogContext("PODSPINE-unit-ABC", 4242, "run: stderr")
        assert ctx.pid == "*"

    def test_bind_adds_fields_to_events(self):
        ctx = ProcessLogContext(container="c1", pid=7, source="status: stdout")
        with capture_logs() as logs:
            ctx.bind(get_logger("test")).debug("process.output", line="Up 1 second")

        assert logs == [
            {
                "logger": "test",
                "container": "c1",
                "pid": 7,
                "source": "status: stdout",
                "line": "Up 1 second",
                "event": "process.output",
                "log_level": "debug",
            }
        ]


class TestConfigureLogging:
    def test_json_output_is_ecs_compatible(self, capsys):
        configure_logging(level="INFO", json_format=True, service="pod-spine-test")
        get_logger("podspine.test").info("supervisor.created", project="unit")

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "supervisor.created"
        assert record["project"] == "unit"
        assert record["service.name"] == "pod-spine-test"
        assert record["log.level"] == "info"
        assert "@timestamp" in record

    def test_level_filters_debug(self, capsys):
        configure_logging(level="WARNING", json_format=True)
        get_logger("podspine.test").info("container.started")

        assert "container.started" not in capsys.readouterr().err

    def test_reconfigure_resets_cleanly(self):
        configure_logging(level="DEBUG", json_format=False)
        assert structlog.is_configured()
