"""
pod-spine Logging - structured logging for the supervisor and its processes.

This module configures structlog for pod-spine and provides the explicit
per-operation context that every process and drain log line carries.

Manifesto:
    A container that fails to start during a test run is only debuggable
    if its runtime output can be tied back to the container and the
    command that produced it. Every log line emitted on behalf of a
    runtime process therefore carries:

    - **container:** the container or pod name (``*`` for supervisor work)
    - **pid:** the pid of the runtime process that produced the output
    - **source:** which command and stream produced it (``status: stdout``)

    The context is an explicit value bound onto a logger at the call
    site. Nothing is stored in thread-locals, so the drain threads and
    the readiness thread log with exactly the context they were given.

Architecture:
    ::

        ┌────────────────────────────────────────────────────────────┐
        │ configure_logging(level="INFO", json_format=None,          │
        │                   service="pod-spine")                     │
        │                                                             │
        │ structlog processor chain:                                  │
        │   1. TimeStamper(iso)                                       │
        │   2. add_log_level (logger name bound by get_logger)        │
        │   3. add_service_metadata                                   │
        │   4. elasticsearch_compatible (JSON only)                   │
        │   5. JSONRenderer or ConsoleRenderer                        │
        └────────────────────────────────────────────────────────────┘

        ┌────────────────────────────────────────────────────────────┐
        │ ctx = ProcessLogContext(container="PODSPINE-x-ABC",        │
        │                         pid=4242, source="run: stderr")    │
        │ ctx.bind(logger).error("process.output", line=line)        │
        └────────────────────────────────────────────────────────────┘

Examples:
    >>> from podspine.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> logger.info("supervisor.created", project="example")

Tags:
    logging, structlog, observability, context, pod-spine
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, replace
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "pod-spine"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _elasticsearch_compatible(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Make field names Elasticsearch/ECS compatible."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "pod-spine",
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared_processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if json_format:
        shared_processors.append(structlog.processors.format_exc_info)
        shared_processors.append(_elasticsearch_compatible)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``).

    The name is bound as the ``logger`` field on the lazy proxy.
    ``PrintLogger`` has no ``.name`` for a processor to read.
    """
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name, logger=name)


@dataclass(frozen=True)
class ProcessLogContext:
    """Explicit logging context for work done on behalf of a resource.

    ``container`` and ``pid`` default to ``"*"`` for supervisor-level work
    that is not tied to a single resource or process.
    """

    container: str = "*"
    pid: int | str = "*"
    source: str = "supervisor"

    def with_pid(self, pid: int) -> ProcessLogContext:
        return replace(self, pid=pid)

    def with_source(self, source: str) -> ProcessLogContext:
        return replace(self, source=source)

    def to_dict(self) -> dict[str, Any]:
        return {"container": self.container, "pid": self.pid, "source": self.source}

    def bind(self, logger: Any) -> Any:
        """Return ``logger`` bound with this context."""
        return logger.bind(**self.to_dict())


SUPERVISOR_CONTEXT = ProcessLogContext()


__all__ = [
    "configure_logging",
    "get_logger",
    "ProcessLogContext",
    "SUPERVISOR_CONTEXT",
]
