"""Record types persisted by the container store."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class ContainerRecord:
    """A container the supervisor believes may exist in the runtime.

    The record is independent of whether an in-process handle for the
    container is still live.
    """

    name: str
    """Unique container name."""

    pod_name: str | None = None
    """Name of the pod the container joined, if any."""


@dataclass(frozen=True)
class PodRecord:
    """A pod grouping zero or more containers."""

    name: str


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class AuditEvent:
    """Append-only record of a supervisor-level event."""

    instance_id: str
    """Id of the supervisor instance that produced the event."""

    scope: str
    """Scope of that supervisor (``PER_SUITE``, ``PER_CLASS``, ``PER_TEST``)."""

    code: str
    """Machine-readable event code (``CONTAINER_STARTED``)."""

    text: str
    """Human-readable detail, usually a resource name."""

    timestamp_ms: int = field(default_factory=_now_ms)
    """Milliseconds since the Unix epoch."""


class AuditCode(str, Enum):
    """Codes written to the store's audit log."""

    SUPERVISOR_CREATED = "SUPERVISOR_CREATED"
    SUPERVISOR_CLOSED = "SUPERVISOR_CLOSED"
    CONTAINER_STARTED = "CONTAINER_STARTED"
    CONTAINER_RESTARTED = "CONTAINER_RESTARTED"
    CONTAINER_REMOVED = "CONTAINER_REMOVED"
    POD_CREATED = "POD_CREATED"
    POD_REMOVED = "POD_REMOVED"
    RECOVERY_COMPLETE = "RECOVERY_COMPLETE"
