"""Persistent, schema-versioned store of pods, containers and audit events."""

from podspine.store.migrations import MigrationRunner
from podspine.store.models import AuditCode, AuditEvent, ContainerRecord, PodRecord
from podspine.store.store import ContainerStore

__all__ = [
    "AuditCode",
    "AuditEvent",
    "ContainerRecord",
    "ContainerStore",
    "MigrationRunner",
    "PodRecord",
]
