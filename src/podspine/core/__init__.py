"""Core primitives shared by the pod-spine packages: errors, logging, settings."""

from podspine.core.errors import (
    AggregateTeardownError,
    ErrorCategory,
    ExceptionTracker,
    PodSpineError,
)
from podspine.core.logging import ProcessLogContext, configure_logging, get_logger

__all__ = [
    "AggregateTeardownError",
    "ErrorCategory",
    "ExceptionTracker",
    "PodSpineError",
    "ProcessLogContext",
    "configure_logging",
    "get_logger",
]
