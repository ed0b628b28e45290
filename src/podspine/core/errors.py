"""
Structured error types for pod-spine.

Every failure the supervisor can surface is a subclass of
:class:`PodSpineError`. Each error carries a category for routing and a
context dict with the metadata needed to reproduce the failure (the
exact command line, the container name, the exit code).

Manifesto:
    - **Typed Error Hierarchy:** One class per failure mode of the supervisor
    - **Reproducible:** Process errors always carry the full argument vector
    - **Best-effort batches:** Teardown collects errors instead of aborting
    - **Error Chaining:** The underlying exception is kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       PodSpineError                              │
        │  (category, context, cause)                                     │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  SpawnError          NonZeroExitError     ContainerStartError   │
        │  (PROCESS)           (PROCESS)            (RUNTIME)             │
        │                                                                  │
        │  ReadinessTimeoutError                    ContainerStillAlive   │
        │  (TIMEOUT, also builtin TimeoutError)     (RUNTIME)             │
        │                                                                  │
        │  AggregateTeardownError                   StoreError            │
        │  (TEARDOWN, holds .errors)                (STORE)               │
        │                                                │                 │
        │                                           StoreIncompatibleError│
        │                                                                  │
        │  ConfigError         RuntimeUnsupportedError  SupervisorClosed  │
        │  (CONFIG)            (CONFIG)                 InvalidState      │
        │                                               (INTERNAL)        │
        └─────────────────────────────────────────────────────────────────┘

Propagation:
    - Single-resource operations (exec, copy, stop) raise the first failure.
    - Batch operations (startup recovery, supervisor close) collect
      failures with :class:`ExceptionTracker` and raise one
      :class:`AggregateTeardownError` at the end.

Examples:
    >>> error = NonZeroExitError(["podman", "cp", "a", "b"], 125)
    >>> error.exit_code
    125
    >>> error.to_dict()["category"]
    'PROCESS'

    >>> tracker = ExceptionTracker()
    >>> tracker.add(SpawnError("no such file", command=["podman"]))
    >>> tracker.raise_if_necessary()
    Traceback (most recent call last):
    ...
    podspine.core.errors.AggregateTeardownError: 1 operation(s) failed: ...

Tags:
    errors, exceptions, teardown, aggregate, process, store, pod-spine
"""

from __future__ import annotations

import shlex
from collections.abc import Sequence
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    PROCESS = "PROCESS"  # Runtime executable could not run or failed
    RUNTIME = "RUNTIME"  # Container misbehaved after spawning
    TIMEOUT = "TIMEOUT"  # A bounded wait expired
    TEARDOWN = "TEARDOWN"  # One or more cleanup attempts failed
    STORE = "STORE"  # Persistent store errors
    CONFIG = "CONFIG"  # Configuration / environment errors
    INTERNAL = "INTERNAL"  # Misuse of the API

    def __str__(self) -> str:
        return self.value


def format_command(command: Sequence[str]) -> str:
    """Render an argument vector as a copy-pasteable shell command."""
    return shlex.join(str(part) for part in command)


class PodSpineError(Exception):
    """Base exception for all pod-spine errors.

    Subclasses set ``default_category``. Extra metadata goes into
    ``context`` and is included by :meth:`to_dict` for structured logging.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> PodSpineError:
        """Add context to this error (fluent API)."""
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# PROCESS ERRORS
# =============================================================================


class SpawnError(PodSpineError):
    """The runtime executable is missing or could not be started."""

    default_category = ErrorCategory.PROCESS

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str],
        cause: BaseException | None = None,
    ):
        self.command = list(command)
        super().__init__(
            f"{message}: {format_command(self.command)}",
            context={"command": self.command},
            cause=cause,
        )


class NonZeroExitError(PodSpineError):
    """A synchronous runtime command returned a failure exit code."""

    default_category = ErrorCategory.PROCESS

    def __init__(self, command: Sequence[str], exit_code: int, message: str | None = None):
        self.command = list(command)
        self.exit_code = exit_code
        text = message or "Process returned a non-zero exit code"
        super().__init__(
            f"{text} ({exit_code}): {format_command(self.command)}",
            context={"command": self.command, "exit_code": exit_code},
        )


# =============================================================================
# RUNTIME ERRORS
# =============================================================================


class ContainerStartError(PodSpineError):
    """A container process exited before the runtime reported it as up."""

    default_category = ErrorCategory.RUNTIME


class ContainerStillAliveError(PodSpineError):
    """The local runtime process survived a stop request."""

    default_category = ErrorCategory.RUNTIME


class ReadinessTimeoutError(PodSpineError, TimeoutError):
    """A container did not become ready before the startup deadline.

    The container and its store record are left in place so the cause of
    the stuck start can be inspected; they are removed by the next close
    or crash-recovery pass.
    """

    default_category = ErrorCategory.TIMEOUT

    def __init__(
        self,
        name: str,
        timeout: float,
        command: Sequence[str] | None = None,
        phase: str | None = None,
    ):
        self.name = name
        self.timeout = timeout
        self.command = list(command or [])
        self.phase = phase
        msg = f"Timed out after {timeout}s waiting for container {name} to start"
        if phase:
            msg += f" (phase: {phase})"
        if self.command:
            msg += f": {format_command(self.command)}"
        super().__init__(
            msg,
            context={"container": name, "timeout": timeout, "phase": phase, "command": self.command},
        )


# =============================================================================
# TEARDOWN ERRORS
# =============================================================================


class AggregateTeardownError(PodSpineError):
    """One or more independent cleanup attempts failed.

    ``errors`` holds every collected exception in the order it occurred.
    """

    default_category = ErrorCategory.TEARDOWN

    def __init__(self, errors: Sequence[BaseException], message: str | None = None):
        self.errors = list(errors)
        summary = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        text = message or f"{len(self.errors)} operation(s) failed"
        super().__init__(
            f"{text}: {summary}",
            context={"failures": len(self.errors)},
            cause=self.errors[0] if self.errors else None,
        )


class ExceptionTracker:
    """Collects exceptions from best-effort batch operations.

    Example::

        tracker = ExceptionTracker()
        for handle in handles:
            try:
                handle.close()
            except Exception as exc:
                tracker.add(exc)
        tracker.raise_if_necessary()
    """

    def __init__(self) -> None:
        self._errors: list[BaseException] = []

    def add(self, error: BaseException) -> None:
        self._errors.append(error)

    @property
    def errors(self) -> list[BaseException]:
        return list(self._errors)

    def __len__(self) -> int:
        return len(self._errors)

    def __bool__(self) -> bool:
        return bool(self._errors)

    def raise_if_necessary(self, message: str | None = None) -> None:
        """Raise an :class:`AggregateTeardownError` if anything was collected."""
        if self._errors:
            raise AggregateTeardownError(self._errors, message)


# =============================================================================
# STORE ERRORS
# =============================================================================


class StoreError(PodSpineError):
    """Persistent store read/write error."""

    default_category = ErrorCategory.STORE


class StoreIncompatibleError(StoreError):
    """The store's schema version is newer than this library understands."""

    def __init__(self, path: str, found: int, supported: int):
        self.path = path
        self.found = found
        self.supported = supported
        super().__init__(
            f"Store {path} has schema version {found}; "
            f"this version of pod-spine supports up to {supported}",
            context={"path": path, "found": found, "supported": supported},
        )


# =============================================================================
# CONFIG / USAGE ERRORS
# =============================================================================


class ConfigError(PodSpineError):
    """Invalid or missing configuration."""

    default_category = ErrorCategory.CONFIG


class RuntimeUnsupportedError(ConfigError):
    """No usable container runtime was found.

    ``disabled`` mirrors the configuration's ``disabled_if_unsupported``
    flag: when true, callers should skip container-backed work instead
    of failing.
    """

    def __init__(self, executable: str, disabled: bool):
        self.executable = executable
        self.disabled = disabled
        super().__init__(
            f"Container runtime {executable!r} is not supported on this system",
            context={"executable": executable, "disabled": disabled},
        )


class SupervisorClosedError(PodSpineError):
    """An operation was attempted on a closed supervisor."""

    default_category = ErrorCategory.INTERNAL


class InvalidStateError(PodSpineError):
    """An operation is not allowed in a handle's current state."""

    default_category = ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "format_command",
    "PodSpineError",
    # Process
    "SpawnError",
    "NonZeroExitError",
    # Runtime
    "ContainerStartError",
    "ContainerStillAliveError",
    "ReadinessTimeoutError",
    # Teardown
    "AggregateTeardownError",
    "ExceptionTracker",
    # Store
    "StoreError",
    "StoreIncompatibleError",
    # Config / usage
    "ConfigError",
    "RuntimeUnsupportedError",
    "SupervisorClosedError",
    "InvalidStateError",
]
