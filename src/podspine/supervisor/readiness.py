"""Two-phase readiness protocol with a hard deadline.

Phases:
    1. **Liveness** - query the runtime's status for the container in a
       loop until it reports ``Up ...``. If the container's runtime
       process exits first the start has failed.
    2. **Readiness** - call the spec's :class:`ReadyCheck` every 100 ms
       until it returns True. Exceptions from the check mean "not yet".

Both phases share one deadline. They run on a daemon thread; the caller
waits on an event with the deadline as its timeout. When the deadline
passes the caller gets :class:`ReadinessTimeoutError` and the thread is
cancelled through a ``threading.Event`` that is checked before every
status query and every ready check, so no further runtime commands are
spawned. A query already in flight may still finish; its result is
discarded.

Example::

    protocol = ReadinessProtocol(
        name="PODSPINE-demo-ABC",
        is_alive=process.is_alive,
        exit_code=lambda: process.exit_code,
        query_status=query,
        ready_check=spec.ready_check,
    )
    wait_until_ready(protocol, timeout=30.0, command=process.command)
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence

from podspine.core.errors import ContainerStartError, ReadinessTimeoutError
from podspine.core.logging import SUPERVISOR_CONTEXT, ProcessLogContext, get_logger
from podspine.supervisor.commands import is_up_status
from podspine.supervisor.ready_checks import ReadyCheck

logger = get_logger(__name__)

READY_POLL_INTERVAL = 0.1

PHASE_LIVENESS = "liveness"
PHASE_READINESS = "readiness"


class ReadinessCancelled(Exception):
    """Raised inside the polling thread when the caller gave up waiting."""


class ReadinessProtocol:
    """The liveness and readiness loops for one container."""

    def __init__(
        self,
        name: str,
        is_alive: Callable[[], bool],
        exit_code: Callable[[], int | None],
        query_status: Callable[[], str | None],
        ready_check: ReadyCheck,
        poll_interval: float = READY_POLL_INTERVAL,
        context: ProcessLogContext = SUPERVISOR_CONTEXT,
    ) -> None:
        self.name = name
        self._is_alive = is_alive
        self._exit_code = exit_code
        self._query_status = query_status
        self._ready_check = ready_check
        self._poll_interval = poll_interval
        self._log = context.bind(logger)
        self.phase = PHASE_LIVENESS

    def run(self, cancel: threading.Event) -> None:
        """Run both phases; returns once the container is ready."""
        self.phase = PHASE_LIVENESS
        self.run_liveness_check(cancel)
        self.phase = PHASE_READINESS
        self.run_ready_check(cancel)

    def run_liveness_check(self, cancel: threading.Event) -> None:
        while self._is_alive():
            if cancel.is_set():
                raise ReadinessCancelled(self.name)
            status = self._query_status()
            if cancel.is_set():
                raise ReadinessCancelled(self.name)
            if is_up_status(status):
                self._log.debug("container.up", status=status)
                return
        self._died("before the runtime reported it as up")

    def run_ready_check(self, cancel: threading.Event) -> None:
        while self._is_alive():
            if cancel.is_set():
                raise ReadinessCancelled(self.name)
            try:
                if self._ready_check.is_ready():
                    self._log.debug("container.ready_check_passed")
                    return
            except Exception as exc:
                self._log.debug("container.ready_check_failed", error=str(exc))
            if cancel.wait(self._poll_interval):
                raise ReadinessCancelled(self.name)
        self._died("before its ready check passed")

    def _died(self, when: str) -> None:
        exit_code = self._exit_code()
        raise ContainerStartError(
            f"Container {self.name} exited {when} (exit code {exit_code})",
            context={"container": self.name, "exit_code": exit_code, "phase": self.phase},
        )


def wait_until_ready(
    protocol: ReadinessProtocol,
    timeout: float,
    command: Sequence[str] | None = None,
) -> None:
    """Block until ``protocol`` succeeds, fails, or ``timeout`` seconds pass.

    Raises:
        ReadinessTimeoutError: The deadline passed first.
        ContainerStartError: The container exited during the protocol.
        PodSpineError: A status query could not be spawned.
    """
    done = threading.Event()
    cancel = threading.Event()
    failure: list[BaseException] = []

    def _await() -> None:
        try:
            protocol.run(cancel)
        except ReadinessCancelled:
            pass
        except Exception as exc:
            failure.append(exc)
        finally:
            done.set()

    thread = threading.Thread(
        target=_await,
        name=f"podspine-await-{protocol.name}",
        daemon=True,
    )
    started = time.monotonic()
    thread.start()

    try:
        completed = done.wait(timeout)
    finally:
        cancel.set()

    if not completed:
        logger.warning(
            "container.readiness_timeout",
            container=protocol.name,
            phase=protocol.phase,
            timeout=timeout,
            elapsed=round(time.monotonic() - started, 3),
        )
        raise ReadinessTimeoutError(protocol.name, timeout, command, phase=protocol.phase)
    if failure:
        raise failure[0]
