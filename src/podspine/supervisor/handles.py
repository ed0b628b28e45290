"""Container and pod handles.

A handle is bound to one running resource and is returned by the
supervisor. Both kinds implement :class:`ManagedResource` (a name, a
kind and ``close()``), which is all the supervisor's teardown needs.

Container state machine::

    CREATED ──► READY ──► RUNNING ◄──► EXEC / COPY
       │          │          │
       └──────────┴──► ERROR │
                             ▼
                         STOPPING ──► STOPPED ──(start)──► CREATED
                             │
                             └──────► REMOVED

``ERROR`` is entered when the readiness protocol fails or times out.
The container and its record are left in place for inspection; a later
``close()`` (or the next crash-recovery pass) removes them.

``stop()`` is strict: if the runtime process is still alive after the
grace period it raises. ``close()`` is tolerant: it also force-removes
the container and only warns when the process lingers.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from podspine.core.errors import (
    ContainerStillAliveError,
    InvalidStateError,
    NonZeroExitError,
)
from podspine.core.logging import ProcessLogContext, get_logger
from podspine.store import AuditCode
from podspine.supervisor.launcher import LoggedProcess
from podspine.supervisor.specs import ContainerSpec, PortPublish

if TYPE_CHECKING:
    from podspine.supervisor.supervisor import ContainerSupervisor

logger = get_logger(__name__)

# Seconds to wait for the local runtime process after stop / close.
STOP_WAIT_SECONDS = 5.0
CLOSE_WAIT_SECONDS = 10.0


class ContainerState(str, Enum):
    """Lifecycle state of a container handle."""

    CREATED = "CREATED"
    READY = "READY"
    RUNNING = "RUNNING"
    EXEC = "EXEC"
    COPY = "COPY"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    REMOVED = "REMOVED"
    ERROR = "ERROR"


_ACTIVE = (ContainerState.RUNNING, ContainerState.EXEC, ContainerState.COPY)


class ManagedResource(ABC):
    """A runtime resource owned by a supervisor."""

    kind: str

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def close(self) -> None:
        """Remove the resource from the runtime and forget its record."""


class ContainerHandle(ManagedResource):
    """A running container."""

    kind = "container"

    def __init__(
        self,
        supervisor: ContainerSupervisor,
        spec: ContainerSpec,
        name: str,
        process: LoggedProcess,
        pod_name: str | None = None,
    ) -> None:
        self._supervisor = supervisor
        self._spec = spec
        self._name = name
        self._process = process
        self._pod_name = pod_name
        self._state = ContainerState.CREATED
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Identity / state
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def pod_name(self) -> str | None:
        return self._pod_name

    @property
    def spec(self) -> ContainerSpec:
        return self._spec

    @property
    def process(self) -> LoggedProcess:
        """The local runtime process (``run`` or ``start --attach``)."""
        return self._process

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def state(self) -> ContainerState:
        return self._state

    def log_context(self, source: str = "supervisor") -> ProcessLogContext:
        return ProcessLogContext(container=self._name, pid=self._process.pid, source=source)

    def _set_state(self, state: ContainerState) -> None:
        with self._lock:
            previous, self._state = self._state, state
        self.log_context().bind(logger).debug(
            "container.state", previous=previous.value, state=state.value
        )

    def _enter(self, state: ContainerState, allowed: Sequence[ContainerState]) -> ContainerState:
        with self._lock:
            if self._state not in allowed:
                raise InvalidStateError(
                    f"Container {self._name} is {self._state.value}; "
                    f"cannot move to {state.value}",
                    context={"container": self._name, "state": self._state.value},
                )
            previous, self._state = self._state, state
        return previous

    def _leave_transient(self) -> None:
        with self._lock:
            if self._state in (ContainerState.EXEC, ContainerState.COPY):
                self._state = ContainerState.RUNNING

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def wait_until_ready(self) -> None:
        """Run the readiness protocol; ERROR on failure, RUNNING on success."""
        try:
            self._supervisor._wait_until_ready(self)
        except BaseException:
            self._set_state(ContainerState.ERROR)
            raise
        self._set_state(ContainerState.READY)
        self._set_state(ContainerState.RUNNING)

    def start(self) -> None:
        """Restart a stopped container and wait until it is ready again."""
        self._enter(ContainerState.CREATED, (ContainerState.STOPPED,))
        try:
            self._process = self._supervisor._restart_container(self)
        except BaseException:
            self._set_state(ContainerState.ERROR)
            raise
        self.wait_until_ready()

    # ------------------------------------------------------------------
    # Exec / copy
    # ------------------------------------------------------------------

    def exec(self, command: Sequence[str], timeout: float | None = None) -> int | None:
        """Run ``command`` inside the container.

        Waits up to ``timeout`` seconds (indefinitely when None) and
        returns the exit code. Returns None when the timeout expired: the
        command may still be running and its outcome is unknown.
        """
        command = list(command)
        self._enter(ContainerState.EXEC, _ACTIVE)
        try:
            context = self.log_context()
            argv = self._supervisor.commands.exec(self._name, command)
            process = self._supervisor.launcher.execute_logged(
                command[0], argv, context=context
            )
            exit_code = process.wait(timeout)
            if exit_code is None:
                process.context.bind(logger).warning(
                    "container.exec_timeout", command=command, timeout=timeout
                )
            return exit_code
        finally:
            self._leave_transient()

    def copy_into(self, source: Path | str, destination: str) -> None:
        """Copy a host file or directory into the container."""
        argv = self._supervisor.commands.copy_into(self._name, Path(source), destination)
        self._copy(argv)

    def copy_from(self, source: str, destination: Path | str) -> None:
        """Copy a file or directory out of the container."""
        argv = self._supervisor.commands.copy_from(self._name, source, Path(destination))
        self._copy(argv)

    def _copy(self, argv: list[str]) -> None:
        self._enter(ContainerState.COPY, _ACTIVE)
        try:
            exit_code = self._supervisor.launcher.run(
                "cp", argv, context=self.log_context()
            )
            if exit_code != 0:
                raise NonZeroExitError(argv, exit_code if exit_code is not None else -1)
        finally:
            self._leave_transient()

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Stop the container (1 s grace) and delete its record.

        Raises:
            ContainerStillAliveError: The runtime process did not exit
                within 5 seconds of the stop request.
        """
        self._enter(
            ContainerState.STOPPING,
            (*_ACTIVE, ContainerState.READY, ContainerState.ERROR),
        )
        context = self.log_context()
        self._supervisor._execute_container_stop(self._name, context)
        self._process.wait(STOP_WAIT_SECONDS)
        if self._process.is_alive():
            self._set_state(ContainerState.ERROR)
            raise ContainerStillAliveError(
                f"Container process {self._process!r} is still alive!",
                context={"container": self._name, "pid": self._process.pid},
            )
        self._supervisor._delete_container_record(self._name)
        self._set_state(ContainerState.STOPPED)

    def close(self) -> None:
        """Stop and force-remove the container, then delete its record.

        Safe to call more than once. A runtime process that survives the
        removal is logged as a warning rather than raised.
        """
        with self._lock:
            if self._state == ContainerState.REMOVED:
                return
            self._state = ContainerState.STOPPING

        context = self.log_context()
        log = context.bind(logger)
        log.debug("container.shutting_down")

        # Older runtimes cannot stop and remove in one step, so do both.
        self._supervisor._execute_container_stop(self._name, context)
        self._supervisor._execute_container_remove(self._name, context)

        log.debug("container.waiting_for_exit")
        self._process.wait(CLOSE_WAIT_SECONDS)
        if self._process.is_alive():
            log.warning("container.still_running")
        self._process.close_stdin()

        self._supervisor._delete_container_record(self._name)
        self._set_state(ContainerState.REMOVED)
        self._supervisor._forget_handle(self)
        self._supervisor._audit(AuditCode.CONTAINER_REMOVED, self._name)

    def __repr__(self) -> str:
        return f"ContainerHandle(name={self._name!r}, state={self._state.value})"


class PodHandle(ManagedResource):
    """A pod; starts containers joined to it."""

    kind = "pod"

    def __init__(
        self,
        supervisor: ContainerSupervisor,
        name: str,
        ports: Sequence[PortPublish],
    ) -> None:
        self._supervisor = supervisor
        self._name = name
        self._ports = tuple(ports)
        self._closed = False
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def ports(self) -> tuple[PortPublish, ...]:
        return self._ports

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self, spec: ContainerSpec) -> ContainerHandle:
        """Start a container joined to this pod.

        The spec's own ``ports`` are ignored; pod members share the ports
        published when the pod was created.
        """
        if self._closed:
            raise InvalidStateError(
                f"Pod {self._name} is closed", context={"pod": self._name}
            )
        return self._supervisor._create_and_start_container(self._name, spec)

    def close(self) -> None:
        """Force-remove the pod (and with it, its containers).

        Raises:
            NonZeroExitError: ``pod rm`` failed.
        """
        with self._lock:
            if self._closed:
                return
            context = ProcessLogContext(container=self._name, source="supervisor")
            self._supervisor._execute_pod_deletion(self._name, context)
            self._supervisor._delete_pod_record(self._name)
            self._closed = True
        self._supervisor._forget_handle(self)
        self._supervisor._audit(AuditCode.POD_REMOVED, self._name)

    def __repr__(self) -> str:
        return f"PodHandle(name={self._name!r}, closed={self._closed})"
