"""Container supervisor: creates, tracks and tears down test containers.

Why This Matters:
    Integration tests that need a real PostgreSQL, an SMTP server or an
    object store want a fresh container per suite, class or test, and
    they want it gone afterwards even when the previous run crashed. The
    supervisor gives each test project its own namespace and its own
    store file, so concurrent runs of different projects on one host
    never touch each other's containers.

Key Concepts:
    ContainerSupervisor: Root object. ``start()``, ``create_pod()``,
        ``close()``, ``cleanup_old_containers_and_pods()``.
    ContainerHandle / PodHandle: Returned handles (``supervisor.handles``).
    ContainerStore: Write-ahead record of every resource (``podspine.store``).
    ProcessLauncher: Runtime invocations with drained output
        (``supervisor.launcher``).

Architecture Decisions:
    - Write-ahead records: the store row is written before ``run`` or
      ``pod create`` is spawned, and deleted only after removal was
      attempted, so crash recovery sees everything that may exist.
    - Runtime CLI via subprocess, no SDK: works with any runtime that
      speaks the podman command line.
    - Attempt-all teardown: recovery and ``close()`` collect failures in
      an :class:`ExceptionTracker` and raise one
      :class:`AggregateTeardownError` at the end.
    - Mutex-guarded registries: several test-framework threads may share
      one supervisor.

Data flow::

    start(spec)
      ├─ NameAllocator.container_name()
      ├─ ContainerStore.container_put()          (write-ahead)
      ├─ ProcessLauncher.execute_logged("run")   (spawn + drains)
      ├─ registry[name] = ContainerHandle
      └─ wait_until_ready()                      (liveness, readiness)

    ContainerHandle.close() / PodHandle.close()
      └─ registry.pop(name)                      (only live handles stay)

    close()
      ├─ PodHandle.close()        for every pod
      ├─ ContainerHandle.close()  for every container
      ├─ ContainerStore.pod_delete() for every pod
      └─ ContainerStore.close()

Tags:
    supervisor, containers, pods, podman, lifecycle, crash-recovery
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Sequence

from podspine.core.errors import (
    ExceptionTracker,
    PodSpineError,
    SpawnError,
    StoreError,
    SupervisorClosedError,
)
from podspine.core.logging import SUPERVISOR_CONTEXT, ProcessLogContext, get_logger
from podspine.store import AuditCode, AuditEvent, ContainerRecord, ContainerStore
from podspine.supervisor.commands import RuntimeCommands
from podspine.supervisor.config import ContainerConfiguration, SupervisorScope
from podspine.supervisor.handles import ContainerHandle, ManagedResource, PodHandle
from podspine.supervisor.launcher import LoggedProcess, ProcessLauncher
from podspine.supervisor.names import NameAllocator
from podspine.supervisor.readiness import ReadinessProtocol, wait_until_ready
from podspine.supervisor.specs import ContainerSpec, PortPublish

logger = get_logger(__name__)

# Seconds to wait for ``stop`` / ``rm`` invocations before moving on.
RUNTIME_COMMAND_WAIT_SECONDS = 3.0
# Seconds to wait for a status query's output after it exited.
STATUS_OUTPUT_WAIT_SECONDS = 1.0


class ContainerSupervisor:
    """Creates containers and pods for one project and cleans up after them.

    Build one with :meth:`open` (or through
    :class:`~podspine.supervisor.factory.SupervisorFactory`), which also
    runs crash recovery. Supervisors are context managers::

        config = ContainerConfiguration(project_name="billing")
        with ContainerSupervisor.open(config) as supervisor:
            db = supervisor.start(POSTGRES)
            assert db.exec(["pg_isready"], timeout=10) == 0
    """

    def __init__(
        self,
        configuration: ContainerConfiguration,
        store: ContainerStore,
        scope: SupervisorScope = SupervisorScope.PER_SUITE,
        instance_id: str | None = None,
        launcher: ProcessLauncher | None = None,
        on_close: Callable[[ContainerSupervisor], None] | None = None,
    ) -> None:
        self.configuration = configuration
        self.store = store
        self.scope = scope
        self.instance_id = instance_id or str(uuid.uuid4())
        self.launcher = launcher or ProcessLauncher()
        self.commands = RuntimeCommands(configuration.executable)
        self.names = NameAllocator(configuration.project_name)
        self._on_close = on_close
        self._containers: dict[str, ContainerHandle] = {}
        self._pods: dict[str, PodHandle] = {}
        self._registry_lock = threading.RLock()
        self._closed = False
        self._log = logger.bind(
            project=configuration.project_name,
            instance=self.instance_id,
            **SUPERVISOR_CONTEXT.to_dict(),
        )

    @classmethod
    def open(
        cls,
        configuration: ContainerConfiguration,
        scope: SupervisorScope = SupervisorScope.PER_SUITE,
        launcher: ProcessLauncher | None = None,
        on_close: Callable[[ContainerSupervisor], None] | None = None,
        recover: bool = True,
    ) -> ContainerSupervisor:
        """Open the project's store, build a supervisor and run recovery.

        Raises:
            StoreIncompatibleError: The store was written by a newer schema.
            AggregateTeardownError: Recovery could not remove everything
                left over from a previous run. The supervisor is closed.
        """
        store = ContainerStore.open(configuration.store_path)
        supervisor = cls(
            configuration,
            store,
            scope=scope,
            launcher=launcher,
            on_close=on_close,
        )
        supervisor._audit(AuditCode.SUPERVISOR_CREATED, configuration.project_name)
        supervisor._log.info("supervisor.created", scope=scope.value, store=store.path)

        if recover:
            try:
                supervisor.cleanup_old_containers_and_pods()
            except BaseException:
                supervisor._close_quietly()
                raise
        return supervisor

    # ------------------------------------------------------------------
    # Registry views
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def project_name(self) -> str:
        return self.configuration.project_name

    def containers(self) -> list[ContainerHandle]:
        """Container handles not yet removed."""
        with self._registry_lock:
            return list(self._containers.values())

    def pods(self) -> list[PodHandle]:
        with self._registry_lock:
            return list(self._pods.values())

    def _check_open(self) -> None:
        if self._closed:
            raise SupervisorClosedError(
                f"Supervisor {self.instance_id} is closed",
                context={"project": self.project_name},
            )

    # ------------------------------------------------------------------
    # Crash recovery
    # ------------------------------------------------------------------

    def cleanup_old_containers_and_pods(self) -> None:
        """Remove every container and pod recorded in the store.

        Each container is stopped, removed and its record deleted; each
        pod is force-removed and its record deleted. A failure on one
        resource does not stop the scan.

        Raises:
            AggregateTeardownError: One or more resources could not be cleaned.
        """
        tracker = ExceptionTracker()

        containers = self.store.container_list()
        self._log.debug("recovery.containers", count=len(containers))
        removed_containers = 0
        for record in containers:
            context = ProcessLogContext(container=record.name, source="recovery")
            try:
                self._execute_container_stop(record.name, context)
                self._execute_container_remove(record.name, context)
                self.store.container_delete(record.name)
                removed_containers += 1
            except Exception as exc:
                context.bind(self._log).warning("recovery.container_failed", error=str(exc))
                tracker.add(exc)

        pods = self.store.pod_list()
        self._log.debug("recovery.pods", count=len(pods))
        removed_pods = 0
        for pod in pods:
            context = ProcessLogContext(container=pod.name, source="recovery")
            try:
                self._execute_pod_deletion(pod.name, context)
                self.store.pod_delete(pod.name)
                removed_pods += 1
            except Exception as exc:
                context.bind(self._log).warning("recovery.pod_failed", error=str(exc))
                tracker.add(exc)

        summary = (
            f"containers={removed_containers}/{len(containers)} "
            f"pods={removed_pods}/{len(pods)} failures={len(tracker)}"
        )
        self._audit(AuditCode.RECOVERY_COMPLETE, summary)
        if containers or pods:
            self._log.info(
                "recovery.complete",
                containers_removed=removed_containers,
                pods_removed=removed_pods,
                failures=len(tracker),
            )
        tracker.raise_if_necessary("Crash recovery failed")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, spec: ContainerSpec) -> ContainerHandle:
        """Start a container and block until it is ready.

        Raises:
            SpawnError: The runtime executable could not be started.
            ReadinessTimeoutError: The container was not ready within
                ``startup_wait_seconds``. It is left in place and removed
                by ``close()``.
            ContainerStartError: The container exited while starting.
        """
        return self._create_and_start_container(None, spec)

    def create_pod(self, ports: Sequence[PortPublish] = ()) -> PodHandle:
        """Create a pod publishing ``ports``; start members with ``pod.start()``.

        Raises:
            NonZeroExitError: ``pod create`` failed.
        """
        with self._registry_lock:
            self._check_open()
        name = self.names.pod_name()
        context = ProcessLogContext(container=name, source="supervisor")

        self.store.pod_put(name)
        pod = PodHandle(self, name, ports)
        try:
            self.launcher.run(
                "pod-create",
                self.commands.pod_create(name, ports),
                context=context,
                check=True,
            )
        except PodSpineError:
            # A failed create leaves no pod behind, so the record would
            # only make every later recovery pass fail on ``pod rm``.
            self._forget_pod_record(name)
            raise

        with self._registry_lock:
            self._pods[name] = pod
        self._audit(AuditCode.POD_CREATED, name)
        context.bind(self._log).info("pod.created", ports=[p.to_argument() for p in ports])
        return pod

    def close(self) -> None:
        """Tear down every pod and container, then close the store.

        Every step is attempted even if an earlier one failed.

        Raises:
            AggregateTeardownError: One or more steps failed.
        """
        with self._registry_lock:
            if self._closed:
                return
            self._closed = True
            pods = list(self._pods.values())
            containers = list(self._containers.values())

        tracker = ExceptionTracker()
        try:
            self._log.debug("supervisor.closing_pods", count=len(pods))
            for pod in pods:
                try:
                    pod.close()
                except Exception as exc:
                    tracker.add(exc)

            self._log.debug("supervisor.closing_containers", count=len(containers))
            for container in containers:
                try:
                    container.close()
                except Exception as exc:
                    tracker.add(exc)

            self._log.debug("supervisor.deleting_pod_records", count=len(pods))
            for pod in pods:
                try:
                    self.store.pod_delete(pod.name)
                except Exception as exc:
                    tracker.add(exc)

            self._audit(AuditCode.SUPERVISOR_CLOSED, f"failures={len(tracker)}")
            try:
                self.store.close()
            except Exception as exc:
                tracker.add(exc)
        finally:
            if self._on_close is not None:
                self._on_close(self)

        self._log.info("supervisor.closed", failures=len(tracker))
        tracker.raise_if_necessary("Supervisor close failed")

    def __enter__(self) -> ContainerSupervisor:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"ContainerSupervisor(project={self.project_name!r}, "
            f"scope={self.scope.value}, closed={self._closed})"
        )

    # ------------------------------------------------------------------
    # Handle support
    # ------------------------------------------------------------------

    def _create_and_start_container(
        self, pod: str | None, spec: ContainerSpec
    ) -> ContainerHandle:
        with self._registry_lock:
            self._check_open()
        name = self.names.container_name()
        context = ProcessLogContext(container=name, source="supervisor")

        self.store.container_put(ContainerRecord(name=name, pod_name=pod))
        argv = self.commands.run(name, spec, pod=pod)
        try:
            process = self.launcher.execute_logged("run", argv, context=context, interactive=True)
        except SpawnError:
            # Nothing was spawned, so nothing can exist in the runtime.
            self._forget_record(name)
            raise

        handle = ContainerHandle(self, spec, name, process, pod_name=pod)
        with self._registry_lock:
            self._containers[name] = handle
        self._audit(AuditCode.CONTAINER_STARTED, name)

        handle.wait_until_ready()
        handle.log_context().bind(self._log).info(
            "container.started", image=spec.full_image_name, pod=pod
        )
        return handle

    def _restart_container(self, handle: ContainerHandle) -> LoggedProcess:
        self.store.container_put(ContainerRecord(name=handle.name, pod_name=handle.pod_name))
        context = ProcessLogContext(container=handle.name, source="supervisor")
        try:
            process = self.launcher.execute_logged(
                "start", self.commands.start(handle.name), context=context, interactive=True
            )
        except SpawnError:
            self._forget_record(handle.name)
            raise
        self._audit(AuditCode.CONTAINER_RESTARTED, handle.name)
        return process

    def _wait_until_ready(self, handle: ContainerHandle) -> None:
        context = handle.log_context()
        protocol = ReadinessProtocol(
            name=handle.name,
            is_alive=handle.process.is_alive,
            exit_code=lambda: handle.process.exit_code,
            query_status=lambda: self._query_status(handle.name, context),
            ready_check=handle.spec.ready_check,
            context=context,
        )
        wait_until_ready(
            protocol,
            timeout=self.configuration.startup_wait_seconds,
            command=handle.process.command,
        )

    def _query_status(self, name: str, context: ProcessLogContext) -> str | None:
        lines: list[str] = []
        process = self.launcher.execute_logged(
            "status", self.commands.status(name), receiver=lines.append, context=context
        )
        exit_code = process.wait()
        process.wait_for_output(STATUS_OUTPUT_WAIT_SECONDS)
        if exit_code != 0 or not lines:
            return None
        return lines[-1]

    def _execute_container_stop(self, name: str, context: ProcessLogContext) -> None:
        self._run_best_effort("stop", self.commands.stop(name), context)

    def _execute_container_remove(self, name: str, context: ProcessLogContext) -> None:
        self._run_best_effort("rm", self.commands.remove(name), context)

    def _run_best_effort(self, label: str, argv: list[str], context: ProcessLogContext) -> None:
        exit_code = self.launcher.run(
            label, argv, timeout=RUNTIME_COMMAND_WAIT_SECONDS, context=context
        )
        if exit_code is None:
            context.bind(self._log).warning(
                "runtime.command_timeout", label=label, timeout=RUNTIME_COMMAND_WAIT_SECONDS
            )
        elif exit_code != 0:
            context.bind(self._log).warning(
                "runtime.command_failed", label=label, exit_code=exit_code
            )

    def _execute_pod_deletion(self, name: str, context: ProcessLogContext) -> None:
        self.launcher.run("pod-rm", self.commands.pod_remove(name), context=context, check=True)

    def _delete_container_record(self, name: str) -> None:
        self._log.debug("store.deleting_container_record", container=name)
        self.store.container_delete(name)

    def _delete_pod_record(self, name: str) -> None:
        self._log.debug("store.deleting_pod_record", pod=name)
        self.store.pod_delete(name)

    def _forget_handle(self, resource: ManagedResource) -> None:
        with self._registry_lock:
            registry = self._pods if resource.kind == "pod" else self._containers
            registry.pop(resource.name, None)

    def _forget_record(self, name: str) -> None:
        try:
            self.store.container_delete(name)
        except StoreError as exc:
            self._log.warning("store.delete_failed", container=name, error=str(exc))

    def _forget_pod_record(self, name: str) -> None:
        try:
            self.store.pod_delete(name)
        except StoreError as exc:
            self._log.warning("store.delete_failed", pod=name, error=str(exc))

    def _audit(self, code: AuditCode, text: str) -> None:
        event = AuditEvent(
            instance_id=self.instance_id,
            scope=self.scope.value,
            code=code.value,
            text=text,
        )
        try:
            self.store.audit_append(event)
        except StoreError as exc:
            self._log.warning("audit.write_failed", code=event.code, error=str(exc))

    def _close_quietly(self) -> None:
        try:
            self.close()
        except Exception as exc:
            self._log.warning("supervisor.close_failed", error=str(exc))


__all__ = [
    "ContainerSupervisor",
]
