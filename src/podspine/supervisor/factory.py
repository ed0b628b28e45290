"""Supervisor factory with container-runtime support detection.

The factory is the entry point for test-framework glue: it decides
whether containers can run on this machine at all, and if so hands out
supervisors that have already cleaned up after any crashed previous run.

Why This Matters:
    A developer laptop without podman should skip container-backed tests,
    not fail them. CI should fail loudly instead. ``disabled_if_unsupported``
    selects between the two, and :class:`RuntimeUnsupportedError` carries
    the choice to the caller.

Key Concepts:
    ContainerBackend: What ``version --format json`` reported.
    SupervisorFactory.is_supported(): Probe a runtime executable.
    SupervisorFactory.create(): Probe, open, recover, track.
    SupervisorFactory.live_supervisors(): Supervisors not yet closed.

Example::

    factory = SupervisorFactory()
    try:
        supervisor = factory.create(ContainerConfiguration.from_env(), SupervisorScope.PER_CLASS)
    except RuntimeUnsupportedError as exc:
        if exc.disabled:
            pytest.skip(str(exc))
        raise

Tags:
    factory, detection, podman, docker, supervisor, scope
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from typing import Any

from podspine.core.errors import PodSpineError, RuntimeUnsupportedError
from podspine.core.logging import get_logger
from podspine.supervisor.commands import RuntimeCommands
from podspine.supervisor.config import ContainerConfiguration, SupervisorScope
from podspine.supervisor.launcher import ProcessLauncher
from podspine.supervisor.supervisor import ContainerSupervisor

logger = get_logger(__name__)

# Seconds allowed for ``version`` before the runtime is considered broken.
VERSION_PROBE_TIMEOUT = 30.0


@dataclass(frozen=True)
class ContainerBackend:
    """A container runtime that answered the version probe."""

    executable: str
    """Executable that was probed."""

    name: str
    """Runtime name guessed from the executable (``podman``, ``docker``)."""

    version: str
    """Client version, or the first line of output if it was not JSON."""

    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)
    """Parsed JSON output of the probe (empty if unparseable)."""


def parse_version_output(lines: list[str]) -> tuple[str, dict[str, Any]]:
    """Extract the client version from ``version --format json`` output.

    Returns ``(version, parsed)``. Falls back to the first non-empty line
    when the output is not a JSON object with ``Client.Version``.
    """
    text = "\n".join(lines).strip()
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None

    if isinstance(parsed, dict):
        client = parsed.get("Client")
        if isinstance(client, dict) and client.get("Version"):
            return str(client["Version"]), parsed
        if parsed.get("Version"):
            return str(parsed["Version"]), parsed
        fallback_raw = parsed
    else:
        fallback_raw = {}

    first = next((line.strip() for line in lines if line.strip()), "")
    return first or "unknown", fallback_raw


class SupervisorFactory:
    """Creates supervisors and tracks the ones still open."""

    def __init__(self, launcher: ProcessLauncher | None = None) -> None:
        self._launcher = launcher or ProcessLauncher()
        self._live: list[ContainerSupervisor] = []
        self._lock = threading.Lock()

    def is_supported(self, configuration: ContainerConfiguration) -> ContainerBackend | None:
        """Probe the configured runtime; None if it is missing or broken."""
        executable = configuration.executable
        lines: list[str] = []
        try:
            exit_code = self._launcher.run(
                "version",
                RuntimeCommands(executable).version(),
                timeout=VERSION_PROBE_TIMEOUT,
                receiver=lines.append,
            )
        except PodSpineError as exc:
            logger.info("runtime.unsupported", executable=executable, error=str(exc))
            return None

        if exit_code != 0:
            logger.info("runtime.unsupported", executable=executable, exit_code=exit_code)
            return None

        version, raw = parse_version_output(lines)
        name = executable.replace("\\", "/").rsplit("/", 1)[-1]
        backend = ContainerBackend(executable=executable, name=name, version=version, raw=raw)
        logger.debug("runtime.supported", executable=executable, version=version)
        return backend

    def create(
        self,
        configuration: ContainerConfiguration,
        scope: SupervisorScope = SupervisorScope.PER_SUITE,
    ) -> ContainerSupervisor:
        """Create a supervisor for ``configuration``, after crash recovery.

        Raises:
            RuntimeUnsupportedError: The runtime is unavailable. Check
                ``exc.disabled`` to decide between skipping and failing.
            AggregateTeardownError: Crash recovery failed.
        """
        if self.is_supported(configuration) is None:
            raise RuntimeUnsupportedError(
                configuration.executable, configuration.disabled_if_unsupported
            )

        supervisor = ContainerSupervisor.open(
            configuration,
            scope=scope,
            launcher=self._launcher,
            on_close=self._forget,
        )
        with self._lock:
            self._live.append(supervisor)
        return supervisor

    def live_supervisors(self) -> list[ContainerSupervisor]:
        with self._lock:
            return list(self._live)

    def close_all(self) -> None:
        """Close every live supervisor (e.g. from an ``atexit`` hook)."""
        for supervisor in self.live_supervisors():
            try:
                supervisor.close()
            except PodSpineError as exc:
                logger.warning(
                    "supervisor.close_failed",
                    project=supervisor.project_name,
                    error=str(exc),
                )

    def _forget(self, supervisor: ContainerSupervisor) -> None:
        with self._lock:
            if supervisor in self._live:
                self._live.remove(supervisor)
