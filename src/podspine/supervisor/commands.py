"""Argument vectors for the container runtime CLI.

Every runtime invocation the supervisor makes is assembled here. The
exact flags are the compatibility surface with the runtime (``podman``
4.x and later; ``docker`` accepts the same subset except ``pod``), so
they live in one place and are covered by tests.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from podspine.supervisor.specs import ContainerSpec, PortPublish

# Grace period (seconds) given to a container on stop before it is killed.
STOP_GRACE_SECONDS = 1


class RuntimeCommands:
    """Builds runtime argument vectors for one executable."""

    def __init__(self, executable: str) -> None:
        self.executable = executable

    def run(self, name: str, spec: ContainerSpec, pod: str | None = None) -> list[str]:
        """``run`` a new container, joined to ``pod`` if given.

        Pod membership and per-container port publishing are mutually
        exclusive; ports of pod members must be published on the pod.
        """
        args = [self.executable, "run", "--interactive", "--tty"]

        for key, value in sorted(spec.environment.items()):
            args.extend(["--env", f"{key}={value}"])

        for mount in spec.volume_mounts:
            args.extend(["--volume", mount.to_argument()])

        if pod is not None:
            args.extend(["--pod", pod])
        else:
            for port in spec.ports:
                args.extend(["--publish", port.to_argument()])

        args.extend(["--name", name, spec.full_image_name])
        args.extend(spec.arguments)
        return args

    def start(self, name: str) -> list[str]:
        """Restart a stopped container, attached like the original ``run``."""
        return [self.executable, "start", "--interactive", "--attach", name]

    def stop(self, name: str) -> list[str]:
        return [self.executable, "stop", "--ignore", "--time", str(STOP_GRACE_SECONDS), name]

    def remove(self, name: str) -> list[str]:
        return [self.executable, "rm", "-f", "--volumes", "--ignore", name]

    def status(self, name: str) -> list[str]:
        return [self.executable, "ps", "--filter", f"name={name}", "--format", "{{.Status}}"]

    def pod_create(self, name: str, ports: Sequence[PortPublish]) -> list[str]:
        args = [self.executable, "pod", "create"]
        for port in ports:
            args.extend(["--publish", port.to_argument()])
        args.extend(["--name", name])
        return args

    def pod_remove(self, name: str) -> list[str]:
        return [self.executable, "pod", "rm", "-f", name]

    def exec(self, name: str, command: Sequence[str]) -> list[str]:
        if not command:
            raise ValueError("command must not be empty")
        return [self.executable, "exec", name, *command]

    def copy_into(self, name: str, source: Path, destination: str) -> list[str]:
        return [self.executable, "cp", str(Path(source).absolute()), f"{name}:{destination}"]

    def copy_from(self, name: str, source: str, destination: Path) -> list[str]:
        return [self.executable, "cp", f"{name}:{source}", str(Path(destination).absolute())]

    def version(self) -> list[str]:
        return [self.executable, "version", "--format", "json"]


def is_up_status(status: str | None) -> bool:
    """True if a ``ps --format {{.Status}}`` line means the container is up."""
    return status is not None and status.upper().startswith("UP ")
