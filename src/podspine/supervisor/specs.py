"""Container specifications.

Frozen dataclasses describing what to run: the image, its environment,
published ports, volume mounts, arguments and the readiness check. A
spec is immutable and can be shared by any number of ``start()`` calls.

Example::

    POSTGRES = ContainerSpec(
        registry="docker.io",
        name="library/postgres",
        version="16.4-alpine",
        environment={"POSTGRES_PASSWORD": "spine"},
        ports=(PortPublish(host_port=15432, container_port=5432),),
        ready_check=TCPSocketReadCheck("127.0.0.1", 15432),
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from podspine.supervisor.ready_checks import AlwaysReady, ReadyCheck


class PortProtocol(str, Enum):
    """Transport protocol of a published port."""

    TCP = "tcp"
    UDP = "udp"


@dataclass(frozen=True)
class PortPublish:
    """A container port published on the host."""

    host_port: int
    container_port: int
    protocol: PortProtocol = PortProtocol.TCP
    host_ip: str | None = None
    """Host address to bind; all addresses when None."""

    def __post_init__(self) -> None:
        for port in (self.host_port, self.container_port):
            if not 0 <= port <= 65535:
                raise ValueError(f"Port out of range: {port}")

    def to_argument(self) -> str:
        """Render as a ``--publish`` value: ``[HOST_IP:]HOST:CONTAINER/PROTO``."""
        spec = f"{self.host_port}:{self.container_port}/{self.protocol.value}"
        if self.host_ip:
            return f"{self.host_ip}:{spec}"
        return spec


@dataclass(frozen=True)
class VolumeMount:
    """A host path mounted into the container."""

    host_path: Path
    container_path: str

    def to_argument(self) -> str:
        """Render as a ``--volume`` value with an absolute host path."""
        return f"{Path(self.host_path).absolute()}:{self.container_path}"


@dataclass(frozen=True)
class ContainerSpec:
    """Specification for a container to be started by a supervisor."""

    registry: str
    """Image registry (``docker.io``, ``quay.io``)."""

    name: str
    """Image repository name (``library/postgres``)."""

    version: str = "latest"
    """Image tag."""

    image_hash: str | None = None
    """Image digest (``sha256:...``); pins the image and replaces the tag."""

    environment: dict[str, str] = field(default_factory=dict)
    """Environment variables, emitted in sorted key order."""

    ports: tuple[PortPublish, ...] = ()
    """Published ports; ignored for containers joined to a pod."""

    volume_mounts: tuple[VolumeMount, ...] = ()

    arguments: tuple[str, ...] = ()
    """Arguments passed after the image name."""

    ready_check: ReadyCheck = field(default_factory=AlwaysReady)
    """Application readiness predicate."""

    @property
    def full_image_name(self) -> str:
        base = f"{self.registry}/{self.name}" if self.registry else self.name
        if self.image_hash:
            return f"{base}@{self.image_hash}"
        return f"{base}:{self.version}"
