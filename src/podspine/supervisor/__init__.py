"""pod-spine supervisor - throwaway containers and pods for integration tests.

The supervisor starts containers from a :class:`ContainerSpec`, waits until
the runtime reports them up and the application inside is ready, and
removes them again. Every resource is written to a per-project store
before it is created, so a later run cleans up after a crashed one.

Key Concepts:
    ContainerConfiguration: Pydantic model (runtime executable, project,
        startup deadline, store directory). ``from_env()`` reads PODSPINE_*.
    SupervisorFactory: Detects runtime support, creates supervisors after
        crash recovery, tracks live ones.
    ContainerSupervisor: ``start()``, ``create_pod()``, ``close()``.
    ContainerHandle: ``exec()``, ``copy_into()``, ``copy_from()``,
        ``stop()``, ``start()``, ``close()``.
    PodHandle: ``start(spec)`` joins a container to the pod; ``close()``.
    ReadyCheck: Application readiness predicate; ``TCPSocketReadCheck``
        waits for a greeting byte.

Architecture::

    SupervisorFactory.create(config)
        │
        ▼
    ContainerSupervisor ──► ContainerStore (sqlite, one file per project)
        │
        ├── NameAllocator          PODSPINE-<project>-<token>
        ├── RuntimeCommands        podman argv builders
        ├── ProcessLauncher        subprocess + drain threads
        └── ReadinessProtocol      liveness, then ReadyCheck, one deadline

Related Modules:
    - :mod:`podspine.store` - persistent records and audit log
    - :mod:`podspine.core.errors` - error hierarchy
    - :mod:`podspine.cli` - ``podspine`` operator CLI

Tags:
    containers, pods, podman, integration-testing, supervisor
"""

from podspine.store import AuditCode
from podspine.supervisor.config import ContainerConfiguration, SupervisorScope
from podspine.supervisor.factory import ContainerBackend, SupervisorFactory
from podspine.supervisor.handles import ContainerHandle, ContainerState, PodHandle
from podspine.supervisor.ready_checks import AlwaysReady, ReadyCheck, TCPSocketReadCheck
from podspine.supervisor.specs import ContainerSpec, PortProtocol, PortPublish, VolumeMount
from podspine.supervisor.supervisor import ContainerSupervisor

__all__ = [
    # Config
    "ContainerConfiguration",
    "SupervisorScope",
    # Specs
    "ContainerSpec",
    "PortProtocol",
    "PortPublish",
    "VolumeMount",
    # Readiness
    "AlwaysReady",
    "ReadyCheck",
    "TCPSocketReadCheck",
    # Supervisor
    "AuditCode",
    "ContainerBackend",
    "ContainerHandle",
    "ContainerState",
    "ContainerSupervisor",
    "PodHandle",
    "SupervisorFactory",
]
