"""pod-spine - container and pod supervision for integration test suites."""

__version__ = "0.3.0"

from podspine.supervisor import (  # noqa: E402
    ContainerConfiguration,
    ContainerSpec,
    ContainerSupervisor,
    PortPublish,
    SupervisorFactory,
    SupervisorScope,
    TCPSocketReadCheck,
    VolumeMount,
)

__all__ = [
    "__version__",
    "ContainerConfiguration",
    "ContainerSpec",
    "ContainerSupervisor",
    "PortPublish",
    "SupervisorFactory",
    "SupervisorScope",
    "TCPSocketReadCheck",
    "VolumeMount",
]
