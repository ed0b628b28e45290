"""Configuration models for the container supervisor.

Provides the Pydantic v2 ``ContainerConfiguration`` consumed by every
supervisor, and the ``SupervisorScope`` enum describing how long a
supervisor is meant to live. Every field can be overridden from the
environment, so CI can point a whole test suite at a different runtime
without code changes.

Why This Matters:
    The test-framework glue that creates supervisors lives outside this
    package. It only has to build one ``ContainerConfiguration`` (often
    straight from ``PODSPINE_*`` variables) and hand it to
    :class:`~podspine.supervisor.factory.SupervisorFactory`.

Key Concepts:
    ContainerConfiguration: Runtime executable, project namespace, startup
        deadline, behaviour when containers are unsupported, store location.
        Uses ``PODSPINE_*`` env vars via ``from_env()``.
    SupervisorScope: Enum - per suite, per class, per test. Recorded on
        every audit event.

Architecture Decisions:
    - Pydantic v2 (not dataclass): validation of the project name, which
      ends up in container names and the store file name.
    - Frozen model: a supervisor's configuration never changes under it.
    - from_env() classmethod: explicit env-var parsing, same precedence
      as the rest of the code base (kwargs > env vars > field defaults).

Tags:
    config, settings, pydantic, supervisor, environment
"""

from __future__ import annotations

import os
import re
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from podspine.core.settings import default_store_directory

_PROJECT_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class SupervisorScope(str, Enum):
    """Intended lifetime of a supervisor."""

    PER_SUITE = "PER_SUITE"  # One supervisor for the whole test run
    PER_CLASS = "PER_CLASS"  # One per test class
    PER_TEST = "PER_TEST"  # One per test method


class ContainerConfiguration(BaseModel):
    """Configuration for a container supervisor.

    Example::

        config = ContainerConfiguration(
            project_name="billing",
            executable="/usr/bin/podman",
            startup_wait_seconds=60,
        )
    """

    model_config = ConfigDict(frozen=True)

    executable: str = Field(
        default="podman",
        description="Container runtime executable (name on PATH or absolute path)",
    )
    project_name: str = Field(
        description="Project namespace for container names and crash recovery",
    )
    startup_wait_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Deadline for a container to become live and ready",
    )
    disabled_if_unsupported: bool = Field(
        default=True,
        description="Skip (rather than fail) container work when no runtime is available",
    )
    store_directory: Path = Field(
        default_factory=default_store_directory,
        description="Directory holding one store file per project",
    )

    @field_validator("project_name")
    @classmethod
    def _check_project_name(cls, value: str) -> str:
        if not _PROJECT_NAME.match(value):
            raise ValueError(
                "project_name must start with a letter or digit and contain only "
                f"letters, digits, '_', '.' or '-': {value!r}"
            )
        return value

    @field_validator("executable")
    @classmethod
    def _check_executable(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("executable must not be empty")
        return value

    @property
    def store_path(self) -> Path:
        """The project's store file."""
        return self.store_directory / f"{self.project_name}.db"

    @classmethod
    def from_env(cls, **overrides: Any) -> ContainerConfiguration:
        """Create config from PODSPINE_* environment variables."""
        env_map = {
            "executable": "PODSPINE_EXECUTABLE",
            "project_name": "PODSPINE_PROJECT_NAME",
            "startup_wait_seconds": "PODSPINE_STARTUP_WAIT_SECONDS",
            "disabled_if_unsupported": "PODSPINE_DISABLED_IF_UNSUPPORTED",
            "store_directory": "PODSPINE_STORE_DIRECTORY",
        }
        values: dict[str, Any] = {}
        for field_name, env_var in env_map.items():
            env_val = os.environ.get(env_var)
            if env_val is not None:
                if field_name == "startup_wait_seconds":
                    values[field_name] = float(env_val)
                elif field_name == "disabled_if_unsupported":
                    values[field_name] = env_val.lower() in ("true", "1", "yes")
                elif field_name == "store_directory":
                    values[field_name] = Path(env_val)
                else:
                    values[field_name] = env_val
        values.update(overrides)
        return cls(**values)
