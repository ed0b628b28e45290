"""Process-wide settings for pod-spine tooling.

``PodSpineSettings`` holds the settings that are not part of a single
supervisor's configuration: how the CLI logs, and where stores live by
default. Values come from ``PODSPINE_*`` environment variables and an
optional ``.env`` file.

Examples:
    >>> from podspine.core.settings import PodSpineSettings
    >>> settings = PodSpineSettings(log_level="DEBUG")
    >>> settings.log_level
    'DEBUG'

Tags:
    settings, configuration, pydantic, environment, pod-spine
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_store_directory() -> Path:
    return Path(tempfile.gettempdir()) / "podspine"


class PodSpineSettings(BaseSettings):
    """Settings shared by the pod-spine CLI and library defaults.

    Fields
    ──────
    log_level        : Structlog log level
    log_json         : Force JSON (true) / console (false) output; unset = auto
    store_directory  : Directory holding one store file per project
    executable       : Default container runtime executable
    """

    model_config = SettingsConfigDict(
        env_prefix="PODSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    # ── Runtime ──────────────────────────────────────────────────
    executable: str = "podman"

    # ── Storage ──────────────────────────────────────────────────
    store_directory: Path = Field(
        default_factory=default_store_directory,
        description="Directory holding per-project store files",
    )
