"""
Root Typer application for the pod-spine CLI.

Operator commands for inspecting and repairing a project's container
store outside of a test run.
"""

from __future__ import annotations

import typer
from typer import Typer

from podspine.core.logging import configure_logging
from podspine.core.settings import PodSpineSettings

app = Typer(
    name="podspine",
    help="pod-spine: container and pod supervision for integration tests.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        from podspine import __version__

        try:
            v = pkg_version("pod-spine")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"pod-spine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", help="Log level (defaults to PODSPINE_LOG_LEVEL or INFO)."
    ),
) -> None:
    """pod-spine CLI: check the runtime, inspect stores, recover after crashes."""
    settings = PodSpineSettings()
    configure_logging(level=log_level or settings.log_level, json_format=settings.log_json)


# ── Commands ─────────────────────────────────────────────────────────────

from podspine.cli.supervisor import register  # noqa: E402

register(app)
