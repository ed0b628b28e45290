"""
CLI: runtime detection, store inspection and crash recovery.

Usage::

    podspine check                                  # Is podman usable here?
    podspine check --executable docker

    podspine records --project billing              # Containers/pods on record
    podspine audit --project billing --limit 20     # Recent audit events
    podspine recover --project billing              # Remove leftovers now
"""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import UTC, datetime
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from podspine.core.errors import AggregateTeardownError, PodSpineError
from podspine.core.settings import PodSpineSettings

console = Console()
err_console = Console(stderr=True)

_PROJECT = typer.Option(..., "--project", "-p", help="Project name (store namespace).")
_STORE_DIR = typer.Option(
    None, "--store-dir", "-d", help="Store directory (defaults to PODSPINE_STORE_DIRECTORY)."
)
_EXECUTABLE = typer.Option(
    None, "--executable", "-e", help="Runtime executable (defaults to PODSPINE_EXECUTABLE)."
)
_JSON = typer.Option(False, "--json", help="Output as JSON.")


def _store_path(project: str, store_dir: Path | None) -> Path:
    directory = store_dir or PodSpineSettings().store_directory
    return Path(directory) / f"{project}.db"


def _fail(exc: PodSpineError) -> NoReturn:
    err_console.print(f"[bold red]Error[/] ({exc.category.value}): {exc.message}")
    raise typer.Exit(code=1) from exc


def _format_ms(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC).strftime("%Y-%m-%d %H:%M:%S")


# ── check ────────────────────────────────────────────────────────────────


def check(
    executable: str | None = _EXECUTABLE,
    json_out: bool = _JSON,
) -> None:
    """Report whether the container runtime is usable on this machine."""
    from podspine.supervisor.config import ContainerConfiguration
    from podspine.supervisor.factory import SupervisorFactory

    executable = executable or PodSpineSettings().executable
    config = ContainerConfiguration(project_name="podspine", executable=executable)
    backend = SupervisorFactory().is_supported(config)

    if json_out:
        payload = {
            "executable": executable,
            "supported": backend is not None,
            "version": backend.version if backend else None,
        }
        typer.echo(json.dumps(payload))
    elif backend is None:
        err_console.print(f"[bold red]✗[/] {executable}: not supported")
    else:
        console.print(f"[bold green]✓[/] {backend.name} {backend.version} ({executable})")

    if backend is None:
        raise typer.Exit(code=1)


# ── records ──────────────────────────────────────────────────────────────


def records(
    project: str = _PROJECT,
    store_dir: Path | None = _STORE_DIR,
    json_out: bool = _JSON,
) -> None:
    """List container and pod records in a project's store."""
    from podspine.store import ContainerStore

    path = _store_path(project, store_dir)
    if not path.exists():
        err_console.print(f"[yellow]No store for project {project!r}[/] ({path})")
        raise typer.Exit(code=1)

    try:
        with ContainerStore.open(path, read_only=True) as store:
            containers = store.container_list()
            pods = store.pod_list()
    except PodSpineError as exc:
        _fail(exc)

    if json_out:
        payload = {
            "store": str(path),
            "pods": [asdict(p) for p in pods],
            "containers": [asdict(c) for c in containers],
        }
        typer.echo(json.dumps(payload))
        return

    table = Table(title=f"Records: {project}")
    table.add_column("Kind", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Pod")
    for pod in pods:
        table.add_row("pod", pod.name, "")
    for container in containers:
        table.add_row("container", container.name, container.pod_name or "")
    console.print(table)
    console.print(f"  {len(pods)} pod(s), {len(containers)} container(s) in {path}")


# ── audit ────────────────────────────────────────────────────────────────


def audit(
    project: str = _PROJECT,
    store_dir: Path | None = _STORE_DIR,
    limit: int = typer.Option(50, "--limit", "-n", min=1, help="Newest N events."),
    json_out: bool = _JSON,
) -> None:
    """Show the newest audit events of a project's store."""
    from podspine.store import ContainerStore

    path = _store_path(project, store_dir)
    if not path.exists():
        err_console.print(f"[yellow]No store for project {project!r}[/] ({path})")
        raise typer.Exit(code=1)

    try:
        with ContainerStore.open(path, read_only=True) as store:
            events = store.audit_list(limit=limit)
    except PodSpineError as exc:
        _fail(exc)

    if json_out:
        typer.echo(json.dumps([asdict(e) for e in events]))
        return

    table = Table(title=f"Audit: {project}")
    table.add_column("Time", style="dim")
    table.add_column("Scope")
    table.add_column("Code", style="cyan", no_wrap=True)
    table.add_column("Detail")
    table.add_column("Instance", style="dim")
    for event in events:
        table.add_row(
            _format_ms(event.timestamp_ms),
            event.scope,
            event.code,
            event.text,
            event.instance_id[:8],
        )
    console.print(table)


# ── recover ──────────────────────────────────────────────────────────────


def recover(
    project: str = _PROJECT,
    store_dir: Path | None = _STORE_DIR,
    executable: str | None = _EXECUTABLE,
) -> None:
    """Remove every container and pod on record for a project."""
    from podspine.supervisor.config import ContainerConfiguration
    from podspine.supervisor.supervisor import ContainerSupervisor

    settings = PodSpineSettings()
    config = ContainerConfiguration(
        project_name=project,
        executable=executable or settings.executable,
        store_directory=store_dir or settings.store_directory,
    )

    try:
        supervisor = ContainerSupervisor.open(config, recover=False)
    except PodSpineError as exc:
        _fail(exc)

    failed: AggregateTeardownError | None = None
    with supervisor:
        containers = len(supervisor.store.container_list())
        pods = len(supervisor.store.pod_list())
        try:
            supervisor.cleanup_old_containers_and_pods()
        except AggregateTeardownError as exc:
            failed = exc

    if failed is not None:
        err_console.print(f"[bold red]Recovery failed[/]: {len(failed.errors)} error(s)")
        for error in failed.errors:
            err_console.print(f"  - {type(error).__name__}: {error}")
        raise typer.Exit(code=1)

    console.print(f"[bold green]✓[/] Recovered {project}: {containers} container(s), {pods} pod(s)")


def register(app: typer.Typer) -> None:
    """Attach the commands to the root application."""
    app.command("check")(check)
    app.command("records")(records)
    app.command("audit")(audit)
    app.command("recover")(recover)
