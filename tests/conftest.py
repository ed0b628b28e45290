"""
Shared pytest fixtures and configuration for pod-spine tests.

This module provides:
- Quiet, resettable structlog configuration for test isolation
- A fake container runtime (``fake_runtime``) behind a shell wrapper
- A ``ContainerConfiguration`` pointing at the fake runtime and a
  per-test store directory

Usage:
    def test_start(supervisor, fake_runtime):
        handle = supervisor.start(SPEC)
        assert fake_runtime.container(handle.name)["status"] == "running"
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from podspine.supervisor.config import ContainerConfiguration
from podspine.supervisor.specs import ContainerSpec
from podspine.supervisor.supervisor import ContainerSupervisor
from tests._support.fake_runtime import FakeRuntime, write_wrapper


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests that drive the fake runtime as integration tests."""
    for item in items:
        fixtures = getattr(item, "fixturenames", ())
        if "fake_runtime" in fixtures:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(autouse=True)
def quiet_structlog() -> Iterator[None]:
    """Route structlog into a no-op logger and reset it after each test."""
    structlog.configure(
        processors=[structlog.processors.KeyValueRenderer()],
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    yield
    structlog.reset_defaults()


# =============================================================================
# Fake runtime
# =============================================================================


@pytest.fixture
def fake_runtime(tmp_path: Path) -> FakeRuntime:
    """State directory of a fake runtime; ``.executable`` is its wrapper."""
    runtime = FakeRuntime(tmp_path / "runtime-state")
    runtime.executable = str(write_wrapper(tmp_path, runtime.state_dir))
    return runtime


@pytest.fixture
def config(fake_runtime: FakeRuntime, tmp_path: Path) -> ContainerConfiguration:
    return ContainerConfiguration(
        project_name="unit",
        executable=fake_runtime.executable,
        startup_wait_seconds=10,
        store_directory=tmp_path / "stores",
    )


@pytest.fixture
def supervisor(config: ContainerConfiguration) -> Iterator[ContainerSupervisor]:
    sup = ContainerSupervisor.open(config)
    try:
        yield sup
    finally:
        sup.close()


@pytest.fixture
def spec() -> ContainerSpec:
    return ContainerSpec(registry="docker.io", name="library/alpine", version="3.20")
