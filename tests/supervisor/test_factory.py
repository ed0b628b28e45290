"""Tests for SupervisorFactory and runtime support detection."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from podspine.core.errors import RuntimeUnsupportedError, SpawnError
from podspine.supervisor.config import SupervisorScope
from podspine.supervisor.factory import (
    ContainerBackend,
    SupervisorFactory,
    parse_version_output,
)


class TestParseVersionOutput:
    def test_client_version(self):
        version, raw = parse_version_output(['{"Client": {"Version": "4.9.3"}}'])
        assert version == "4.9.3"
        assert raw["Client"]["Version"] == "4.9.3"

    def test_multiline_json(self):
        lines = ["{", '  "Client": {', '    "Version": "27.1.1"', "  }", "}"]
        assert parse_version_output(lines)[0] == "27.1.1"

    def test_top_level_version(self):
        assert parse_version_output(['{"Version": "3.4.0"}'])[0] == "3.4.0"

    def test_non_json_falls_back_to_first_line(self):
        version, raw = parse_version_output(["", "podman version 4.0.0", "extra"])
        assert version == "podman version 4.0.0"
        assert raw == {}

    def test_empty_output(self):
        assert parse_version_output([])[0] == "unknown"


class TestIsSupported:
    def test_fake_runtime_is_supported(self, config, fake_runtime):
        backend = SupervisorFactory().is_supported(config)
        assert backend == ContainerBackend(
            executable=fake_runtime.executable, name="fake-podman", version="5.0.0-fake"
        )

    def test_missing_executable(self, config, tmp_path):
        missing = config.model_copy(update={"executable": str(tmp_path / "nope")})
        assert SupervisorFactory().is_supported(missing) is None

    def test_non_zero_exit(self, config):
        launcher = MagicMock()
        launcher.run.return_value = 1
        assert SupervisorFactory(launcher=launcher).is_supported(config) is None

    def test_spawn_error(self, config):
        launcher = MagicMock()
        launcher.run.side_effect = SpawnError("no", command=["podman"])
        assert SupervisorFactory(launcher=launcher).is_supported(config) is None


class TestCreate:
    def test_create_tracks_live_supervisors(self, config, fake_runtime):
        factory = SupervisorFactory()
        first = factory.create(config, SupervisorScope.PER_CLASS)
        second = factory.create(config, SupervisorScope.PER_TEST)

        assert factory.live_supervisors() == [first, second]
        assert first.scope == SupervisorScope.PER_CLASS

        first.close()
        assert factory.live_supervisors() == [second]
        factory.close_all()
        assert factory.live_supervisors() == []
        assert second.closed

    @pytest.mark.parametrize("disabled", [True, False])
    def test_unsupported_runtime(self, config, tmp_path, disabled):
        missing = config.model_copy(
            update={"executable": str(tmp_path / "nope"), "disabled_if_unsupported": disabled}
        )
        with pytest.raises(RuntimeUnsupportedError) as info:
            SupervisorFactory().create(missing)
        assert info.value.disabled is disabled
        assert not missing.store_path.exists()
