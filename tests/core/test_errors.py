"""Tests for podspine.core.errors module."""

import pytest

from podspine.core.errors import (
    AggregateTeardownError,
    ContainerStartError,
    ErrorCategory,
    ExceptionTracker,
    NonZeroExitError,
    PodSpineError,
    ReadinessTimeoutError,
    RuntimeUnsupportedError,
    SpawnError,
    StoreError,
    StoreIncompatibleError,
    format_command,
)


class TestFormatCommand:
    def test_plain_arguments(self):
        assert format_command(["podman", "ps", "-a"]) == "podman ps -a"

    def test_quotes_arguments_with_spaces_and_templates(self):
        rendered = format_command(["podman", "ps", "--format", "{{.Status}}", "a b"])
        assert rendered == "podman ps --format '{{.Status}}' 'a b'"


class TestPodSpineError:
    def test_default_category_is_internal(self):
        error = PodSpineError("boom")
        assert error.category == ErrorCategory.INTERNAL
        assert str(error) == "boom"

    def test_with_context_is_fluent(self):
        error = PodSpineError("boom").with_context(container="c1")
        assert error.context == {"container": "c1"}

    def test_cause_is_chained(self):
        cause = OSError("nope")
        error = PodSpineError("boom", cause=cause)
        assert error.__cause__ is cause
        assert error.to_dict()["cause"] == "nope"

    def test_to_dict(self):
        error = StoreError("locked", context={"path": "/tmp/x.db"})
        data = error.to_dict()
        assert data["error_type"] == "StoreError"
        assert data["category"] == "STORE"
        assert data["context"] == {"path": "/tmp/x.db"}


class TestProcessErrors:
    def test_spawn_error_includes_command(self):
        error = SpawnError("Could not start run", command=["podman", "run", "x"])
        assert error.category == ErrorCategory.PROCESS
        assert "podman run x" in str(error)
        assert error.command == ["podman", "run", "x"]

    def test_non_zero_exit_includes_command_and_code(self):
        error = NonZeroExitError(["podman", "pod", "rm", "-f", "p"], 2)
        assert error.exit_code == 2
        assert "(2)" in str(error)
        assert "podman pod rm -f p" in str(error)
        assert error.context["exit_code"] == 2


class TestReadinessTimeoutError:
    def test_is_builtin_timeout(self):
        error = ReadinessTimeoutError("c1", 2.5, ["podman", "run", "img"], phase="readiness")
        assert isinstance(error, TimeoutError)
        assert isinstance(error, PodSpineError)
        assert error.category == ErrorCategory.TIMEOUT

    def test_message(self):
        error = ReadinessTimeoutError("c1", 2.5, ["podman", "run", "img"], phase="liveness")
        assert "2.5s" in str(error)
        assert "liveness" in str(error)
        assert "podman run img" in str(error)

    def test_can_be_caught_as_timeout(self):
        with pytest.raises(TimeoutError):
            raise ReadinessTimeoutError("c1", 1.0)


class TestExceptionTracker:
    def test_empty_tracker_does_not_raise(self):
        tracker = ExceptionTracker()
        tracker.raise_if_necessary()
        assert not tracker
        assert len(tracker) == 0

    def test_raises_aggregate_with_all_errors(self):
        tracker = ExceptionTracker()
        first = ContainerStartError("first")
        second = StoreError("second")
        tracker.add(first)
        tracker.add(second)

        with pytest.raises(AggregateTeardownError) as info:
            tracker.raise_if_necessary("close failed")

        assert info.value.errors == [first, second]
        assert info.value.category == ErrorCategory.TEARDOWN
        assert info.value.__cause__ is first
        assert str(info.value).startswith("close failed: ")
        assert "second" in str(info.value)

    def test_errors_is_a_copy(self):
        tracker = ExceptionTracker()
        tracker.add(ValueError("x"))
        tracker.errors.clear()
        assert len(tracker) == 1


class TestStoreAndConfigErrors:
    def test_incompatible_store(self):
        error = StoreIncompatibleError("/tmp/p.db", found=3, supported=1)
        assert isinstance(error, StoreError)
        assert error.found == 3
        assert "supports up to 1" in str(error)

    def test_runtime_unsupported_carries_disabled_flag(self):
        error = RuntimeUnsupportedError("podman", disabled=True)
        assert error.disabled is True
        assert error.category == ErrorCategory.CONFIG
