"""Tests for crash recovery: cleaning up after a previous run."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from podspine.core.errors import AggregateTeardownError
from podspine.store import AuditCode, ContainerRecord, ContainerStore
from podspine.supervisor.supervisor import ContainerSupervisor


def _seed(config, containers=(), pods=()) -> None:
    with ContainerStore.open(config.store_path) as store:
        for pod in pods:
            store.pod_put(pod)
        for name, pod in containers:
            store.container_put(ContainerRecord(name, pod_name=pod))


class TestRecovery:
    def test_removes_leftover_containers_and_pods(self, config, fake_runtime):
        fake_runtime.put_pod("PODSPINE-POD-unit-OLD")
        fake_runtime.put_container("PODSPINE-unit-A", status="running", pod=None, up_at=0)
        fake_runtime.put_container(
            "PODSPINE-unit-B", status="running", pod="PODSPINE-POD-unit-OLD", up_at=0
        )
        _seed(
            config,
            containers=[("PODSPINE-unit-A", None), ("PODSPINE-unit-B", "PODSPINE-POD-unit-OLD")],
            pods=["PODSPINE-POD-unit-OLD"],
        )

        with ContainerSupervisor.open(config) as sup:
            assert sup.store.container_list() == []
            assert sup.store.pod_list() == []

        assert fake_runtime.containers() == {}
        assert fake_runtime.pods() == {}

    def test_records_without_live_containers_are_cleaned(self, config, fake_runtime):
        _seed(config, containers=[("PODSPINE-unit-GONE1", None), ("PODSPINE-unit-GONE2", None)])

        with ContainerSupervisor.open(config) as sup:
            assert sup.store.container_list() == []

    def test_recovery_is_idempotent(self, config, fake_runtime):
        _seed(config, containers=[("PODSPINE-unit-GONE", None)])

        with ContainerSupervisor.open(config) as sup:
            sup.cleanup_old_containers_and_pods()
            sup.cleanup_old_containers_and_pods()
            assert sup.store.container_list() == []

    def test_issues_stop_then_remove(self, config, fake_runtime):
        _seed(config, containers=[("PODSPINE-unit-A", None)])

        ContainerSupervisor.open(config).close()

        calls = [c for c in fake_runtime.calls() if "PODSPINE-unit-A" in c]
        assert calls == [
            ["stop", "--ignore", "--time", "1", "PODSPINE-unit-A"],
            ["rm", "-f", "--volumes", "--ignore", "PODSPINE-unit-A"],
        ]

    def test_aggregates_failures_and_continues(self, config, fake_runtime):
        names = ["PODSPINE-unit-1", "PODSPINE-unit-2", "PODSPINE-unit-3"]
        _seed(config, containers=[(n, None) for n in names])
        sup = ContainerSupervisor.open(config, recover=False)
        real_stop = sup._execute_container_stop

        def stop(name, context):
            if name == "PODSPINE-unit-2":
                raise RuntimeError(f"cannot stop {name}")
            real_stop(name, context)

        try:
            with patch.object(sup, "_execute_container_stop", side_effect=stop):
                with pytest.raises(AggregateTeardownError) as info:
                    sup.cleanup_old_containers_and_pods()

            assert len(info.value.errors) == 1
            assert "PODSPINE-unit-2" in str(info.value.errors[0])
            assert sup.store.container_list() == [ContainerRecord("PODSPINE-unit-2")]
        finally:
            sup.close()

    def test_failed_recovery_closes_supervisor(self, config, fake_runtime):
        # The pod does not exist in the runtime, so ``pod rm -f`` fails.
        _seed(config, pods=["PODSPINE-POD-unit-MISSING"])
        closed = []

        with pytest.raises(AggregateTeardownError):
            ContainerSupervisor.open(config, on_close=closed.append)

        assert len(closed) == 1
        assert closed[0].closed

    def test_recovery_is_audited(self, config, fake_runtime):
        _seed(config, containers=[("PODSPINE-unit-A", None)])

        with ContainerSupervisor.open(config) as sup:
            events = sup.store.audit_list()

        recovery = [e for e in events if e.code == AuditCode.RECOVERY_COMPLETE.value]
        assert len(recovery) == 1
        assert "containers=1/1" in recovery[0].text
        assert "failures=0" in recovery[0].text

    def test_other_projects_are_untouched(self, config, fake_runtime):
        other = config.model_copy(update={"project_name": "other"})
        _seed(other, containers=[("PODSPINE-other-KEEP", None)])

        ContainerSupervisor.open(config).close()

        with ContainerStore.open(other.store_path) as store:
            assert store.container_list() == [ContainerRecord("PODSPINE-other-KEEP")]
