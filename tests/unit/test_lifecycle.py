from __future__ import annotations

import asyncio

import pytest

from sbx_server.app.errors import RuntimeClientError, RuntimeUnavailableError
from sbx_server.app.workspaces.lifecycle import LifecycleController, TeardownOutcome
from sbx_server.app.workspaces.provisioner import ProvisionRequest, WorkspaceProvisioner


def _provision(runtime, store, settings, wid: str = "w1") -> None:
    prov = WorkspaceProvisioner(runtime, store, settings)
    asyncio.run(
        prov.provision(
            ProvisionRequest(
                workspace_id=wid,
                owner_id="o",
                repo_url="https://example.com/r.git",
                editor_password="pw",
            )
        )
    )


@pytest.fixture
def controller(runtime, settings) -> LifecycleController:
    return LifecycleController(runtime, stop_timeout=settings.stop_timeout_seconds)


@pytest.mark.unit
def test_remove_is_idempotent(controller, runtime, store, settings) -> None:
    _provision(runtime, store, settings)

    first = asyncio.run(controller.remove("w1"))
    assert first.ok
    assert runtime.resources_for("w1") == []
    assert first.outcome_of("agent-w1") is TeardownOutcome.removed
    assert first.outcome_of("workspace-w1") is TeardownOutcome.removed
    assert first.outcome_of("init-w1") is TeardownOutcome.absent

    second = asyncio.run(controller.remove("w1"))
    assert second.ok
    assert {s.outcome for s in second.steps} == {TeardownOutcome.absent}
    assert runtime.resources_for("w1") == []


@pytest.mark.unit
def test_remove_of_never_created_workspace_reports_all_absent(controller) -> None:
    report = asyncio.run(controller.remove("ghost"))
    assert report.ok
    assert [s.name for s in report.steps] == [
        "editor-ghost",
        "agent-ghost",
        "init-ghost",
        "workspace-ghost",
        "workspace-ghost-data",
        "workspace-ghost-agent-state",
    ]


@pytest.mark.unit
def test_teardown_removes_containers_before_network_and_volumes(controller, runtime, store, settings) -> None:
    _provision(runtime, store, settings)
    runtime.calls.clear()
    asyncio.run(controller.remove("w1"))
    removes = [(op, name) for op, name in runtime.calls if op.startswith("remove_")]
    ops = [op for op, _ in removes]
    last_container = max(i for i, op in enumerate(ops) if op == "remove_container")
    assert last_container < ops.index("remove_network") < ops.index("remove_volume")


@pytest.mark.unit
def test_failed_step_is_reported_and_others_still_run(controller, runtime, store, settings) -> None:
    _provision(runtime, store, settings)
    runtime.fail("remove_volume", "workspace-w1-data", RuntimeClientError("disk busy"))

    report = asyncio.run(controller.cleanup("w1"))
    assert not report.ok
    assert [s.name for s in report.failures] == ["workspace-w1-data"]
    assert report.outcome_of("workspace-w1-agent-state") is TeardownOutcome.removed
    assert runtime.resources_for("w1") == ["workspace-w1-data"]


@pytest.mark.unit
def test_cleanup_does_not_stop_first(controller, runtime, store, settings) -> None:
    _provision(runtime, store, settings)
    runtime.calls.clear()
    asyncio.run(controller.cleanup("w1"))
    assert not any(op == "stop_container" for op, _ in runtime.calls)


@pytest.mark.unit
def test_stop_and_start_toggle_both_services(controller, runtime, store, settings) -> None:
    _provision(runtime, store, settings)

    asyncio.run(controller.stop("w1"))
    assert asyncio.run(controller.status("w1")) == {"agent": "exited", "editor": "exited"}

    asyncio.run(controller.start("w1"))
    assert asyncio.run(controller.status("w1")) == {"agent": "running", "editor": "running"}


@pytest.mark.unit
def test_stop_tolerates_missing_containers(controller, runtime, store, settings) -> None:
    asyncio.run(controller.stop("ghost"))

    _provision(runtime, store, settings)
    del runtime.containers["editor-w1"]
    asyncio.run(controller.stop("w1"))
    assert asyncio.run(controller.status("w1")) == {"agent": "exited", "editor": None}


@pytest.mark.unit
def test_stop_escalates_only_when_both_fail(controller, runtime, store, settings) -> None:
    _provision(runtime, store, settings)

    runtime.fail("stop_container", "agent-w1", RuntimeClientError("daemon hiccup"))
    asyncio.run(controller.stop("w1"))

    runtime.fail("stop_container", "editor-w1", RuntimeClientError("daemon hiccup"))
    with pytest.raises(RuntimeUnavailableError):
        asyncio.run(controller.stop("w1"))


@pytest.mark.unit
def test_remove_proceeds_when_stop_fails(controller, runtime, store, settings) -> None:
    _provision(runtime, store, settings)
    runtime.fail("stop_container", "agent-w1", RuntimeClientError("x"))
    runtime.fail("stop_container", "editor-w1", RuntimeClientError("x"))
    report = asyncio.run(controller.remove("w1"))
    assert report.ok
    assert runtime.resources_for("w1") == []


@pytest.mark.unit
def test_discover_lists_labeled_resources(controller, runtime, store, settings) -> None:
    _provision(runtime, store, settings)
    _provision(runtime, store, settings, wid="w2")
    found = asyncio.run(controller.discover("w1"))
    assert found == {
        "containers": ["agent-w1", "editor-w1"],
        "networks": ["workspace-w1"],
        "volumes": ["workspace-w1-agent-state", "workspace-w1-data"],
    }
