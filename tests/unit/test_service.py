from __future__ import annotations

import asyncio

import pytest

from sbx_server.app.errors import (
    CloneFailedError,
    RuntimeClientError,
    ServicesNotRunningError,
    WorkspaceNotFoundError,
    WorkspaceStateError,
)
from sbx_server.app.models import WorkspaceCreateRequest, WorkspaceState
from sbx_server.app.workspaces.service import WorkspaceService

TOKEN = "ghp_tok"


class _RecordingStore:
    """Wraps a store and records every status it is asked to persist."""

    def __init__(self, inner) -> None:
        self._inner = inner
        self.statuses = []

    async def create_workspace(self, record):
        self.statuses.append(record.status)
        return await self._inner.create_workspace(record)

    async def update_workspace(self, workspace_id, **changes):
        if "status" in changes:
            self.statuses.append(changes["status"])
        return await self._inner.update_workspace(workspace_id, **changes)

    def __getattr__(self, name):
        return getattr(self._inner, name)


def _req(**kw) -> WorkspaceCreateRequest:
    data = {"name": "demo", "repo_url": "https://github.com/acme/app.git", "upstream_token": TOKEN}
    data.update(kw)
    return WorkspaceCreateRequest(**data)


@pytest.fixture
def service(runtime, store, settings) -> WorkspaceService:
    return WorkspaceService(store, runtime, settings)


@pytest.mark.unit
def test_create_walks_pending_starting_running(runtime, store, settings) -> None:
    recording = _RecordingStore(store)
    svc = WorkspaceService(recording, runtime, settings)

    record = asyncio.run(svc.create("owner-1", _req()))
    assert recording.statuses == [WorkspaceState.pending, WorkspaceState.starting, WorkspaceState.running]
    assert record.status is WorkspaceState.running
    assert record.container_id == runtime.containers[f"agent-{record.id}"].id
    assert record.editor_password
    assert runtime.containers[f"editor-{record.id}"].spec.environment["PASSWORD"] == record.editor_password


@pytest.mark.unit
def test_clone_failure_leaves_error_record_with_redacted_message(service, runtime, store) -> None:
    record = asyncio.run(service.register("owner-1", _req()))
    runtime.exit_codes[f"init-{record.id}"] = 128
    runtime.logs[f"init-{record.id}"] = f"fatal: https://{TOKEN}@github.com/acme/app.git not found"

    with pytest.raises(CloneFailedError):
        asyncio.run(service.provision(record, TOKEN))

    stored = asyncio.run(store.get_workspace(record.id))
    assert stored.status is WorkspaceState.error
    assert stored.error_message.startswith("Failed to clone repository. Exit code: 128")
    assert TOKEN not in stored.error_message
    assert runtime.resources_for(record.id) == []


@pytest.mark.unit
def test_stop_and_start_update_status(service, runtime) -> None:
    record = asyncio.run(service.create("owner-1", _req()))

    stopped = asyncio.run(service.stop("owner-1", record.id))
    assert stopped.status is WorkspaceState.stopped
    assert runtime.containers[f"agent-{record.id}"].status == "exited"

    started = asyncio.run(service.start("owner-1", record.id))
    assert started.status is WorkspaceState.running
    _, containers = asyncio.run(service.get("owner-1", record.id))
    assert containers == {"agent": "running", "editor": "running"}


@pytest.mark.unit
def test_start_refuses_a_rolled_back_workspace(service, runtime, store) -> None:
    record = asyncio.run(service.register("owner-1", _req()))
    runtime.exit_codes[f"init-{record.id}"] = 1
    with pytest.raises(CloneFailedError):
        asyncio.run(service.provision(record, TOKEN))
    assert runtime.resources_for(record.id) == []

    with pytest.raises(WorkspaceStateError):
        asyncio.run(service.start("owner-1", record.id))

    stored = asyncio.run(store.get_workspace(record.id))
    assert stored.status is WorkspaceState.error
    assert runtime.resources_for(record.id) == []


@pytest.mark.unit
def test_start_refuses_pending_workspace(service, store) -> None:
    record = asyncio.run(service.register("owner-1", _req()))
    with pytest.raises(WorkspaceStateError):
        asyncio.run(service.start("owner-1", record.id))
    assert asyncio.run(store.get_workspace(record.id)).status is WorkspaceState.pending


@pytest.mark.unit
def test_start_with_missing_containers_moves_record_to_error(service, runtime, store) -> None:
    record = asyncio.run(service.create("owner-1", _req()))
    asyncio.run(service.stop("owner-1", record.id))
    del runtime.containers[f"agent-{record.id}"]

    with pytest.raises(ServicesNotRunningError) as excinfo:
        asyncio.run(service.start("owner-1", record.id))
    assert excinfo.value.statuses == {"agent": None, "editor": "running"}

    stored = asyncio.run(store.get_workspace(record.id))
    assert stored.status is WorkspaceState.error
    assert stored.error_message == "Services not running after start: agent=absent, editor=running"


@pytest.mark.unit
def test_delete_is_idempotent(service, runtime, store) -> None:
    record = asyncio.run(service.create("owner-1", _req()))

    assert asyncio.run(service.delete("owner-1", record.id)) is True
    assert runtime.resources_for(record.id) == []
    with pytest.raises(WorkspaceNotFoundError):
        asyncio.run(store.get_workspace(record.id))

    assert asyncio.run(service.delete("owner-1", record.id)) is False


@pytest.mark.unit
def test_incomplete_teardown_keeps_record_in_error(service, runtime, store) -> None:
    record = asyncio.run(service.create("owner-1", _req()))
    runtime.fail("remove_network", f"workspace-{record.id}", RuntimeClientError("endpoints attached"))

    with pytest.raises(RuntimeClientError):
        asyncio.run(service.delete("owner-1", record.id))

    stored = asyncio.run(store.get_workspace(record.id))
    assert stored.status is WorkspaceState.error
    assert f"network workspace-{record.id}" in stored.error_message


@pytest.mark.unit
def test_other_owners_cannot_see_or_touch_a_workspace(service) -> None:
    record = asyncio.run(service.create("owner-1", _req()))

    with pytest.raises(WorkspaceNotFoundError):
        asyncio.run(service.get("intruder", record.id))
    with pytest.raises(WorkspaceNotFoundError):
        asyncio.run(service.stop("intruder", record.id))
    assert asyncio.run(service.delete("intruder", record.id)) is False
    assert asyncio.run(service.list_workspaces("intruder")) == []
    assert [r.id for r in asyncio.run(service.list_workspaces("owner-1"))] == [record.id]


@pytest.mark.unit
def test_urls_follow_hostname_scheme(service, settings) -> None:
    assert service.urls("abc") == {
        "agent": "http://agent-abc.sbx.test",
        "preview": "http://preview-abc.sbx.test",
        "editor": "http://editor-abc.sbx.test",
    }
