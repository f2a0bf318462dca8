from __future__ import annotations

"""
SandboxManager router: workspace create, inspect, start/stop, delete, health
and URLs.

Design:
- Thin HTTP layer over WorkspaceService; no runtime calls here.
- API key auth enforced via router dependency; the caller's identity comes from
  the owner header and scopes every lookup.
- Domain exceptions are mapped onto HTTPException in one place (_to_http).
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from sbx_server.app import models as m
from sbx_server.app.deps import enforce_api_key, get_owner_id, get_workspace_service
from sbx_server.app.errors import (
    ImagePullError,
    ProvisioningError,
    RuntimeClientError,
    RuntimeUnavailableError,
    SandboxError,
    WorkspaceNotFoundError,
    WorkspaceStateError,
)
from sbx_server.app.workspaces.service import WorkspaceService

logger = logging.getLogger("sandbox_manager")

router = APIRouter(dependencies=[Depends(enforce_api_key)])

_WSID = Path(..., min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_-]+$")


def _to_http(exc: SandboxError, workspace_id: Optional[str] = None) -> HTTPException:
    if isinstance(exc, WorkspaceNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found")
    if isinstance(exc, WorkspaceStateError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, RuntimeUnavailableError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(exc, (ProvisioningError, ImagePullError, RuntimeClientError)):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail: Dict[str, object] = {"error": exc.__class__.__name__, "message": str(exc)}
    if workspace_id:
        detail["workspace_id"] = workspace_id
    if isinstance(exc, ImagePullError):
        detail["failures"] = exc.failures
    return HTTPException(status_code=code, detail=detail)


def _containers(statuses: Dict[str, Optional[str]], workspace_id: str) -> Dict[str, m.ContainerState]:
    return {
        svc: m.ContainerState(
            name=f"{svc}-{workspace_id}",
            status=state or "absent",
            running=(state == "running"),
        )
        for svc, state in statuses.items()
    }


@router.post(
    "",
    response_model=m.WorkspaceView,
    status_code=status.HTTP_201_CREATED,
    summary="Create and provision a workspace",
)
async def create_workspace(
    payload: m.WorkspaceCreateRequest,
    owner_id: str = Depends(get_owner_id),
    service: WorkspaceService = Depends(get_workspace_service),
) -> m.WorkspaceView:
    record = await service.register(owner_id, payload)
    try:
        record = await service.provision(record, payload.upstream_token)
    except SandboxError as exc:
        raise _to_http(exc, record.id)
    return m.WorkspaceView.from_record(record)


@router.get("", response_model=m.WorkspaceListResponse, summary="List the caller's workspaces")
async def list_workspaces(
    owner_id: str = Depends(get_owner_id),
    service: WorkspaceService = Depends(get_workspace_service),
) -> m.WorkspaceListResponse:
    records = await service.list_workspaces(owner_id)
    return m.WorkspaceListResponse(workspaces=[m.WorkspaceView.from_record(r) for r in records])


@router.get("/{workspace_id}", response_model=m.WorkspaceDetail, summary="Workspace record and container status")
async def get_workspace(
    workspace_id: str = _WSID,
    owner_id: str = Depends(get_owner_id),
    service: WorkspaceService = Depends(get_workspace_service),
) -> m.WorkspaceDetail:
    try:
        record, statuses = await service.get(owner_id, workspace_id)
    except SandboxError as exc:
        raise _to_http(exc, workspace_id)
    return m.WorkspaceDetail(
        workspace=m.WorkspaceView.from_record(record),
        containers=_containers(statuses, workspace_id),
        editor_password=record.editor_password,
    )


@router.post("/{workspace_id}/stop", response_model=m.WorkspaceView, summary="Stop both service containers")
async def stop_workspace(
    workspace_id: str = _WSID,
    owner_id: str = Depends(get_owner_id),
    service: WorkspaceService = Depends(get_workspace_service),
) -> m.WorkspaceView:
    try:
        record = await service.stop(owner_id, workspace_id)
    except SandboxError as exc:
        raise _to_http(exc, workspace_id)
    return m.WorkspaceView.from_record(record)


@router.post("/{workspace_id}/start", response_model=m.WorkspaceView, summary="Start both service containers")
async def start_workspace(
    workspace_id: str = _WSID,
    owner_id: str = Depends(get_owner_id),
    service: WorkspaceService = Depends(get_workspace_service),
) -> m.WorkspaceView:
    try:
        record = await service.start(owner_id, workspace_id)
    except SandboxError as exc:
        raise _to_http(exc, workspace_id)
    return m.WorkspaceView.from_record(record)


@router.delete("/{workspace_id}", response_model=m.WorkspaceDeleteResponse, summary="Remove a workspace (idempotent)")
async def delete_workspace(
    workspace_id: str = _WSID,
    owner_id: str = Depends(get_owner_id),
    service: WorkspaceService = Depends(get_workspace_service),
) -> m.WorkspaceDeleteResponse:
    try:
        deleted = await service.delete(owner_id, workspace_id)
    except SandboxError as exc:
        raise _to_http(exc, workspace_id)
    return m.WorkspaceDeleteResponse(workspace_id=workspace_id, deleted=deleted)


@router.get("/{workspace_id}/health", response_model=m.HealthResponse, summary="Probe a service for readiness")
async def workspace_health(
    workspace_id: str = _WSID,
    service_name: m.ServiceName = Query(m.ServiceName.agent, alias="service"),
    owner_id: str = Depends(get_owner_id),
    service: WorkspaceService = Depends(get_workspace_service),
) -> m.HealthResponse:
    try:
        ready = await service.health(owner_id, workspace_id, service_name.value)
    except SandboxError as exc:
        raise _to_http(exc, workspace_id)
    return m.HealthResponse(ready=ready)


@router.get("/{workspace_id}/urls", response_model=m.WorkspaceUrls, summary="Public URLs of the workspace services")
async def workspace_urls(
    workspace_id: str = _WSID,
    owner_id: str = Depends(get_owner_id),
    service: WorkspaceService = Depends(get_workspace_service),
) -> m.WorkspaceUrls:
    try:
        urls = await service.workspace_urls(owner_id, workspace_id)
    except SandboxError as exc:
        raise _to_http(exc, workspace_id)
    return m.WorkspaceUrls(**urls)
