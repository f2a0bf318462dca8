"""
Record store for workspace records and per-owner provider/skill config.

RecordStore is the seam to whatever database backs a deployment.
InMemoryRecordStore serves single-process deployments and tests; records are
copied on the way in and out so callers never share mutable state with it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sbx_server.app.errors import WorkspaceNotFoundError
from sbx_server.app.models import OwnerConfig, WorkspaceRecord

__all__ = ["RecordStore", "InMemoryRecordStore"]


class RecordStore(ABC):
    @abstractmethod
    async def create_workspace(self, record: WorkspaceRecord) -> WorkspaceRecord: ...

    @abstractmethod
    async def get_workspace(self, workspace_id: str, owner_id: Optional[str] = None) -> WorkspaceRecord:
        """
        Raises:
            WorkspaceNotFoundError when absent or owned by someone else.
        """

    @abstractmethod
    async def list_workspaces(self, owner_id: str) -> List[WorkspaceRecord]: ...

    @abstractmethod
    async def update_workspace(self, workspace_id: str, **changes: Any) -> WorkspaceRecord: ...

    @abstractmethod
    async def delete_workspace(self, workspace_id: str) -> None: ...

    @abstractmethod
    async def get_owner_config(self, owner_id: str) -> OwnerConfig: ...


class InMemoryRecordStore(RecordStore):
    def __init__(self) -> None:
        self._workspaces: Dict[str, WorkspaceRecord] = {}
        self._owner_configs: Dict[str, OwnerConfig] = {}

    async def create_workspace(self, record: WorkspaceRecord) -> WorkspaceRecord:
        if record.id in self._workspaces:
            raise ValueError(f"Workspace already exists: {record.id}")
        self._workspaces[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def get_workspace(self, workspace_id: str, owner_id: Optional[str] = None) -> WorkspaceRecord:
        record = self._workspaces.get(workspace_id)
        if record is None or (owner_id is not None and record.owner_id != owner_id):
            raise WorkspaceNotFoundError(workspace_id)
        return record.model_copy(deep=True)

    async def list_workspaces(self, owner_id: str) -> List[WorkspaceRecord]:
        found = [r for r in self._workspaces.values() if r.owner_id == owner_id]
        return [r.model_copy(deep=True) for r in sorted(found, key=lambda r: r.created_at, reverse=True)]

    async def update_workspace(self, workspace_id: str, **changes: Any) -> WorkspaceRecord:
        record = self._workspaces.get(workspace_id)
        if record is None:
            raise WorkspaceNotFoundError(workspace_id)
        changes.setdefault("updated_at", datetime.now(timezone.utc))
        updated = record.model_copy(update=changes, deep=True)
        self._workspaces[workspace_id] = updated
        return updated.model_copy(deep=True)

    async def delete_workspace(self, workspace_id: str) -> None:
        self._workspaces.pop(workspace_id, None)

    async def get_owner_config(self, owner_id: str) -> OwnerConfig:
        return (self._owner_configs.get(owner_id) or OwnerConfig()).model_copy(deep=True)

    def set_owner_config(self, owner_id: str, config: OwnerConfig) -> None:
        self._owner_configs[owner_id] = config.model_copy(deep=True)
