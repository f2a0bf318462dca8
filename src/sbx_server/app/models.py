from __future__ import annotations

"""
Pydantic models for the SandboxManager service.

These models define:
- Workspace records and their lifecycle states
- Provider / model / skill configuration consumed at provisioning time
- API request/response contracts

Notes:
- Validation is conservative and user-friendly.
- Secrets (provider api keys, upstream tokens) are never echoed back in API
  responses. The editor passphrase is returned only in the owner-scoped
  WorkspaceDetail, never in create or list responses.
"""

import enum
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SLUG_RE = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")
_ENV_VAR_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------
# Enums and simple types
# -----------------------

class WorkspaceState(str, enum.Enum):
    pending = "pending"
    starting = "starting"
    running = "running"
    stopped = "stopped"
    error = "error"


class ServiceName(str, enum.Enum):
    agent = "agent"
    editor = "editor"


# -----------------------
# Workspace record
# -----------------------

class WorkspaceRecord(BaseModel):
    """
    Persistent workspace record as held by the record store.
    """

    id: str
    owner_id: str
    name: str
    repo_url: str
    branch: str = "main"
    status: WorkspaceState = WorkspaceState.pending
    container_id: Optional[str] = None
    editor_password: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# -----------------------
# Provider / model / skill configuration
# -----------------------

class ModelRecord(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    name: Optional[str] = None
    is_enabled: bool = True
    is_default: bool = False
    options: Dict[str, Any] = Field(default_factory=dict)


class ProviderRecord(BaseModel):
    """
    An LLM provider configured by the owner.

    `env_var_name` is the variable under which `api_key` is exposed inside the
    agent container. Local providers (e.g., Ollama) may have neither.
    """

    provider_id: str
    name: Optional[str] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    env_var_name: Optional[str] = None
    npm: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    is_enabled: bool = True
    models: List[ModelRecord] = Field(default_factory=list)

    @field_validator("provider_id")
    def v_provider_id(cls, v: str) -> str:
        v = (v or "").strip()
        if not v or len(v) > 64 or not SLUG_RE.match(v):
            raise ValueError("provider_id must be lowercase alphanumeric with single hyphen separators (1-64 chars)")
        return v

    @field_validator("env_var_name")
    def v_env_var_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        if not _ENV_VAR_RE.match(v):
            raise ValueError("env_var_name must be a valid environment variable name")
        return v


class SkillRecord(BaseModel):
    """
    A skill document to be materialized inside the agent's config directory.

    When `content` is empty the SKILL.md document is rendered from the
    structured fields (see agent_config.render_skill_document).
    """

    name: str
    description: str = ""
    content: str = ""
    body: str = ""
    license: Optional[str] = None
    compatibility: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("name")
    def v_name(cls, v: str) -> str:
        v = (v or "").strip()
        if not v or len(v) > 64 or not SLUG_RE.match(v):
            raise ValueError("skill name must be lowercase alphanumeric with single hyphen separators (1-64 chars)")
        return v


class OwnerConfig(BaseModel):
    """
    Everything the provisioner reads from the record store for one owner.
    """

    providers: List[ProviderRecord] = Field(default_factory=list)
    skills: List[SkillRecord] = Field(default_factory=list)


# -----------------------
# API contracts
# -----------------------

class WorkspaceCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    repo_url: str = Field(..., description="HTTPS clone URL of the source repository")
    branch: str = Field("main", description="Branch to check out")
    upstream_token: Optional[str] = Field(
        default=None,
        description="Optional token for the source-code host; embedded in the clone URL and exposed to the agent.",
    )

    @field_validator("repo_url")
    def v_repo_url(cls, v: str) -> str:
        v = (v or "").strip()
        if not v.startswith("https://"):
            raise ValueError("repo_url must be an https:// URL")
        if any(ch.isspace() for ch in v):
            raise ValueError("repo_url must not contain whitespace")
        return v

    @field_validator("branch")
    def v_branch(cls, v: str) -> str:
        v = (v or "").strip() or "main"
        if v.startswith("-") or any(ch.isspace() for ch in v):
            raise ValueError("branch must be a plain ref name")
        return v


class ContainerState(BaseModel):
    name: str
    status: str = Field(..., description="Docker container status, or 'absent'")
    running: bool = False


class WorkspaceView(BaseModel):
    """
    Workspace record as returned to API clients (no secrets).
    """

    id: str
    name: str
    repo_url: str
    branch: str
    status: WorkspaceState
    container_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: WorkspaceRecord) -> "WorkspaceView":
        return cls(
            id=record.id,
            name=record.name,
            repo_url=record.repo_url,
            branch=record.branch,
            status=record.status,
            container_id=record.container_id,
            error_message=record.error_message,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class WorkspaceDetail(BaseModel):
    workspace: WorkspaceView
    containers: Dict[str, ContainerState] = Field(default_factory=dict)
    editor_password: Optional[str] = Field(default=None, description="Passphrase for the editor service login")


class WorkspaceListResponse(BaseModel):
    workspaces: List[WorkspaceView] = Field(default_factory=list)


class WorkspaceDeleteResponse(BaseModel):
    workspace_id: str
    deleted: bool = True


class WorkspaceUrls(BaseModel):
    agent: str
    preview: str
    editor: str


class HealthResponse(BaseModel):
    ready: bool


__all__ = [
    "SLUG_RE",
    "WorkspaceState",
    "ServiceName",
    "WorkspaceRecord",
    "ModelRecord",
    "ProviderRecord",
    "SkillRecord",
    "OwnerConfig",
    "WorkspaceCreateRequest",
    "ContainerState",
    "WorkspaceView",
    "WorkspaceDetail",
    "WorkspaceListResponse",
    "WorkspaceDeleteResponse",
    "WorkspaceUrls",
    "HealthResponse",
]
