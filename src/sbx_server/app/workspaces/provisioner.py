from __future__ import annotations

"""
Workspace provisioner: turns one create request into a running, routable,
isolated pair of service containers.

Pipeline (per workspace):
1. ensure images (parallel pulls, all failures reported together)
2. data + agent-state volumes
3. owner provider/model/skill config from the record store, synthesized
   into the agent config (before the clone, so bad records fail fast)
4. isolated bridge network
5. one-shot init container cloning the repository into the data volume
6. editor settings
7. editor container (created, files uploaded, not started)
8. agent container (created, files uploaded, not started)
9. both containers joined to the shared proxy-facing network
10. both containers started

Any failure from step 2 onwards runs LifecycleController.cleanup() before the
error propagates. No host ports are published; the reverse proxy reaches the
services over the shared network using the routing labels.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import quote

from sbx_server.app.config import ServerConfig
from sbx_server.app.errors import CloneFailedError, ConfigSynthesisError, InitContainerTimeoutError
from sbx_server.app.models import OwnerConfig
from sbx_server.app.runtime.client import ContainerSpec, PullProgress, RuntimeClient
from sbx_server.app.store import RecordStore
from sbx_server.app.workspaces.agent_config import (
    AgentConfig,
    editor_settings_file,
    synthesize_agent_config,
)
from sbx_server.app.workspaces.core import (
    ROLE_AGENT,
    ROLE_AGENT_STATE,
    ROLE_DATA,
    ROLE_EDITOR,
    ROLE_INIT,
    ROLE_NETWORK,
    SERVICE_AGENT,
    SERVICE_EDITOR,
    SERVICE_PREVIEW,
    WorkspaceNames,
    hostname_for,
    resource_labels,
)
from sbx_server.app.workspaces.images import ensure_images
from sbx_server.app.workspaces.launch import LaunchPlan, LaunchStep
from sbx_server.app.workspaces.lifecycle import LifecycleController
from sbx_server.app.workspaces.routing import build_labels, merge_labels

__all__ = [
    "ProvisionRequest",
    "ProvisionResult",
    "WorkspaceProvisioner",
    "clone_url",
    "redact",
]

logger = logging.getLogger("sandbox_manager")

# Paths inside the service images
INIT_CLONE_DIR = "/workspace"
AGENT_WORKSPACE_DIR = "/workspace"
AGENT_HOME = "/root"
AGENT_CONFIG_DIR = "/root/.config/opencode"
AGENT_DATA_DIR = "/root/.local/share/opencode"
EDITOR_HOME = "/home/coder"
EDITOR_WORKSPACE_DIR = "/home/coder/workspace"
EDITOR_SETTINGS_PATH = "/home/coder/.local/share/code-server/User/settings.json"
EDITOR_UID = 1000
EDITOR_GID = 1000


@dataclass(frozen=True)
class ProvisionRequest:
    workspace_id: str
    owner_id: str
    repo_url: str
    editor_password: str
    branch: str = "main"
    upstream_token: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class ProvisionResult:
    workspace_id: str
    agent_container_id: str
    editor_container_id: str
    network: str
    volumes: List[str]
    hostnames: Dict[str, str]


def clone_url(repo_url: str, token: Optional[str]) -> str:
    """
    Embed an upstream token as the userinfo of an https clone URL.
    """
    if not token:
        return repo_url
    if not repo_url.startswith("https://"):
        raise ValueError("Tokens can only be embedded in https:// URLs")
    return f"https://{quote(token, safe='')}@{repo_url[len('https://'):]}"


def redact(text: str, *secrets: Optional[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
            quoted = quote(secret, safe="")
            if quoted != secret:
                text = text.replace(quoted, "***")
    return text


class WorkspaceProvisioner:
    """
    Creates every runtime resource for a workspace, rolling back on failure.
    """

    def __init__(
        self,
        runtime: RuntimeClient,
        store: RecordStore,
        settings: ServerConfig,
        *,
        lifecycle: Optional[LifecycleController] = None,
        pull_progress: Optional[PullProgress] = None,
    ) -> None:
        self.runtime = runtime
        self.store = store
        self.settings = settings
        self.lifecycle = lifecycle or LifecycleController(runtime, stop_timeout=settings.stop_timeout_seconds)
        self.pull_progress = pull_progress

    # --------------------------
    # Public API
    # --------------------------

    async def provision(self, req: ProvisionRequest) -> ProvisionResult:
        """
        Run the full creation pipeline.

        Raises:
            ImagePullError before any resource is created.
            ConfigSynthesisError before the network or clone container exists.
            CloneFailedError / InitContainerTimeoutError / RuntimeClientError after
            rollback was attempted.
        """
        wid = req.workspace_id
        names = WorkspaceNames(wid)
        logger.info("provision ws=%s owner=%s repo=%s branch=%s", wid, req.owner_id, req.repo_url, req.branch)

        await ensure_images(self.runtime, self.settings.required_images(), progress=self.pull_progress)

        try:
            await self.runtime.create_volume(names.data_volume, resource_labels(wid, ROLE_DATA))
            await self.runtime.create_volume(names.agent_state_volume, resource_labels(wid, ROLE_AGENT_STATE))

            owner_config = await self.store.get_owner_config(req.owner_id)
            agent_config = self._synthesize(wid, owner_config)

            await self.runtime.create_network(names.network, resource_labels(wid, ROLE_NETWORK))

            await self._clone(req, names)

            editor_plan = self._editor_plan(req)
            editor_id = await self._create_service(names.editor_container, self._editor_spec(req, names, editor_plan), editor_plan)
            agent_plan = self._agent_plan(req, agent_config)
            agent_id = await self._create_service(names.agent_container, self._agent_spec(req, names, agent_plan), agent_plan)

            for container in (names.editor_container, names.agent_container):
                await self.runtime.connect_network(self.settings.shared_network, container)

            await self.runtime.start_container(names.editor_container)
            await self.runtime.start_container(names.agent_container)
        except Exception as exc:
            logger.error("provision ws=%s failed: %s; rolling back", wid, redact(str(exc), req.upstream_token))
            await self.lifecycle.cleanup(wid)
            raise

        domain = self.settings.domain
        result = ProvisionResult(
            workspace_id=wid,
            agent_container_id=agent_id,
            editor_container_id=editor_id,
            network=names.network,
            volumes=names.volumes,
            hostnames={
                SERVICE_AGENT: hostname_for(SERVICE_AGENT, wid, domain),
                SERVICE_PREVIEW: hostname_for(SERVICE_PREVIEW, wid, domain),
                SERVICE_EDITOR: hostname_for(SERVICE_EDITOR, wid, domain),
            },
        )
        logger.info("provision ws=%s complete: %s", wid, ", ".join(result.hostnames.values()))
        return result

    # --------------------------
    # Steps
    # --------------------------

    @staticmethod
    def _synthesize(workspace_id: str, owner_config: OwnerConfig) -> AgentConfig:
        try:
            return synthesize_agent_config(owner_config, config_dir=AGENT_CONFIG_DIR)
        except ValueError as exc:
            raise ConfigSynthesisError(f"Invalid agent configuration for workspace {workspace_id}: {exc}") from exc

    async def _clone(self, req: ProvisionRequest, names: WorkspaceNames) -> None:
        """
        Run the init container to completion and remove it on success.
        """
        spec = ContainerSpec(
            name=names.init_container,
            image=self.settings.init_image,
            labels=resource_labels(req.workspace_id, ROLE_INIT),
            command=["clone", "--branch", req.branch, clone_url(req.repo_url, req.upstream_token), INIT_CLONE_DIR],
            mounts={names.data_volume: INIT_CLONE_DIR},
        )
        await self.runtime.create_container(spec)
        await self.runtime.start_container(names.init_container)

        timeout_s = self.settings.init_timeout_seconds
        try:
            exit_code = await self.runtime.wait_container(names.init_container, timeout=timeout_s)
        except TimeoutError:
            logs = await self._init_logs(names.init_container, req.upstream_token)
            raise InitContainerTimeoutError(timeout_s, logs) from None

        if exit_code != 0:
            logs = await self._init_logs(names.init_container, req.upstream_token)
            logger.error("clone ws=%s exited %s:\n%s", req.workspace_id, exit_code, logs)
            raise CloneFailedError(exit_code, logs)

        await self.runtime.remove_container(names.init_container)
        logger.info("clone ws=%s complete", req.workspace_id)

    async def _init_logs(self, name: str, token: Optional[str]) -> str:
        try:
            raw = await self.runtime.container_logs(name)
        except Exception as exc:
            logger.warning("Could not read logs of %s: %s", name, exc)
            return ""
        return redact(raw, token).strip()

    async def _create_service(self, name: str, spec: ContainerSpec, plan: LaunchPlan) -> str:
        container_id = await self.runtime.create_container(spec)
        archive = plan.archive()
        if archive is not None:
            await self.runtime.put_archive(name, plan.archive_root, archive.getvalue())
            logger.debug("Uploaded %d file(s) into %s:%s", len(plan.files), name, plan.archive_root)
        return container_id

    # --------------------------
    # Service definitions
    # --------------------------

    def _editor_plan(self, req: ProvisionRequest) -> LaunchPlan:
        return LaunchPlan(
            steps=[
                LaunchStep(
                    "code-server",
                    "--bind-addr",
                    f"0.0.0.0:{self.settings.editor_port}",
                    "--auth",
                    "password",
                    "--disable-telemetry",
                    "--disable-update-check",
                    EDITOR_WORKSPACE_DIR,
                )
            ],
            files=[editor_settings_file(EDITOR_SETTINGS_PATH, uid=EDITOR_UID, gid=EDITOR_GID)],
            archive_root=EDITOR_HOME,
            user=f"{EDITOR_UID}:{EDITOR_GID}",
            environment={"PASSWORD": req.editor_password, "TZ": "UTC"},
        )

    def _editor_spec(self, req: ProvisionRequest, names: WorkspaceNames, plan: LaunchPlan) -> ContainerSpec:
        s = self.settings
        labels = merge_labels(
            resource_labels(req.workspace_id, ROLE_EDITOR),
            build_labels(
                req.workspace_id,
                SERVICE_EDITOR,
                s.editor_port,
                s.domain,
                network=s.shared_network,
                entrypoint=s.proxy_entrypoint,
            ),
        )
        resources = s.editor_resource_kwargs()
        return ContainerSpec(
            name=names.editor_container,
            image=s.editor_image,
            labels=labels,
            entrypoint=plan.entrypoint(),
            command=plan.command(),
            environment=plan.environment,
            mounts={names.data_volume: EDITOR_WORKSPACE_DIR},
            network=names.network,
            user=plan.user,
            nano_cpus=resources.get("nano_cpus"),
            mem_limit=resources.get("mem_limit"),
            restart_policy="unless-stopped",
        )

    def _agent_plan(self, req: ProvisionRequest, agent_config: AgentConfig) -> LaunchPlan:
        environment: Dict[str, str] = dict(agent_config.environment)
        if req.upstream_token:
            environment["GITHUB_TOKEN"] = req.upstream_token
            environment["GH_TOKEN"] = req.upstream_token
        return LaunchPlan(
            steps=[
                LaunchStep("apk", "add", "--no-cache", "git", "github-cli"),
                LaunchStep(
                    "opencode",
                    "web",
                    "--port",
                    str(self.settings.agent_port),
                    "--hostname",
                    "0.0.0.0",
                ),
            ],
            workdir=AGENT_WORKSPACE_DIR,
            files=list(agent_config.files),
            archive_root=AGENT_HOME,
            environment=environment,
        )

    def _agent_spec(self, req: ProvisionRequest, names: WorkspaceNames, plan: LaunchPlan) -> ContainerSpec:
        s = self.settings
        wid = req.workspace_id
        labels = merge_labels(
            resource_labels(wid, ROLE_AGENT),
            build_labels(wid, SERVICE_AGENT, s.agent_port, s.domain, network=s.shared_network, entrypoint=s.proxy_entrypoint),
            build_labels(
                wid,
                SERVICE_PREVIEW,
                s.preview_port,
                s.domain,
                network=s.shared_network,
                entrypoint=s.proxy_entrypoint,
                strip_frame_headers=True,
            ),
        )
        resources = s.agent_resource_kwargs()
        return ContainerSpec(
            name=names.agent_container,
            image=s.agent_image,
            labels=labels,
            entrypoint=plan.entrypoint(),
            command=plan.command(),
            environment=plan.environment,
            mounts={names.data_volume: AGENT_WORKSPACE_DIR, names.agent_state_volume: AGENT_DATA_DIR},
            network=names.network,
            nano_cpus=resources.get("nano_cpus"),
            mem_limit=resources.get("mem_limit"),
            restart_policy="unless-stopped",
        )
