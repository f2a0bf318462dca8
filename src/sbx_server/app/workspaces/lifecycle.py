from __future__ import annotations

"""
Lifecycle controller for provisioned workspaces.

This module handles everything after creation:
- start/stop of both service containers
- full removal of every resource a workspace owns
- cleanup (the rollback routine used by the provisioner)
- container status and label-based discovery

All names are derived from the workspace id, so these operations work without
the record store and are safe to call for partially created workspaces.

Teardown is best-effort per step: each step reports removed / absent / failed,
expected absence is logged at DEBUG and unexpected failures at ERROR. Nothing in
a teardown path raises.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from sbx_server.app.errors import ResourceNotFoundError, RuntimeUnavailableError
from sbx_server.app.runtime.client import RuntimeClient
from sbx_server.app.workspaces.core import (
    LABEL_MANAGED,
    LABEL_WORKSPACE_ID,
    SERVICE_AGENT,
    SERVICE_EDITOR,
    WorkspaceNames,
)

__all__ = [
    "TeardownOutcome",
    "TeardownStep",
    "TeardownReport",
    "LifecycleController",
]

logger = logging.getLogger("sandbox_manager")


class TeardownOutcome(str, enum.Enum):
    removed = "removed"
    absent = "absent"
    failed = "failed"


@dataclass(frozen=True)
class TeardownStep:
    kind: str
    name: str
    outcome: TeardownOutcome
    error: Optional[str] = None


@dataclass
class TeardownReport:
    workspace_id: str
    steps: List[TeardownStep] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def failures(self) -> List[TeardownStep]:
        return [s for s in self.steps if s.outcome is TeardownOutcome.failed]

    def outcome_of(self, name: str) -> Optional[TeardownOutcome]:
        for step in self.steps:
            if step.name == name:
                return step.outcome
        return None


class LifecycleController:
    """
    Start, stop and reclaim workspaces by id.
    """

    def __init__(self, runtime: RuntimeClient, *, stop_timeout: int = 10) -> None:
        self.runtime = runtime
        self.stop_timeout = stop_timeout

    # --------------------------
    # start / stop
    # --------------------------

    async def _toggle(self, action: str, name: str) -> Optional[BaseException]:
        try:
            if action == "stop":
                await self.runtime.stop_container(name, timeout=self.stop_timeout)
            else:
                await self.runtime.start_container(name)
        except ResourceNotFoundError:
            logger.debug("%s: container %s absent; skipping", action, name)
            return None
        except Exception as exc:
            logger.error("%s: container %s failed: %s", action, name, exc)
            return exc
        logger.info("%s: container %s ok", action, name)
        return None

    async def _toggle_both(self, action: str, workspace_id: str) -> None:
        names = WorkspaceNames(workspace_id)
        errors = await asyncio.gather(*(self._toggle(action, n) for n in names.service_containers))
        failed = [(n, e) for n, e in zip(names.service_containers, errors) if e is not None]
        if len(failed) == len(names.service_containers):
            detail = "; ".join(f"{n}: {e}" for n, e in failed)
            raise RuntimeUnavailableError(f"Failed to {action} workspace {workspace_id}: {detail}")

    async def stop(self, workspace_id: str) -> None:
        """
        Stop both service containers. Absent containers are tolerated.

        Raises:
            RuntimeUnavailableError only if both containers fail for a reason
            other than not-found.
        """
        await self._toggle_both("stop", workspace_id)

    async def start(self, workspace_id: str) -> None:
        """
        Start both service containers with the same tolerance as stop().
        """
        await self._toggle_both("start", workspace_id)

    # --------------------------
    # teardown
    # --------------------------

    async def _step(self, report: TeardownReport, kind: str, name: str, fn: Callable[[str], Awaitable[None]]) -> None:
        try:
            await fn(name)
        except ResourceNotFoundError:
            logger.debug("teardown ws=%s: %s %s already absent", report.workspace_id, kind, name)
            report.steps.append(TeardownStep(kind, name, TeardownOutcome.absent))
            return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("teardown ws=%s: failed to remove %s %s: %s", report.workspace_id, kind, name, exc)
            report.steps.append(TeardownStep(kind, name, TeardownOutcome.failed, str(exc)))
            return
        logger.info("teardown ws=%s: removed %s %s", report.workspace_id, kind, name)
        report.steps.append(TeardownStep(kind, name, TeardownOutcome.removed))

    async def _teardown(self, workspace_id: str) -> TeardownReport:
        names = WorkspaceNames(workspace_id)
        report = TeardownReport(workspace_id)
        # Containers go first: a network or volume still attached to a container
        # cannot be removed.
        for container in (*names.service_containers, names.init_container):
            await self._step(report, "container", container, self.runtime.remove_container)
        await self._step(report, "network", names.network, self.runtime.remove_network)
        for volume in names.volumes:
            await self._step(report, "volume", volume, self.runtime.remove_volume)
        return report

    async def remove(self, workspace_id: str) -> TeardownReport:
        """
        Stop (best-effort) and remove every resource of the workspace.

        Idempotent: a second call reports every step as absent.
        """
        try:
            await self.stop(workspace_id)
        except RuntimeUnavailableError as exc:
            logger.warning("remove ws=%s: stop failed, forcing removal: %s", workspace_id, exc)
        report = await self._teardown(workspace_id)
        self._log_report("remove", report)
        return report

    async def cleanup(self, workspace_id: str) -> TeardownReport:
        """
        Rollback routine: the removal sequence without the stop. Never raises.
        """
        report = await self._teardown(workspace_id)
        self._log_report("cleanup", report)
        return report

    @staticmethod
    def _log_report(action: str, report: TeardownReport) -> None:
        if report.ok:
            logger.info("%s ws=%s complete", action, report.workspace_id)
        else:
            logger.error(
                "%s ws=%s left %d resource(s): %s",
                action,
                report.workspace_id,
                len(report.failures),
                ", ".join(f"{s.kind} {s.name}" for s in report.failures),
            )

    # --------------------------
    # inspection
    # --------------------------

    async def status(self, workspace_id: str) -> Dict[str, Optional[str]]:
        """
        Per-service container status ('running', 'exited', ...) or None when absent.
        """
        names = WorkspaceNames(workspace_id)
        agent, editor = await asyncio.gather(
            self.runtime.container_status(names.agent_container),
            self.runtime.container_status(names.editor_container),
        )
        return {SERVICE_AGENT: agent, SERVICE_EDITOR: editor}

    async def discover(self, workspace_id: str) -> Dict[str, List[str]]:
        """
        Every container, network and volume labeled with this workspace id.
        """
        labels = {LABEL_MANAGED: "true", LABEL_WORKSPACE_ID: workspace_id}
        containers, networks, volumes = await asyncio.gather(
            self.runtime.list_containers(labels),
            self.runtime.list_networks(labels),
            self.runtime.list_volumes(labels),
        )
        return {"containers": containers, "networks": networks, "volumes": volumes}
