from __future__ import annotations

"""
Container runtime client.

RuntimeClient is the async seam between the workspace core and the container
engine. DockerRuntimeClient implements it on top of the Docker SDK: every
blocking SDK call runs in a worker thread via asyncio.to_thread, and Docker /
requests exceptions are translated into sbx_server.app.errors here and nowhere
else.

Only container, network, volume and image endpoints are used, so the client
works behind a docker-socket-proxy that denies exec and swarm APIs.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import docker
import requests
from docker import DockerClient
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.utils import parse_repository_tag

from sbx_server.app.errors import (
    ResourceConflictError,
    ResourceNotFoundError,
    RuntimeClientError,
    RuntimeUnavailableError,
)

__all__ = [
    "ContainerSpec",
    "PullProgress",
    "RuntimeClient",
    "DockerRuntimeClient",
    "label_filter",
]

logger = logging.getLogger("sandbox_manager")

# Called with (image reference, raw progress event) for every pull event.
PullProgress = Callable[[str, Dict[str, Any]], None]


def label_filter(labels: Dict[str, str]) -> List[str]:
    return [f"{k}={v}" for k, v in sorted(labels.items())]


@dataclass(frozen=True)
class ContainerSpec:
    """
    Everything needed to create (not start) a container.

    `mounts` maps named volume -> mount path inside the container.
    """

    name: str
    image: str
    labels: Dict[str, str] = field(default_factory=dict)
    entrypoint: Optional[List[str]] = None
    command: Optional[List[str]] = None
    environment: Dict[str, str] = field(default_factory=dict)
    mounts: Dict[str, str] = field(default_factory=dict)
    network: Optional[str] = None
    user: Optional[str] = None
    working_dir: Optional[str] = None
    nano_cpus: Optional[int] = None
    mem_limit: Optional[int] = None
    restart_policy: Optional[str] = None


class RuntimeClient(ABC):
    """
    Async interface over the container engine.

    Not-found conditions raise ResourceNotFoundError, name clashes raise
    ResourceConflictError, and an unreachable engine raises
    RuntimeUnavailableError. `wait_container` raises the builtin TimeoutError
    when the container does not exit within the bound.
    """

    @abstractmethod
    async def ping(self) -> None: ...

    # Images
    @abstractmethod
    async def image_exists(self, image: str) -> bool: ...

    @abstractmethod
    async def pull_image(self, image: str, progress: Optional[PullProgress] = None) -> None: ...

    # Volumes
    @abstractmethod
    async def create_volume(self, name: str, labels: Dict[str, str]) -> None: ...

    @abstractmethod
    async def remove_volume(self, name: str) -> None: ...

    @abstractmethod
    async def list_volumes(self, labels: Dict[str, str]) -> List[str]: ...

    # Networks
    @abstractmethod
    async def create_network(self, name: str, labels: Dict[str, str]) -> None: ...

    @abstractmethod
    async def remove_network(self, name: str) -> None: ...

    @abstractmethod
    async def connect_network(self, network: str, container: str) -> None: ...

    @abstractmethod
    async def list_networks(self, labels: Dict[str, str]) -> List[str]: ...

    # Containers
    @abstractmethod
    async def create_container(self, spec: ContainerSpec) -> str: ...

    @abstractmethod
    async def put_archive(self, container: str, path: str, data: bytes) -> None: ...

    @abstractmethod
    async def start_container(self, name: str) -> None: ...

    @abstractmethod
    async def stop_container(self, name: str, timeout: int = 10) -> None: ...

    @abstractmethod
    async def remove_container(self, name: str) -> None: ...

    @abstractmethod
    async def wait_container(self, name: str, timeout: float) -> int: ...

    @abstractmethod
    async def container_logs(self, name: str, tail: int = 200) -> str: ...

    @abstractmethod
    async def container_status(self, name: str) -> Optional[str]:
        """Docker status string ('created', 'running', 'exited', ...) or None when absent."""

    @abstractmethod
    async def list_containers(self, labels: Dict[str, str]) -> List[str]: ...

    async def close(self) -> None:
        return None


def _is_read_timeout(exc: BaseException) -> bool:
    if isinstance(exc, requests.exceptions.ReadTimeout):
        return True
    # urllib3 sometimes surfaces read timeouts as ConnectionError(ReadTimeoutError(...))
    return isinstance(exc, requests.exceptions.ConnectionError) and "Read timed out" in str(exc)


def _translate(exc: BaseException, kind: str, name: str) -> RuntimeClientError:
    """
    Map a Docker SDK or transport exception onto the runtime error hierarchy.
    """
    if isinstance(exc, (NotFound, ImageNotFound)):
        return ResourceNotFoundError(kind, name, f"{kind} not found: {name}")
    if isinstance(exc, APIError):
        code = getattr(exc, "status_code", None)
        if code == 409:
            return ResourceConflictError(kind, name, f"{kind} conflict: {name}: {exc.explanation or exc}")
        return RuntimeClientError(f"Docker API error on {kind} {name}: {exc.explanation or exc}")
    if isinstance(exc, (requests.exceptions.RequestException, DockerException, OSError)):
        return RuntimeUnavailableError(f"Docker engine unavailable ({kind} {name}): {exc}")
    return RuntimeClientError(f"Unexpected runtime error on {kind} {name}: {exc}")


class DockerRuntimeClient(RuntimeClient):
    """
    RuntimeClient backed by docker.DockerClient.

    The underlying docker client is constructed lazily on first use.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: int = 180,
        client: Optional[DockerClient] = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._client = client

    # --------------------------
    # Plumbing
    # --------------------------

    def _docker(self) -> DockerClient:
        if self._client is None:
            try:
                if self._base_url:
                    self._client = docker.DockerClient(base_url=self._base_url, timeout=self._timeout)
                else:
                    self._client = docker.from_env(timeout=self._timeout)
            except DockerException as exc:
                raise RuntimeUnavailableError(f"Cannot connect to Docker engine: {exc}") from exc
        return self._client

    async def _call(self, kind: str, name: str, fn: Callable[[DockerClient], Any]) -> Any:
        def _run() -> Any:
            return fn(self._docker())

        try:
            return await asyncio.to_thread(_run)
        except (RuntimeClientError, TimeoutError):
            raise
        except (DockerException, requests.exceptions.RequestException, OSError) as exc:
            raise _translate(exc, kind, name) from exc

    async def close(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await asyncio.to_thread(client.close)

    async def ping(self) -> None:
        await self._call("engine", self._base_url or "default", lambda c: c.ping())

    # --------------------------
    # Images
    # --------------------------

    async def image_exists(self, image: str) -> bool:
        try:
            await self._call("image", image, lambda c: c.images.get(image))
        except ResourceNotFoundError:
            return False
        return True

    async def pull_image(self, image: str, progress: Optional[PullProgress] = None) -> None:
        repository, tag = parse_repository_tag(image)

        def _pull(c: DockerClient) -> None:
            for event in c.api.pull(repository, tag=tag or "latest", stream=True, decode=True):
                if not isinstance(event, dict):
                    continue
                if event.get("error"):
                    detail = event.get("errorDetail") or {}
                    raise APIError(str(detail.get("message") or event["error"]))
                if progress is not None:
                    progress(image, event)

        await self._call("image", image, _pull)

    # --------------------------
    # Volumes
    # --------------------------

    async def create_volume(self, name: str, labels: Dict[str, str]) -> None:
        await self._call("volume", name, lambda c: c.volumes.create(name=name, driver="local", labels=labels))

    async def remove_volume(self, name: str) -> None:
        await self._call("volume", name, lambda c: c.volumes.get(name).remove(force=True))

    async def list_volumes(self, labels: Dict[str, str]) -> List[str]:
        vols = await self._call("volume", "*", lambda c: c.volumes.list(filters={"label": label_filter(labels)}))
        return sorted(v.name for v in vols)

    # --------------------------
    # Networks
    # --------------------------

    async def create_network(self, name: str, labels: Dict[str, str]) -> None:
        def _create(c: DockerClient) -> None:
            # Docker allows duplicate network names; refuse them so naming stays 1:1.
            if c.networks.list(names=[name]):
                raise ResourceConflictError("network", name)
            c.networks.create(name, driver="bridge", labels=labels)

        await self._call("network", name, _create)

    async def remove_network(self, name: str) -> None:
        await self._call("network", name, lambda c: c.networks.get(name).remove())

    async def connect_network(self, network: str, container: str) -> None:
        await self._call("network", network, lambda c: c.networks.get(network).connect(container))

    async def list_networks(self, labels: Dict[str, str]) -> List[str]:
        nets = await self._call("network", "*", lambda c: c.networks.list(filters={"label": label_filter(labels)}))
        return sorted(n.name for n in nets)

    # --------------------------
    # Containers
    # --------------------------

    async def create_container(self, spec: ContainerSpec) -> str:
        kwargs: Dict[str, Any] = {
            "name": spec.name,
            "labels": dict(spec.labels),
            "environment": dict(spec.environment),
            "volumes": {vol: {"bind": path, "mode": "rw"} for vol, path in spec.mounts.items()},
        }
        if spec.entrypoint is not None:
            kwargs["entrypoint"] = list(spec.entrypoint)
        if spec.command is not None:
            kwargs["command"] = list(spec.command)
        if spec.network:
            kwargs["network"] = spec.network
        if spec.user:
            kwargs["user"] = spec.user
        if spec.working_dir:
            kwargs["working_dir"] = spec.working_dir
        if spec.nano_cpus:
            kwargs["nano_cpus"] = spec.nano_cpus
        if spec.mem_limit:
            kwargs["mem_limit"] = spec.mem_limit
        if spec.restart_policy:
            kwargs["restart_policy"] = {"Name": spec.restart_policy}

        container = await self._call("container", spec.name, lambda c: c.containers.create(spec.image, **kwargs))
        logger.debug("Created container name=%s id=%s image=%s", spec.name, container.id, spec.image)
        return container.id

    async def put_archive(self, container: str, path: str, data: bytes) -> None:
        def _put(c: DockerClient) -> None:
            ok = c.containers.get(container).put_archive(path, data)
            if not ok:
                raise APIError(f"put_archive into {container}:{path} was rejected")

        await self._call("container", container, _put)

    async def start_container(self, name: str) -> None:
        await self._call("container", name, lambda c: c.containers.get(name).start())

    async def stop_container(self, name: str, timeout: int = 10) -> None:
        await self._call("container", name, lambda c: c.containers.get(name).stop(timeout=timeout))

    async def remove_container(self, name: str) -> None:
        await self._call("container", name, lambda c: c.containers.get(name).remove(force=True))

    async def wait_container(self, name: str, timeout: float) -> int:
        def _wait(c: DockerClient) -> int:
            try:
                result = c.containers.get(name).wait(timeout=timeout)
            except requests.exceptions.RequestException as exc:
                if _is_read_timeout(exc):
                    raise TimeoutError(f"container {name} did not exit within {timeout}s") from exc
                raise
            return int((result or {}).get("StatusCode", -1))

        return await self._call("container", name, _wait)

    async def container_logs(self, name: str, tail: int = 200) -> str:
        raw = await self._call(
            "container", name, lambda c: c.containers.get(name).logs(stdout=True, stderr=True, tail=tail)
        )
        return raw.decode("utf-8", errors="replace") if isinstance(raw, (bytes, bytearray)) else str(raw)

    async def container_status(self, name: str) -> Optional[str]:
        try:
            container = await self._call("container", name, lambda c: c.containers.get(name))
        except ResourceNotFoundError:
            return None
        return container.status

    async def list_containers(self, labels: Dict[str, str]) -> List[str]:
        found = await self._call(
            "container", "*", lambda c: c.containers.list(all=True, filters={"label": label_filter(labels)})
        )
        return sorted(x.name for x in found)

