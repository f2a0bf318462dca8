from __future__ import annotations

"""
Image availability guard.

Makes sure every image a workspace needs is present locally before any other
resource is created. Absent images are pulled in parallel; every pull runs to
completion (or failure) before a single ImagePullError listing all failures
is raised.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sbx_server.app.errors import ImagePullError
from sbx_server.app.runtime.client import PullProgress, RuntimeClient

__all__ = ["PullTracker", "ensure_images"]

logger = logging.getLogger("sandbox_manager")


@dataclass
class _ImageProgress:
    layers: Dict[str, str] = field(default_factory=dict)
    last_status: Optional[str] = None


class PullTracker:
    """
    Aggregates raw pull events per image and layer.

    Pull events arrive on worker threads, so updates are guarded by a lock.
    """

    def __init__(self, sink: Optional[PullProgress] = None) -> None:
        self._lock = threading.Lock()
        self._images: Dict[str, _ImageProgress] = {}
        self._sink = sink

    def __call__(self, image: str, event: Dict[str, Any]) -> None:
        status = str(event.get("status") or "")
        layer = event.get("id")
        with self._lock:
            state = self._images.setdefault(image, _ImageProgress())
            state.last_status = status or state.last_status
            if layer and status:
                previous = state.layers.get(layer)
                state.layers[layer] = status
                if status == "Pull complete" and previous != status:
                    done = sum(1 for s in state.layers.values() if s in ("Pull complete", "Already exists"))
                    logger.debug("Pull %s: layer %s complete (%d/%d)", image, layer, done, len(state.layers))
        if self._sink is not None:
            self._sink(image, event)

    def summary(self, image: str) -> Dict[str, Any]:
        with self._lock:
            state = self._images.get(image) or _ImageProgress()
            done = sum(1 for s in state.layers.values() if s in ("Pull complete", "Already exists"))
            return {"layers": len(state.layers), "complete": done, "status": state.last_status}


async def ensure_images(
    runtime: RuntimeClient,
    images: Iterable[str],
    progress: Optional[PullProgress] = None,
) -> List[str]:
    """
    Ensure all images are present locally.

    Returns:
        The images that were pulled (already-present images are skipped).

    Raises:
        ImagePullError listing every image whose presence check or pull failed.
    """
    wanted = list(dict.fromkeys(i for i in images if i))
    tracker = PullTracker(progress)

    async def _ensure(image: str) -> bool:
        if await runtime.image_exists(image):
            logger.debug("Image %s already present", image)
            return False
        logger.info("Pulling image %s", image)
        await runtime.pull_image(image, progress=tracker)
        logger.info("Pulled image %s (%s)", image, tracker.summary(image))
        return True

    results = await asyncio.gather(*(_ensure(i) for i in wanted), return_exceptions=True)

    pulled: List[str] = []
    failures: Dict[str, str] = {}
    for image, result in zip(wanted, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            logger.error("Failed to pull image %s: %s", image, result)
            failures[image] = str(result) or result.__class__.__name__
        elif result:
            pulled.append(image)
    if failures:
        raise ImagePullError(failures)
    return pulled
