from __future__ import annotations

"""
Launch plans for workspace service containers.

A container's entrypoint is kept as data: an ordered list of argv steps, a
working directory and the files that must exist before the first step runs.
Rendering to a shell string happens once, here, with every argument quoted.

Files never travel through the command line. They are packed into a tar
archive and uploaded into the created (not yet started) container, so contents
are binary-safe regardless of quotes, newlines or non-ASCII text.
"""

import io
import posixpath
import shlex
import tarfile
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

__all__ = [
    "FileMaterialization",
    "LaunchStep",
    "LaunchPlan",
    "build_archive",
]


@dataclass(frozen=True)
class FileMaterialization:
    """
    A file to place inside a container before its main process starts.

    `path` must be absolute. `uid`/`gid` apply to the file and to any parent
    directories the archive creates for it.
    """

    path: str
    content: bytes
    mode: int = 0o644
    uid: int = 0
    gid: int = 0

    def __post_init__(self) -> None:
        if not self.path.startswith("/"):
            raise ValueError(f"File path must be absolute: {self.path!r}")
        norm = posixpath.normpath(self.path)
        if norm != self.path or ".." in self.path.split("/"):
            raise ValueError(f"File path must be normalized: {self.path!r}")

    @classmethod
    def from_text(cls, path: str, text: str, **kwargs) -> "FileMaterialization":
        return cls(path=path, content=text.encode("utf-8"), **kwargs)


def _relative_to(root: str, path: str) -> str:
    root = posixpath.normpath(root)
    rel = posixpath.relpath(path, root)
    if rel == "." or rel.startswith(".."):
        raise ValueError(f"{path!r} is not inside archive root {root!r}")
    return rel


def build_archive(files: Iterable[FileMaterialization], root: str = "/") -> io.BytesIO:
    """
    Pack files into an in-memory tar archive for Docker put_archive.

    Entry names are relative to `root`, which is the directory the archive is
    extracted into and must already exist in the image. Intermediate
    directories are emitted once, before the files that live in them, owned by
    the same uid/gid as the file.

    Returns:
        BytesIO positioned at start.
    """
    buf = io.BytesIO()
    mtime = int(time.time())
    seen_dirs: Dict[str, Tuple[int, int]] = {}
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for f in files:
            rel = _relative_to(root, f.path)
            parts = rel.split("/")[:-1]
            for i in range(1, len(parts) + 1):
                d = "/".join(parts[:i])
                if d in seen_dirs:
                    continue
                seen_dirs[d] = (f.uid, f.gid)
                di = tarfile.TarInfo(name=d)
                di.type = tarfile.DIRTYPE
                di.mode = 0o755
                di.uid, di.gid = f.uid, f.gid
                di.mtime = mtime
                tar.addfile(di)
            ti = tarfile.TarInfo(name=rel)
            ti.size = len(f.content)
            ti.mode = f.mode
            ti.uid, ti.gid = f.uid, f.gid
            ti.mtime = mtime
            tar.addfile(ti, io.BytesIO(f.content))
    buf.seek(0)
    return buf


@dataclass(frozen=True)
class LaunchStep:
    """
    One command in a launch plan, as an argv list (never a shell fragment).
    """

    argv: Tuple[str, ...]

    def __init__(self, *argv: str) -> None:
        if not argv:
            raise ValueError("LaunchStep requires at least one argument")
        object.__setattr__(self, "argv", tuple(str(a) for a in argv))

    def render(self) -> str:
        return " ".join(shlex.quote(a) for a in self.argv)


@dataclass(frozen=True)
class LaunchPlan:
    """
    Structured entrypoint for a long-running service container.

    `render()` joins the steps with `&&` after an optional `cd`, and replaces the
    shell with the last step via `exec` so the service runs as the container's
    main process and receives stop signals directly.
    """

    steps: Sequence[LaunchStep]
    workdir: Optional[str] = None
    files: Sequence[FileMaterialization] = field(default_factory=tuple)
    archive_root: str = "/"
    user: Optional[str] = None
    environment: Dict[str, str] = field(default_factory=dict)

    def render(self) -> str:
        if not self.steps:
            raise ValueError("LaunchPlan has no steps")
        parts: List[str] = []
        if self.workdir:
            parts.append(f"cd {shlex.quote(self.workdir)}")
        parts.extend(step.render() for step in self.steps[:-1])
        parts.append(f"exec {self.steps[-1].render()}")
        return " && ".join(parts)

    def entrypoint(self) -> List[str]:
        return ["sh", "-c"]

    def command(self) -> List[str]:
        return [self.render()]

    def archive(self) -> Optional[io.BytesIO]:
        """
        Tar archive with every file of this plan, or None when there are none.
        """
        if not self.files:
            return None
        return build_archive(self.files, root=self.archive_root)
