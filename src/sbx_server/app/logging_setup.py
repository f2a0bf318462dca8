"""
Process logging for the sandbox controller.

Everything the controller does to the container runtime (pulls, clones,
rollbacks, teardown steps) is logged under the "sandbox_manager" logger. Those
records go to a size-capped rotating file at DEBUG so a failed workspace can be
reconstructed after the fact, and to stdout at the configured level.

sbx_server.app.main calls initialize_from_env() once at import time, before
any application or runtime client exists. Repeat calls reuse the attached
handlers.

Tuning (all optional):
- SBX_LOG_FILE: exact log file path; wins over every other location.
- SBX_LOG_DIR:  directory for the log file.
- SBX_LOG_NAME: file name (default: "<service_name>.log").
- SBX_LOG_MAX_BYTES: rotate after this many bytes (default: 10485760).
- SBX_LOG_BACKUP_COUNT: rotated files kept (default: 10).
- SBX_LOG_LEVEL: level for controller and console output (default: INFO);
  LOG_LEVEL is read when it is unset.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple, Union

__all__ = [
    "initialize_from_env",
    "setup_logging",
    "configure_third_party_loggers",
]

_DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
_DEFAULT_BACKUP_COUNT = 10
_DEFAULT_FORMAT_FILE = "%(asctime)s %(levelname)s [sbx_server] %(name)s pid=%(process)d %(filename)s:%(lineno)d - %(message)s"
_DEFAULT_FORMAT_CONSOLE = "%(asctime)s %(levelname)s [sbx_server] %(message)s"
_DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"

_APP_LOGGER = "sandbox_manager"

# Log files already attached in this process
_ATTACHED_LOG_PATHS: set[str] = set()


def _coerce_level(level: Optional[Union[int, str]], default: int = logging.INFO) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        upper = level.strip().upper()
        resolved = getattr(logging, upper, default)
        return resolved if isinstance(resolved, int) else default
    return default


def _candidate_paths(
    service_name: str,
    log_dir: Optional[Union[str, Path]],
    log_file_name: Optional[str],
) -> List[Path]:
    """
    Log file locations in the order they are tried.
    """
    candidates: List[Path] = []

    env_file = os.getenv("SBX_LOG_FILE")
    if env_file:
        candidates.append(Path(env_file).expanduser())

    file_name = (log_file_name or os.getenv("SBX_LOG_NAME") or f"{service_name}.log").strip()

    if log_dir:
        candidates.append(Path(log_dir).expanduser() / file_name)
    env_dir = os.getenv("SBX_LOG_DIR")
    if env_dir:
        candidates.append(Path(env_dir).expanduser() / file_name)

    # Next to the installed package, for source checkouts
    candidates.append(Path(__file__).resolve().parents[1] / file_name)

    # Per-user state dir when the package dir is read-only
    candidates.append(Path.home() / ".sandbox_manager" / "logs" / file_name)

    # Last resort inside containers with a read-only home
    candidates.append(Path(tempfile.gettempdir()) / "sandbox_manager" / "logs" / file_name)

    return candidates


def _ensure_writable_file(path: Path) -> Tuple[bool, Optional[str]]:
    """
    Ensure parent directory exists and the file is creatable/appendable.

    Returns:
        (True, None) on success
        (False, reason) on failure
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, mode="a", encoding="utf-8"):
            pass
        return True, None
    except OSError as e:
        return False, f"{e.__class__.__name__}: {e}"


def _pick_log_path(
    service_name: str,
    log_dir: Optional[Union[str, Path]],
    log_file_name: Optional[str],
) -> Path:
    """
    Choose the first writable path from a prioritized list of candidates.
    Raises RuntimeError if none are writable.
    """
    attempts: List[Tuple[str, str]] = []
    for candidate in _candidate_paths(service_name, log_dir, log_file_name):
        ok, reason = _ensure_writable_file(candidate)
        if ok:
            return candidate
        attempts.append((str(candidate), reason or "unknown error"))

    reasons = "; ".join([f"{p} -> {r}" for p, r in attempts]) or "no candidates were attempted"
    raise RuntimeError(f"Failed to initialize sbx_server file logging (no writable paths). Attempts: {reasons}")


def configure_third_party_loggers(base_level: int) -> None:
    """
    Keep HTTP server, docker SDK and urllib3 chatter out of the workspace logs
    unless the base level is DEBUG.
    """
    noisy = [
        "uvicorn",
        "uvicorn.access",
        "uvicorn.error",
        "fastapi",
        "urllib3",
        "requests",
        "docker",
    ]
    lib_level = logging.INFO if base_level <= logging.DEBUG else logging.WARNING
    for name in noisy:
        logging.getLogger(name).setLevel(lib_level)

    # Connection pool and event loop noise stays at WARNING even under DEBUG
    for name in ("urllib3.connectionpool", "asyncio", "concurrent.futures"):
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging(
    service_name: str = _APP_LOGGER,
    *,
    level: Optional[Union[int, str]] = None,
    log_dir: Optional[Union[str, Path]] = None,
    log_file_name: Optional[str] = None,
    max_bytes: Optional[int] = None,
    backup_count: Optional[int] = None,
    add_console: bool = False,
) -> Path:
    """
    Attach the rotating workspace log to the root logger.

    The file handler records DEBUG so every runtime call made for a workspace is
    on disk; the console handler (when requested) follows `level`.

    Returns:
        Path to the active log file.

    Raises:
        RuntimeError if no writable log path could be created.
    """
    base_level = _coerce_level(
        level if level is not None else (os.getenv("SBX_LOG_LEVEL") or os.getenv("LOG_LEVEL") or "INFO"),
        default=logging.INFO,
    )
    bytes_limit = int(os.getenv("SBX_LOG_MAX_BYTES", str(max_bytes if max_bytes is not None else _DEFAULT_MAX_BYTES)))
    keep_files = int(os.getenv("SBX_LOG_BACKUP_COUNT", str(backup_count if backup_count is not None else _DEFAULT_BACKUP_COUNT)))

    log_path = _pick_log_path(service_name, log_dir, log_file_name)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    target_key = str(Path(log_path).resolve())
    already_attached = any(
        getattr(h, "baseFilename", None) and str(Path(getattr(h, "baseFilename")).resolve()) == target_key
        for h in root.handlers
    )
    if not already_attached and target_key not in _ATTACHED_LOG_PATHS:
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_path,
            maxBytes=max(1, bytes_limit),
            backupCount=max(1, keep_files),
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(_DEFAULT_FORMAT_FILE, datefmt=_DEFAULT_DATEFMT))
        root.addHandler(file_handler)
        _ATTACHED_LOG_PATHS.add(target_key)

    if add_console:
        has_console = any(
            isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) in (sys.stdout, sys.stderr)
            for h in root.handlers
        )
        if not has_console:
            ch = logging.StreamHandler(stream=sys.stdout)
            ch.setLevel(base_level)
            ch.setFormatter(logging.Formatter(_DEFAULT_FORMAT_CONSOLE, datefmt=_DEFAULT_DATEFMT))
            root.addHandler(ch)

    logging.getLogger(_APP_LOGGER).setLevel(base_level)
    configure_third_party_loggers(base_level)

    logging.getLogger(_APP_LOGGER).info(
        "Logging initialized: file=%s level=%s backup=%s",
        str(log_path),
        logging.getLevelName(base_level),
        keep_files,
    )

    return log_path


def initialize_from_env(service_name: str = _APP_LOGGER) -> Path:
    """
    Startup entry point: file plus stdout logging, tuned by SBX_LOG_* variables.
    """
    return setup_logging(service_name=service_name, add_console=True)
