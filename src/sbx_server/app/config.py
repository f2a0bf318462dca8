"""
Unified server configuration for SandboxManager (sbx_server).

This module centralizes:
- Defaults for all server settings
- Loading from environment variables
- Optional .env file hydration (best-effort, only for allowed keys)
- Convenient helpers for resource parsing and derived values

Usage:
    from sbx_server.app.config import get_settings

    settings = get_settings()
    print(settings.domain)

Notes:
- Environment variables always take precedence.
- A minimal, best-effort .env loader will populate process env for allowed keys
  if they are not already present. This keeps side effects contained and
  predictable during tests and local runs.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional


# ----------------------------
# Helpers: env, parsing, types
# ----------------------------

_ALLOWED_DOTENV_KEYS = {
    # Auth
    "SBX_API_KEY",
    "SBX_API_KEY_HEADER",
    "SBX_API_KEYS",
    "SBX_OWNER_HEADER",
    # Routing
    "SBX_DOMAIN",
    "SBX_SHARED_NETWORK",
    "SBX_ENTRYPOINT",
    "SBX_PUBLIC_SCHEME",
    # Docker settings
    "SBX_DOCKER_HOST",
    "DOCKER_CLIENT_TIMEOUT",
    # Images
    "SBX_INIT_IMAGE",
    "SBX_EDITOR_IMAGE",
    "SBX_AGENT_IMAGE",
    # Resource ceilings
    "SBX_EDITOR_CPU",
    "SBX_EDITOR_MEM",
    "SBX_AGENT_CPU",
    "SBX_AGENT_MEM",
    # Service ports
    "SBX_AGENT_PORT",
    "SBX_PREVIEW_PORT",
    "SBX_EDITOR_PORT",
    # Timeouts
    "SBX_INIT_TIMEOUT_SECONDS",
    "SBX_PROBE_TIMEOUT_SECONDS",
    "SBX_STOP_TIMEOUT_SECONDS",
    # Server behavior
    "SBX_VERSION",
    "LOG_LEVEL",
    # CORS
    "CORS_ALLOW_ORIGINS",
}

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)([kKmMgG]?[bB]?)?\s*$")
_CPU_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(c|cpu|cpus)?\s*$")

logger = logging.getLogger("sandbox_manager")


def _str2bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    s = val.strip().lower()
    return s in ("1", "true", "yes", "y", "on")


def _split_csv(s: str | None) -> List[str]:
    if not s:
        return []
    return [part.strip() for part in s.split(",") if part.strip()]


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %s", name, raw, default)
        return default
    return max(minimum, value)


def _float_env(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r; using %s", name, raw, default)
        return default
    return max(minimum, value)


def parse_mem_limit_to_bytes(mem_limit: Optional[str]) -> Optional[int]:
    """
    Parse human-readable memory limit into bytes for Docker (e.g., '512m', '2g', '1024').
    Returns None if not provided or invalid.
    """
    if not mem_limit:
        return None
    s = mem_limit.strip()
    m = _SIZE_RE.match(s)
    if not m:
        return None
    val = float(m.group(1))
    unit = (m.group(2) or "").lower()

    if unit in ("", "b"):
        mult = 1
    elif unit in ("k", "kb"):
        mult = 1024
    elif unit in ("m", "mb"):
        mult = 1024**2
    elif unit in ("g", "gb"):
        mult = 1024**3
    else:
        return None
    return int(val * mult)


def parse_cpu_limit_to_nano_cpus(cpu_limit: Optional[str]) -> Optional[int]:
    """
    Parse CPU limit into nano_cpus for Docker (1.0 CPU == 1e9 nano_cpus).
    Accepts forms like '1', '1.5', '2c', '0.5cpu'.
    Returns None if not provided or invalid.
    """
    if not cpu_limit:
        return None
    s = cpu_limit.strip()
    m = _CPU_RE.match(s)
    if not m:
        return None
    val = float(m.group(1))
    return int(val * 1_000_000_000)


def build_run_resource_kwargs(cpu_limit: Optional[str], mem_limit: Optional[str]) -> Dict[str, int]:
    """
    Convert human-friendly cpu/mem strings into Docker create kwargs.
    - cpu_limit -> nano_cpus
    - mem_limit -> mem_limit (bytes)
    """
    kwargs: Dict[str, int] = {}
    nano = parse_cpu_limit_to_nano_cpus(cpu_limit)
    if nano is not None and nano > 0:
        kwargs["nano_cpus"] = nano
    mem_bytes = parse_mem_limit_to_bytes(mem_limit)
    if mem_bytes is not None and mem_bytes > 0:
        kwargs["mem_limit"] = mem_bytes
    return kwargs


def _load_dotenv_into_env(dotenv_path: Optional[Path] = None, allowed_keys: Optional[set[str]] = None) -> None:
    """
    Best-effort .env loader:
    - Loads from the nearest .env above this file by default
    - Only sets variables from allowed_keys if not already present in os.environ
    - Strips surrounding quotes on values
    - Ignores malformed lines
    """
    if dotenv_path:
        path = Path(dotenv_path)
    else:
        path = None
        here = Path(__file__).resolve()
        for ancestor in list(here.parents)[:5]:
            candidate = ancestor / ".env"
            if candidate.is_file():
                path = candidate
                break
        if path is None:
            return
    if not path.is_file():
        return
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        # Never fail startup due to .env parsing
        logger.warning("Could not read %s: %s", path, exc)
        return
    allow = set(allowed_keys or _ALLOWED_DOTENV_KEYS)
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip()
        if (val.startswith('"') and val.endswith('"')) or (val.startswith("'") and val.endswith("'")):
            val = val[1:-1]
        if key and key in allow and key not in os.environ:
            os.environ[key] = val


# ----------------------------
# Unified configuration object
# ----------------------------

@dataclass(frozen=True)
class ServerConfig:
    """
    Unified configuration for SandboxManager.

    All fields are immutable once created. Use from_env() to construct an instance.
    """

    # Security / auth
    api_key: Optional[str]
    api_key_header_name: str
    api_keys: List[str]
    owner_header_name: str

    # Routing (label-driven reverse proxy)
    domain: str
    shared_network: str
    proxy_entrypoint: str
    public_scheme: str

    # Docker client
    docker_host: Optional[str]
    docker_client_timeout: int

    # Images
    init_image: str
    editor_image: str
    agent_image: str

    # Resource ceilings per service
    editor_cpu_limit: str
    editor_mem_limit: str
    agent_cpu_limit: str
    agent_mem_limit: str

    # Internal listen ports
    agent_port: int
    preview_port: int
    editor_port: int

    # Timeouts
    init_timeout_seconds: int
    probe_timeout_seconds: float
    stop_timeout_seconds: int

    # CORS and service metadata
    cors_allow_origins: List[str]
    service_version: str
    log_level: str

    @staticmethod
    def from_env(dotenv: bool = True, dotenv_path: Optional[str | Path] = None) -> "ServerConfig":
        """
        Construct ServerConfig with values pulled from the current environment,
        optionally hydrated by a .env file if dotenv=True.
        """
        if dotenv:
            _load_dotenv_into_env(Path(dotenv_path) if dotenv_path else None, _ALLOWED_DOTENV_KEYS)

        # Security
        api_key = os.getenv("SBX_API_KEY") or None
        api_keys = _split_csv(os.getenv("SBX_API_KEYS"))
        if api_key and api_key not in api_keys:
            api_keys.insert(0, api_key)

        cors_allow = _split_csv(os.getenv("CORS_ALLOW_ORIGINS", "*"))

        return ServerConfig(
            api_key=api_key,
            api_key_header_name=os.getenv("SBX_API_KEY_HEADER", "X-API-Key"),
            api_keys=api_keys,
            owner_header_name=os.getenv("SBX_OWNER_HEADER", "X-Owner-Id"),
            domain=os.getenv("SBX_DOMAIN", "localhost"),
            shared_network=os.getenv("SBX_SHARED_NETWORK", "sandbox_web"),
            proxy_entrypoint=os.getenv("SBX_ENTRYPOINT", "web"),
            public_scheme=os.getenv("SBX_PUBLIC_SCHEME", "http").strip().lower() or "http",
            docker_host=os.getenv("SBX_DOCKER_HOST") or None,
            docker_client_timeout=_int_env("DOCKER_CLIENT_TIMEOUT", 180, minimum=1),
            init_image=os.getenv("SBX_INIT_IMAGE", "alpine/git:latest"),
            editor_image=os.getenv("SBX_EDITOR_IMAGE", "codercom/code-server:latest"),
            agent_image=os.getenv("SBX_AGENT_IMAGE", "ghcr.io/anomalyco/opencode:latest"),
            editor_cpu_limit=os.getenv("SBX_EDITOR_CPU", "2"),
            editor_mem_limit=os.getenv("SBX_EDITOR_MEM", "2g"),
            agent_cpu_limit=os.getenv("SBX_AGENT_CPU", "2"),
            agent_mem_limit=os.getenv("SBX_AGENT_MEM", "4g"),
            agent_port=_int_env("SBX_AGENT_PORT", 3001, minimum=1),
            preview_port=_int_env("SBX_PREVIEW_PORT", 5173, minimum=1),
            editor_port=_int_env("SBX_EDITOR_PORT", 8443, minimum=1),
            init_timeout_seconds=_int_env("SBX_INIT_TIMEOUT_SECONDS", 600, minimum=1),
            probe_timeout_seconds=_float_env("SBX_PROBE_TIMEOUT_SECONDS", 3.0, minimum=0.1),
            stop_timeout_seconds=_int_env("SBX_STOP_TIMEOUT_SECONDS", 10),
            cors_allow_origins=cors_allow or ["*"],
            service_version=os.getenv("SBX_VERSION", "0.1.0"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    # ----------------------------
    # Derived helpers / utilities
    # ----------------------------

    def editor_resource_kwargs(self) -> Dict[str, int]:
        return build_run_resource_kwargs(self.editor_cpu_limit, self.editor_mem_limit)

    def agent_resource_kwargs(self) -> Dict[str, int]:
        return build_run_resource_kwargs(self.agent_cpu_limit, self.agent_mem_limit)

    def required_images(self) -> List[str]:
        """
        Images that must be present locally before a workspace can be provisioned.
        """
        return [self.init_image, self.editor_image, self.agent_image]


# ----------------------------
# Cached accessor
# ----------------------------

@lru_cache(maxsize=1)
def get_settings() -> ServerConfig:
    """
    Cached settings accessor. Safe to import and call across the app.
    """
    return ServerConfig.from_env(dotenv=True)


__all__ = [
    "ServerConfig",
    "get_settings",
    "parse_mem_limit_to_bytes",
    "parse_cpu_limit_to_nano_cpus",
    "build_run_resource_kwargs",
]
