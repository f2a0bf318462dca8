"""
Routing label builder for the label-driven reverse proxy (Traefik).

The proxy inspects containers on the shared network and builds hostname rules
from their labels; this module is the only place that knows the label keys.
Output is a pure function of the inputs: repeated start/stop cycles reuse the
same container names, so the same inputs must always produce the same map.
"""

from __future__ import annotations

from typing import Dict, Mapping

from sbx_server.app.workspaces.core import hostname_for

__all__ = [
    "FRAME_BLOCKING_HEADERS",
    "router_name",
    "build_labels",
    "merge_labels",
]

# Response headers blanked on embeddable routes. An empty custom response
# header value makes Traefik drop the header.
FRAME_BLOCKING_HEADERS = ("X-Frame-Options", "Content-Security-Policy")


def router_name(service: str, workspace_id: str) -> str:
    return f"{service}-{workspace_id}"


def build_labels(
    workspace_id: str,
    service: str,
    port: int,
    domain: str,
    *,
    network: str,
    entrypoint: str = "web",
    strip_frame_headers: bool = False,
) -> Dict[str, str]:
    """
    Build the proxy labels for one hostname route.

    Produces the enable flag, the shared network the proxy should use, a Host()
    rule for ``<service>-<workspace_id>.<domain>``, the entry point, an explicit
    router -> service binding and the backend port. With
    ``strip_frame_headers`` a headers middleware clearing frame-blocking and CSP
    response headers is declared and attached to this router only.
    """
    name = router_name(service, workspace_id)
    router = f"traefik.http.routers.{name}"
    labels: Dict[str, str] = {
        "traefik.enable": "true",
        "traefik.docker.network": network,
        f"{router}.rule": f"Host(`{hostname_for(service, workspace_id, domain)}`)",
        f"{router}.entrypoints": entrypoint,
        f"{router}.service": name,
        f"traefik.http.services.{name}.loadbalancer.server.port": str(int(port)),
    }
    if strip_frame_headers:
        middleware = f"{name}-headers"
        prefix = f"traefik.http.middlewares.{middleware}.headers.customresponseheaders"
        for header in FRAME_BLOCKING_HEADERS:
            labels[f"{prefix}.{header}"] = ""
        labels[f"{router}.middlewares"] = middleware
    return labels


def merge_labels(*maps: Mapping[str, str]) -> Dict[str, str]:
    """
    Combine label maps for a container that serves several routes.

    Shared keys (enable flag, proxy network) must agree; a disagreement means two
    routes were built for different proxy setups.
    """
    merged: Dict[str, str] = {}
    for labels in maps:
        for key, value in labels.items():
            if key in merged and merged[key] != value:
                raise ValueError(f"Conflicting values for label {key!r}: {merged[key]!r} != {value!r}")
            merged[key] = value
    return merged
