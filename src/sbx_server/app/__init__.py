"""
SandboxManager (FastAPI): README-lite

Overview
- This package provisions isolated, multi-container development sandboxes: one
  sandbox per user workspace, each running a coding-agent service and an editor
  service that share a source checkout.
- Services are reachable only through hostname-based reverse-proxy routing. No
  host ports are published; the proxy discovers backends from container labels.
- Each workspace owns a private bridge network, a primary data volume and an
  agent-state volume. All names derive from the workspace id.

Key Design Points
- Docker is the source of truth for runtime resources; every resource is labeled
  with the workspace id so cleanup works without the record store.
- The runtime client is constructed once at process start and passed explicitly
  into the provisioner, lifecycle controller and prober.
- Provisioning is a sequential pipeline with a parallel image-pull fan-out and a
  best-effort rollback on failure.
- Teardown is idempotent: each step reports removed / absent / failed.

Quickstart (local)
  $ python -m venv ./venv
  $ source ./venv/bin/activate
  $ pip install -e ".[test]"
  $ sandbox-manager sbx_server.app.main:app --host 127.0.0.1 --port 8090
- Health check (unauthenticated):
  GET http://127.0.0.1:8090/health

Core Endpoints (summary)
- POST   /workspaces                          { name, repo_url, branch?, upstream_token? }
- GET    /workspaces                          owner's workspaces
- GET    /workspaces/{workspace_id}           record + per-service container state
- POST   /workspaces/{workspace_id}/stop
- POST   /workspaces/{workspace_id}/start
- DELETE /workspaces/{workspace_id}
- GET    /workspaces/{workspace_id}/health?service=agent|editor   { ready }
- GET    /workspaces/{workspace_id}/urls

Authentication
- API key in a header (SBX_API_KEY_HEADER, default X-API-Key); disabled when no key is configured.
- The owner identity is taken from SBX_OWNER_HEADER (default X-Owner-Id). User
  management itself lives outside this service.

Environment Configuration
- See sbx_server.app.config for the full list (SBX_DOMAIN, SBX_SHARED_NETWORK,
  SBX_*_IMAGE, SBX_*_CPU, SBX_*_MEM, SBX_INIT_TIMEOUT_SECONDS, ...).

Version
- Matches pyproject: 0.1.0
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
