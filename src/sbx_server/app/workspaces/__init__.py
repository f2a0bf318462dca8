"""
Workspace provisioning and lifecycle.

Modules:
- core: ids, labels and id-derived resource names
- routing: reverse-proxy label maps
- launch: structured container entrypoints and file materialization
- agent_config: agent/editor config synthesis
- images: image availability guard
- provisioner: creation pipeline with rollback
- lifecycle: start/stop/remove/cleanup, status and discovery
- probe: HTTP readiness prober
- service: record-aware orchestration used by the HTTP layer
"""
