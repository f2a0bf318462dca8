"""
Container runtime access for SandboxManager.
"""

from sbx_server.app.runtime.client import ContainerSpec, DockerRuntimeClient, RuntimeClient

__all__ = ["ContainerSpec", "DockerRuntimeClient", "RuntimeClient"]
