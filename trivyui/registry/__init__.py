"""Runtime discovery of the Trivy report kinds a cluster serves."""

from trivyui.registry.crd_registry import (
    APIResourceDiscovery,
    CRDListDiscovery,
    CRDRegistry,
    CRDSnapshot,
)

__all__ = [
    "APIResourceDiscovery",
    "CRDListDiscovery",
    "CRDRegistry",
    "CRDSnapshot",
]
