"""
Node Trust Agent

Runs on every cluster node and bootstraps enforcement trust:
- Publishes this node's certificate as a node annotation (PKI mode)
- Caches every peer certificate and follows node changes
- Mirrors the cluster exclusion list into the local excluder
"""

__version__ = "1.0.0"
__all__ = ["NodeTrustAgent", "main"]

from .agent import NodeTrustAgent, main
