"""
Cluster metadata store clients

The Kubernetes backend lives in node_trust.store.kube and is imported
on demand.
"""

from .base import ConfigRecord, EventType, MetadataClient, NodeRecord, WatchEvent
from .memory import InMemoryStore

__all__ = [
    "ConfigRecord",
    "EventType",
    "MetadataClient",
    "NodeRecord",
    "WatchEvent",
    "InMemoryStore",
]
