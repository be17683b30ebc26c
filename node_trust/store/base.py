# node_trust/store/base.py
"""
Cluster Metadata Client interface

Backends implement read-one, list-all, write-one and watch operations
for node records and for the cluster-wide configuration records.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Dict, List, Tuple, Union


class EventType(Enum):
    """Watch event type"""
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class NodeRecord:
    """A node object and its annotations"""
    name: str
    annotations: Dict[str, str] = field(default_factory=dict)
    resource_version: str = ""


@dataclass(frozen=True)
class ConfigRecord:
    """A namespaced key/value configuration record (ConfigMap)"""
    namespace: str
    name: str
    data: Dict[str, str] = field(default_factory=dict)
    resource_version: str = ""


@dataclass(frozen=True)
class WatchEvent:
    """Change notification delivered by a watch stream"""
    type: EventType
    obj: Union[NodeRecord, ConfigRecord]

    @property
    def resource_version(self) -> str:
        return self.obj.resource_version


class MetadataClient:
    """
    Base class for metadata store backends

    Errors are reported with the exceptions from node_trust.errors:
    StoreUnavailable for transport problems, NotFound, Forbidden,
    Conflict, and WatchExpired when a watch is opened on a resource
    version the store no longer remembers.
    """

    async def get_node(self, name: str) -> NodeRecord:
        raise NotImplementedError

    async def list_nodes(self) -> Tuple[List[NodeRecord], str]:
        """Return all nodes and the resource version of the listing"""
        raise NotImplementedError

    async def annotate_node(self, name: str, key: str, value: str) -> NodeRecord:
        """Set (overwrite) one annotation on a node"""
        raise NotImplementedError

    def watch_nodes(self, resource_version: str) -> AsyncIterator[WatchEvent]:
        """Stream node changes that happened after resource_version"""
        raise NotImplementedError

    async def get_config(self, namespace: str, name: str) -> ConfigRecord:
        raise NotImplementedError

    def watch_config(self, namespace: str, name: str, resource_version: str) -> AsyncIterator[WatchEvent]:
        """Stream changes of a single configuration record"""
        raise NotImplementedError

    async def close(self):
        pass
