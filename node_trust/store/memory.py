# node_trust/store/memory.py
"""
In-memory metadata store

Behaves like the Kubernetes API for the operations the agent uses:
monotonic resource versions, watch replay from a resource version,
bounded history (WatchExpired once compacted). Supports fault
injection so tests can simulate rejected writes and dropped watches.
"""

import asyncio
import logging
from dataclasses import replace
from typing import AsyncIterator, Dict, List, Optional, Tuple

from ..errors import NotFound, StoreUnavailable, WatchExpired
from .base import ConfigRecord, EventType, MetadataClient, NodeRecord, WatchEvent

logger = logging.getLogger('node-trust.store.memory')

NODE_KIND = "node"


def _config_kind(namespace: str, name: str) -> str:
    return f"config/{namespace}/{name}"


class InMemoryStore(MetadataClient):
    """
    Single-process metadata store

    Cluster-side mutations (put_node, delete_node, put_config,
    delete_config) are used by tests and local runs to play the
    role of other nodes and of the cluster administrator.
    """

    def __init__(self, history_limit: int = 1000):
        self.history_limit = history_limit
        self._revision = 0
        self._committed = 0
        self._compacted = 0
        self._nodes: Dict[str, NodeRecord] = {}
        self._configs: Dict[Tuple[str, str], ConfigRecord] = {}
        self._history: List[Tuple[int, str, WatchEvent]] = []
        self._changed = asyncio.Condition()
        self._generation = 0
        self._faults: Dict[str, List[Exception]] = {}

    # --- Fault injection ---

    def fail_next(self, operation: str, error: Exception):
        """Make the next call of `operation` raise `error`"""
        self._faults.setdefault(operation, []).append(error)

    def _check_fault(self, operation: str):
        pending = self._faults.get(operation)
        if pending:
            raise pending.pop(0)

    async def drop_watches(self):
        """Break every open watch stream with StoreUnavailable"""
        async with self._changed:
            self._generation += 1
            self._changed.notify_all()

    def compact(self):
        """Forget all history; older resource versions become expired"""
        self._history.clear()
        self._compacted = self._revision

    @property
    def revision(self) -> str:
        return str(self._revision)

    # --- Internal ---

    async def _record(self, kind: str, event_type: EventType, obj) -> WatchEvent:
        event = WatchEvent(type=event_type, obj=obj)
        async with self._changed:
            revision = int(obj.resource_version)
            self._history.append((revision, kind, event))
            self._committed = max(self._committed, revision)
            if len(self._history) > self.history_limit:
                dropped = self._history[:-self.history_limit]
                self._history = self._history[-self.history_limit:]
                self._compacted = dropped[-1][0]
            self._changed.notify_all()
        return event

    def _next_version(self) -> str:
        self._revision += 1
        return str(self._revision)

    async def _watch(self, kind: str, resource_version: str) -> AsyncIterator[WatchEvent]:
        # No resource version: start from now, like the API server
        cursor = int(resource_version) if resource_version else self._committed
        generation = self._generation

        while True:
            if generation != self._generation:
                raise StoreUnavailable("watch connection dropped")
            if cursor < self._compacted:
                raise WatchExpired(f"resource version {cursor} is too old (oldest {self._compacted})")

            head = self._committed
            pending = [event for revision, k, event in self._history if revision > cursor and k == kind]
            for event in pending:
                yield event
                if generation != self._generation:
                    raise StoreUnavailable("watch connection dropped")
            cursor = max(cursor, head)

            async with self._changed:
                await self._changed.wait_for(
                    lambda: self._committed > cursor or generation != self._generation
                )

    # --- Cluster side ---

    async def put_node(self, name: str, annotations: Optional[Dict[str, str]] = None) -> NodeRecord:
        existed = name in self._nodes
        record = NodeRecord(name=name, annotations=dict(annotations or {}), resource_version=self._next_version())
        self._nodes[name] = record
        await self._record(NODE_KIND, EventType.MODIFIED if existed else EventType.ADDED, record)
        return record

    async def delete_node(self, name: str):
        record = self._nodes.pop(name, None)
        if record is None:
            raise NotFound(f"node {name} not found")
        await self._record(NODE_KIND, EventType.DELETED, replace(record, resource_version=self._next_version()))

    async def put_config(self, namespace: str, name: str, data: Dict[str, str]) -> ConfigRecord:
        key = (namespace, name)
        existed = key in self._configs
        record = ConfigRecord(namespace=namespace, name=name, data=dict(data), resource_version=self._next_version())
        self._configs[key] = record
        await self._record(_config_kind(namespace, name), EventType.MODIFIED if existed else EventType.ADDED, record)
        return record

    async def delete_config(self, namespace: str, name: str):
        record = self._configs.pop((namespace, name), None)
        if record is None:
            raise NotFound(f"configmap {namespace}/{name} not found")
        await self._record(
            _config_kind(namespace, name),
            EventType.DELETED,
            replace(record, resource_version=self._next_version()),
        )

    # --- MetadataClient ---

    async def get_node(self, name: str) -> NodeRecord:
        self._check_fault("get_node")
        try:
            return self._nodes[name]
        except KeyError:
            raise NotFound(f"node {name} not found")

    async def list_nodes(self) -> Tuple[List[NodeRecord], str]:
        self._check_fault("list_nodes")
        return list(self._nodes.values()), self.revision

    async def annotate_node(self, name: str, key: str, value: str) -> NodeRecord:
        self._check_fault("annotate_node")
        record = await self.get_node(name)
        if record.annotations.get(key) == value:
            return record
        annotations = dict(record.annotations)
        annotations[key] = value
        return await self.put_node(name, annotations)

    def watch_nodes(self, resource_version: str) -> AsyncIterator[WatchEvent]:
        self._check_fault("watch_nodes")
        return self._watch(NODE_KIND, resource_version)

    async def get_config(self, namespace: str, name: str) -> ConfigRecord:
        self._check_fault("get_config")
        try:
            return self._configs[(namespace, name)]
        except KeyError:
            raise NotFound(f"configmap {namespace}/{name} not found")

    def watch_config(self, namespace: str, name: str, resource_version: str) -> AsyncIterator[WatchEvent]:
        self._check_fault("watch_config")
        return self._watch(_config_kind(namespace, name), resource_version)
