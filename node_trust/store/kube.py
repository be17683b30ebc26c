# node_trust/store/kube.py
"""
Kubernetes metadata store

Node certificates live in node annotations, the exclusion list in a
ConfigMap. Uses the asyncio Kubernetes client so watch streams share
the agent's event loop.
"""

import asyncio
import logging
from typing import AsyncIterator, List, Optional, Tuple

import aiohttp
from kubernetes_asyncio import client, config, watch
from kubernetes_asyncio.client.rest import ApiException

from ..errors import Conflict, Forbidden, NotFound, StoreError, StoreUnavailable, WatchExpired
from .base import ConfigRecord, EventType, MetadataClient, NodeRecord, WatchEvent

logger = logging.getLogger('node-trust.store.kube')

# Server-side watch timeout; the stream ends cleanly and is reopened
WATCH_TIMEOUT_SECONDS = 300


def _translate(e: Exception, what: str) -> StoreError:
    """Map client exceptions onto the store error taxonomy"""
    if isinstance(e, ApiException):
        status = e.status or 0
        message = f"{what}: {status} {e.reason}"
        if status == 404:
            return NotFound(message)
        if status in (401, 403):
            return Forbidden(message)
        if status == 409:
            return Conflict(message)
        if status == 410:
            return WatchExpired(message)
        if status >= 500 or status == 429:
            return StoreUnavailable(message)
        return StoreError(message)
    return StoreUnavailable(f"{what}: {e}")


TRANSPORT_ERRORS = (ApiException, aiohttp.ClientError, asyncio.TimeoutError, OSError)


def _node_record(node) -> NodeRecord:
    meta = node.metadata
    return NodeRecord(
        name=meta.name,
        annotations=dict(meta.annotations or {}),
        resource_version=meta.resource_version or "",
    )


def _config_record(cm) -> ConfigRecord:
    meta = cm.metadata
    return ConfigRecord(
        namespace=meta.namespace,
        name=meta.name,
        data=dict(cm.data or {}),
        resource_version=meta.resource_version or "",
    )


class KubernetesStore(MetadataClient):
    """
    MetadataClient backed by the Kubernetes API server
    """

    def __init__(self, api_client: "client.ApiClient"):
        self.api_client = api_client
        self.core = client.CoreV1Api(api_client)

    @classmethod
    async def connect(cls, kubeconfig: Optional[str] = None, in_cluster: bool = False) -> "KubernetesStore":
        """
        Build a store from in-cluster credentials or a kubeconfig file

        Raises:
            StoreError: credentials could not be loaded
        """
        try:
            if in_cluster:
                config.load_incluster_config()
            else:
                await config.load_kube_config(config_file=kubeconfig)
        except (config.ConfigException, OSError) as e:
            raise StoreError(f"Cannot load Kubernetes credentials: {e}") from e

        logger.info(f"Connected to Kubernetes API ({'in-cluster' if in_cluster else kubeconfig})")
        return cls(client.ApiClient())

    async def close(self):
        await self.api_client.close()

    # --- Nodes ---

    async def get_node(self, name: str) -> NodeRecord:
        try:
            node = await self.core.read_node(name)
        except TRANSPORT_ERRORS as e:
            raise _translate(e, f"read node {name}") from e
        return _node_record(node)

    async def list_nodes(self) -> Tuple[List[NodeRecord], str]:
        try:
            nodes = await self.core.list_node()
        except TRANSPORT_ERRORS as e:
            raise _translate(e, "list nodes") from e
        return [_node_record(n) for n in nodes.items], nodes.metadata.resource_version

    async def annotate_node(self, name: str, key: str, value: str) -> NodeRecord:
        body = {"metadata": {"annotations": {key: value}}}
        try:
            node = await self.core.patch_node(name, body)
        except TRANSPORT_ERRORS as e:
            raise _translate(e, f"annotate node {name}") from e
        return _node_record(node)

    async def watch_nodes(self, resource_version: str) -> AsyncIterator[WatchEvent]:
        stream = self._stream(
            self.core.list_node,
            resource_version=resource_version,
        )
        async for event_type, obj in stream:
            yield WatchEvent(type=event_type, obj=_node_record(obj))

    # --- ConfigMaps ---

    async def get_config(self, namespace: str, name: str) -> ConfigRecord:
        try:
            cm = await self.core.read_namespaced_config_map(name, namespace)
        except TRANSPORT_ERRORS as e:
            raise _translate(e, f"read configmap {namespace}/{name}") from e
        return _config_record(cm)

    async def watch_config(self, namespace: str, name: str, resource_version: str) -> AsyncIterator[WatchEvent]:
        stream = self._stream(
            self.core.list_namespaced_config_map,
            namespace,
            field_selector=f"metadata.name={name}",
            resource_version=resource_version,
        )
        async for event_type, obj in stream:
            yield WatchEvent(type=event_type, obj=_config_record(obj))

    async def _stream(self, func, *args, **kwargs):
        """Yield (EventType, object) pairs until the server closes the watch"""
        w = watch.Watch()
        try:
            async with w.stream(func, *args, timeout_seconds=WATCH_TIMEOUT_SECONDS, **kwargs) as stream:
                async for event in stream:
                    kind = event.get("type")
                    if kind == "ERROR":
                        raw = event.get("raw_object") or {}
                        code = raw.get("code", 0)
                        message = f"watch error {code}: {raw.get('message', '')}"
                        if code == 410:
                            raise WatchExpired(message)
                        raise StoreUnavailable(message)
                    if kind == "BOOKMARK":
                        continue
                    yield EventType(kind), event["object"]
        except TRANSPORT_ERRORS as e:
            raise _translate(e, "watch") from e
