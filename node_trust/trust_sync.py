# node_trust/trust_sync.py
"""
Trust Synchronizer

Distributes node certificates through node annotations:
1. Publishes the local certificate on the local node object
2. Loads every peer certificate into the certificate cache
3. Watches node changes and keeps the cache current
"""

import logging
from enum import Enum
from typing import Optional, TYPE_CHECKING

from .errors import PublishError, StoreError, SyncError
from .identity import NodeIdentity, truncate_node_name
from .pki import is_valid_certificate
from .store.base import EventType, MetadataClient, NodeRecord, WatchEvent
from .watch import Backoff, SupervisedWatch

if TYPE_CHECKING:
    from .cache import CertificateCache

logger = logging.getLogger('node-trust.trust')


class TrustState(Enum):
    NOT_PUBLISHED = "not_published"
    PUBLISHED = "published"
    SYNCED = "synced"
    WATCHING = "watching"


class TrustSynchronizer:
    """
    Publishes the local certificate and mirrors peer certificates

    Deleted nodes keep their cached certificate unless
    evict_deleted_peers is set.
    """

    def __init__(
        self,
        store: MetadataClient,
        cache: "CertificateCache",
        identity: NodeIdentity,
        annotation_key: str,
        evict_deleted_peers: bool = False,
        backoff: Optional[Backoff] = None,
    ):
        self.store = store
        self.cache = cache
        self.identity = identity
        self.annotation_key = annotation_key
        self.evict_deleted_peers = evict_deleted_peers
        self.backoff = backoff or Backoff()

        self.state = TrustState.NOT_PUBLISHED
        self.resource_version: Optional[str] = None
        self.watcher: Optional[SupervisedWatch] = None

    async def publish_local_certificate(self, identity: Optional[NodeIdentity] = None):
        """
        Write the local certificate into the local node's annotation

        Safe to call on every restart: an identical stored value is left alone.

        Raises:
            PublishError: the node could not be read or the write was rejected
        """
        identity = identity or self.identity
        value = identity.certificate_text

        try:
            node = await self.store.get_node(identity.store_name)
            if node.annotations.get(self.annotation_key) == value:
                logger.info(f"Certificate already published on node {identity.store_name}")
            else:
                await self.store.annotate_node(identity.store_name, self.annotation_key, value)
                logger.info(f"Published certificate on node {identity.store_name} ({self.annotation_key})")
        except StoreError as e:
            raise PublishError(f"Cannot publish certificate for node {identity.store_name}: {e}") from e

        if self.state is TrustState.NOT_PUBLISHED:
            self.state = TrustState.PUBLISHED

    async def sync_existing_peers(self) -> int:
        """
        Load the certificates of all current peers into the cache

        Returns:
            Number of peer nodes processed

        Raises:
            SyncError: the node list could not be read
        """
        if self.state is TrustState.NOT_PUBLISHED:
            raise RuntimeError("Local certificate must be published before syncing peers")

        try:
            count = await self._resync()
        except StoreError as e:
            raise SyncError(f"Cannot list node certificates: {e}") from e

        logger.info(f"Synced {count} peer certificates (resource version {self.resource_version})")
        if self.state is TrustState.PUBLISHED:
            self.state = TrustState.SYNCED
        return count

    async def watch_peers(self):
        """Apply node changes to the cache; never returns"""
        if self.state not in (TrustState.SYNCED, TrustState.WATCHING):
            raise RuntimeError("Peers must be synced before watching")

        # A restarted loop resumes where the previous watcher stopped
        if self.watcher is not None and self.watcher.resource_version:
            self.resource_version = self.watcher.resource_version

        self.watcher = SupervisedWatch(
            name="peers",
            subscribe=self.store.watch_nodes,
            handle=self.apply_event,
            resync=self._relist,
            backoff=self.backoff,
        )
        self.state = TrustState.WATCHING
        logger.info("Watching node certificates")
        await self.watcher.run(self.resource_version)

    async def apply_event(self, event: WatchEvent):
        record = event.obj
        if self._is_local(record):
            return

        if event.type is EventType.DELETED:
            if self.evict_deleted_peers and self.cache.remove_public_key(truncate_node_name(record.name)):
                logger.info(f"Node {record.name} deleted, certificate evicted")
            else:
                logger.debug(f"Node {record.name} deleted, keeping cached certificate")
            return

        self._apply_record(record)

    def _is_local(self, record: NodeRecord) -> bool:
        return record.name == self.identity.store_name

    def _apply_record(self, record: NodeRecord) -> bool:
        cert = record.annotations.get(self.annotation_key)
        if not cert:
            logger.debug(f"Node {record.name} has no certificate annotation")
            return False
        if not is_valid_certificate(cert):
            logger.warning(f"Skipping malformed certificate on node {record.name}")
            return False
        if self.cache.add_public_key(truncate_node_name(record.name), cert.encode()):
            logger.info(f"Trusting certificate of node {record.name}")
        return True

    async def _resync(self) -> int:
        nodes, resource_version = await self.store.list_nodes()
        peers = [n for n in nodes if not self._is_local(n)]

        for node in peers:
            self._apply_record(node)

        if self.evict_deleted_peers:
            present = {truncate_node_name(n.name) for n in peers}
            for name in self.cache.snapshot():
                if name not in present:
                    self.cache.remove_public_key(name)
                    logger.info(f"Node {name} gone after resync, certificate evicted")

        self.resource_version = resource_version
        return len(peers)

    async def _relist(self) -> str:
        await self._resync()
        return self.resource_version
