#!/usr/bin/env python3
# node_trust/agent.py
"""
Node Trust Agent

Bootstraps trust and exclusion policy for this node:
1. Publishes the local certificate and loads peer certificates (PKI)
2. Loads the cluster exclusion list into the excluder
3. Starts enforcement, then keeps both in sync through watches
4. Shuts down on SIGINT
"""

import asyncio
import logging
import signal
import sys
from typing import Awaitable, Callable, List, Optional

from .cache import CertificateCache
from .config import Settings, load_config
from .configurator import Bundle, PKIBundle, new_bundle
from .errors import ConfigError, StartupError, StoreError
from .exclusion import ExclusionSynchronizer
from .firewall.excluder import Excluder
from .firewall.iptables import IPTablesExcluder
from .identity import NodeIdentity
from .resolver import KubernetesPolicy
from .status import StatusServer
from .store.base import MetadataClient
from .trust_sync import TrustSynchronizer
from .watch import Backoff

logger = logging.getLogger('node-trust')


class NodeTrustAgent:
    """
    Bootstrap orchestrator

    Nothing runs in the background until every startup step succeeded;
    any startup failure raises StartupError.
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[MetadataClient] = None,
        excluder: Optional[Excluder] = None,
    ):
        self.settings = settings
        self.node_name = settings.node_name
        self.auth_mode = settings.auth_mode

        self.store = store
        self._owns_store = store is None
        self._excluder = excluder

        # Built during setup()
        self.resolver: Optional[KubernetesPolicy] = None
        self.bundle: Optional[Bundle] = None
        self.certificate_cache: Optional[CertificateCache] = None
        self.trust_sync: Optional[TrustSynchronizer] = None
        self.exclusion_sync: Optional[ExclusionSynchronizer] = None
        self.status_server: Optional[StatusServer] = None

        self.tasks: List[asyncio.Task] = []
        self.running = False
        self._shutdown_event: Optional[asyncio.Event] = None

        logger.info(f"Node Trust Agent initialized for node {self.node_name} ({self.auth_mode.value})")

    def _backoff(self) -> Backoff:
        return Backoff(
            min_delay=self.settings.WATCH_BACKOFF_MIN,
            max_delay=self.settings.WATCH_BACKOFF_MAX,
        )

    def _build_excluder(self) -> Excluder:
        backend = self.settings.EXCLUDER_BACKEND.lower()
        if backend == "iptables":
            return IPTablesExcluder()
        if backend in ("none", "memory"):
            return Excluder()
        raise ConfigError(f"Unknown excluder backend: {self.settings.EXCLUDER_BACKEND}")

    async def _connect_store(self) -> MetadataClient:
        from .store.kube import KubernetesStore

        try:
            return await KubernetesStore.connect(
                kubeconfig=self.settings.KUBECONFIG or None,
                in_cluster=self.settings.in_cluster,
            )
        except StoreError as e:
            raise StartupError(f"Cannot connect to the metadata store: {e}") from e

    async def setup(self):
        """
        Run every startup step in dependency order

        Raises:
            StartupError: construction, publish, sync or exclusion load failed
        """
        if self.store is None:
            self.store = await self._connect_store()

        try:
            await self._setup()
        except StartupError:
            await self._close_store()
            raise

    async def _setup(self):
        settings = self.settings

        self.resolver = KubernetesPolicy(self.store, settings.KUBERNETES_NODE)

        excluder = self._excluder or self._build_excluder()
        try:
            self.bundle = new_bundle(settings, self.resolver, excluder)
        except ValueError as e:
            raise StartupError(f"Cannot configure enforcement: {e}") from e

        if isinstance(self.bundle, PKIBundle):
            self.certificate_cache = self.bundle.public_key_adder
            identity = NodeIdentity.create(settings.KUBERNETES_NODE, self.bundle.pki.cert_pem)
            self.trust_sync = TrustSynchronizer(
                store=self.store,
                cache=self.certificate_cache,
                identity=identity,
                annotation_key=settings.NODE_CERT_ANNOTATION,
                evict_deleted_peers=settings.EVICT_DELETED_PEERS,
                backoff=self._backoff(),
            )
            await self.trust_sync.publish_local_certificate()
            await self.trust_sync.sync_existing_peers()

        self.resolver.set_policy_updater(self.bundle.policy_updater)
        self.resolver.set_excluder(self.bundle.excluder)

        self.exclusion_sync = ExclusionSynchronizer(
            store=self.store,
            excluder=self.bundle.excluder,
            namespace=settings.EXCLUSION_NAMESPACE,
            name=settings.EXCLUSION_CONFIGMAP,
            key=settings.EXCLUSION_KEY,
            cluster_networks=settings.CLUSTER_NETWORKS,
            backoff=self._backoff(),
        )
        await self.exclusion_sync.initial_load()

    def start_components(self):
        self.bundle.policy_updater.start()
        self.bundle.monitor.start()
        self.resolver.run()

    def start_background_tasks(self):
        self.tasks.append(self._spawn("exclusion-watch", self.exclusion_sync.watch))
        if self.trust_sync is not None:
            self.tasks.append(self._spawn("peer-watch", self.trust_sync.watch_peers))

        if self.settings.STATUS_PORT > 0:
            self.status_server = StatusServer(self, self.settings.STATUS_PORT)
            self.status_server.start()

    def _spawn(self, name: str, factory: Callable[[], Awaitable[None]]) -> asyncio.Task:
        return asyncio.create_task(self._keep_alive(name, factory), name=name)

    async def _keep_alive(self, name: str, factory: Callable[[], Awaitable[None]]):
        """Restart a background loop that crashed; errors never leave the task"""
        backoff = self._backoff()
        while True:
            try:
                await factory()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                delay = backoff.next_delay()
                logger.error(f"{name} crashed: {e}, restarting in {delay:.1f}s", exc_info=True)
                await asyncio.sleep(delay)

    async def start(self):
        """Start the agent and block until SIGINT"""
        logger.info("Starting Node Trust Agent...")
        self._shutdown_event = asyncio.Event()

        await self.setup()
        self.start_components()
        self.start_background_tasks()
        self.running = True

        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, self.request_shutdown)

        logger.info("Node Trust Agent started successfully")
        await self._shutdown_event.wait()

        loop.remove_signal_handler(signal.SIGINT)
        await self.stop()

    def request_shutdown(self):
        logger.info("Received interrupt, shutting down")
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def stop(self):
        """Stop resolver, monitor and enforcer in that order, then drop the watches"""
        self.running = False

        if self.resolver is not None:
            self.resolver.stop()
        if self.bundle is not None:
            self.bundle.monitor.stop()
            self.bundle.policy_updater.stop()

        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks.clear()

        if self.status_server is not None:
            await asyncio.to_thread(self.status_server.stop)
            self.status_server = None

        await self._close_store()
        logger.info("Node Trust Agent stopped")

    async def _close_store(self):
        if self._owns_store and self.store is not None:
            await self.store.close()
            self.store = None


def configure_logging(level: str = "INFO", log_file: str = ""):
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def main(argv: Optional[List[str]] = None):
    """Entry point"""
    try:
        settings = load_config(argv)
    except ConfigError as e:
        configure_logging()
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    configure_logging(settings.LOG_LEVEL, settings.LOG_FILE)
    logger.debug(f"Config used: {settings.model_dump(exclude={'NODE_TRUST_PSK'})}")

    agent = NodeTrustAgent(settings)

    try:
        asyncio.run(agent.start())
    except StartupError as e:
        logger.error(f"Startup aborted: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted before startup completed")
        sys.exit(1)


if __name__ == "__main__":
    main()
