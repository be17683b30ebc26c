# node_trust/exclusion.py
"""
Exclusion Synchronizer

Mirrors the cluster-wide exclusion ConfigMap into the local Excluder.
Every change replaces the whole set. An unparsable record leaves the
last good set in force; a set the excluder rejects stays pending and
is retried through a resync.
"""

import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, TYPE_CHECKING

from .errors import ApplyFailed, ExcluderError, ExclusionParseError, LoadError, NotFound, StoreError
from .store.base import ConfigRecord, EventType, MetadataClient, WatchEvent
from .watch import Backoff, SupervisedWatch

if TYPE_CHECKING:
    from .firewall.excluder import Excluder

logger = logging.getLogger('node-trust.exclusion')

_SEPARATORS = re.compile(r"[\s,]+")


@dataclass(frozen=True)
class ExclusionSet:
    """Normalized, sorted network ranges that bypass enforcement"""
    networks: Tuple[str, ...] = ()

    @classmethod
    def of(cls, networks: Iterable[str]) -> "ExclusionSet":
        parsed = {ipaddress.ip_network(n, strict=False) for n in networks}
        ordered = sorted(parsed, key=lambda n: (n.version, n.network_address, n.prefixlen))
        return cls(networks=tuple(str(n) for n in ordered))

    def __iter__(self):
        return iter(self.networks)

    def __len__(self):
        return len(self.networks)

    def __contains__(self, network: str) -> bool:
        return str(ipaddress.ip_network(network, strict=False)) in self.networks


EMPTY = ExclusionSet()


def split_entries(raw: str) -> List[str]:
    """Split a record value into entries, dropping # comments"""
    entries = []
    for line in raw.splitlines():
        line = line.split("#", 1)[0]
        entries.extend(e for e in _SEPARATORS.split(line) if e)
    return entries


def parse_exclusions(raw: Optional[str], cluster_networks: Sequence[str] = ()) -> ExclusionSet:
    """
    Parse an exclusion record value

    Invalid entries, and entries outside every cluster network, are
    skipped with a warning.

    Raises:
        ExclusionParseError: no value, or entries were given but none is usable
    """
    if raw is None:
        raise ExclusionParseError("exclusion record has no value")

    clusters = [ipaddress.ip_network(n, strict=False) for n in cluster_networks]
    entries = split_entries(raw)
    accepted = []

    for entry in entries:
        try:
            network = ipaddress.ip_network(entry, strict=False)
        except ValueError:
            logger.warning(f"Ignoring invalid exclusion entry: {entry!r}")
            continue

        if clusters and not any(network.version == c.version and network.overlaps(c) for c in clusters):
            logger.warning(f"Ignoring exclusion {network}: outside cluster networks")
            continue

        accepted.append(str(network))

    if entries and not accepted:
        raise ExclusionParseError(f"none of the {len(entries)} exclusion entries is usable")

    return ExclusionSet.of(accepted)


class ExclusionSynchronizer:
    """
    Loads the exclusion record once, then follows its changes
    """

    def __init__(
        self,
        store: MetadataClient,
        excluder: "Excluder",
        namespace: str,
        name: str,
        key: str = "networks",
        cluster_networks: Sequence[str] = (),
        backoff: Optional[Backoff] = None,
    ):
        self.store = store
        self.excluder = excluder
        self.namespace = namespace
        self.name = name
        self.key = key
        self.cluster_networks = list(cluster_networks)
        self.backoff = backoff or Backoff()

        self.current: Optional[ExclusionSet] = None
        self.resource_version: Optional[str] = None
        self.watcher: Optional[SupervisedWatch] = None

    @property
    def record_name(self) -> str:
        return f"{self.namespace}/{self.name}"

    async def initial_load(self) -> ExclusionSet:
        """
        Read, parse and apply the exclusion record

        Raises:
            LoadError: store unreachable, record unparsable, or excluder failure
        """
        try:
            exclusions = await self._reload()
        except (StoreError, ExclusionParseError, ExcluderError) as e:
            raise LoadError(f"Cannot load exclusions from {self.record_name}: {e}") from e

        logger.info(f"Loaded {len(exclusions)} exclusions from {self.record_name}")
        return exclusions

    async def watch(self):
        """Follow changes of the exclusion record; never returns"""
        # A restarted loop resumes where the previous watcher stopped
        if self.watcher is not None and self.watcher.resource_version:
            self.resource_version = self.watcher.resource_version

        self.watcher = SupervisedWatch(
            name="exclusions",
            subscribe=lambda rv: self.store.watch_config(self.namespace, self.name, rv),
            handle=self.apply_event,
            resync=self._resync,
            backoff=self.backoff,
        )
        logger.info(f"Watching exclusions in {self.record_name}")
        await self.watcher.run(self.resource_version)

    async def apply_event(self, event: WatchEvent):
        if event.type is EventType.DELETED:
            logger.warning(f"Exclusion record {self.record_name} deleted, clearing exclusions")
            try:
                await self._apply(EMPTY)
            except ExcluderError as e:
                raise ApplyFailed(f"cannot clear exclusions: {e}") from e
            return
        await self._apply_record(event.obj)

    async def _apply_record(self, record: ConfigRecord):
        try:
            exclusions = parse_exclusions(record.data.get(self.key), self.cluster_networks)
        except ExclusionParseError as e:
            logger.error(f"Keeping previous exclusions, {self.record_name} is unparsable: {e}")
            return
        try:
            await self._apply(exclusions)
        except ExcluderError as e:
            logger.error(f"Keeping previous exclusions, excluder failed: {e}")
            raise ApplyFailed(f"exclusions from {self.record_name} not applied: {e}") from e

    async def _apply(self, exclusions: ExclusionSet):
        if exclusions == self.current:
            logger.debug("Exclusions unchanged")
            return
        await self.excluder.replace(exclusions)
        self.current = exclusions
        logger.info(f"Applied exclusions: {', '.join(exclusions) or '(none)'}")

    async def _reload(self) -> ExclusionSet:
        try:
            record = await self.store.get_config(self.namespace, self.name)
        except NotFound:
            logger.warning(f"Exclusion record {self.record_name} not found, no exclusions applied")
            await self._apply(EMPTY)
            self.resource_version = None
            return EMPTY

        self.resource_version = record.resource_version
        exclusions = parse_exclusions(record.data.get(self.key), self.cluster_networks)
        await self._apply(exclusions)
        return exclusions

    async def _resync(self) -> str:
        try:
            await self._reload()
        except ExclusionParseError as e:
            logger.error(f"Keeping previous exclusions after resync: {e}")
        except ExcluderError as e:
            raise ApplyFailed(f"exclusions from {self.record_name} not applied: {e}") from e
        return self.resource_version or ""
