# node_trust/firewall/excluder.py
"""
Excluder

Holds the network ranges that bypass policy enforcement. The base
class only keeps the set; datapath subclasses override _apply().
"""

import asyncio
import logging
import threading
from typing import FrozenSet, Iterable

logger = logging.getLogger('node-trust.firewall')


class Excluder:
    """
    Replace-only exclusion set

    replace() is serialized; `excluded` can be read from any thread.
    """

    def __init__(self):
        self._write_lock = asyncio.Lock()
        self._read_lock = threading.Lock()
        self._excluded: FrozenSet[str] = frozenset()

    @property
    def excluded(self) -> FrozenSet[str]:
        with self._read_lock:
            return self._excluded

    def is_excluded(self, network: str) -> bool:
        return network in self.excluded

    async def replace(self, networks: Iterable[str]):
        """
        Swap in a new exclusion set

        Raises:
            ExcluderError: the datapath rejected the new set; the old set stays
        """
        new = frozenset(networks)
        async with self._write_lock:
            old = self.excluded
            await self._apply(old, new)
            with self._read_lock:
                self._excluded = new

        added = sorted(new - old)
        removed = sorted(old - new)
        if added or removed:
            logger.info(f"Exclusions updated: +{added} -{removed}")

    async def _apply(self, old: FrozenSet[str], new: FrozenSet[str]):
        pass
