# node_trust/firewall/iptables.py
"""
IPTables Excluder

Keeps excluded networks in a dedicated chain that INPUT and OUTPUT
jump to before any enforcement chain. The chain is rebuilt on every
update; if rebuilding fails, the previous rules are restored.
"""

import asyncio
import logging
from typing import FrozenSet, Iterable, List, Optional

from ..errors import ExcluderError
from .excluder import Excluder

logger = logging.getLogger('node-trust.firewall.iptables')


class IPTablesExcluder(Excluder):
    """
    Excluder backed by an iptables chain
    """

    CHAIN_NAME = "NODE_TRUST_EXCLUDE"
    PARENT_CHAINS = ("INPUT", "OUTPUT")

    def __init__(self, binary: str = "iptables", ip6_binary: Optional[str] = "ip6tables"):
        super().__init__()
        self.binary = binary
        self.ip6_binary = ip6_binary
        self._initialized = False

    async def initialize(self):
        """Create the chain and the jump rules if missing"""
        if self._initialized:
            return

        for binary in self._binaries():
            if not await self._run([binary, "-L", self.CHAIN_NAME, "-n"], check=False):
                await self._run([binary, "-N", self.CHAIN_NAME])
                logger.info(f"Created chain {self.CHAIN_NAME} ({binary})")

            for parent in self.PARENT_CHAINS:
                if not await self._run([binary, "-C", parent, "-j", self.CHAIN_NAME], check=False):
                    await self._run([binary, "-I", parent, "1", "-j", self.CHAIN_NAME])
                    logger.info(f"Added jump rule: {parent} -> {self.CHAIN_NAME}")

        self._initialized = True

    async def _apply(self, old: FrozenSet[str], new: FrozenSet[str]):
        await self.initialize()
        try:
            await self._rebuild(new)
        except ExcluderError:
            logger.warning("Restoring previous exclusion rules")
            try:
                await self._rebuild(old)
            except ExcluderError as e:
                logger.error(f"Could not restore previous exclusion rules: {e}")
            raise

    async def _rebuild(self, networks: Iterable[str]):
        for binary in self._binaries():
            await self._run([binary, "-F", self.CHAIN_NAME])

        for network in sorted(networks):
            binary = self.ip6_binary if ":" in network else self.binary
            if binary is None:
                logger.warning(f"No ip6tables binary configured, skipping {network}")
                continue
            for cmd in self.rule_commands(binary, network):
                await self._run(cmd)

    def rule_commands(self, binary: str, network: str) -> List[List[str]]:
        """iptables commands that let traffic to and from `network` bypass enforcement"""
        comment = ["-m", "comment", "--comment", "node-trust exclusion"]
        return [
            [binary, "-A", self.CHAIN_NAME, "-s", network, "-j", "ACCEPT", *comment],
            [binary, "-A", self.CHAIN_NAME, "-d", network, "-j", "ACCEPT", *comment],
        ]

    async def cleanup(self):
        """Remove the chain and its jump rules"""
        for binary in self._binaries():
            for parent in self.PARENT_CHAINS:
                await self._run([binary, "-D", parent, "-j", self.CHAIN_NAME], check=False)
            await self._run([binary, "-F", self.CHAIN_NAME], check=False)
            await self._run([binary, "-X", self.CHAIN_NAME], check=False)
        self._initialized = False
        logger.info(f"Removed chain {self.CHAIN_NAME}")

    def _binaries(self) -> List[str]:
        return [b for b in (self.binary, self.ip6_binary) if b]

    async def _run(self, cmd: List[str], check: bool = True) -> bool:
        """
        Run an iptables command

        Returns:
            True on success; False on failure when check is False

        Raises:
            ExcluderError: the command failed and check is True
        """
        logger.debug(f"iptables: {' '.join(cmd)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await proc.communicate()
        except OSError as e:
            if check:
                raise ExcluderError(f"{' '.join(cmd)}: {e}") from e
            return False

        if proc.returncode != 0:
            if check:
                raise ExcluderError(f"{' '.join(cmd)} failed: {stderr.decode().strip()}")
            return False
        return True
