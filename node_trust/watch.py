# node_trust/watch.py
"""
Supervised watch loop

Keeps a watch subscription alive forever:
- Resumes from the last seen resource version after a drop
- Exponential backoff between failed subscriptions (bounded)
- Full resync when the store no longer has the requested history
  or a change could not be applied
- Handler errors are logged and never end the loop
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional

from .errors import ApplyFailed, StoreError, WatchExpired
from .store.base import WatchEvent

logger = logging.getLogger('node-trust.watch')


class WatchOutcome(Enum):
    """How one subscription ended"""
    CLOSED = "closed"            # server ended the stream, resume immediately
    LOST = "lost"                # transport failure, back off then resume
    EXPIRED = "expired"          # history gone, resync before resuming
    RETRY = "retry"              # change not applied, resync after a delay


@dataclass
class Backoff:
    """Exponential backoff with an upper bound"""
    min_delay: float = 1.0
    max_delay: float = 60.0
    factor: float = 2.0

    def __post_init__(self):
        self._current = self.min_delay

    def next_delay(self) -> float:
        delay = self._current
        self._current = min(self._current * self.factor, self.max_delay)
        return delay

    def reset(self):
        self._current = self.min_delay


class SupervisedWatch:
    """
    Runs subscribe -> handle events -> resubscribe until cancelled

    Args:
        name: Used in log messages
        subscribe: Opens a stream of events after a resource version
        handle: Applies one event
        resync: Re-reads the full state, applies it, returns its resource version
        backoff: Delay policy for failed subscriptions
    """

    def __init__(
        self,
        name: str,
        subscribe: Callable[[str], AsyncIterator[WatchEvent]],
        handle: Callable[[WatchEvent], Awaitable[None]],
        resync: Callable[[], Awaitable[str]],
        backoff: Optional[Backoff] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = name
        self.subscribe = subscribe
        self.handle = handle
        self.resync = resync
        self.backoff = backoff or Backoff()
        self._sleep = sleep

        self.resource_version: Optional[str] = None
        self.subscriptions = 0
        self.events_received = 0

    async def run(self, resource_version: Optional[str] = None):
        """Never returns; ends only through cancellation"""
        self.resource_version = resource_version

        while True:
            if self.resource_version is None:
                if not await self._resync():
                    await self._sleep(self.backoff.next_delay())
                    continue

            outcome = await self.run_once()

            if outcome in (WatchOutcome.EXPIRED, WatchOutcome.RETRY):
                delay = self.backoff.next_delay()
                logger.info(f"[{self.name}] resyncing in {delay:.1f}s")
                self.resource_version = None
                await self._sleep(delay)
            elif outcome is WatchOutcome.LOST:
                delay = self.backoff.next_delay()
                logger.info(f"[{self.name}] resubscribing in {delay:.1f}s")
                await self._sleep(delay)

    async def run_once(self) -> WatchOutcome:
        """Consume one subscription until it ends"""
        self.subscriptions += 1
        logger.debug(f"[{self.name}] subscribing from resource version {self.resource_version}")

        try:
            async for event in self.subscribe(self.resource_version):
                self.events_received += 1
                await self._apply(event)
                self.backoff.reset()
                if event.resource_version:
                    self.resource_version = event.resource_version
        except WatchExpired as e:
            logger.warning(f"[{self.name}] watch expired: {e}")
            return WatchOutcome.EXPIRED
        except ApplyFailed as e:
            logger.warning(f"[{self.name}] change not applied: {e}")
            return WatchOutcome.RETRY
        except StoreError as e:
            logger.warning(f"[{self.name}] watch subscription lost: {e}")
            return WatchOutcome.LOST

        logger.debug(f"[{self.name}] watch stream closed by server")
        return WatchOutcome.CLOSED

    async def _apply(self, event: WatchEvent):
        try:
            await self.handle(event)
        except (asyncio.CancelledError, ApplyFailed):
            raise
        except Exception as e:
            logger.error(f"[{self.name}] failed to apply {event.type.value} event: {e}")

    async def _resync(self) -> bool:
        try:
            self.resource_version = await self.resync()
        except (StoreError, ApplyFailed) as e:
            logger.warning(f"[{self.name}] resync failed: {e}")
            return False
        return True
