"""
Fan-out of job snapshots to live subscribers.
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator, Optional

from rd_downloader.models.job import JobSnapshot

log = logging.getLogger(__name__)


class EventHub:
    """
    Relays job snapshots from workers to any number of subscriber queues.

    Neither publishing nor delivery ever blocks: a full incoming queue drops
    the update, and a full subscriber queue misses that update only.
    """

    def __init__(self, maxsize: int = 100):
        self._incoming: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers: set[asyncio.Queue] = set()
        self._relay_task: Optional[asyncio.Task] = None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def is_running(self) -> bool:
        return self._relay_task is not None and not self._relay_task.done()

    def subscribe(self, maxsize: int = 10) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers.add(queue)
        log.debug(f"Subscriber added ({len(self._subscribers)} total).")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        """Removes a subscriber. Unknown queues are ignored."""
        self._subscribers.discard(queue)

    @asynccontextmanager
    async def subscription(self, maxsize: int = 10) -> AsyncIterator[asyncio.Queue]:
        queue = self.subscribe(maxsize)
        try:
            yield queue
        finally:
            self.unsubscribe(queue)

    def broadcast(self, snapshot: JobSnapshot) -> bool:
        """Queues a snapshot for delivery. Returns False if it was dropped."""
        try:
            self._incoming.put_nowait(snapshot)
        except asyncio.QueueFull:
            log.debug(f"Update channel full, dropping update for job {snapshot.id}.")
            return False
        return True

    def start(self) -> None:
        """Starts the relay task."""
        if not self.is_running:
            self._relay_task = asyncio.create_task(self._relay_loop())
            log.debug("Started event hub relay task.")

    async def stop(self) -> None:
        """Stops the relay task gracefully."""
        if self._relay_task and not self._relay_task.done():
            self._relay_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._relay_task
            log.debug("Stopped event hub relay task.")
        self._relay_task = None

    async def _relay_loop(self) -> None:
        while True:
            snapshot = await self._incoming.get()
            # Copy: subscribers may come and go while we deliver.
            for queue in list(self._subscribers):
                try:
                    queue.put_nowait(snapshot)
                except asyncio.QueueFull:
                    log.debug(f"Subscriber queue full, skipping update for job {snapshot.id}.")
