"""
Byte accounting for one file of a multi-file download, mapped onto the job's
overall percentage and throttled to bound write and broadcast volume.
"""

import logging
import time
from typing import Awaitable, Callable

from rd_downloader.exceptions import PersistenceError

log = logging.getLogger(__name__)

ProgressCallback = Callable[[float, int], Awaitable[None]]


class ProgressTracker:
    """
    Tracks bytes written for item `item_index` of `item_count` and reports
    `(overall_progress, downloaded_bytes)` to a callback.

    Updates are emitted at most once per `min_interval` seconds; `finish()`
    always emits. Intermediate ticks may be dropped, the latest value wins.
    """

    def __init__(
        self,
        on_update: ProgressCallback,
        item_index: int = 0,
        item_count: int = 1,
        total: int = 0,
        bytes_offset: int = 0,
        min_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if item_count < 1:
            raise ValueError("item_count must be at least 1")
        if not 0 <= item_index < item_count:
            raise ValueError("item_index must be within [0, item_count)")

        self._on_update = on_update
        self.item_index = item_index
        self.item_count = item_count
        self.total = max(0, total)
        self.bytes_offset = bytes_offset
        self.min_interval = min_interval
        self._clock = clock

        self.written = 0
        self._finished = False
        self._last_emit = clock()

    @property
    def item_progress(self) -> float:
        if self._finished:
            return 100.0
        if self.total <= 0:
            return 0.0
        return min(100.0, self.written / self.total * 100)

    @property
    def overall_progress(self) -> float:
        return (self.item_index * 100 + self.item_progress) / self.item_count

    @property
    def downloaded_bytes(self) -> int:
        return self.bytes_offset + self.written

    def set_total(self, total: int) -> None:
        """Adopts a total learned mid-transfer when none was known up front."""
        if self.total <= 0 and total > 0:
            self.total = total

    def reset(self) -> None:
        """Forgets written bytes, for a transfer that restarts from scratch."""
        self.written = 0

    async def advance(self, num_bytes: int) -> None:
        self.written += num_bytes
        now = self._clock()
        if now - self._last_emit >= self.min_interval:
            self._last_emit = now
            await self._emit()

    async def finish(self) -> None:
        """Marks the item complete and emits regardless of the throttle."""
        self._finished = True
        self._last_emit = self._clock()
        await self._emit()

    async def _emit(self) -> None:
        try:
            await self._on_update(self.overall_progress, self.downloaded_bytes)
        except PersistenceError as e:
            log.warning(f"[yellow]Could not record download progress: {e}[/yellow]")
