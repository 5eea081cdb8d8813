"""
Shared fixtures and in-memory stand-ins for Real-Debrid, the file
downloader and the subtitle tool.
"""

import asyncio
import os
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import pytest

from rd_downloader.core.event_hub import EventHub
from rd_downloader.core.job_processor import JobProcessor
from rd_downloader.exceptions import RemoteApiError, SubtitleError, TransferError
from rd_downloader.models.config import AppConfig
from rd_downloader.models.job import TorrentFile, TorrentInfo, UnrestrictedLink
from rd_downloader.storage.repository import JobRepository

Scripted = Union[TorrentInfo, BaseException]


class FakeRemoteClient:
    """Scripted Real-Debrid client. The last scripted status repeats forever."""

    def __init__(self):
        self.statuses: Dict[str, List[Scripted]] = {}
        self.links: Dict[str, Union[UnrestrictedLink, BaseException]] = {}
        self.add_error: Optional[BaseException] = None
        self.select_error: Optional[BaseException] = None
        self.delete_error: Optional[BaseException] = None

        self.added: List[str] = []
        self.selected: List[tuple] = []
        self.deleted: List[str] = []
        self.info_calls = 0
        self._next_id = 0

    def script(self, external_id: str, *responses: Scripted) -> None:
        self.statuses[external_id] = list(responses)

    def add_link(
        self, link: str, filename: str, download: str, filesize: int = 0
    ) -> None:
        self.links[link] = UnrestrictedLink(
            filename=filename, filesize=filesize, download=download
        )

    def _new_id(self) -> str:
        self._next_id += 1
        return f"RD{self._next_id}"

    async def add_magnet(self, magnet: str) -> str:
        if self.add_error:
            raise self.add_error
        self.added.append(magnet)
        return self._new_id()

    async def add_torrent(self, filename: str, torrent_data: bytes) -> str:
        if self.add_error:
            raise self.add_error
        self.added.append(filename)
        return self._new_id()

    async def get_torrent_info(self, torrent_id: str) -> TorrentInfo:
        self.info_calls += 1
        queue = self.statuses.get(torrent_id)
        if not queue:
            raise RemoteApiError(404, "unknown_ressource")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item

    async def select_files(self, torrent_id: str, file_ids: str) -> None:
        if self.select_error:
            raise self.select_error
        self.selected.append((torrent_id, file_ids))

    async def unrestrict_link(self, link: str) -> UnrestrictedLink:
        item = self.links.get(link)
        if item is None:
            raise RemoteApiError(503, "hoster_unavailable")
        if isinstance(item, BaseException):
            raise item
        return item

    async def delete_torrent(self, torrent_id: str) -> None:
        if self.delete_error:
            raise self.delete_error
        self.deleted.append(torrent_id)

    async def close(self) -> None:
        pass


class FakeDownloader:
    """Writes canned bytes to the destination and feeds the tracker."""

    def __init__(self):
        self.contents: Dict[str, bytes] = {}
        self.failures: set = set()
        self.calls: List[tuple] = []

    async def fetch(self, url, destination_path, expected_size=0, tracker=None):
        self.calls.append((url, destination_path))
        if url in self.failures:
            raise TransferError(f"Bad status: 404 Not Found ({url})")
        data = self.contents.get(url, b"0123456789")
        Path(destination_path).write_bytes(data)
        if tracker is not None:
            tracker.set_total(len(data))
            half = len(data) // 2
            await tracker.advance(half)
            await tracker.advance(len(data) - half)

    async def close(self):
        pass


class FakeSubtitles:
    def __init__(self, available: bool = True, failing: Sequence[str] = ()):
        self.available = available
        self.failing = set(failing)
        self.fetched: List[str] = []

    def is_available(self) -> bool:
        return self.available

    async def fetch(self, video_path: str) -> None:
        self.fetched.append(video_path)
        if os.path.basename(video_path) in self.failing:
            raise SubtitleError("no subtitles found")


def torrent_info(status: str, **fields) -> TorrentInfo:
    return TorrentInfo(status=status, **fields)


def torrent_files(*paths: str) -> List[TorrentFile]:
    return [TorrentFile(id=i, path=p, bytes=1000 * i) for i, p in enumerate(paths, 1)]


async def drain(queue: asyncio.Queue, settle: float = 0.05) -> list:
    """Lets the relay task catch up, then empties a subscriber queue."""
    await asyncio.sleep(settle)
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


@pytest.fixture
def config(tmp_path) -> AppConfig:
    return AppConfig(
        api_key="test-key",
        library_path=str(tmp_path / "library"),
        config_path=str(tmp_path / "config"),
        poll_interval=0.01,
        progress_interval=0.001,
    )


@pytest.fixture
def repository(config) -> JobRepository:
    return JobRepository(config.db_path)


@pytest.fixture
def remote() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture
def subtitles() -> FakeSubtitles:
    return FakeSubtitles()


@pytest.fixture
def hub() -> EventHub:
    return EventHub()


@pytest.fixture
def processor(config, remote, repository, hub, downloader, subtitles) -> JobProcessor:
    return JobProcessor(config, remote, repository, hub, downloader, subtitles)
