"""Tests for the streaming downloader against a local HTTP server."""

import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from rd_downloader.exceptions import TransferError
from rd_downloader.media.downloader import Downloader
from rd_downloader.media.progress import ProgressTracker

PAYLOAD = b"x" * 300_000


def _app() -> web.Application:
    async def movie(request):
        return web.Response(body=PAYLOAD)

    async def missing(request):
        return web.Response(status=404, text="not found")

    app = web.Application()
    app.router.add_get("/movie.mkv", movie)
    app.router.add_get("/missing.mkv", missing)
    return app


def _fetch(path, destination, tracker=None, expected_size=0):
    async def scenario():
        downloader = Downloader(max_attempts=2, base_delay=0.01)
        try:
            async with TestServer(_app()) as server:
                await downloader.fetch(
                    str(server.make_url(path)), str(destination), expected_size, tracker
                )
        finally:
            await downloader.close()

    asyncio.run(scenario())


class TestDownloader:
    def test_streams_body_to_disk(self, tmp_path):
        destination = tmp_path / "movie.mkv"
        destination.write_bytes(b"stale partial content from an earlier run" * 10_000)

        _fetch("/movie.mkv", destination)

        assert destination.read_bytes() == PAYLOAD

    def test_feeds_tracker_with_content_length(self, tmp_path):
        updates = []

        async def on_update(progress, downloaded):
            updates.append((progress, downloaded))

        tracker = ProgressTracker(on_update, min_interval=0.0)

        _fetch("/movie.mkv", tmp_path / "movie.mkv", tracker)

        assert tracker.total == len(PAYLOAD)
        assert tracker.written == len(PAYLOAD)
        assert updates[-1] == (100.0, len(PAYLOAD))

    def test_bad_status_fails_and_removes_file(self, tmp_path):
        destination = tmp_path / "missing.mkv"

        with pytest.raises(TransferError, match="404"):
            _fetch("/missing.mkv", destination)

        assert not destination.exists()

    def test_unreachable_host_fails_after_retries(self, tmp_path):
        destination = tmp_path / "movie.mkv"

        async def scenario():
            downloader = Downloader(max_attempts=2, base_delay=0.01)
            try:
                await downloader.fetch("http://127.0.0.1:9/movie.mkv", str(destination))
            finally:
                await downloader.close()

        with pytest.raises(TransferError, match="after 2 attempts"):
            asyncio.run(scenario())
        assert not destination.exists()

    def test_invalid_url(self, tmp_path):
        async def scenario():
            downloader = Downloader(max_attempts=1)
            try:
                await downloader.fetch("not a url", str(tmp_path / "x"))
            finally:
                await downloader.close()

        with pytest.raises(TransferError):
            asyncio.run(scenario())

    def test_unwritable_destination(self, tmp_path):
        destination = tmp_path / "no-such-dir" / "movie.mkv"

        with pytest.raises(TransferError):
            _fetch("/movie.mkv", destination)

    def test_destination_is_created_before_request(self, tmp_path):
        destination = tmp_path / "early.mkv"
        destination.write_bytes(b"old content")
        seen = []

        async def movie(request):
            seen.append(destination.read_bytes())
            return web.Response(body=b"fresh")

        app = web.Application()
        app.router.add_get("/early.mkv", movie)

        async def scenario():
            downloader = Downloader(max_attempts=1)
            try:
                async with TestServer(app) as server:
                    await downloader.fetch(
                        str(server.make_url("/early.mkv")), str(destination)
                    )
            finally:
                await downloader.close()

        asyncio.run(scenario())

        # Already created and truncated when the server saw the request.
        assert seen == [b""]
        assert destination.read_bytes() == b"fresh"
