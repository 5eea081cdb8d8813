"""Tests for the Real-Debrid API client against a local HTTP server."""

import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from rd_downloader.api.client import RealDebridClient
from rd_downloader.api.rate_limiter import TokenBucketRateLimiter
from rd_downloader.exceptions import RemoteApiError
from rd_downloader.utils.circuit_breaker import CircuitState


def _app(seen: list) -> web.Application:
    async def add_magnet(request):
        form = await request.post()
        seen.append((request.headers.get("Authorization"), form.get("magnet")))
        return web.json_response({"id": "ABC123", "uri": "https://..."}, status=201)

    async def info(request):
        if request.match_info["id"] == "busy":
            return web.json_response({"error": "too_many_requests"}, status=429)
        if request.match_info["id"] != "ABC123":
            return web.json_response(
                {"error": "unknown_ressource", "error_code": 7}, status=404
            )
        return web.json_response(
            {
                "id": "ABC123",
                "filename": "Movie.2024.mkv",
                "bytes": 1024,
                "progress": 55.5,
                "status": "downloading",
                "files": [{"id": 1, "path": "/Movie.2024.mkv", "bytes": 1024, "selected": 1}],
                "links": [],
                "hash": "ignored",
            }
        )

    async def select(request):
        form = await request.post()
        seen.append(("select", form.get("files")))
        return web.Response(status=204)

    async def unrestrict(request):
        return web.json_response(
            {
                "filename": "Movie.2024.mkv",
                "filesize": 1024,
                "download": "https://cdn.example/Movie.2024.mkv",
                "mimeType": "video/x-matroska",
            }
        )

    async def delete(request):
        return web.Response(status=204)

    app = web.Application()
    app.router.add_post("/torrents/addMagnet", add_magnet)
    app.router.add_get("/torrents/info/{id}", info)
    app.router.add_post("/torrents/selectFiles/{id}", select)
    app.router.add_post("/unrestrict/link", unrestrict)
    app.router.add_delete("/torrents/delete/{id}", delete)
    return app


def _run(scenario_fn, seen=None):
    seen = [] if seen is None else seen

    async def scenario():
        async with TestServer(_app(seen)) as server:
            client = RealDebridClient(
                "secret-token",
                TokenBucketRateLimiter(requests_per_minute=60_000, burst=50),
                base_url=str(server.make_url("")),
            )
            try:
                return await scenario_fn(client)
            finally:
                await client.close()

    return asyncio.run(scenario())


class TestRealDebridClient:
    def test_add_magnet_sends_bearer_token(self):
        seen = []

        torrent_id = _run(lambda c: c.add_magnet("magnet:?xt=urn:btih:abc"), seen)

        assert torrent_id == "ABC123"
        assert seen == [("Bearer secret-token", "magnet:?xt=urn:btih:abc")]

    def test_torrent_info_is_parsed(self):
        info = _run(lambda c: c.get_torrent_info("ABC123"))

        assert info.status == "downloading"
        assert info.progress == 55.5
        assert info.files[0].is_selected

    def test_error_status_raises_with_api_message(self):
        with pytest.raises(RemoteApiError) as excinfo:
            _run(lambda c: c.get_torrent_info("nope"))

        assert excinfo.value.status == 404
        assert excinfo.value.message == "unknown_ressource"
        assert excinfo.value.is_client_error

    def test_client_errors_do_not_trip_breaker(self):
        async def scenario(client):
            for _ in range(6):
                with pytest.raises(RemoteApiError):
                    await client.get_torrent_info("nope")
            return client._circuit_breaker.state

        assert _run(scenario) == CircuitState.CLOSED

    def test_select_files_and_empty_answers(self):
        seen = []

        async def scenario(client):
            await client.select_files("ABC123", "1,2")
            return await client.delete_torrent("ABC123")

        assert _run(scenario, seen) is None
        assert seen == [("select", "1,2")]

    def test_unrestrict_link(self):
        link = _run(lambda c: c.unrestrict_link("https://real-debrid.com/d/XYZ"))

        assert link.download == "https://cdn.example/Movie.2024.mkv"
        assert link.mime_type == "video/x-matroska"

    def test_rate_limited_answer_slows_limiter(self):
        async def scenario(client):
            before = client.rate_limiter.rate_per_second
            with pytest.raises(RemoteApiError) as excinfo:
                await client.get_torrent_info("busy")
            return before, client.rate_limiter.rate_per_second, excinfo.value

        before, after, error = _run(scenario)

        assert after == before / 2
        assert error.status == 429
        assert not error.is_client_error
