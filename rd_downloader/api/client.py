"""
Async client for the Real-Debrid REST API with a shared rate limiter and
circuit breaker protection.
"""

import logging
import time
from typing import Any, Optional

import aiohttp

from rd_downloader.exceptions import RemoteApiError
from rd_downloader.models.job import TorrentInfo, UnrestrictedLink
from rd_downloader.utils.circuit_breaker import CircuitBreaker, CircuitBreakerError

from .rate_limiter import TokenBucketRateLimiter

log = logging.getLogger(__name__)


def _is_service_failure(exc: BaseException) -> bool:
    """Client-side API errors (bad id, bad magnet) say nothing about service health."""
    if isinstance(exc, RemoteApiError):
        return not exc.is_client_error
    return True


class RealDebridClient:
    """
    Async client for the Real-Debrid REST API (v1.0).

    Every request, whichever worker issues it, passes through one token bucket
    so that the workers together stay under the documented request ceiling.
    """

    BASE_URL = "https://api.real-debrid.com/rest/1.0"

    def __init__(
        self,
        api_key: str,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        base_url: Optional[str] = None,
        max_workers: int = 2,
    ):
        """
        Initializes the API client.

        Args:
            api_key: Private API token from real-debrid.com/apitoken.
            rate_limiter: Limiter shared by every caller. A default one is created if omitted.
            base_url: Override for the API root, used against test servers.
            max_workers: The number of concurrent workers, used to tune the connection pool.
        """
        self.api_key = api_key
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.max_workers = max_workers

        self._session: Optional[aiohttp.ClientSession] = None
        self._rate_limiter = rate_limiter or TokenBucketRateLimiter()
        self._circuit_breaker = CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60,
            success_threshold=2,
            trips=_is_service_failure,
        )

    @property
    def rate_limiter(self) -> TokenBucketRateLimiter:
        return self._rate_limiter

    async def _initialize_session(self) -> None:
        """Ensures an active aiohttp session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_workers * 2,
                limit_per_host=self.max_workers * 2,
                ttl_dns_cache=300,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "User-Agent": "rd-downloader",
                },
                timeout=aiohttp.ClientTimeout(total=30, connect=15),
            )

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    @staticmethod
    async def _error_message(response: aiohttp.ClientResponse) -> str:
        try:
            payload = await response.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            return (await response.text()).strip()
        if isinstance(payload, dict) and payload.get("error"):
            return str(payload["error"])
        return str(payload)

    async def api_call(
        self,
        method: str,
        endpoint: str,
        data: Any = None,
    ) -> Any:
        """
        Makes an authenticated API call with rate limiting and circuit breaker.

        Returns the decoded JSON body, or None for empty (204) answers.
        """
        await self._initialize_session()

        try:
            async with self._circuit_breaker:
                await self._rate_limiter.acquire()

                start_time = time.monotonic()
                async with self._session.request(
                    method, self.base_url + endpoint, data=data
                ) as r:
                    duration_ms = (time.monotonic() - start_time) * 1000
                    log.debug(
                        f"{method} {endpoint} -> {r.status} ({duration_ms:.0f} ms)"
                    )

                    if r.status == 429:
                        await self._rate_limiter.on_429()

                    if r.status >= 400:
                        raise RemoteApiError(r.status, await self._error_message(r))

                    if r.status == 204:
                        return None
                    body = await r.read()
                    if not body:
                        return None
                    return await r.json(content_type=None)

        except CircuitBreakerError as e:
            log.error(f"[red]Circuit breaker is open for API calls: {e}[/red]")
            raise
        except Exception as e:
            log.debug(f"API call to {endpoint} failed: {e}")
            raise

    # Public API Methods
    async def add_magnet(self, magnet: str) -> str:
        """Submits a magnet link and returns the new torrent id."""
        result = await self.api_call(
            "POST", "/torrents/addMagnet", data={"magnet": magnet}
        )
        return str(result["id"])

    async def add_torrent(self, filename: str, torrent_data: bytes) -> str:
        """Uploads a .torrent file and returns the new torrent id."""
        form = aiohttp.FormData()
        form.add_field(
            "file",
            torrent_data,
            filename=filename,
            content_type="application/x-bittorrent",
        )
        result = await self.api_call("PUT", "/torrents/addTorrent", data=form)
        return str(result["id"])

    async def get_torrent_info(self, torrent_id: str) -> TorrentInfo:
        result = await self.api_call("GET", f"/torrents/info/{torrent_id}")
        return TorrentInfo.model_validate(result)

    async def select_files(self, torrent_id: str, file_ids: str) -> None:
        """Selects files to download. `file_ids` is comma-separated ids or 'all'."""
        await self.api_call(
            "POST", f"/torrents/selectFiles/{torrent_id}", data={"files": file_ids}
        )

    async def unrestrict_link(self, link: str) -> UnrestrictedLink:
        """Resolves a hoster link into a direct download URL."""
        result = await self.api_call("POST", "/unrestrict/link", data={"link": link})
        return UnrestrictedLink.model_validate(result)

    async def delete_torrent(self, torrent_id: str) -> None:
        await self.api_call("DELETE", f"/torrents/delete/{torrent_id}")
