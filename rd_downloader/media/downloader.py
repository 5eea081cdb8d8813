"""
Handles the low-level downloading of files over HTTP, streaming each body to
disk through a progress tracker.
"""

import asyncio
import logging
import os
from typing import Optional

import aiofiles
import aiohttp

from rd_downloader.exceptions import TransferError

from .progress import ProgressTracker

log = logging.getLogger(__name__)

# Failures worth another attempt: the connection dropped or stalled.
_RETRYABLE_ERRORS = (
    aiohttp.ClientConnectionError,
    aiohttp.ClientPayloadError,
    asyncio.TimeoutError,
)


class Downloader:
    """A streaming file downloader with retry logic for connection failures."""

    CHUNK_SIZE = 262144  # 256 KB

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.5,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                ttl_dns_cache=600,
                keepalive_timeout=30,
                enable_cleanup_closed=True,
            )
            timeout = aiohttp.ClientTimeout(total=None, sock_connect=15, sock_read=90)
            self._session = aiohttp.ClientSession(connector=connector, timeout=timeout)
            self._owns_session = True
            log.debug("Created download session.")
        return self._session

    async def close(self) -> None:
        """Closes the session if this downloader created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            log.debug("Download session closed.")

    async def fetch(
        self,
        url: str,
        destination_path: str,
        expected_size: int = 0,
        tracker: Optional[ProgressTracker] = None,
    ) -> None:
        """
        Downloads `url` into `destination_path`, truncating anything already there.

        Raises:
            TransferError: on a non-200 status, a bad URL, a local write failure,
            or once connection failures have exhausted every attempt.
        """
        last_exception: Optional[BaseException] = None
        try:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    await self._fetch_once(url, destination_path, expected_size, tracker)
                    return
                except _RETRYABLE_ERRORS as e:
                    last_exception = e
                    log.debug(
                        f"Download attempt {attempt}/{self.max_attempts} for "
                        f"'{os.path.basename(destination_path)}' failed: {e}."
                    )
                    if attempt < self.max_attempts:
                        await asyncio.sleep(self.base_delay * (2 ** (attempt - 1)))
                except (aiohttp.InvalidURL, ValueError) as e:
                    raise TransferError(f"Invalid download URL '{url}': {e}") from e
                except aiohttp.ClientError as e:
                    raise TransferError(f"Download request failed: {e}") from e
                except OSError as e:
                    raise TransferError(
                        f"Failed to write '{destination_path}': {e}"
                    ) from e
            raise TransferError(
                f"Download failed after {self.max_attempts} attempts: {last_exception}"
            ) from last_exception
        except TransferError:
            self._discard_partial(destination_path)
            raise

    async def _fetch_once(
        self,
        url: str,
        destination_path: str,
        expected_size: int,
        tracker: Optional[ProgressTracker],
    ) -> None:
        session = await self._get_session()
        # The destination is created (and truncated) before the request is sent.
        async with aiofiles.open(destination_path, "wb") as f:
            async with session.get(url, allow_redirects=True) as response:
                if response.status != 200:
                    raise TransferError(
                        f"Bad status: {response.status} {response.reason}"
                    )

                if tracker is not None:
                    tracker.reset()
                    if expected_size <= 0 and response.content_length:
                        tracker.set_total(response.content_length)

                async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
                    await f.write(chunk)
                    if tracker is not None:
                        await tracker.advance(len(chunk))

    @staticmethod
    def _discard_partial(destination_path: str) -> None:
        try:
            os.remove(destination_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            log.debug(f"Could not remove partial file '{destination_path}': {e}")
