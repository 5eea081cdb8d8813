"""
Fetches subtitles for downloaded video files by running the `subliminal` CLI.
"""

import asyncio
import logging
import os
import shutil
from typing import Optional

from rd_downloader.exceptions import SubtitleError

log = logging.getLogger(__name__)


class SubtitleFetcher:
    """Wraps `subliminal download -l <language> <video>` as an async call."""

    def __init__(
        self,
        language: str = "en",
        timeout: float = 120.0,
        executable: str = "",
    ):
        self.language = language
        self.timeout = timeout
        self._executable: Optional[str] = self._resolve(executable)

    @staticmethod
    def _resolve(executable: str) -> Optional[str]:
        if executable:
            return executable if os.path.isfile(executable) else shutil.which(executable)
        return shutil.which("subliminal")

    @property
    def executable(self) -> Optional[str]:
        return self._executable

    def is_available(self) -> bool:
        return self._executable is not None

    async def fetch(self, video_path: str) -> None:
        """
        Downloads subtitles next to `video_path`.

        Raises:
            SubtitleError: if the tool is missing, times out or exits non-zero.
        """
        if not self._executable:
            raise SubtitleError("subliminal is not installed")

        try:
            proc = await asyncio.create_subprocess_exec(
                self._executable,
                "download",
                "-l",
                self.language,
                video_path,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SubtitleError(f"Could not start subliminal: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise SubtitleError(
                f"subliminal timed out after {self.timeout:.0f}s"
            ) from None
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            detail = (stderr or stdout).decode(errors="replace").strip()
            raise SubtitleError(
                f"subliminal exited with code {proc.returncode}: {detail}"
            )
        log.debug(f"Subtitles fetched for '{os.path.basename(video_path)}'.")
