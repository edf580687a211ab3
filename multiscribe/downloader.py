"""Cancellable network fetch of remote audio."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import aiohttp

from .config import DownloadConfig

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "audio/wav"
DEFAULT_FILE_NAME = "audio"

ProgressCallback = Callable[[float], None]


class DownloadError(RuntimeError):
    """Raised when remote audio cannot be fetched."""


@dataclass
class DownloadedAudio:
    """Raw bytes of a fetched audio file."""

    data: bytes
    mime_type: str
    url: str
    file_name: str


def normalize_mime_type(content_type: Optional[str]) -> str:
    """Map a response content type to the MIME type used for playback/decoding."""
    if not content_type:
        return DEFAULT_MIME_TYPE

    mime_type = content_type.split(";", 1)[0].strip().lower()
    if not mime_type or mime_type == "audio/wave":
        return DEFAULT_MIME_TYPE
    return mime_type


class AudioDownloader:
    """Fetches remote audio, one in-flight download per input slot."""

    def __init__(
        self,
        config: DownloadConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize the downloader.

        Args:
            config: Download configuration.
            session: Optional client session. The downloader closes only sessions
                it created itself.
        """
        self.config = config
        self._session = session
        self._owns_session = session is None
        self._tasks: Dict[str, asyncio.Task] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def is_fetching(self, slot: str) -> bool:
        task = self._tasks.get(slot)
        return task is not None and not task.done()

    def cancel(self, slot: str) -> bool:
        """Cancel the in-flight download of a slot.

        Returns:
            True if a download was cancelled.
        """
        task = self._tasks.pop(slot, None)
        if task is None or task.done():
            return False

        logger.info(f"Cancelling download for slot '{slot}'")
        task.cancel()
        return True

    async def fetch(
        self,
        slot: str,
        url: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DownloadedAudio:
        """Download audio for a slot, superseding any earlier download of it.

        Args:
            slot: Logical input slot the audio is for.
            url: Address of the audio file.
            on_progress: Optional callback receiving progress in [0, 1].

        Returns:
            The downloaded audio.

        Raises:
            asyncio.CancelledError: If a later fetch for the same slot superseded
                this one or cancel() was called.
            DownloadError: If the request fails.
        """
        self.cancel(slot)

        task = asyncio.create_task(self._download(url, on_progress))
        self._tasks[slot] = task
        try:
            return await task
        finally:
            if self._tasks.get(slot) is task:
                del self._tasks[slot]

    async def _download(
        self, url: str, on_progress: Optional[ProgressCallback]
    ) -> DownloadedAudio:
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_s)
        logger.info(f"Downloading audio from {url}")

        try:
            async with session.get(url, timeout=timeout) as response:
                if response.status != 200:
                    raise DownloadError(
                        f"Download of {url} failed with HTTP {response.status}"
                    )

                total = response.content_length or 0
                loaded = 0
                parts = []
                if on_progress:
                    on_progress(0.0)

                async for chunk in response.content.iter_chunked(self.config.chunk_size):
                    parts.append(chunk)
                    loaded += len(chunk)
                    if on_progress:
                        on_progress(loaded / total if total else 0.0)

                mime_type = normalize_mime_type(response.headers.get("Content-Type"))
                file_name = response.url.name or DEFAULT_FILE_NAME

        # Checked first: aiohttp timeout errors are also ClientErrors
        except asyncio.TimeoutError as e:
            raise DownloadError(
                f"Download of {url} timed out after {self.config.timeout_s}s"
            ) from e
        except aiohttp.ClientError as e:
            raise DownloadError(f"Download of {url} failed: {e}") from e

        logger.info(f"Downloaded {loaded} bytes from {url} ({mime_type})")
        return DownloadedAudio(
            data=b"".join(parts), mime_type=mime_type, url=url, file_name=file_name
        )

    async def close(self) -> None:
        """Cancel every download and close the owned client session."""
        for slot in list(self._tasks):
            self.cancel(slot)

        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
