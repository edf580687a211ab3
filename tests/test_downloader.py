"""Tests for the network audio downloader."""

import asyncio

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from multiscribe.config import DownloadConfig
from multiscribe.downloader import (
    AudioDownloader,
    DownloadError,
    normalize_mime_type,
)

AUDIO_BYTES = b"RIFF" + b"\x00" * 4096


async def serve_audio(request):
    return web.Response(body=AUDIO_BYTES, content_type="audio/wave")


async def serve_mp3(request):
    return web.Response(body=b"ID3data", headers={"Content-Type": "audio/mpeg; charset=binary"})


async def serve_slow(request):
    response = web.StreamResponse(headers={"Content-Type": "audio/wav"})
    await response.prepare(request)
    for _ in range(300):
        await response.write(b"\x00" * 16)
        await asyncio.sleep(0.1)
    await response.write_eof()
    return response


async def serve_missing(request):
    return web.Response(status=404)


@pytest_asyncio.fixture
async def server():
    """Start a local HTTP server serving test audio."""
    app = web.Application()
    app.router.add_get("/clip.wav", serve_audio)
    app.router.add_get("/song.mp3", serve_mp3)
    app.router.add_get("/slow.wav", serve_slow)
    app.router.add_get("/missing.wav", serve_missing)
    server = TestServer(app)
    await server.start_server()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def downloader():
    downloader = AudioDownloader(DownloadConfig(chunk_size=1024))
    yield downloader
    await downloader.close()


@pytest.mark.parametrize(
    "content_type, expected",
    [
        (None, "audio/wav"),
        ("", "audio/wav"),
        ("audio/wave", "audio/wav"),
        ("audio/mpeg", "audio/mpeg"),
        ("Audio/OGG; codecs=opus", "audio/ogg"),
    ],
)
def test_normalize_mime_type(content_type, expected):
    """Test content types are normalized for decoding."""
    assert normalize_mime_type(content_type) == expected


@pytest.mark.asyncio
async def test_fetch_downloads_body(server, downloader):
    """Test a download returns the body, MIME type and file name."""
    progress = []

    audio = await downloader.fetch("url", str(server.make_url("/clip.wav")), progress.append)

    assert audio.data == AUDIO_BYTES
    assert audio.mime_type == "audio/wav"
    assert audio.file_name == "clip.wav"
    assert progress[0] == 0.0
    assert progress[-1] == pytest.approx(1.0)
    assert progress == sorted(progress)


@pytest.mark.asyncio
async def test_fetch_strips_content_type_parameters(server, downloader):
    """Test parameters after the MIME type are dropped."""
    audio = await downloader.fetch("url", str(server.make_url("/song.mp3")))
    assert audio.mime_type == "audio/mpeg"


@pytest.mark.asyncio
async def test_http_error_raises(server, downloader):
    """Test non-200 responses raise DownloadError."""
    with pytest.raises(DownloadError, match="404"):
        await downloader.fetch("url", str(server.make_url("/missing.wav")))


@pytest.mark.asyncio
async def test_connection_error_raises(downloader):
    """Test unreachable hosts raise DownloadError."""
    with pytest.raises(DownloadError):
        await downloader.fetch("url", "http://127.0.0.1:1/clip.wav")


@pytest.mark.asyncio
async def test_new_fetch_cancels_previous_for_same_slot(server, downloader):
    """Test a second fetch on a slot cancels the first one."""
    slow = asyncio.create_task(downloader.fetch("url", str(server.make_url("/slow.wav"))))
    await asyncio.sleep(0.1)
    assert downloader.is_fetching("url")

    audio = await downloader.fetch("url", str(server.make_url("/clip.wav")))

    assert audio.data == AUDIO_BYTES
    with pytest.raises(asyncio.CancelledError):
        await slow
    assert not downloader.is_fetching("url")


@pytest.mark.asyncio
async def test_other_slots_are_independent(server, downloader):
    """Test fetches for different slots do not cancel each other."""
    first = asyncio.create_task(downloader.fetch("a", str(server.make_url("/clip.wav"))))
    second = asyncio.create_task(downloader.fetch("b", str(server.make_url("/song.mp3"))))

    results = await asyncio.gather(first, second)

    assert [r.file_name for r in results] == ["clip.wav", "song.mp3"]


@pytest.mark.asyncio
async def test_cancel_slot(server, downloader):
    """Test cancel() stops an in-flight download and produces no result."""
    slow = asyncio.create_task(downloader.fetch("url", str(server.make_url("/slow.wav"))))
    await asyncio.sleep(0.1)

    assert downloader.cancel("url") is True
    with pytest.raises(asyncio.CancelledError):
        await slow
    assert downloader.cancel("url") is False


@pytest.mark.asyncio
async def test_timeout_raises(server):
    """Test downloads exceeding the timeout raise DownloadError."""
    downloader = AudioDownloader(DownloadConfig(timeout_s=0.2))
    try:
        with pytest.raises(DownloadError, match="timed out"):
            await downloader.fetch("url", str(server.make_url("/slow.wav")))
    finally:
        await downloader.close()
