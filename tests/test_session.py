"""Tests for the transcription session."""

import asyncio

import numpy as np
import pytest
import pytest_asyncio

from fake_workers import crashing_worker, echo_worker
from multiscribe.config import AppConfig, SessionConfig
from multiscribe.session import TranscriptionSession
from multiscribe.worker_channel import WorkerChannelError

SESSION_TIMEOUT = 15.0


@pytest.fixture
def config():
    return AppConfig(session=SessionConfig(model="tiny", multilingual=True, language="auto"))


@pytest.fixture
def files():
    audio = np.zeros((1, 1600), dtype=np.float32)
    return [("a.wav", audio), ("b.wav", audio)]


@pytest_asyncio.fixture
async def session(config):
    """Create a started session backed by the echo worker."""
    session = TranscriptionSession(config, worker_target=echo_worker)
    await session.start()
    yield session
    await session.stop()


def test_session_copies_configuration(config):
    """Test the session owns its own configuration record."""
    session = TranscriptionSession(config, worker_target=echo_worker)

    session.config.set_model("base")

    assert config.session.model == "tiny"
    assert session.snapshot.is_busy is False


@pytest.mark.asyncio
async def test_dispatch_and_wait(session, files):
    """Test every dispatched file ends up with a finished transcript."""
    jobs = session.dispatch(files)
    assert len(jobs) == 2
    assert session.snapshot.is_busy is True

    snapshot = await session.wait_until_idle(timeout=SESSION_TIMEOUT)

    assert snapshot.is_busy is False
    assert snapshot.last_error is None
    assert {name: entry.text for name, entry in snapshot.transcripts.items()} == {
        "a.wav": "echo a.wav",
        "b.wav": "echo b.wav",
    }
    assert not any(entry.is_busy for entry in snapshot.transcripts.values())


@pytest.mark.asyncio
async def test_new_dispatch_supersedes_previous(session, files):
    """Test a second submission starts from an empty transcript mapping."""
    session.dispatch(files)
    await session.wait_until_idle(timeout=SESSION_TIMEOUT)

    session.dispatch([("c.wav", files[0][1])])
    assert "a.wav" not in session.snapshot.transcripts

    snapshot = await session.wait_until_idle(timeout=SESSION_TIMEOUT)
    assert list(snapshot.transcripts) == ["c.wav"]


@pytest.mark.asyncio
async def test_empty_dispatch_stays_idle(session):
    """Test dispatching nothing leaves the session idle."""
    assert session.dispatch([]) == []

    snapshot = await session.wait_until_idle(timeout=1.0)
    assert snapshot.is_busy is False


@pytest.mark.asyncio
async def test_reset_on_new_input(session, files):
    """Test transcripts are dropped when the input changes."""
    session.dispatch(files)
    await session.wait_until_idle(timeout=SESSION_TIMEOUT)

    session.reset_on_new_input()

    assert session.snapshot.transcripts == {}


@pytest.mark.asyncio
async def test_observers_see_updates(session, files):
    """Test consumers are pushed snapshots as events arrive."""
    seen = []
    session.add_observer(seen.append)

    session.dispatch(files)
    await session.wait_until_idle(timeout=SESSION_TIMEOUT)

    assert seen[0].is_busy is True
    assert seen[-1].is_busy is False
    assert any(
        entry.is_busy for snapshot in seen for entry in snapshot.transcripts.values()
    )


@pytest.mark.asyncio
async def test_worker_crash_surfaces_error(config, files):
    """Test a dead worker is reported as a session error."""
    failed = asyncio.Event()

    async with TranscriptionSession(config, worker_target=crashing_worker) as session:
        session.add_observer(lambda snapshot: snapshot.last_error and failed.set())
        await asyncio.wait_for(failed.wait(), timeout=SESSION_TIMEOUT)

        snapshot = session.snapshot
        assert snapshot.is_busy is False
        assert "exited unexpectedly" in snapshot.last_error

        with pytest.raises(WorkerChannelError):
            session.dispatch(files)
