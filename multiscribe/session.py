import asyncio
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import AppConfig, SessionConfig
from .dispatcher import AudioJob, JobDispatcher
from .state import EngineSnapshot, SnapshotObserver, TranscriptionAggregator
from .worker_channel import WorkerChannel, WorkerTarget

logger = logging.getLogger(__name__)


class TranscriptionSession:
    """Owns the configuration, worker channel and aggregated state of one session."""

    def __init__(
        self,
        config: AppConfig,
        worker_target: Optional[WorkerTarget] = None,
    ):
        """Initialize the session.

        Args:
            config: Application configuration. Its session section is copied and
                becomes the mutable session configuration.
            worker_target: Optional worker entry point override.
        """
        self.app_config = config
        self.config: SessionConfig = config.session.model_copy()

        self.aggregator = TranscriptionAggregator()
        self.channel = WorkerChannel(config.worker, target=worker_target)
        self.dispatcher = JobDispatcher(self.channel, self.aggregator)

        self._idle_event = asyncio.Event()
        self._idle_event.set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.aggregator.add_observer(self._on_snapshot)

    @property
    def snapshot(self) -> EngineSnapshot:
        return self.aggregator.snapshot

    def add_observer(self, observer: SnapshotObserver) -> None:
        self.aggregator.add_observer(observer)

    def _on_snapshot(self, snapshot: EngineSnapshot) -> None:
        """Track busy transitions for wait_until_idle()."""
        if self._loop is None:
            return
        if snapshot.is_busy:
            self._loop.call_soon_threadsafe(self._idle_event.clear)
        else:
            self._loop.call_soon_threadsafe(self._idle_event.set)

    async def start(self) -> None:
        """Start the worker and route its events to the aggregator."""
        self._loop = asyncio.get_running_loop()
        self.channel.on_event(self.aggregator.apply)
        await self.channel.start()

    async def stop(self) -> None:
        """Release the worker."""
        await self.channel.stop()
        self._loop = None

    def dispatch(self, files: Sequence[Tuple[str, np.ndarray]]) -> List[AudioJob]:
        """Submit audio for transcription with the current session configuration."""
        if files:
            self._idle_event.clear()
        try:
            return self.dispatcher.dispatch(files, self.config)
        finally:
            if not self.aggregator.is_busy:
                self._idle_event.set()

    def reset_on_new_input(self) -> None:
        self.aggregator.reset_on_new_input()

    async def wait_until_idle(self, timeout: Optional[float] = None) -> EngineSnapshot:
        """Wait until the session is no longer busy and return the snapshot.

        Raises:
            asyncio.TimeoutError: If the timeout elapses first.
        """
        await asyncio.wait_for(self._idle_event.wait(), timeout=timeout)
        return self.snapshot

    async def __aenter__(self) -> "TranscriptionSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
