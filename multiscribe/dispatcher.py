import itertools
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .audio import normalize
from .config import AUTO_LANGUAGE, SessionConfig
from .protocol import TranscriptionRequest
from .state import TranscriptionAggregator
from .worker_channel import WorkerChannel, WorkerChannelError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioJob:
    """One submitted input together with the settings it was submitted with."""

    file_name: str
    samples: np.ndarray
    model: str
    multilingual: bool
    quantized: bool
    subtask: str
    language: str
    round_id: Optional[int] = None

    @classmethod
    def from_config(
        cls,
        file_name: str,
        samples: np.ndarray,
        config: SessionConfig,
        round_id: Optional[int] = None,
    ) -> "AudioJob":
        return cls(
            file_name=file_name,
            samples=samples,
            model=config.model,
            multilingual=config.multilingual,
            quantized=config.quantized,
            subtask=config.subtask,
            language=config.language,
            round_id=round_id,
        )

    @property
    def forwarded_subtask(self) -> Optional[str]:
        return self.subtask if self.multilingual else None

    @property
    def forwarded_language(self) -> Optional[str]:
        if self.multilingual and self.language != AUTO_LANGUAGE:
            return self.language
        return None

    def to_request(self) -> dict:
        """Build the wire request for the worker."""
        request = TranscriptionRequest(
            audio=self.samples,
            model=self.model,
            multilingual=self.multilingual,
            quantized=self.quantized,
            subtask=self.forwarded_subtask,
            language=self.forwarded_language,
            file_name=self.file_name,
            round_id=self.round_id,
        )
        return request.model_dump(by_alias=True)


class JobDispatcher:
    """Turns submitted audio inputs into independent worker requests."""

    def __init__(self, channel: WorkerChannel, aggregator: TranscriptionAggregator):
        """Initialize the dispatcher.

        Args:
            channel: Channel the requests are sent on.
            aggregator: Aggregator whose transcripts are reset on each dispatch.
        """
        self.channel = channel
        self.aggregator = aggregator
        self._rounds = itertools.count(1)

    def dispatch(
        self, files: Sequence[Tuple[str, np.ndarray]], config: SessionConfig
    ) -> List[AudioJob]:
        """Send one job per file without waiting for any of them.

        Args:
            files: (file name, decoded audio buffer) pairs.
            config: Session configuration; a snapshot is taken now.

        Returns:
            The jobs that were sent, in submission order.

        Raises:
            ValueError: If any buffer cannot be normalized. Nothing is sent then.
            WorkerChannelError: If the channel is not running.
        """
        if not files:
            logger.debug("Nothing to dispatch")
            return []

        if not self.channel.is_running:
            raise WorkerChannelError("Cannot dispatch: worker channel is not running")

        settings = config.snapshot()
        round_id = next(self._rounds)
        jobs = []
        for file_name, buffer in files:
            try:
                samples = normalize(buffer)
            except ValueError as e:
                raise ValueError(f"Cannot prepare audio for '{file_name}': {e}") from e
            jobs.append(AudioJob.from_config(file_name, samples, settings, round_id))

        self.aggregator.begin((job.file_name for job in jobs), round_id)

        for job in jobs:
            logger.info(
                f"Dispatching '{job.file_name}' ({len(job.samples)} samples, "
                f"model: {job.model}, quantized: {job.quantized})"
            )
            self.channel.send(job.to_request())

        return jobs
