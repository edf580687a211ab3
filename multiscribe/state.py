"""Aggregation of worker events into a consumer-facing snapshot."""

import logging
import threading
from collections import Counter
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .protocol import (
    CompleteEvent,
    DoneEvent,
    ErrorEvent,
    InitiateEvent,
    ProgressEvent,
    ReadyEvent,
    TranscriptChunk,
    UpdateEvent,
    WorkerEvent,
)

logger = logging.getLogger(__name__)


class ProgressItem(BaseModel):
    """Download state of one model artifact file."""

    file: str
    name: str = ""
    loaded: int = 0
    total: int = 0
    progress: float = 0.0


class TranscriptEntry(BaseModel):
    """Transcription state of one submitted file."""

    is_busy: bool
    text: str
    chunks: List[TranscriptChunk] = Field(default_factory=list)


class EngineSnapshot(BaseModel):
    """Read-only view of the engine state."""

    model_config = ConfigDict(frozen=True)

    is_busy: bool = False
    is_model_loading: bool = False
    progress_items: Tuple[ProgressItem, ...] = ()
    transcripts: Dict[str, TranscriptEntry] = Field(default_factory=dict)
    last_error: Optional[str] = None


SnapshotObserver = Callable[[EngineSnapshot], Any]


class TranscriptionAggregator:
    """Consumes worker events and maintains progress and transcript state."""

    def __init__(self):
        """Initialize with no busy session, no loading model and no transcripts."""
        self._lock = threading.Lock()
        self._is_busy = False
        self._is_model_loading = False
        self._progress_items: List[ProgressItem] = []
        self._transcripts: Dict[str, TranscriptEntry] = {}
        self._outstanding: Counter = Counter()
        self._round_id: Optional[int] = None
        self._last_error: Optional[str] = None
        self._observers: List[SnapshotObserver] = []

    @property
    def snapshot(self) -> EngineSnapshot:
        """Get a copy of the current state."""
        with self._lock:
            return self._build_snapshot()

    @property
    def is_busy(self) -> bool:
        return self._is_busy

    def add_observer(self, observer: SnapshotObserver) -> None:
        """Add an observer callback for state changes.

        The callback receives the new snapshot after every change.
        """
        self._observers.append(observer)

    def _build_snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            is_busy=self._is_busy,
            is_model_loading=self._is_model_loading,
            progress_items=tuple(item.model_copy() for item in self._progress_items),
            transcripts={
                name: entry.model_copy(deep=True)
                for name, entry in self._transcripts.items()
            },
            last_error=self._last_error,
        )

    def _notify_observers(self, snapshot: EngineSnapshot) -> None:
        for observer in self._observers:
            try:
                observer(snapshot)
            except Exception:
                logger.exception("Snapshot observer failed")

    def begin(self, file_names: Iterable[str], round_id: Optional[int] = None) -> None:
        """Start a new submission round.

        Clears all transcripts and marks the session busy until every listed
        file has completed or an error arrives.

        Update and complete events tagged with another round are results of a
        superseded submission and are ignored. Untagged events always apply,
        so a late untagged complete can retire a job of the current round.
        """
        with self._lock:
            self._round_id = round_id
            self._transcripts = {}
            self._outstanding = Counter(file_names)
            self._is_busy = True
            self._last_error = None
            snapshot = self._build_snapshot()
        self._notify_observers(snapshot)

    def reset_on_new_input(self) -> None:
        """Drop all transcripts when the user changes the input set."""
        with self._lock:
            self._transcripts = {}
            snapshot = self._build_snapshot()
        self._notify_observers(snapshot)

    def apply(self, event: WorkerEvent) -> None:
        """Apply one worker event to the state.

        Args:
            event: A decoded worker event.
        """
        with self._lock:
            changed = self._apply(event)
            snapshot = self._build_snapshot() if changed else None

        if snapshot is not None:
            self._notify_observers(snapshot)

    def _apply(self, event: WorkerEvent) -> bool:
        if isinstance(event, (UpdateEvent, CompleteEvent)) and self._is_stale(event):
            logger.debug(
                f"Ignoring '{event.status}' for '{event.file_name}' "
                f"from superseded round {event.round_id}"
            )
            return False

        if isinstance(event, InitiateEvent):
            self._is_model_loading = True
            item = ProgressItem(file=event.file, name=event.name)
            index = self._find_progress_item(event.file)
            if index is None:
                self._progress_items.append(item)
            else:
                self._progress_items[index] = item
            logger.debug(f"Model file loading: {event.file}")
            return True

        if isinstance(event, ProgressEvent):
            index = self._find_progress_item(event.file)
            if index is None:
                logger.debug(f"Progress for untracked file ignored: {event.file}")
                return False
            progress = event.progress
            if progress is None:
                progress = event.loaded / event.total if event.total else 0.0
            self._progress_items[index] = self._progress_items[index].model_copy(
                update={
                    "progress": progress,
                    "loaded": event.loaded,
                    "total": event.total,
                }
            )
            return True

        if isinstance(event, DoneEvent):
            before = len(self._progress_items)
            self._progress_items = [
                item for item in self._progress_items if item.file != event.file
            ]
            logger.debug(f"Model file loaded: {event.file}")
            return len(self._progress_items) != before

        if isinstance(event, ReadyEvent):
            self._is_model_loading = False
            logger.info("Model ready")
            return True

        if isinstance(event, UpdateEvent):
            self._transcripts[event.file_name] = TranscriptEntry(
                is_busy=True, text=event.text, chunks=list(event.chunks)
            )
            return True

        if isinstance(event, CompleteEvent):
            self._transcripts[event.file_name] = TranscriptEntry(
                is_busy=False, text=event.data.text, chunks=list(event.data.chunks)
            )
            if self._outstanding[event.file_name] > 0:
                self._outstanding[event.file_name] -= 1
            self._outstanding = +self._outstanding
            if not self._outstanding:
                self._is_busy = False
            logger.info(f"Transcription complete: {event.file_name}")
            return True

        if isinstance(event, ErrorEvent):
            self._is_busy = False
            self._outstanding = Counter()
            self._last_error = event.data.message
            logger.error(f"Worker reported an error: {event.data.message}")
            return True

        logger.debug(f"Ignoring unsupported event: {event!r}")
        return False

    def _is_stale(self, event) -> bool:
        return (
            event.round_id is not None
            and self._round_id is not None
            and event.round_id != self._round_id
        )

    def _find_progress_item(self, file: str) -> Optional[int]:
        for index, item in enumerate(self._progress_items):
            if item.file == file:
                return index
        return None
