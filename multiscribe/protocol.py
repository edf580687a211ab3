"""Message models exchanged with the inference worker."""

import logging
from typing import Annotated, Any, List, Literal, Optional, Tuple, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, RootModel, ValidationError

logger = logging.getLogger(__name__)


class TranscriptChunk(BaseModel):
    """A timestamped text segment. An open end time marks a segment in progress."""

    text: str
    timestamp: Tuple[float, Optional[float]]


class UpdatePayload(BaseModel):
    """Second element of an update event's data pair."""

    chunks: List[TranscriptChunk] = Field(default_factory=list)


class CompletePayload(BaseModel):
    """Final transcript of one file."""

    text: str
    chunks: List[TranscriptChunk] = Field(default_factory=list)


class ErrorPayload(BaseModel):
    """Description of a worker failure."""

    message: str


class InitiateEvent(BaseModel):
    """A model file started loading."""

    status: Literal["initiate"] = "initiate"
    file: str
    name: str = ""


class ProgressEvent(BaseModel):
    """Download progress of one model file."""

    status: Literal["progress"] = "progress"
    file: str
    progress: Optional[float] = None
    loaded: int = 0
    total: int = 0


class DoneEvent(BaseModel):
    """A model file finished loading."""

    status: Literal["done"] = "done"
    file: str


class ReadyEvent(BaseModel):
    """All model files are loaded and the model is usable."""

    status: Literal["ready"] = "ready"


class UpdateEvent(BaseModel):
    """Partial transcript of one file."""

    model_config = ConfigDict(populate_by_name=True)

    status: Literal["update"] = "update"
    file_name: str = Field(alias="fileName")
    round_id: Optional[int] = Field(default=None, alias="roundId")
    data: Tuple[str, UpdatePayload]

    @property
    def text(self) -> str:
        return self.data[0]

    @property
    def chunks(self) -> List[TranscriptChunk]:
        return self.data[1].chunks


class CompleteEvent(BaseModel):
    """Final transcript of one file."""

    model_config = ConfigDict(populate_by_name=True)

    status: Literal["complete"] = "complete"
    file_name: str = Field(alias="fileName")
    round_id: Optional[int] = Field(default=None, alias="roundId")
    data: CompletePayload


class ErrorEvent(BaseModel):
    """Session-level failure reported by the worker or the channel."""

    status: Literal["error"] = "error"
    data: ErrorPayload

    @classmethod
    def from_message(cls, message: str) -> "ErrorEvent":
        return cls(data=ErrorPayload(message=message))


# Discriminated union of everything the worker may emit
WorkerEvent = Annotated[
    Union[
        InitiateEvent,
        ProgressEvent,
        DoneEvent,
        ReadyEvent,
        UpdateEvent,
        CompleteEvent,
        ErrorEvent,
    ],
    Field(discriminator="status"),
]

EVENT_STATUSES = frozenset(
    {"initiate", "progress", "done", "ready", "update", "complete", "error"}
)


class EventWrapper(RootModel[WorkerEvent]):
    """Wrapper model for parsing inbound worker events."""

    root: WorkerEvent


def encode_event(event: BaseModel) -> dict:
    """Serialize an event to the plain dict sent across the process boundary."""
    return event.model_dump(mode="json", by_alias=True)


def decode_event(message: Any) -> Optional[WorkerEvent]:
    """Decode a raw worker message into a typed event.

    Args:
        message: Dict received from the worker.

    Returns:
        The typed event, or None if the message carries an unknown status.

    Raises:
        ValueError: If the message is not a mapping or a known event is malformed.
    """
    if not isinstance(message, dict):
        raise ValueError(f"Worker message must be a mapping, got {type(message)}")

    status = message.get("status")
    if status not in EVENT_STATUSES:
        logger.debug(f"Ignoring worker message with unknown status: {status!r}")
        return None

    try:
        return EventWrapper.model_validate(message).root
    except ValidationError as e:
        raise ValueError(f"Malformed '{status}' event: {e}") from e


class TranscriptionRequest(BaseModel):
    """Job request sent to the worker for one file."""

    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    audio: np.ndarray
    model: str
    multilingual: bool
    quantized: bool
    subtask: Optional[str] = None
    language: Optional[str] = None
    file_name: str = Field(alias="fileName")
    # Echoed in update and complete events so stale results can be told apart
    round_id: Optional[int] = Field(default=None, alias="roundId")
