"""Inference worker process running faster-whisper."""

import logging
import os
from fnmatch import fnmatch
from typing import Any, Callable, List, Optional, Tuple

from faster_whisper import WhisperModel, download_model
from faster_whisper.utils import _MODELS
from huggingface_hub import HfApi, hf_hub_download
from pydantic import ValidationError

from .config import WorkerConfig
from .languages import to_language_code
from .protocol import (
    CompleteEvent,
    CompletePayload,
    DoneEvent,
    ErrorEvent,
    InitiateEvent,
    ProgressEvent,
    ReadyEvent,
    TranscriptChunk,
    TranscriptionRequest,
    UpdateEvent,
    UpdatePayload,
    encode_event,
)

logger = logging.getLogger(__name__)

Emit = Callable[[Any], None]

# Sizes that have an English-only checkpoint ("<size>.en")
ENGLISH_ONLY_SIZES = frozenset({"tiny", "base", "small", "medium"})
ENGLISH_CODE = "en"

# Files faster-whisper needs from a model repository
MODEL_FILE_PATTERNS = (
    "config.json",
    "preprocessor_config.json",
    "model.bin",
    "tokenizer.json",
    "vocabulary.*",
)


def resolve_model_id(model: str, multilingual: bool) -> str:
    """Return the checkpoint to load for a requested model size.

    English-only sessions use the ".en" checkpoint where one exists.
    """
    if not multilingual and model in ENGLISH_ONLY_SIZES:
        return f"{model}.en"
    return model


def resolve_repo_id(model_id: str) -> str:
    """Map a model size to its Hugging Face repository.

    Raises:
        ValueError: If the size is unknown and not a repository id.
    """
    if "/" in model_id:
        return model_id
    repo_id = _MODELS.get(model_id)
    if repo_id is None:
        raise ValueError(
            f"Invalid model size '{model_id}', expected one of: {', '.join(_MODELS)}"
        )
    return repo_id


class WhisperWorker:
    """Loads models on demand and transcribes requests, emitting events."""

    def __init__(self, config: WorkerConfig, emit: Emit):
        """Initialize the worker.

        Args:
            config: Worker configuration.
            emit: Callable receiving each encoded event dict.
        """
        self.config = config
        self._emit = emit
        self._model: Optional[WhisperModel] = None
        self._model_key: Optional[Tuple[str, bool, bool]] = None

    def emit(self, event) -> None:
        self._emit(encode_event(event))

    def download(self, model_id: str) -> str:
        """Fetch the model files, reporting each one, and return the model directory.

        Every file is reported as initiate, progress (0 and all of its bytes)
        and done. Without network access the local cache is used.
        """
        if os.path.isdir(model_id):
            return model_id

        repo_id = resolve_repo_id(model_id)
        cache_dir = str(self.config.download_root) if self.config.download_root else None

        try:
            info = HfApi().model_info(repo_id, files_metadata=True)
        except OSError as e:
            logger.warning(f"Cannot list files of '{repo_id}', using local cache: {e}")
            return download_model(model_id, cache_dir=cache_dir, local_files_only=True)

        files = [
            sibling
            for sibling in info.siblings or []
            if any(fnmatch(sibling.rfilename, pattern) for pattern in MODEL_FILE_PATTERNS)
        ]
        if not files:
            raise ValueError(f"No model files found in '{repo_id}'")

        model_path = None
        for sibling in files:
            size = sibling.size or 0
            self.emit(InitiateEvent(file=sibling.rfilename, name=repo_id))
            self.emit(
                ProgressEvent(file=sibling.rfilename, progress=0.0, loaded=0, total=size)
            )
            path = hf_hub_download(
                repo_id, sibling.rfilename, revision=info.sha, cache_dir=cache_dir
            )
            self.emit(
                ProgressEvent(
                    file=sibling.rfilename, progress=1.0, loaded=size, total=size
                )
            )
            self.emit(DoneEvent(file=sibling.rfilename))
            logger.debug(f"Fetched '{sibling.rfilename}' ({size} bytes) from '{repo_id}'")
            model_path = os.path.dirname(path)

        return model_path

    def load_model(self, model: str, multilingual: bool, quantized: bool) -> WhisperModel:
        """Return the model for the request, loading it if needed.

        Only the most recently used model is kept in memory.
        """
        key = (model, multilingual, quantized)
        if self._model is not None and self._model_key == key:
            return self._model

        # Release the previous model before loading the next one
        self._model = None
        self._model_key = None

        model_id = resolve_model_id(model, multilingual)
        model_path = self.download(model_id)

        compute_type = "int8" if quantized else self.config.compute_type
        logger.info(
            f"Loading Whisper model '{model_id}' "
            f"(Device: {self.config.device}, "
            f"Compute: {compute_type}, "
            f"CPU threads: {self.config.cpu_threads})"
        )
        self._model = WhisperModel(
            model_path,
            device=self.config.device,
            compute_type=compute_type,
            cpu_threads=self.config.cpu_threads,
        )
        self._model_key = key
        self.emit(ReadyEvent())
        return self._model

    def transcribe(self, request: TranscriptionRequest) -> None:
        """Transcribe one request, emitting update events and a final complete."""
        model = self.load_model(request.model, request.multilingual, request.quantized)

        if request.multilingual:
            language = to_language_code(request.language)
        else:
            language = ENGLISH_CODE

        segments, info = model.transcribe(
            request.audio,
            language=language,
            task=request.subtask or "transcribe",
            beam_size=self.config.beam_size,
        )
        logger.info(
            f"Transcribing '{request.file_name}' "
            f"[{info.language or 'unknown'}] ({info.duration:.1f}s)"
        )

        chunks: List[TranscriptChunk] = []
        for segment in segments:
            chunks.append(
                TranscriptChunk(text=segment.text, timestamp=(segment.start, segment.end))
            )
            text = "".join(chunk.text for chunk in chunks).strip()
            self.emit(
                UpdateEvent(
                    file_name=request.file_name,
                    round_id=request.round_id,
                    data=(text, UpdatePayload(chunks=chunks)),
                )
            )

        text = "".join(chunk.text for chunk in chunks).strip()
        self.emit(
            CompleteEvent(
                file_name=request.file_name,
                round_id=request.round_id,
                data=CompletePayload(text=text, chunks=chunks),
            )
        )

    def handle(self, message: Any) -> None:
        """Process one raw request, reporting any failure as an error event."""
        try:
            request = TranscriptionRequest.model_validate(message)
        except ValidationError as e:
            logger.error(f"Invalid transcription request: {e}")
            self.emit(ErrorEvent.from_message(f"Invalid transcription request: {e}"))
            return

        try:
            self.transcribe(request)
        except Exception as e:
            logger.exception(f"Transcription of '{request.file_name}' failed")
            self.emit(ErrorEvent.from_message(str(e)))


def run_worker(requests, events, config: WorkerConfig) -> None:
    """Worker process entry point.

    Serves requests from the request queue until the None sentinel arrives.
    """
    logging.basicConfig(level=logging.INFO)
    worker = WhisperWorker(config, events.put)
    logger.info("Worker process ready for requests")

    while True:
        message = requests.get()
        if message is None:
            break
        worker.handle(message)

    logger.info("Worker process exiting")
