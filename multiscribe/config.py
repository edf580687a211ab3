"""Configuration handling for multiscribe."""

import os
import tomllib
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Sentinel language value meaning "let the model detect the language"
AUTO_LANGUAGE = "auto"

DEFAULT_MODEL = "tiny"
DEFAULT_SUBTASK = "transcribe"
DEFAULT_LANGUAGE = "english"
DEFAULT_QUANTIZED = False
DEFAULT_MULTILINGUAL = False

Subtask = Literal["transcribe", "translate"]


def get_default_config_path() -> Path:
    """Get the default config file path following XDG spec."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        base_dir = Path(xdg_config)
    else:
        base_dir = Path.home() / ".config"

    return base_dir / "multiscribe" / "config.toml"


def get_default_log_path() -> Path:
    """Get the default log file path following XDG spec."""
    xdg_state = os.environ.get("XDG_STATE_HOME")
    if xdg_state:
        base_dir = Path(xdg_state)
    else:
        base_dir = Path.home() / ".local" / "state"

    log_dir = base_dir / "multiscribe"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / "multiscribe.log"


class SessionConfig(BaseModel):
    """User-selected transcription settings read at dispatch time."""

    model_config = ConfigDict(validate_assignment=True)

    model: str = Field(
        default=DEFAULT_MODEL,
        description="Whisper model identifier (e.g., tiny, base.en, Systran/faster-whisper-small).",
    )
    multilingual: bool = Field(
        default=DEFAULT_MULTILINGUAL,
        description="Forward subtask and language to the worker.",
    )
    quantized: bool = Field(
        default=DEFAULT_QUANTIZED, description="Run the model with int8 weights."
    )
    subtask: Subtask = Field(
        default=DEFAULT_SUBTASK, description="Task to run (transcribe, translate)."
    )
    language: str = Field(
        default=DEFAULT_LANGUAGE,
        description=f"Spoken language code or name ('{AUTO_LANGUAGE}' to auto-detect).",
    )

    @field_validator("model")
    @classmethod
    def check_model_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("Model identifier cannot be empty")
        return v

    def set_model(self, model: str) -> None:
        self.model = model

    def set_multilingual(self, multilingual: bool) -> None:
        self.multilingual = multilingual

    def set_quantized(self, quantized: bool) -> None:
        self.quantized = quantized

    def set_subtask(self, subtask: Subtask) -> None:
        self.subtask = subtask

    def set_language(self, language: str) -> None:
        self.language = language

    def snapshot(self) -> "SessionConfig":
        """Return an independent copy for a job about to be dispatched."""
        return self.model_copy()


class WorkerConfig(BaseModel):
    """Inference worker configuration."""

    device: str = Field(
        default="auto", description="Device for inference (auto, cpu, cuda)."
    )
    compute_type: str = Field(
        default="default",
        description="Compute type when not quantized (default, float32, float16).",
    )
    cpu_threads: int = Field(
        default=0, ge=0, description="Number of CPU threads for inference (0 = auto)."
    )
    beam_size: int = Field(
        default=5,
        ge=1,
        description="Beam size for search (higher is slower but more accurate).",
    )
    download_root: Optional[Path] = Field(
        default=None, description="Optional directory for downloaded models."
    )
    start_method: Literal["spawn", "fork", "forkserver"] = Field(
        default="spawn", description="multiprocessing start method for the worker."
    )
    shutdown_timeout_s: float = Field(
        default=5.0, gt=0, description="Time to wait for the worker to exit."
    )


class DownloadConfig(BaseModel):
    """Network audio fetch configuration."""

    timeout_s: float = Field(
        default=60.0, gt=0, description="Total timeout for one download (seconds)."
    )
    chunk_size: int = Field(
        default=64 * 1024, ge=1024, description="Read size for streamed bodies (bytes)."
    )


class EngineConfig(BaseModel):
    """Runtime configuration of the orchestration engine."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).",
    )
    log_file: Optional[Path] = Field(
        default=None, description="Optional custom log file path."
    )

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in allowed_levels:
            raise ValueError(f"Invalid log level. Choose from {allowed_levels}")
        return upper_v

    @property
    def computed_log_file(self) -> Path:
        return self.log_file or get_default_log_path()


class AppConfig(BaseModel):
    """Root configuration."""

    session: SessionConfig = Field(default_factory=SessionConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    download: DownloadConfig = Field(default_factory=DownloadConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load and validate configuration.

    If path is not provided, looks for config in the standard location.
    If no config file is found, returns default configuration.

    Args:
        path: Optional path to config file.

    Returns:
        Validated AppConfig instance.

    Raises:
        ValueError: If config file exists but has invalid format/content.
        OSError: If config file exists but can't be read.
    """
    if path is None:
        path = get_default_config_path()

    if not path.exists():
        return AppConfig()  # Use defaults

    try:
        with open(path, "rb") as f:
            config_data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Error decoding TOML file: {path}\n{e}") from e
    except OSError as e:
        raise OSError(f"Error reading file: {path}\n{e}") from e

    try:
        return AppConfig(**config_data)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}") from e
