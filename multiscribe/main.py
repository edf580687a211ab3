"""Command-line entry point for multiscribe."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np
import typer

from .audio import decode_file
from .config import AppConfig, load_config
from .downloader import AudioDownloader
from .exporters import transcripts_to_csv, transcripts_to_json, write_export
from .logging_setup import setup_logging
from .session import TranscriptionSession
from .state import EngineSnapshot

logger = logging.getLogger(__name__)

__all__ = ["app", "main", "run"]

app = typer.Typer(
    name="multiscribe",
    help="Transcribe audio files and URLs with a background Whisper worker.",
    add_completion=False,
)

URL_PREFIXES = ("http://", "https://")


def is_url(source: str) -> bool:
    return source.lower().startswith(URL_PREFIXES)


def apply_overrides(config: AppConfig, overrides: Dict[str, object]) -> None:
    """Apply command-line overrides through the session setters.

    Raises:
        ValueError: If an override is rejected by validation.
    """
    setters = {
        "model": config.session.set_model,
        "multilingual": config.session.set_multilingual,
        "quantized": config.session.set_quantized,
        "subtask": config.session.set_subtask,
        "language": config.session.set_language,
    }
    for name, value in overrides.items():
        if value is not None:
            setters[name](value)


class ProgressReporter:
    """Echoes model loading and per-file completion as snapshots arrive."""

    def __init__(self):
        self._loading_files = set()
        self._completed = set()

    def __call__(self, snapshot: EngineSnapshot) -> None:
        loading = {item.file for item in snapshot.progress_items}
        for file in sorted(loading - self._loading_files):
            typer.echo(f"Loading model file: {file}", err=True)
        self._loading_files = loading

        for file_name, entry in snapshot.transcripts.items():
            if not entry.is_busy and file_name not in self._completed:
                self._completed.add(file_name)
                typer.echo(f"Finished: {file_name or '<unnamed>'}", err=True)


async def load_inputs(
    sources: List[str], downloader: AudioDownloader
) -> List[Tuple[str, np.ndarray]]:
    """Fetch and decode every input into (file name, buffer) pairs."""
    files = []
    for index, source in enumerate(sources):
        if is_url(source):
            audio = await downloader.fetch(f"input-{index}", source)
            buffer = await asyncio.to_thread(decode_file, audio.data)
            files.append((audio.file_name, buffer))
        else:
            path = Path(source).expanduser()
            buffer = await asyncio.to_thread(decode_file, path)
            files.append((path.name, buffer))
        logger.info(f"Loaded input {source} ({buffer.shape[0]} channel(s))")
    return files


async def main(
    sources: List[str],
    overrides: Optional[Dict[str, object]] = None,
    config_path: Optional[Path] = None,
    csv_path: Optional[Path] = None,
    json_path: Optional[Path] = None,
) -> int:
    """Run one transcription session.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    # Load configuration first
    try:
        config = load_config(config_path)
        apply_overrides(config, overrides or {})
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(config.engine.log_level, config.engine.computed_log_file)
    logger.info("Starting multiscribe session...")

    downloader = AudioDownloader(config.download)
    try:
        files = await load_inputs(sources, downloader)
    except Exception as e:
        logger.exception("Failed to load audio inputs")
        print(f"Error loading audio: {e}", file=sys.stderr)
        return 1
    finally:
        await downloader.close()

    try:
        async with TranscriptionSession(config) as session:
            session.add_observer(ProgressReporter())
            session.dispatch(files)
            snapshot = await session.wait_until_idle()
    except Exception:
        logger.exception("Fatal error in transcription session:")
        return 1

    for file_name, entry in snapshot.transcripts.items():
        typer.echo(f"[{file_name}] {entry.text}")

    if csv_path:
        write_export(csv_path, transcripts_to_csv(snapshot.transcripts))
        logger.info(f"Wrote CSV export to {csv_path}")
    if json_path:
        write_export(json_path, transcripts_to_json(snapshot.transcripts))
        logger.info(f"Wrote JSON export to {json_path}")

    if snapshot.last_error:
        print(f"Transcription failed: {snapshot.last_error}", file=sys.stderr)
        return 1

    logger.info("Session complete")
    return 0


@app.command()
def transcribe(
    inputs: List[str] = typer.Argument(..., help="Audio file paths or http(s) URLs"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Whisper model"),
    multilingual: Optional[bool] = typer.Option(
        None,
        "--multilingual/--english-only",
        help="Forward task and language to the model",
    ),
    quantized: Optional[bool] = typer.Option(
        None, "--quantized/--full-precision", help="Run the model with int8 weights"
    ),
    task: Optional[str] = typer.Option(
        None, "--task", "-t", help="transcribe or translate (multilingual only)"
    ),
    language: Optional[str] = typer.Option(
        None, "--language", "-l", help="Language code or name, or 'auto'"
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to a config.toml"
    ),
    csv_path: Optional[Path] = typer.Option(None, "--csv", help="Write a CSV export"),
    json_path: Optional[Path] = typer.Option(
        None, "--json", help="Write timestamped chunks as JSON"
    ),
) -> None:
    """Transcribe every input with the current session settings."""
    overrides = {
        "model": model,
        "multilingual": multilingual,
        "quantized": quantized,
        "subtask": task,
        "language": language,
    }
    exit_code = asyncio.run(main(inputs, overrides, config_path, csv_path, json_path))
    raise typer.Exit(exit_code)


def run() -> None:
    """Entry point for the console script."""
    app()
