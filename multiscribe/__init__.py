"""Transcription orchestration engine for an out-of-process Whisper worker."""

__version__ = "0.1.0"
