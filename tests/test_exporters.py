"""Tests for transcript exports."""

import json

from multiscribe.exporters import transcripts_to_csv, transcripts_to_json, write_export
from multiscribe.protocol import TranscriptChunk
from multiscribe.state import TranscriptEntry


def transcripts():
    return {
        "b.wav": TranscriptEntry(
            is_busy=False,
            text="Hello; world",
            chunks=[TranscriptChunk(text="Hello; world", timestamp=(0.0, 1.5))],
        ),
        "a.wav": TranscriptEntry(
            is_busy=True,
            text="Partial",
            chunks=[TranscriptChunk(text="Partial", timestamp=(0.0, None))],
        ),
    }


def test_csv_export():
    """Test one row per file in display order with a header."""
    lines = transcripts_to_csv(transcripts()).splitlines()

    assert lines[0] == "Filename;Transcription"
    assert lines[1] == 'b.wav;"Hello; world"'
    assert lines[2] == "a.wav;Partial"


def test_csv_export_empty():
    """Test an empty mapping still produces the header."""
    assert transcripts_to_csv({}) == "Filename;Transcription\n"


def test_json_export():
    """Test chunks are exported keyed by file name."""
    data = json.loads(transcripts_to_json(transcripts()))

    assert list(data) == ["b.wav", "a.wav"]
    assert data["b.wav"] == [{"text": "Hello; world", "timestamp": [0.0, 1.5]}]
    assert data["a.wav"][0]["timestamp"] == [0.0, None]


def test_write_export_creates_parents(tmp_path):
    """Test exports can be written into new directories."""
    path = tmp_path / "out" / "transcript.csv"

    write_export(path, "content")

    assert path.read_text(encoding="utf-8") == "content"
