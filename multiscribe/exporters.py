"""Export of finished transcripts."""

import csv
import io
import json
from pathlib import Path
from typing import Dict

from .state import TranscriptEntry

CSV_HEADER = ("Filename", "Transcription")
CSV_DELIMITER = ";"


def transcripts_to_csv(transcripts: Dict[str, TranscriptEntry]) -> str:
    """Render one `file name;text` row per transcript, in display order."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=CSV_DELIMITER, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for file_name, entry in transcripts.items():
        writer.writerow((file_name, entry.text))
    return buffer.getvalue()


def transcripts_to_json(transcripts: Dict[str, TranscriptEntry]) -> str:
    """Render the timestamped chunks of every transcript keyed by file name."""
    payload = {
        file_name: [chunk.model_dump(mode="json") for chunk in entry.chunks]
        for file_name, entry in transcripts.items()
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


def write_export(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
