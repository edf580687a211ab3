"""Audio preparation for the inference worker."""

import io
import logging
import math
from pathlib import Path
from typing import BinaryIO, Union

import av
import numpy as np
from faster_whisper import decode_audio

logger = logging.getLogger(__name__)

# Sample rate expected by Whisper models; every decode path uses it
SAMPLE_RATE = 16000
AUDIO_DTYPE = np.float32

# Compensates for the loudness of a mono render of a stereo signal
STEREO_SCALING_FACTOR = math.sqrt(2)


def normalize(buffer: np.ndarray) -> np.ndarray:
    """Convert a decoded multi-channel buffer into mono samples.

    Args:
        buffer: Array shaped (channels, frames). A 1-D array is treated as mono.

    Returns:
        Mono float32 samples at the rate the buffer was decoded at.

    Raises:
        ValueError: If the buffer has no channels or more than two dimensions.
    """
    buffer = np.asarray(buffer, dtype=AUDIO_DTYPE)

    if buffer.ndim == 1:
        return buffer
    if buffer.ndim != 2:
        raise ValueError(
            f"Audio buffer must be shaped (channels, frames), got {buffer.shape}"
        )

    num_channels = buffer.shape[0]
    if num_channels == 0:
        raise ValueError("Audio buffer has no channels")

    if num_channels == 2:
        left, right = buffer[0], buffer[1]
        return (STEREO_SCALING_FACTOR * (left + right) / 2).astype(AUDIO_DTYPE)

    if num_channels > 2:
        logger.warning(
            f"Audio has {num_channels} channels, using channel 0 and dropping the rest"
        )

    return buffer[0]


AudioSource = Union[str, Path, bytes]


def _open_source(source: AudioSource) -> Union[str, BinaryIO]:
    if isinstance(source, (bytes, bytearray)):
        return io.BytesIO(source)
    return str(source)


def probe_channels(source: AudioSource) -> int:
    """Return the channel count of the first audio stream."""
    with av.open(_open_source(source)) as container:
        if not container.streams.audio:
            raise ValueError("No audio stream found")
        return container.streams.audio[0].codec_context.channels


def _decode_all_channels(source: AudioSource) -> np.ndarray:
    """Decode every channel at SAMPLE_RATE into a (channels, frames) buffer."""
    # Planar float output keeps the input layout, one row per channel
    resampler = av.AudioResampler(format="fltp", rate=SAMPLE_RATE)
    blocks = []

    with av.open(_open_source(source)) as container:
        stream = container.streams.audio[0]
        for frame in container.decode(stream):
            blocks.extend(f.to_ndarray() for f in resampler.resample(frame))
        blocks.extend(f.to_ndarray() for f in resampler.resample(None))

    if not blocks:
        raise ValueError("No audio frames decoded")
    return np.concatenate(blocks, axis=1).astype(AUDIO_DTYPE)


def decode_file(source: AudioSource) -> np.ndarray:
    """Decode a file path or raw file bytes at SAMPLE_RATE.

    Returns:
        A (channels, frames) buffer. Multi-channel input is kept split so that
        normalize() applies the channel policy.
    """
    channels = probe_channels(source)
    logger.debug(f"Decoding audio ({channels} channel(s)) at {SAMPLE_RATE} Hz")

    if channels == 2:
        left, right = decode_audio(
            _open_source(source), sampling_rate=SAMPLE_RATE, split_stereo=True
        )
        return np.stack([left, right]).astype(AUDIO_DTYPE)
    if channels > 2:
        return _decode_all_channels(source)

    samples = decode_audio(_open_source(source), sampling_rate=SAMPLE_RATE)
    return samples.astype(AUDIO_DTYPE)[np.newaxis, :]
