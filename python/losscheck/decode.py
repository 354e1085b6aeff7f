"""Audio decoding to mono float32 PCM.

libsndfile (through soundfile) handles WAV, AIFF, FLAC, OGG/Vorbis/Opus and
MP3.  Containers it cannot open (M4A/AAC/ALAC, WMA) are decoded by librosa,
which hands them to audioread/ffmpeg.  That fallback needs a file path.
"""
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import librosa
import numpy as np
import soundfile as sf

logger = logging.getLogger(__name__)

AudioSource = Union[str, Path, bytes]

# Extensions libsndfile cannot read, mapped to the format name reported for them
FALLBACK_FORMATS = {
    '.m4a': 'M4A',
    '.mp4': 'M4A',
    '.aac': 'AAC',
    '.wma': 'WMA',
    '.alac': 'ALAC',
}

# Formats that carry lossy audio.  M4A is usually AAC; an ALAC .m4a is
# still scored against its (lossless-sized) bitrate tier.
LOSSY_FORMATS = frozenset({'MP3', 'OGG', 'M4A', 'AAC', 'WMA'})

_SOUNDFILE_ERRORS = (sf.LibsndfileError, RuntimeError, TypeError, ValueError, OSError)


class DecodeError(Exception):
    """Raised when a file cannot be decoded to PCM samples."""


class _StreamProperties:
    @property
    def duration_s(self) -> float:
        if not self.sample_rate:
            return 0.0
        return self.frames / self.sample_rate

    @property
    def is_lossless(self) -> bool:
        return self.format not in LOSSY_FORMATS


@dataclass(frozen=True)
class AudioInfo(_StreamProperties):
    """Stream parameters read from a container header."""
    sample_rate: int
    channels: int
    frames: int
    format: str = ""


@dataclass(frozen=True)
class DecodedAudio(_StreamProperties):
    """Channel-averaged samples plus the stream parameters they came from."""
    samples: np.ndarray
    sample_rate: int
    channels: int
    frames: int
    format: str = ""


def _fallback_format(source: AudioSource):
    if isinstance(source, (bytes, bytearray)):
        return None
    return FALLBACK_FORMATS.get(Path(source).suffix.lower())


def _decode_with_librosa(path: str, fmt: str) -> DecodedAudio:
    try:
        y, sr = librosa.load(path, sr=None, mono=False)
    except Exception as e:
        raise DecodeError(f"Cannot decode {fmt} audio: {e}") from e
    channels = 1 if y.ndim == 1 else y.shape[0]
    samples = librosa.to_mono(y).astype(np.float32)
    return DecodedAudio(
        samples=samples,
        sample_rate=int(sr),
        channels=channels,
        frames=len(samples),
        format=fmt,
    )


def read_audio_info(source: AudioSource) -> AudioInfo:
    """Read the stream parameters of a file without decoding its samples.

    Raises :class:`DecodeError` when no decoder accepts the file.
    """
    fallback = _fallback_format(source)
    if fallback is not None:
        # audioread exposes no reliable header-only path
        audio = _decode_with_librosa(str(source), fallback)
        return AudioInfo(audio.sample_rate, audio.channels, audio.frames, audio.format)

    target = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else str(source)
    try:
        info = sf.info(target)
    except _SOUNDFILE_ERRORS as e:
        raise DecodeError(f"Cannot read audio header: {e}") from e
    return AudioInfo(
        sample_rate=int(info.samplerate),
        channels=int(info.channels),
        frames=int(info.frames),
        format=info.format,
    )


def decode_audio(source: AudioSource) -> DecodedAudio:
    """Decode a file path or raw bytes into mono float32 samples.

    Any container/codec libsndfile understands is accepted, plus the
    :data:`FALLBACK_FORMATS` extensions when ``source`` is a path.  Anything
    else raises :class:`DecodeError`.
    """
    fallback = _fallback_format(source)
    if fallback is not None:
        logger.debug(f"Decoding {source} with librosa")
        audio = _decode_with_librosa(str(source), fallback)
        samples = audio.samples
    else:
        target = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else str(source)
        try:
            with sf.SoundFile(target) as f:
                data = f.read(dtype='float32', always_2d=True)
                sr = f.samplerate
                fmt = f.format
        except _SOUNDFILE_ERRORS as e:
            raise DecodeError(f"Cannot decode audio: {e}") from e

        channels = data.shape[1]
        if channels > 1:
            samples = data.mean(axis=1).astype(np.float32)
        else:
            samples = data[:, 0].copy()
        audio = DecodedAudio(
            samples=samples,
            sample_rate=int(sr),
            channels=channels,
            frames=int(data.shape[0]),
            format=fmt,
        )

    if not np.all(np.isfinite(samples)):
        logger.warning("Decoded audio contains non-finite samples, zeroing them")
        samples = np.nan_to_num(samples, nan=0.0, posinf=0.0, neginf=0.0)
        audio = DecodedAudio(samples, audio.sample_rate, audio.channels, audio.frames, audio.format)
    return audio
