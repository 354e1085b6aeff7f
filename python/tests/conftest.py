"""Shared pytest fixtures for losscheck tests."""

import struct
import wave

import numpy as np
import pytest
import soundfile as sf

from losscheck import AnalysisConfig


# ---------------------------------------------------------------------------
# MPEG frame stream builders
# ---------------------------------------------------------------------------

# MPEG-1 Layer III bitrate index by kbps
BITRATE_INDEX = {
    32: 1, 40: 2, 48: 3, 56: 4, 64: 5, 80: 6, 96: 7, 112: 8,
    128: 9, 160: 10, 192: 11, 224: 12, 256: 13, 320: 14,
}


def mpeg1_header(bitrate=128, padding=False, mono=False, crc=False):
    """4-byte MPEG-1 Layer III header at 44.1 kHz."""
    b1 = 0xFA if crc else 0xFB
    b2 = (BITRATE_INDEX[bitrate] << 4) | (0x02 if padding else 0)
    b3 = 0xC0 if mono else 0x40
    return bytes([0xFF, b1, b2, b3])


def frame_length(bitrate, padding=False):
    return 144 * bitrate * 1000 // 44100 + (1 if padding else 0)


def info_tag(frame_count=0, lowpass=None, delay=576, padding=1000,
             encoder=b"LAME3.100", tag=b"Info", vbr_method=1, quality=57):
    """Xing/Info structure with all optional fields and an encoder extension."""
    body = tag + struct.pack(">I", 0x0F)
    body += struct.pack(">I", frame_count)
    body += struct.pack(">I", 0)
    body += bytes(100)
    body += struct.pack(">I", quality)
    if encoder is not None:
        lowpass_byte = 0 if lowpass is None else lowpass // 100
        ext = encoder[:9].ljust(9, b"\x00")
        ext += bytes([0x00 | vbr_method, lowpass_byte])
        ext += bytes(10)
        packed = (delay << 12) | padding
        ext += bytes([(packed >> 16) & 0xFF, (packed >> 8) & 0xFF, packed & 0xFF])
        body += ext
    return body


def build_frame(bitrate=128, payload=b"", mono=False, crc=False, length=None):
    header = mpeg1_header(bitrate, mono=mono, crc=crc)
    size = frame_length(bitrate) if length is None else length
    side_info = (2 if crc else 0) + (17 if mono else 32)
    frame = header + bytes(side_info) + payload if payload else header
    return frame.ljust(size, b"\x00")[:size]


def build_stream(bitrate=128, count=30, lowpass=None, tag=True, truncate_every=None,
                 prefix=b"", suffix=b"", encoder=b"LAME3.100"):
    """Synthetic MPEG-1 Layer III stream.

    Args:
        bitrate: Constant bitrate of every frame.
        count: Number of frames including the tag frame.
        lowpass: Lowpass (Hz) recorded in the encoder extension.
        tag: Whether the first frame carries an Info tag.
        truncate_every: Shorten every n-th frame by 3 bytes.
        prefix / suffix: Bytes placed before / after the frames.
    """
    frames = []
    for i in range(count):
        length = frame_length(bitrate)
        if truncate_every and i % truncate_every == truncate_every - 1:
            length -= 3
        payload = b""
        if i == 0 and tag:
            payload = info_tag(frame_count=count, lowpass=lowpass, encoder=encoder)
        frames.append(build_frame(bitrate, payload, length=length))
    return prefix + b"".join(frames) + suffix


def id3v2(payload=b""):
    size = len(payload)
    syncsafe = bytes([(size >> 21) & 0x7F, (size >> 14) & 0x7F, (size >> 7) & 0x7F, size & 0x7F])
    return b"ID3\x04\x00\x00" + syncsafe + payload


@pytest.fixture()
def cbr_320_lowpass_16k():
    """320 kbps stream whose LAME tag records a 16 kHz lowpass."""
    return build_stream(bitrate=320, count=30, lowpass=16000)


@pytest.fixture()
def cbr_320_clean():
    return build_stream(bitrate=320, count=30, lowpass=20500)


# ---------------------------------------------------------------------------
# PCM fixtures
# ---------------------------------------------------------------------------


def white_noise(seconds=3.0, sr=44100, std=0.1, seed=0):
    rng = np.random.default_rng(seed)
    return (rng.standard_normal(int(seconds * sr)) * std).astype(np.float32)


def bandlimited_noise(cutoff_hz, seconds=3.0, sr=44100, std=0.1, seed=0):
    """White noise with every FFT bin above ``cutoff_hz`` zeroed."""
    rng = np.random.default_rng(seed)
    n = int(seconds * sr)
    spectrum = np.fft.rfft(rng.standard_normal(n))
    spectrum[np.fft.rfftfreq(n, 1.0 / sr) > cutoff_hz] = 0
    y = np.fft.irfft(spectrum, n)
    return (y / np.std(y) * std).astype(np.float32)


def write_wav(path, samples, sr=44100):
    """Write mono float samples as a 16-bit PCM WAV."""
    pcm = np.round(np.clip(samples, -1.0, 1.0) * 32767).astype(np.int16)
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sr)
        wf.writeframes(pcm.tobytes())
    return path


def tones(freqs=(440.0, 1000.0, 3000.0, 6000.0), seconds=5.0, sr=44100, amplitude=0.1):
    """Sum of sines; nothing above the highest tone."""
    t = np.arange(int(seconds * sr)) / sr
    y = sum(amplitude * np.sin(2 * np.pi * f * t) for f in freqs)
    return y.astype(np.float32)


requires_mp3 = pytest.mark.skipif(
    "MP3" not in sf.available_formats(),
    reason="libsndfile built without MP3 support",
)


def write_mp3(path, samples, sr=44100):
    """Encode mono float samples to MP3 through libsndfile (LAME)."""
    sf.write(str(path), samples, sr, format="MP3", subtype="MPEG_LAYER_III")
    return path


@pytest.fixture()
def config():
    return AnalysisConfig()


@pytest.fixture()
def binary_only_config():
    return AnalysisConfig(spectral=False, jobs=2)


@pytest.fixture()
def noise_wav(tmp_path):
    return write_wav(tmp_path / "noise.wav", white_noise())


@pytest.fixture()
def lowpassed_wav(tmp_path):
    return write_wav(tmp_path / "lowpassed.wav", bandlimited_noise(8000))


@pytest.fixture()
def tones_mp3(tmp_path):
    """LAME-encoded MP3 with no content above 6 kHz."""
    return write_mp3(tmp_path / "tones.mp3", tones())
