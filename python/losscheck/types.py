"""Type definitions for losscheck."""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Any, Optional, Sequence, Tuple


class MpegVersion(Enum):
    """MPEG audio version from the frame header."""
    MPEG1 = "1"
    MPEG2 = "2"
    MPEG25 = "2.5"


class Layer(Enum):
    """MPEG audio layer."""
    LAYER1 = 1
    LAYER2 = 2
    LAYER3 = 3


class ChannelMode(Enum):
    """Channel mode from the frame header."""
    STEREO = "stereo"
    JOINT_STEREO = "joint_stereo"
    DUAL_CHANNEL = "dual_channel"
    MONO = "mono"


class Verdict(Enum):
    """Verdict tier for one analyzed file."""
    OK = "OK"
    SUSPECT = "SUSPECT"
    TRANSCODE = "TRANSCODE"
    ERROR = "ERROR"

    @property
    def rank(self) -> int:
        return _VERDICT_RANK[self]


_VERDICT_RANK = {
    Verdict.OK: 0,
    Verdict.SUSPECT: 1,
    Verdict.TRANSCODE: 2,
    Verdict.ERROR: -1,
}


class FlagKind(Enum):
    """Closed vocabulary of detection flags."""
    # Binary evidence
    LOWPASS_MISMATCH = "lowpass_mismatch"
    MULTI_ENCODER_SIGS = "multi_encoder_sigs"
    IRREGULAR_FRAMES = "irregular_frames"
    # Spectral evidence
    SEVERE_HF_DAMAGE = "severe_hf_damage"
    HF_CUTOFF_DETECTED = "hf_cutoff_detected"
    POSSIBLE_LOSSY_ORIGIN = "possible_lossy_origin"
    STEEP_HF_ROLLOFF = "steep_hf_rolloff"
    DEAD_UPPER_BAND = "dead_upper_band"
    CLIFF_AT_20KHZ = "cliff_at_20khz"
    WEAK_ULTRASONIC_CONTENT = "weak_ultrasonic_content"
    DEAD_ULTRASONIC_BAND = "dead_ultrasonic_band"


@dataclass(frozen=True)
class DetectionFlag:
    """A triggered flag with a short human-readable piece of evidence."""
    kind: FlagKind
    evidence: str = ""

    def __str__(self) -> str:
        if self.evidence:
            return f"{self.kind.value}({self.evidence})"
        return self.kind.value


@dataclass(frozen=True)
class FrameDescriptor:
    """One MPEG audio frame located by the scanner."""
    offset: int
    version: MpegVersion
    layer: Layer
    bitrate: int
    sample_rate: int
    channel_mode: ChannelMode
    padding: bool
    length: int
    samples_per_frame: int
    crc_protected: bool = False

    @property
    def padding_size(self) -> int:
        if not self.padding:
            return 0
        return 4 if self.layer is Layer.LAYER1 else 1

    @property
    def end(self) -> int:
        return self.offset + self.length


@dataclass(frozen=True)
class FrameScan:
    """Result of scanning a byte buffer for MPEG audio frames."""
    frames: Tuple[FrameDescriptor, ...] = ()
    resync_failures: int = 0
    start_offset: int = 0
    valid: bool = False

    @property
    def frame_count(self) -> int:
        return len(self.frames)

    @property
    def bitrates(self) -> List[int]:
        return [f.bitrate for f in self.frames]

    @property
    def is_cbr(self) -> bool:
        return len(set(self.bitrates)) == 1

    @property
    def average_bitrate(self) -> int:
        if not self.frames:
            return 0
        return int(round(sum(self.bitrates) / len(self.frames)))

    @property
    def sample_rate(self) -> int:
        return self.frames[0].sample_rate if self.frames else 0

    @property
    def spacings(self) -> List[int]:
        """Observed distance from each frame to the next, minus its padding."""
        return [
            nxt.offset - cur.offset - cur.padding_size
            for cur, nxt in zip(self.frames, self.frames[1:])
        ]

    @property
    def frame_length_variance(self) -> float:
        spacings = self.spacings
        if len(spacings) < 2:
            return 0.0
        mean = sum(spacings) / len(spacings)
        return sum((s - mean) ** 2 for s in spacings) / len(spacings)


@dataclass(frozen=True)
class EncoderMetadata:
    """Contents of an embedded VBR/encoder tag."""
    encoder: str
    lowpass: int = 0
    encoder_delay: int = 0
    encoder_padding: int = 0
    is_vbr: bool = False
    tag: str = ""
    frame_count: Optional[int] = None
    byte_count: Optional[int] = None
    quality: Optional[int] = None
    vbr_method: Optional[int] = None


@dataclass(frozen=True)
class FrequencyBand:
    """Aggregated energy of one named frequency band."""
    name: str
    low_hz: float
    high_hz: float
    energy_db: float
    available: bool = True


@dataclass(frozen=True)
class SpectralProfile:
    """Band energies and derived rolloff metrics for one file."""
    sample_rate: int
    window_size: int
    window_count: int
    duration_s: float
    bands: Tuple[FrequencyBand, ...]
    floor_db: float
    upper_drop_db: Optional[float] = None
    ultrasonic_drop_db: Optional[float] = None
    flatness_19_21k: Optional[float] = None
    cliff_20k_db: Optional[float] = None
    rolloff_hz: float = 0.0
    is_silent: bool = False

    @property
    def nyquist_hz(self) -> float:
        return self.sample_rate / 2.0

    def band(self, name: str) -> FrequencyBand:
        for band in self.bands:
            if band.name == name:
                return band
        raise KeyError(name)

    def energy(self, name: str) -> float:
        return self.band(name).energy_db

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sample_rate': self.sample_rate,
            'window_size': self.window_size,
            'window_count': self.window_count,
            'duration_s': round(self.duration_s, 3),
            'bands': {
                b.name: round(b.energy_db, 2) for b in self.bands if b.available
            },
            'upper_drop_db': _round(self.upper_drop_db),
            'ultrasonic_drop_db': _round(self.ultrasonic_drop_db),
            'flatness_19_21k': _round(self.flatness_19_21k, 4),
            'cliff_20k_db': _round(self.cliff_20k_db),
            'rolloff_hz': round(self.rolloff_hz),
            'is_silent': self.is_silent,
        }


@dataclass(frozen=True)
class AnalysisResult:
    """Complete analysis of one file."""
    path: str
    verdict: Verdict
    bitrate: int = 0
    sample_rate: int = 0
    duration_s: float = 0.0
    binary_score: int = 0
    spectral_score: int = 0
    combined_score: int = 0
    flags: Tuple[DetectionFlag, ...] = ()
    encoder_metadata: Optional[EncoderMetadata] = None
    encoder: str = "unknown"
    signatures: Tuple[str, ...] = ()
    spectral_profile: Optional[SpectralProfile] = None
    frame_count: int = 0
    notes: Tuple[str, ...] = ()
    error: Optional[str] = None

    @property
    def lowpass(self) -> Optional[int]:
        if self.encoder_metadata is None or not self.encoder_metadata.lowpass:
            return None
        return self.encoder_metadata.lowpass

    @property
    def flag_names(self) -> List[str]:
        return [f.kind.value for f in self.flags]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'verdict': self.verdict.value,
            'filepath': self.path,
            'bitrate_kbps': self.bitrate,
            'sample_rate': self.sample_rate,
            'duration_s': round(self.duration_s, 3),
            'combined_score': self.combined_score,
            'spectral_score': self.spectral_score,
            'binary_score': self.binary_score,
            'flags': [str(f) for f in self.flags],
            'encoder': self.encoder,
            'lowpass': self.lowpass,
            'signatures': list(self.signatures),
            'frame_count': self.frame_count,
            'spectral': self.spectral_profile.to_dict() if self.spectral_profile else None,
            'notes': list(self.notes),
            'error': self.error,
        }


@dataclass(frozen=True)
class BatchSummary:
    """Counts per verdict tier over a result collection."""
    total: int = 0
    ok: int = 0
    suspect: int = 0
    transcode: int = 0
    error: int = 0

    @classmethod
    def from_results(cls, results: Sequence[AnalysisResult]) -> "BatchSummary":
        counts = {v: 0 for v in Verdict}
        for r in results:
            counts[r.verdict] += 1
        return cls(
            total=len(results),
            ok=counts[Verdict.OK],
            suspect=counts[Verdict.SUSPECT],
            transcode=counts[Verdict.TRANSCODE],
            error=counts[Verdict.ERROR],
        )

    @property
    def exit_code(self) -> int:
        """0 when everything is OK, 1 for suspects only, 2 for any transcode."""
        if self.transcode:
            return 2
        if self.suspect:
            return 1
        return 0

    def to_dict(self) -> Dict[str, int]:
        return {
            'ok': self.ok,
            'suspect': self.suspect,
            'transcode': self.transcode,
            'error': self.error,
            'total': self.total,
        }


@dataclass
class BatchReport:
    """Ordered results of one batch run."""
    results: List[AnalysisResult] = field(default_factory=list)
    cancelled: bool = False
    skipped: int = 0

    @property
    def summary(self) -> BatchSummary:
        return BatchSummary.from_results(self.results)


def _round(value: Optional[float], digits: int = 2) -> Optional[float]:
    return None if value is None else round(value, digits)
