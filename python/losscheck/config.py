"""Analysis configuration for losscheck.

Every component receives an :class:`AnalysisConfig` explicitly.  The flag
weights, detection thresholds and the bitrate → lowpass reference table are
plain dictionaries so they can be retuned from a JSON file without touching
evaluator code.
"""
import dataclasses
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

from scipy import signal

from .types import FlagKind

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised for an invalid configuration, before any file is processed."""


# Score contribution of each flag.  Binary score and spectral score are each
# the capped sum of their triggered weights.
WEIGHTS: Dict[FlagKind, int] = {
    FlagKind.LOWPASS_MISMATCH: 35,         # Strongest single signal
    FlagKind.MULTI_ENCODER_SIGS: 20,
    FlagKind.IRREGULAR_FRAMES: 10,         # Weak, mode switches can cause it
    FlagKind.SEVERE_HF_DAMAGE: 40,
    FlagKind.HF_CUTOFF_DETECTED: 25,
    FlagKind.POSSIBLE_LOSSY_ORIGIN: 12,
    FlagKind.STEEP_HF_ROLLOFF: 15,
    FlagKind.DEAD_UPPER_BAND: 20,
    FlagKind.CLIFF_AT_20KHZ: 15,
    FlagKind.WEAK_ULTRASONIC_CONTENT: 10,
    FlagKind.DEAD_ULTRASONIC_BAND: 25,     # 320 kbps-class transcode
}

# Detection thresholds
THRESHOLDS: Dict[str, float] = {
    'severe_upper_drop_db': 40.0,          # 10-15k vs 17-20k
    'cutoff_upper_drop_db': 25.0,
    'possible_upper_drop_db': 15.0,
    'steep_rolloff_db': 50.0,              # 2-8k vs 17-20k
    'dead_band_margin_db': 10.0,           # Within this of the floor = dead
    'ultrasonic_drop_db': 20.0,            # 19-20k vs 20-22k
    'flatness_low': 0.1,                   # 19-21k flatness below this = dead
    'cliff_20k_db': 18.0,                  # 19.5-20k vs 20-20.5k
    'rolloff_margin_db': 60.0,             # Below reference level = rolled off
    'irregular_frame_variance': 0.5,       # bytes^2 across CBR frames
    'upper_checks_min_lowpass_hz': 19000,
    'ultrasonic_checks_min_lowpass_hz': 20500,
}

# Lowpass a clean encode at each bitrate tier is expected to keep (kbps → Hz).
# Bitrates below the smallest tier carry no expectation.
EXPECTED_LOWPASS: Dict[int, int] = {
    320: 20500,
    256: 20000,
    224: 19500,
    192: 18500,
    160: 17500,
    128: 16000,
    112: 15500,
    96: 15000,
}


def _frozen(mapping: Mapping) -> Mapping:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class AnalysisConfig:
    """Immutable settings threaded through the whole pipeline."""
    transcode_threshold: int = 65
    suspect_threshold: int = 35
    jobs: Optional[int] = None
    spectral: bool = True
    window_size: int = 8192
    overlap: float = 0.5
    window: str = 'hann'
    floor_db: float = -100.0
    lowpass_margin_hz: int = 1500
    min_frames: int = 4
    max_resync_ratio: float = 0.5
    signature_scan_bytes: int = 65536
    weights: Mapping[FlagKind, int] = field(default_factory=lambda: _frozen(WEIGHTS))
    thresholds: Mapping[str, float] = field(default_factory=lambda: _frozen(THRESHOLDS))
    expected_lowpass: Mapping[int, int] = field(default_factory=lambda: _frozen(EXPECTED_LOWPASS))

    def __post_init__(self):
        # Partial overrides are merged onto the defaults
        weights = dict(WEIGHTS)
        for key, value in dict(self.weights).items():
            weights[_flag_kind(key)] = value
        thresholds = dict(THRESHOLDS)
        thresholds.update(self.thresholds)
        object.__setattr__(self, 'weights', _frozen(weights))
        object.__setattr__(self, 'thresholds', _frozen(thresholds))
        expected = dict(EXPECTED_LOWPASS)
        expected.update({int(k): int(v) for k, v in dict(self.expected_lowpass).items()})
        object.__setattr__(self, 'expected_lowpass', _frozen(expected))
        self._validate()

    def _validate(self) -> None:
        if not 0 < self.suspect_threshold < self.transcode_threshold <= 100:
            raise ConfigurationError(
                f"Thresholds must satisfy 0 < suspect ({self.suspect_threshold}) "
                f"< transcode ({self.transcode_threshold}) <= 100"
            )
        if self.jobs is not None and (not isinstance(self.jobs, int) or self.jobs < 1):
            raise ConfigurationError(f"Worker count must be a positive integer, got {self.jobs!r}")
        if self.window_size < 64:
            raise ConfigurationError(f"Window size too small: {self.window_size}")
        if not 0.0 <= self.overlap < 1.0:
            raise ConfigurationError(f"Overlap must be in [0, 1), got {self.overlap}")
        try:
            signal.get_window(self.window, 16)
        except ValueError as e:
            raise ConfigurationError(f"Unknown window function {self.window!r}: {e}") from e
        if self.floor_db >= 0:
            raise ConfigurationError(f"Floor must be negative dB, got {self.floor_db}")
        if self.lowpass_margin_hz < 0:
            raise ConfigurationError("Lowpass margin must not be negative")
        if self.min_frames < 1:
            raise ConfigurationError("min_frames must be at least 1")
        if not 0.0 < self.max_resync_ratio <= 1.0:
            raise ConfigurationError(f"max_resync_ratio must be in (0, 1], got {self.max_resync_ratio}")
        if self.signature_scan_bytes < 0:
            raise ConfigurationError("signature_scan_bytes must not be negative")
        for kind, weight in self.weights.items():
            if not isinstance(weight, (int, float)) or not 0 <= weight <= 100:
                raise ConfigurationError(f"Weight for {kind.value} must be within 0-100, got {weight!r}")
        unknown = set(self.thresholds) - set(THRESHOLDS)
        if unknown:
            raise ConfigurationError(f"Unknown thresholds: {', '.join(sorted(unknown))}")

    @property
    def resolved_jobs(self) -> int:
        """Worker count, defaulting to the available CPU count."""
        return self.jobs or os.cpu_count() or 1

    @property
    def hop_size(self) -> int:
        return max(1, int(round(self.window_size * (1.0 - self.overlap))))

    def weight(self, kind: FlagKind) -> int:
        return int(self.weights.get(kind, 0))

    def expected_lowpass_for(self, bitrate: int) -> Optional[int]:
        """Expected lowpass for the largest tier not above ``bitrate``."""
        tiers = [t for t in self.expected_lowpass if t <= bitrate]
        if not tiers:
            return None
        return self.expected_lowpass[max(tiers)]

    def replace(self, **changes: Any) -> "AnalysisConfig":
        return dataclasses.replace(self, **changes)


def _flag_kind(key: Union[str, FlagKind]) -> FlagKind:
    if isinstance(key, FlagKind):
        return key
    try:
        return FlagKind(key)
    except ValueError:
        raise ConfigurationError(f"Unknown flag in weights: {key!r}") from None


def config_from_dict(data: Dict[str, Any], **overrides: Any) -> AnalysisConfig:
    """Build a config from a plain dictionary (e.g. parsed JSON)."""
    known = {f.name for f in dataclasses.fields(AnalysisConfig)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
    merged = dict(data)
    merged.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return AnalysisConfig(**merged)
    except TypeError as e:
        raise ConfigurationError(str(e)) from e


def load_config(path: Union[str, Path], **overrides: Any) -> AnalysisConfig:
    """Load a JSON configuration file; ``overrides`` win over file values."""
    config_path = Path(path)
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Cannot read config {config_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config {config_path} must contain a JSON object")
    logger.debug(f"Loaded configuration from {config_path}")
    return config_from_dict(data, **overrides)
