"""
Evidence evaluation and verdict combination.

Both evaluators return ``(score, flags)`` where score is the sum of the
configured weights of the triggered flags, capped at 100.  The combiner adds
the two clamped scores and maps the total onto a verdict tier.
"""
import logging
from typing import List, Optional, Tuple

from .config import AnalysisConfig
from .types import DetectionFlag, EncoderMetadata, FlagKind, SpectralProfile, Verdict

logger = logging.getLogger(__name__)

Evidence = Tuple[int, List[DetectionFlag]]


def clamp_score(score: float) -> int:
    return int(min(100, max(0, round(score))))


def _total(flags: List[DetectionFlag], config: AnalysisConfig) -> int:
    return clamp_score(sum(config.weight(f.kind) for f in flags))


# ---------------------------------------------------------------------------
# Binary evidence
# ---------------------------------------------------------------------------

def evaluate_binary(bitrate: int, metadata: Optional[EncoderMetadata],
                    frame_length_variance: float, signature_count: int,
                    config: Optional[AnalysisConfig] = None,
                    is_cbr: bool = True) -> Evidence:
    """Score structural evidence from the frame scan and encoder tag.

    Args:
        bitrate: Declared bitrate in kbps.
        metadata: Decoded encoder tag, or None if the file has none.
        frame_length_variance: Variance of observed frame spacing (bytes^2).
        signature_count: Number of distinct encoder families found.
        config: Weights, thresholds and the expected-lowpass table.
        is_cbr: Whether every frame shares one bitrate.

    Returns:
        (score, flags)
    """
    config = config or AnalysisConfig()
    flags: List[DetectionFlag] = []

    lowpass = metadata.lowpass if metadata is not None else 0
    expected = config.expected_lowpass_for(bitrate)
    if lowpass and expected is not None and lowpass < expected - config.lowpass_margin_hz:
        flags.append(DetectionFlag(
            FlagKind.LOWPASS_MISMATCH,
            f"{lowpass}Hz<{expected}Hz@{bitrate}kbps",
        ))

    if signature_count > 1:
        flags.append(DetectionFlag(
            FlagKind.MULTI_ENCODER_SIGS, f"{signature_count} encoders"
        ))

    variance_limit = config.thresholds['irregular_frame_variance']
    if is_cbr and frame_length_variance > variance_limit:
        flags.append(DetectionFlag(
            FlagKind.IRREGULAR_FRAMES, f"var={frame_length_variance:.1f}"
        ))

    return _total(flags, config), flags


# ---------------------------------------------------------------------------
# Spectral evidence
# ---------------------------------------------------------------------------

def evaluate_spectral(profile: Optional[SpectralProfile],
                      config: Optional[AnalysisConfig] = None,
                      expected_lowpass_hz: Optional[int] = None) -> Evidence:
    """Score psychoacoustic evidence from a spectral profile.

    ``expected_lowpass_hz`` is the cutoff an honest encode at the declared
    bitrate would keep; None means the file claims to be lossless.  Checks
    on bands the declared bitrate is not expected to preserve are skipped.
    """
    config = config or AnalysisConfig()
    flags: List[DetectionFlag] = []
    if profile is None or profile.is_silent:
        return 0, flags

    t = config.thresholds
    floor = profile.floor_db
    margin = t['dead_band_margin_db']

    def live(name: str) -> bool:
        band = profile.band(name)
        return band.available and band.energy_db > floor + margin

    run_upper = expected_lowpass_hz is None or expected_lowpass_hz >= t['upper_checks_min_lowpass_hz']
    run_ultrasonic = (expected_lowpass_hz is None
                      or expected_lowpass_hz >= t['ultrasonic_checks_min_lowpass_hz'])

    if run_upper and profile.upper_drop_db is not None:
        drop = profile.upper_drop_db
        if drop > t['severe_upper_drop_db']:
            flags.append(DetectionFlag(FlagKind.SEVERE_HF_DAMAGE, f"{drop:.1f}dB"))
        elif drop > t['cutoff_upper_drop_db']:
            flags.append(DetectionFlag(FlagKind.HF_CUTOFF_DETECTED, f"{drop:.1f}dB"))
        elif drop > t['possible_upper_drop_db']:
            flags.append(DetectionFlag(FlagKind.POSSIBLE_LOSSY_ORIGIN, f"{drop:.1f}dB"))

        reference = profile.energy('reference')
        upper = profile.energy('upper')
        if reference - upper > t['steep_rolloff_db']:
            flags.append(DetectionFlag(
                FlagKind.STEEP_HF_ROLLOFF, f"{reference - upper:.1f}dB"
            ))

        if live('reference') and not live('upper'):
            flags.append(DetectionFlag(FlagKind.DEAD_UPPER_BAND, f"{upper:.1f}dB"))

    if run_ultrasonic and profile.ultrasonic_drop_db is not None:
        drop = profile.ultrasonic_drop_db
        flatness = profile.flatness_19_21k
        dropped = drop > t['ultrasonic_drop_db']
        flat_dead = flatness is not None and flatness < t['flatness_low']
        if dropped and flat_dead:
            flags.append(DetectionFlag(
                FlagKind.DEAD_ULTRASONIC_BAND, f"{drop:.1f}dB,flat={flatness:.2f}"
            ))
        elif dropped or flat_dead:
            evidence = f"{drop:.1f}dB" if dropped else f"flat={flatness:.2f}"
            flags.append(DetectionFlag(FlagKind.WEAK_ULTRASONIC_CONTENT, evidence))

        cliff = profile.cliff_20k_db
        if cliff is not None and cliff > t['cliff_20k_db'] and live('pre_ultrasonic'):
            flags.append(DetectionFlag(FlagKind.CLIFF_AT_20KHZ, f"{cliff:.1f}dB"))

    return _total(flags, config), flags


# ---------------------------------------------------------------------------
# Verdict combination
# ---------------------------------------------------------------------------

def verdict_for(score: int, config: Optional[AnalysisConfig] = None) -> Verdict:
    """Map a combined score onto a verdict tier; ties go to the higher tier."""
    config = config or AnalysisConfig()
    if score >= config.transcode_threshold:
        return Verdict.TRANSCODE
    if score >= config.suspect_threshold:
        return Verdict.SUSPECT
    return Verdict.OK


def combine(binary_score: float, spectral_score: float,
            config: Optional[AnalysisConfig] = None) -> Tuple[int, Verdict]:
    """Fuse the two evidence scores into ``(combined, verdict)``."""
    combined = min(100, clamp_score(binary_score) + clamp_score(spectral_score))
    return combined, verdict_for(combined, config)
