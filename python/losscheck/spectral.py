"""
Spectral analysis of decoded PCM.

Lossy encoders discard high frequencies with a lowpass filter whose cutoff
depends on the bitrate they were given.  Re-encoding such audio at a higher
bitrate cannot bring the discarded content back, so a transcode shows a
band that is dead or far quieter than the band just below it.

The analyzer builds a long-term average spectrum from overlapping windowed
FFTs and reduces it to a handful of named band energies plus rolloff metrics:

  upper_drop_db        high (10-15 kHz) vs upper (17-20 kHz)
  ultrasonic_drop_db   pre_ultrasonic (19-20 kHz) vs ultrasonic (20-22 kHz)
  flatness_19_21k      spectral flatness across the 20 kHz boundary
  cliff_20k_db         19.5-20 kHz vs 20-20.5 kHz (320 kbps LAME cutoff)
"""
import logging
from typing import Dict, Optional, Tuple

import numpy as np
from scipy import signal
from scipy.fft import rfft, rfftfreq

from .config import AnalysisConfig
from .types import FrequencyBand, SpectralProfile

logger = logging.getLogger(__name__)

# (name, low Hz, high Hz); None = Nyquist
BANDS: Tuple[Tuple[str, float, Optional[float]], ...] = (
    ('reference', 2000.0, 8000.0),
    ('high', 10000.0, 15000.0),
    ('upper', 17000.0, 20000.0),
    ('pre_ultrasonic', 19000.0, 20000.0),
    ('ultrasonic', 20000.0, 22000.0),
    ('full', 20.0, None),
)

_FLATNESS_RANGE = (19000.0, 21000.0)
_CLIFF_BELOW = (19500.0, 20000.0)
_CLIFF_ABOVE = (20000.0, 20500.0)

# Windows transformed per rfft call
_BATCH_WINDOWS = 128

# Width of the moving average used for the rolloff estimate
_ROLLOFF_SMOOTHING_HZ = 250.0

_TINY = 1e-30


class SpectralAnalyzer:
    """Long-term average spectrum and band metrics for mono PCM."""

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.config = config or AnalysisConfig()

    def analyze(self, samples: np.ndarray, sample_rate: int) -> SpectralProfile:
        """Build a :class:`SpectralProfile` from mono samples.

        Args:
            samples: 1-D float array (channel-averaged).
            sample_rate: Sampling rate in Hz.

        Returns:
            SpectralProfile.  Metrics whose bands lie above Nyquist are None;
            silent input yields floor-level bands and ``is_silent=True``.
        """
        if sample_rate <= 0:
            raise ValueError(f"Invalid sample rate: {sample_rate}")
        cfg = self.config
        samples = np.asarray(samples, dtype=np.float64).ravel()
        duration = len(samples) / float(sample_rate)

        ltas, window_count = self._average_spectrum(samples)
        freqs = rfftfreq(cfg.window_size, d=1.0 / sample_rate)
        nyquist = sample_rate / 2.0

        bands = tuple(
            self._band(name, lo, hi if hi is not None else nyquist, ltas, freqs, nyquist)
            for name, lo, hi in BANDS
        )
        energies = {b.name: b for b in bands}
        is_silent = energies['full'].energy_db <= cfg.floor_db

        if is_silent:
            logger.debug("Silent input, spectral metrics set to floor values")
            return SpectralProfile(
                sample_rate=sample_rate,
                window_size=cfg.window_size,
                window_count=window_count,
                duration_s=duration,
                bands=bands,
                floor_db=cfg.floor_db,
                upper_drop_db=0.0 if energies['upper'].available else None,
                ultrasonic_drop_db=0.0 if energies['ultrasonic'].available else None,
                flatness_19_21k=0.0 if _FLATNESS_RANGE[0] < nyquist else None,
                cliff_20k_db=0.0 if _CLIFF_ABOVE[0] < nyquist else None,
                rolloff_hz=0.0,
                is_silent=True,
            )

        return SpectralProfile(
            sample_rate=sample_rate,
            window_size=cfg.window_size,
            window_count=window_count,
            duration_s=duration,
            bands=bands,
            floor_db=cfg.floor_db,
            upper_drop_db=self._drop(energies, 'upper', ('high', 'reference')),
            ultrasonic_drop_db=self._drop(
                energies, 'ultrasonic', ('pre_ultrasonic', 'high', 'reference')
            ),
            flatness_19_21k=self._flatness(ltas, freqs, nyquist),
            cliff_20k_db=self._cliff(ltas, freqs, nyquist),
            rolloff_hz=self._rolloff(ltas, freqs, energies['reference']),
            is_silent=False,
        )

    # ------------------------------------------------------------------
    # Long-term average spectrum
    # ------------------------------------------------------------------
    def _average_spectrum(self, samples: np.ndarray) -> Tuple[np.ndarray, int]:
        """Mean single-sided power spectrum over all windows."""
        n = self.config.window_size
        hop = self.config.hop_size
        if len(samples) < n:
            samples = np.pad(samples, (0, n - len(samples)))

        win = signal.get_window(self.config.window, n)
        # Amplitude normalisation: a full-scale sine reads as 1.0
        scale = 2.0 / np.sum(win)

        frames = np.lib.stride_tricks.sliding_window_view(samples, n)[::hop]
        window_count = frames.shape[0]
        power_sum = np.zeros(n // 2 + 1, dtype=np.float64)
        for start in range(0, window_count, _BATCH_WINDOWS):
            batch = frames[start:start + _BATCH_WINDOWS] * win
            mag = np.abs(rfft(batch, axis=1)) * scale
            power_sum += np.sum(mag ** 2, axis=0)

        return power_sum / window_count, window_count

    def _to_db(self, power: float) -> float:
        if not np.isfinite(power) or power <= _TINY:
            return self.config.floor_db
        return max(self.config.floor_db, float(10.0 * np.log10(power)))

    def _region_power(self, ltas: np.ndarray, freqs: np.ndarray,
                      lo: float, hi: float) -> Optional[np.ndarray]:
        mask = (freqs >= lo) & (freqs < hi)
        if not np.any(mask):
            return None
        return ltas[mask]

    def _band(self, name: str, lo: float, hi: float, ltas: np.ndarray,
              freqs: np.ndarray, nyquist: float) -> FrequencyBand:
        floor = self.config.floor_db
        if lo >= nyquist:
            return FrequencyBand(name, lo, hi, floor, available=False)
        hi = min(hi, nyquist)
        power = self._region_power(ltas, freqs, lo, hi)
        if power is None:
            return FrequencyBand(name, lo, hi, floor, available=False)
        # Mean power over bins and windows = squared RMS amplitude
        return FrequencyBand(name, lo, hi, self._to_db(float(np.mean(power))))

    # ------------------------------------------------------------------
    # Derived metrics
    # ------------------------------------------------------------------
    def _is_live(self, band: FrequencyBand) -> bool:
        margin = self.config.thresholds['dead_band_margin_db']
        return band.available and band.energy_db > self.config.floor_db + margin

    def _drop(self, energies: Dict[str, FrequencyBand], target: str,
              candidates: Tuple[str, ...]) -> Optional[float]:
        """Energy of the nearest live band at or below the pair minus ``target``."""
        band = energies[target]
        if not band.available:
            return None
        base = energies[candidates[0]]
        for name in candidates:
            if self._is_live(energies[name]):
                base = energies[name]
                break
        return base.energy_db - band.energy_db

    def _flatness(self, ltas: np.ndarray, freqs: np.ndarray,
                  nyquist: float) -> Optional[float]:
        lo, hi = _FLATNESS_RANGE
        if lo >= nyquist:
            return None
        power = self._region_power(ltas, freqs, lo, min(hi, nyquist))
        if power is None:
            return None
        level = FrequencyBand('flatness', lo, hi, self._to_db(float(np.mean(power))))
        if not self._is_live(level):
            return 0.0
        power = np.maximum(power, _TINY)
        geometric = np.exp(np.mean(np.log(power)))
        arithmetic = np.mean(power)
        return float(np.clip(geometric / arithmetic, 0.0, 1.0))

    def _cliff(self, ltas: np.ndarray, freqs: np.ndarray,
               nyquist: float) -> Optional[float]:
        if _CLIFF_ABOVE[0] >= nyquist:
            return None
        below = self._region_power(ltas, freqs, *_CLIFF_BELOW)
        above = self._region_power(ltas, freqs, _CLIFF_ABOVE[0], min(_CLIFF_ABOVE[1], nyquist))
        if below is None or above is None:
            return None
        return self._to_db(float(np.mean(below))) - self._to_db(float(np.mean(above)))

    def _rolloff(self, ltas: np.ndarray, freqs: np.ndarray,
                 reference: FrequencyBand) -> float:
        """Highest frequency whose smoothed level stays near the reference band."""
        if not self._is_live(reference):
            return 0.0
        bin_hz = freqs[1] - freqs[0] if len(freqs) > 1 else 1.0
        width = max(1, int(round(_ROLLOFF_SMOOTHING_HZ / bin_hz)))
        smoothed = np.convolve(ltas, np.ones(width) / width, mode='same')
        with np.errstate(divide='ignore'):
            level_db = 10.0 * np.log10(np.maximum(smoothed, _TINY))
        threshold = reference.energy_db - self.config.thresholds['rolloff_margin_db']
        above = np.nonzero(level_db >= threshold)[0]
        if len(above) == 0:
            return 0.0
        return float(freqs[above[-1]])
