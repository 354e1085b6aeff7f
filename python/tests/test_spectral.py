"""Tests for the spectral analyzer."""

import numpy as np
import pytest

from losscheck import AnalysisConfig, SpectralAnalyzer

from conftest import bandlimited_noise, white_noise


@pytest.fixture()
def analyzer():
    return SpectralAnalyzer(AnalysisConfig())


class TestBands:
    def test_band_set(self, analyzer):
        profile = analyzer.analyze(white_noise(), 44100)
        names = [b.name for b in profile.bands]
        assert names == ["reference", "high", "upper", "pre_ultrasonic", "ultrasonic", "full"]
        assert all(b.available for b in profile.bands)

    def test_white_noise_is_flat(self, analyzer):
        profile = analyzer.analyze(white_noise(), 44100)
        assert not profile.is_silent
        assert abs(profile.upper_drop_db) < 3.0
        assert abs(profile.ultrasonic_drop_db) < 3.0
        assert abs(profile.cliff_20k_db) < 3.0
        assert profile.flatness_19_21k > 0.8
        assert profile.rolloff_hz > 20000

    def test_sine_amplitude_calibration(self, analyzer):
        sr = 44100
        t = np.arange(sr * 2) / sr
        tone = 0.5 * np.sin(2 * np.pi * 5000.0 * t)
        profile = analyzer.analyze(tone, sr)
        # A 0.5 sine holds all its power in a handful of reference-band bins
        assert profile.energy("reference") > profile.energy("high") + 50

    def test_bands_above_nyquist_unavailable(self, analyzer):
        profile = analyzer.analyze(white_noise(sr=32000), 32000)
        assert not profile.band("upper").available
        assert not profile.band("ultrasonic").available
        assert profile.energy("upper") == profile.floor_db
        assert profile.upper_drop_db is None
        assert profile.ultrasonic_drop_db is None
        assert profile.flatness_19_21k is None
        assert profile.cliff_20k_db is None

    def test_unknown_band(self, analyzer):
        profile = analyzer.analyze(white_noise(seconds=0.5), 44100)
        with pytest.raises(KeyError):
            profile.band("nonexistent")


class TestLowpassedContent:
    def test_below_10k_gives_maximal_drops(self, analyzer):
        profile = analyzer.analyze(bandlimited_noise(8000), 44100)
        floor = profile.floor_db
        assert profile.energy("high") == floor
        assert profile.energy("upper") == floor
        assert profile.energy("ultrasonic") == floor
        # Measured from the live reference band, not the dead high band
        reference = profile.energy("reference")
        assert profile.upper_drop_db == pytest.approx(reference - floor)
        assert profile.ultrasonic_drop_db == pytest.approx(reference - floor)
        assert profile.upper_drop_db > 40
        assert profile.flatness_19_21k == 0.0
        assert profile.rolloff_hz < 10000

    def test_16k_cutoff(self, analyzer):
        profile = analyzer.analyze(bandlimited_noise(16000), 44100)
        assert profile.energy("high") > profile.floor_db + 30
        assert profile.energy("upper") == profile.floor_db
        assert profile.upper_drop_db > 40
        assert 15000 < profile.rolloff_hz < 17000

    def test_20k_cliff(self, analyzer):
        profile = analyzer.analyze(bandlimited_noise(20000), 44100)
        assert profile.cliff_20k_db > 18
        assert profile.ultrasonic_drop_db > 20
        assert profile.flatness_19_21k < 0.5


class TestEdgeCases:
    def test_silence(self, analyzer):
        profile = analyzer.analyze(np.zeros(44100, dtype=np.float32), 44100)
        assert profile.is_silent
        assert profile.upper_drop_db == 0.0
        assert profile.ultrasonic_drop_db == 0.0
        assert profile.flatness_19_21k == 0.0
        assert profile.rolloff_hz == 0.0
        assert all(b.energy_db == profile.floor_db for b in profile.bands)

    def test_shorter_than_one_window(self, analyzer):
        profile = analyzer.analyze(white_noise(seconds=0.05), 44100)
        assert profile.window_count == 1
        assert profile.duration_s == pytest.approx(0.05, abs=1e-3)
        assert not profile.is_silent

    def test_window_count(self):
        cfg = AnalysisConfig(window_size=4096, overlap=0.5)
        profile = SpectralAnalyzer(cfg).analyze(np.zeros(4096 * 5), 44100)
        # hop 2048 over 20480 samples
        assert profile.window_count == 9

    def test_no_nan(self, analyzer):
        profile = analyzer.analyze(np.full(20000, 1e-12), 44100)
        for band in profile.bands:
            assert np.isfinite(band.energy_db)

    def test_invalid_sample_rate(self, analyzer):
        with pytest.raises(ValueError):
            analyzer.analyze(white_noise(seconds=0.1), 0)

    def test_alternate_window(self):
        cfg = AnalysisConfig(window="blackmanharris")
        profile = SpectralAnalyzer(cfg).analyze(white_noise(), 44100)
        assert abs(profile.upper_drop_db) < 3.0

    def test_deterministic(self, analyzer):
        samples = white_noise(seed=7)
        a = analyzer.analyze(samples, 44100)
        b = analyzer.analyze(samples, 44100)
        assert a.to_dict() == b.to_dict()
