"""
Per-file transcode analysis.

Two independent evidence sources are gathered for every file:

  binary    frame headers, the encoder tag and encoder signature strings
  spectral  band energies of the decoded audio

and fused by :func:`losscheck.scoring.combine` into one verdict.  With
spectral analysis disabled only the container header is read, so a valid
non-MPEG file still gets a result instead of an error.
"""
import concurrent.futures
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .config import AnalysisConfig
from .decode import AudioInfo, AudioSource, DecodeError, DecodedAudio, decode_audio, read_audio_info
from .encoder import extract_encoder_metadata, scan_encoder_signatures
from .frames import scan_frames
from .scoring import combine, evaluate_binary, evaluate_spectral
from .spectral import SpectralAnalyzer
from .types import (
    AnalysisResult,
    DetectionFlag,
    EncoderMetadata,
    FrameScan,
    SpectralProfile,
    Verdict,
)

logger = logging.getLogger(__name__)

NO_BINARY_EVIDENCE = "no binary evidence available"

# soundfile's format name for MPEG audio streams
MPEG_FORMATS = frozenset({'MP3'})


@dataclass
class _BinaryEvidence:
    scan: FrameScan
    metadata: Optional[EncoderMetadata] = None
    signatures: Tuple[str, ...] = ()
    score: int = 0
    flags: List[DetectionFlag] = field(default_factory=list)


@dataclass
class _SpectralEvidence:
    audio: Optional[Union[DecodedAudio, AudioInfo]] = None
    profile: Optional[SpectralProfile] = None
    error: Optional[str] = None


def error_result(path: str, message: str) -> AnalysisResult:
    return AnalysisResult(path=path, verdict=Verdict.ERROR, error=message)


class Analyzer:
    """Runs the binary and spectral pipelines for one file at a time.

    Instances hold no per-file state and may be shared between threads.
    """

    def __init__(self, config: Optional[AnalysisConfig] = None, max_workers: int = 1):
        """Initialize Analyzer.

        Args:
            config: Analysis configuration (defaults if omitted).
            max_workers: 1 (default) runs binary and spectral analysis
                sequentially.  Values > 1 run them concurrently.
        """
        self.config = config or AnalysisConfig()
        self._max_workers = max(1, max_workers)
        self._spectral = SpectralAnalyzer(self.config)

    def analyze_path(self, path: Union[str, Path]) -> AnalysisResult:
        """Analyze a file on disk.  Never raises; failures become ERROR results."""
        path_str = str(path)
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            logger.error(f"Cannot read {path_str}: {e}")
            return error_result(path_str, f"read failed: {e}")
        return self._guarded(data, path_str, Path(path))

    def analyze_bytes(self, data: bytes, path: str = "<bytes>") -> AnalysisResult:
        """Analyze an in-memory file.  Never raises; failures become ERROR results."""
        return self._guarded(data, path, data)

    def _guarded(self, data: bytes, path: str, source: AudioSource) -> AnalysisResult:
        try:
            return self._analyze(data, path, source)
        except Exception as e:
            logger.error(f"Analysis of {path} failed: {e}")
            return error_result(path, str(e))

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    def _analyze(self, data: bytes, path: str, source: AudioSource) -> AnalysisResult:
        analysis_tasks = [('binary', self._binary_evidence, (data,))]
        if self.config.spectral:
            analysis_tasks.append(('audio', self._spectral_evidence, (source,)))
        else:
            analysis_tasks.append(('audio', self._container_evidence, (source,)))

        results = {}
        if self._max_workers > 1:
            with concurrent.futures.ThreadPoolExecutor(max_workers=self._max_workers) as executor:
                futures = {
                    key: executor.submit(fn, *args)
                    for key, fn, args in analysis_tasks
                }
                for key, future in futures.items():
                    results[key] = future.result()
        else:
            for key, fn, args in analysis_tasks:
                results[key] = fn(*args)

        binary: _BinaryEvidence = results['binary']
        spectral: _SpectralEvidence = results['audio']
        audio = spectral.audio
        if binary.scan.valid and audio is not None and audio.format not in MPEG_FORMATS:
            # Sync patterns inside PCM or another container are coincidental
            logger.debug(f"Ignoring {binary.scan.frame_count} frames inside {audio.format} data")
            binary = _BinaryEvidence(scan=FrameScan(), signatures=binary.signatures)
        scan = binary.scan
        notes: List[str] = []

        if not scan.valid:
            if spectral.error is not None:
                # Neither source can say anything about this file
                logger.error(f"Cannot analyze {path}: {spectral.error}")
                return error_result(path, spectral.error)
            notes.append(NO_BINARY_EVIDENCE)
        elif spectral.error is not None:
            if self.config.spectral:
                logger.warning(f"Spectral analysis unavailable for {path}: {spectral.error}")
                notes.append(f"spectral analysis unavailable: {spectral.error}")
            else:
                logger.debug(f"Container header unreadable for {path}: {spectral.error}")

        if scan.valid:
            bitrate = scan.average_bitrate
            sample_rate = scan.sample_rate
            duration = sum(f.samples_per_frame for f in scan.frames) / sample_rate
            expected_lowpass = self.config.expected_lowpass_for(bitrate) or 0
        else:
            sample_rate = audio.sample_rate
            duration = audio.duration_s
            bitrate = int(round(len(data) * 8 / duration / 1000)) if duration > 0 else 0
            if audio.is_lossless:
                expected_lowpass = None
            else:
                expected_lowpass = self.config.expected_lowpass_for(bitrate) or 0
        if isinstance(audio, DecodedAudio):
            duration = audio.duration_s

        spectral_score, spectral_flags = evaluate_spectral(
            spectral.profile, self.config, expected_lowpass_hz=expected_lowpass
        )
        combined, verdict = combine(binary.score, spectral_score, self.config)

        metadata = binary.metadata
        if metadata is not None and metadata.encoder:
            encoder = metadata.encoder
        elif binary.signatures:
            encoder = binary.signatures[0]
        else:
            encoder = "unknown"

        logger.info(f"{path}: {verdict.value} ({combined})")
        return AnalysisResult(
            path=path,
            verdict=verdict,
            bitrate=bitrate,
            sample_rate=sample_rate,
            duration_s=duration,
            binary_score=binary.score,
            spectral_score=spectral_score,
            combined_score=combined,
            flags=tuple(binary.flags) + tuple(spectral_flags),
            encoder_metadata=metadata,
            encoder=encoder,
            signatures=binary.signatures,
            spectral_profile=spectral.profile,
            frame_count=scan.frame_count,
            notes=tuple(notes),
        )

    def _binary_evidence(self, data: bytes) -> _BinaryEvidence:
        scan = scan_frames(data, self.config)
        signatures = tuple(scan_encoder_signatures(data, self.config.signature_scan_bytes))
        if not scan.valid:
            logger.debug(f"No valid MPEG frame stream ({scan.frame_count} frames)")
            return _BinaryEvidence(scan=scan, signatures=signatures)

        metadata = extract_encoder_metadata(data, scan.frames)
        score, flags = evaluate_binary(
            scan.average_bitrate,
            metadata,
            scan.frame_length_variance,
            len(signatures),
            self.config,
            is_cbr=scan.is_cbr,
        )
        return _BinaryEvidence(
            scan=scan,
            metadata=metadata,
            signatures=signatures,
            score=score,
            flags=flags,
        )

    def _spectral_evidence(self, source: AudioSource) -> _SpectralEvidence:
        try:
            audio = decode_audio(source)
        except DecodeError as e:
            return _SpectralEvidence(error=str(e))
        profile = self._spectral.analyze(audio.samples, audio.sample_rate)
        return _SpectralEvidence(audio=audio, profile=profile)

    def _container_evidence(self, source: AudioSource) -> _SpectralEvidence:
        try:
            return _SpectralEvidence(audio=read_audio_info(source))
        except DecodeError as e:
            return _SpectralEvidence(error=str(e))
