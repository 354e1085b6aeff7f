"""
losscheck - Python Implementation

Detects audio files that were transcoded from a lower-quality lossy source
while claiming higher quality, using MPEG frame forensics and spectral
band analysis.
"""

from .analyzer import Analyzer
from .batch import BatchRunner, run_batch
from .config import AnalysisConfig, ConfigurationError, load_config
from .decode import AudioInfo, DecodeError, DecodedAudio, decode_audio, read_audio_info
from .encoder import extract_encoder_metadata, scan_encoder_signatures
from .frames import parse_header, scan_frames
from .report import write_report
from .scoring import combine, evaluate_binary, evaluate_spectral, verdict_for
from .spectral import SpectralAnalyzer
from .types import (
    AnalysisResult,
    BatchReport,
    BatchSummary,
    DetectionFlag,
    EncoderMetadata,
    FlagKind,
    FrameDescriptor,
    FrameScan,
    FrequencyBand,
    SpectralProfile,
    Verdict,
)

__version__ = "0.1.0"
__all__ = [
    "Analyzer",
    "BatchRunner",
    "run_batch",
    "AnalysisConfig",
    "ConfigurationError",
    "load_config",
    "DecodeError",
    "DecodedAudio",
    "decode_audio",
    "AudioInfo",
    "read_audio_info",
    "extract_encoder_metadata",
    "scan_encoder_signatures",
    "parse_header",
    "scan_frames",
    "write_report",
    "combine",
    "evaluate_binary",
    "evaluate_spectral",
    "verdict_for",
    "SpectralAnalyzer",
    "AnalysisResult",
    "BatchReport",
    "BatchSummary",
    "DetectionFlag",
    "EncoderMetadata",
    "FlagKind",
    "FrameDescriptor",
    "FrameScan",
    "FrequencyBand",
    "SpectralProfile",
    "Verdict",
]
