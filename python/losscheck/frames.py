"""
MPEG audio frame scanning.

Every frame starts with a 4-byte header:

    AAAAAAAA AAABBCCD EEEEFFGH IIJJKLMM

    A  sync (11 bits, all set)        G  padding
    B  version (00=2.5, 10=2, 11=1)   H  private
    C  layer (01=III, 10=II, 11=I)    I  channel mode
    D  protection (0 = CRC follows)   J  mode extension
    E  bitrate index                  K/L copyright / original
    F  sample rate index              M  emphasis

The scanner treats each computed frame length as authoritative and jumps from
header to header the way a decoder does.  When the next header is not where
the previous one said it would be, it falls back to byte scanning and counts a
resync failure.  Observed spacing between frames is what later exposes
irregular frame sizes in constant-bitrate streams.
"""
import logging
from typing import List, Optional

from .config import AnalysisConfig
from .types import ChannelMode, FrameDescriptor, FrameScan, Layer, MpegVersion

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Header lookup tables
# ---------------------------------------------------------------------------

# Index 0 = free format, 15 = bad; both rejected
_BITRATES = {
    (MpegVersion.MPEG1, Layer.LAYER1): (0, 32, 64, 96, 128, 160, 192, 224, 256, 288, 320, 352, 384, 416, 448, 0),
    (MpegVersion.MPEG1, Layer.LAYER2): (0, 32, 48, 56, 64, 80, 96, 112, 128, 160, 192, 224, 256, 320, 384, 0),
    (MpegVersion.MPEG1, Layer.LAYER3): (0, 32, 40, 48, 56, 64, 80, 96, 112, 128, 160, 192, 224, 256, 320, 0),
    ('lsf', Layer.LAYER1): (0, 32, 48, 56, 64, 80, 96, 112, 128, 144, 160, 176, 192, 224, 256, 0),
    ('lsf', Layer.LAYER2): (0, 8, 16, 24, 32, 40, 48, 56, 64, 80, 96, 112, 128, 144, 160, 0),
    ('lsf', Layer.LAYER3): (0, 8, 16, 24, 32, 40, 48, 56, 64, 80, 96, 112, 128, 144, 160, 0),
}

_SAMPLE_RATES = {
    MpegVersion.MPEG1: (44100, 48000, 32000),
    MpegVersion.MPEG2: (22050, 24000, 16000),
    MpegVersion.MPEG25: (11025, 12000, 8000),
}

_VERSIONS = {0: MpegVersion.MPEG25, 2: MpegVersion.MPEG2, 3: MpegVersion.MPEG1}
_LAYERS = {1: Layer.LAYER3, 2: Layer.LAYER2, 3: Layer.LAYER1}
_CHANNEL_MODES = (
    ChannelMode.STEREO,
    ChannelMode.JOINT_STEREO,
    ChannelMode.DUAL_CHANNEL,
    ChannelMode.MONO,
)

# Blocks that legitimately follow the last audio frame
_TRAILING_TAGS = (b'TAG', b'APETAGEX', b'LYRICS')


def parse_header(data: bytes, offset: int = 0) -> Optional[FrameDescriptor]:
    """Decode the 4-byte frame header at ``offset``, or None if invalid."""
    if offset < 0 or offset + 4 > len(data):
        return None
    b0, b1, b2, b3 = data[offset], data[offset + 1], data[offset + 2], data[offset + 3]
    if b0 != 0xFF or (b1 & 0xE0) != 0xE0:
        return None

    version = _VERSIONS.get((b1 >> 3) & 0x03)
    layer = _LAYERS.get((b1 >> 1) & 0x03)
    if version is None or layer is None:
        return None

    table_key = (version if version is MpegVersion.MPEG1 else 'lsf', layer)
    bitrate = _BITRATES[table_key][(b2 >> 4) & 0x0F]
    if bitrate == 0:
        return None

    sr_index = (b2 >> 2) & 0x03
    if sr_index == 3:
        return None
    sample_rate = _SAMPLE_RATES[version][sr_index]

    padding = bool(b2 & 0x02)
    channel_mode = _CHANNEL_MODES[(b3 >> 6) & 0x03]

    if layer is Layer.LAYER1:
        samples_per_frame = 384
        length = (12 * bitrate * 1000 // sample_rate + (1 if padding else 0)) * 4
    elif layer is Layer.LAYER3 and version is not MpegVersion.MPEG1:
        samples_per_frame = 576
        length = 72 * bitrate * 1000 // sample_rate + (1 if padding else 0)
    else:
        samples_per_frame = 1152
        length = 144 * bitrate * 1000 // sample_rate + (1 if padding else 0)

    return FrameDescriptor(
        offset=offset,
        version=version,
        layer=layer,
        bitrate=bitrate,
        sample_rate=sample_rate,
        channel_mode=channel_mode,
        padding=padding,
        length=length,
        samples_per_frame=samples_per_frame,
        crc_protected=not (b1 & 0x01),
    )


def id3v2_size(data: bytes) -> int:
    """Total size of a leading ID3v2 tag (0 if there is none)."""
    if len(data) < 10 or data[:3] != b'ID3':
        return 0
    size_bytes = data[6:10]
    if any(b & 0x80 for b in size_bytes):
        return 0
    size = (
        (size_bytes[0] << 21)
        | (size_bytes[1] << 14)
        | (size_bytes[2] << 7)
        | size_bytes[3]
    )
    footer = 10 if data[5] & 0x10 else 0
    return min(len(data), 10 + size + footer)


def _is_trailing_tag(data: bytes, offset: int) -> bool:
    return any(data.startswith(tag, offset) for tag in _TRAILING_TAGS)


def _confirmed(data: bytes, frame: FrameDescriptor) -> bool:
    """A frame found by byte scanning must be followed by another header."""
    nxt = frame.end
    if nxt >= len(data) or _is_trailing_tag(data, nxt):
        return True
    return parse_header(data, nxt) is not None


def _resync(data: bytes, start: int) -> Optional[FrameDescriptor]:
    """Byte-scan forward from ``start`` for the next confirmed frame header."""
    pos = data.find(b'\xff', max(0, start))
    while pos != -1:
        frame = parse_header(data, pos)
        if frame is not None and _confirmed(data, frame):
            return frame
        pos = data.find(b'\xff', pos + 1)
    return None


def scan_frames(data: bytes, config: Optional[AnalysisConfig] = None,
                max_frames: Optional[int] = None) -> FrameScan:
    """Scan ``data`` for MPEG audio frames.

    Args:
        data: Raw file bytes.
        config: Supplies ``min_frames`` and ``max_resync_ratio``.
        max_frames: Optional cap on the number of frames collected.

    Returns:
        FrameScan; ``valid`` is False when too few frames were found or the
        stream needed too many resyncs to be a real MPEG audio stream.
    """
    config = config or AnalysisConfig()
    start = id3v2_size(data)
    frames: List[FrameDescriptor] = []
    failures = 0

    frame = _resync(data, start)
    while frame is not None:
        if frame.end > len(data):
            # Truncated final frame
            break
        frames.append(frame)
        if max_frames is not None and len(frames) >= max_frames:
            break

        expected = frame.end
        if expected >= len(data) or _is_trailing_tag(data, expected):
            break
        nxt = parse_header(data, expected)
        if nxt is None:
            failures += 1
            nxt = _resync(data, frame.offset + 4)
        frame = nxt

    attempts = len(frames) + failures
    ratio = failures / attempts if attempts else 0.0
    valid = len(frames) >= config.min_frames and ratio <= config.max_resync_ratio
    if frames and not valid:
        logger.debug(
            f"Rejecting frame scan: {len(frames)} frames, {failures} resync failures"
        )

    return FrameScan(
        frames=tuple(frames),
        resync_failures=failures,
        start_offset=start,
        valid=valid,
    )
