"""
VBR/encoder tag extraction.

The first frame of most MP3 files is a silent frame carrying a ``Xing`` (VBR)
or ``Info`` (CBR) header right after the side information, often followed by
a LAME extension.  The extension records the lowpass filter the encoder
applied, which is the single most telling piece of transcode evidence: a
"320 kbps" file whose encoder was set to cut at 16 kHz was fed audio that had
already lost everything above 16 kHz.

LAME extension layout (offsets from the start of the version string):

     0-8   encoder version, e.g. ``LAME3.100``
     9     tag revision (high nibble) / VBR method (low nibble)
    10     lowpass frequency / 100
    11-20  peak, replay gain, encoding flags, ABR bitrate
    21-23  encoder delay (12 bits) / padding (12 bits)
"""
import logging
import re
import struct
from typing import List, Optional, Sequence, Tuple

from .types import ChannelMode, EncoderMetadata, FrameDescriptor, MpegVersion

logger = logging.getLogger(__name__)

_XING_FRAMES = 0x01
_XING_BYTES = 0x02
_XING_TOC = 0x04
_XING_QUALITY = 0x08

_EXTENSION_PREFIXES = (b'LAME', b'Lavc', b'Lavf', b'GOGO', b'L3.9')

# VBRI sits at a fixed offset regardless of channel mode
_VBRI_OFFSET = 32

# Lowpass byte outside 5-22 kHz is garbage
_LOWPASS_BYTE_MIN = 50
_LOWPASS_BYTE_MAX = 220

# Encoder families and the byte patterns that identify them
SIGNATURE_PATTERNS: Tuple[Tuple[str, Tuple[bytes, ...]], ...] = (
    ('LAME', (b'LAME3.', b'LAME 3.', b'L3.99')),
    ('FFmpeg', (b'Lavc', b'Lavf', b'libmp3lame')),
    ('Fraunhofer', (b'Fraunhofer', b'FhG')),
    ('iTunes', (b'iTunes',)),
    ('GOGO', (b'GOGO',)),
    ('BladeEnc', (b'BladeEnc',)),
    ('Helix', (b'Helix',)),
)

_VERSION_RE = re.compile(rb'[A-Za-z0-9.\-]+')


def side_info_size(frame: FrameDescriptor) -> int:
    """Bytes of side information between the header (and CRC) and main data."""
    mono = frame.channel_mode is ChannelMode.MONO
    if frame.version is MpegVersion.MPEG1:
        return 17 if mono else 32
    return 9 if mono else 17


def _u32(data: bytes, pos: int) -> Optional[int]:
    if pos + 4 > len(data):
        return None
    return struct.unpack('>I', data[pos:pos + 4])[0]


def _u16(data: bytes, pos: int) -> Optional[int]:
    if pos + 2 > len(data):
        return None
    return struct.unpack('>H', data[pos:pos + 2])[0]


def _version_string(raw: bytes) -> str:
    text = raw.split(b'\x00', 1)[0].decode('ascii', errors='replace')
    return text.strip()


def _parse_extension(data: bytes, pos: int, limit: int) -> Optional[dict]:
    """Decode an encoder extension block starting at ``pos``."""
    if pos + 11 > limit or not data.startswith(_EXTENSION_PREFIXES, pos):
        return None
    fields = {'encoder': _version_string(data[pos:pos + 9])}

    info_byte = data[pos + 9]
    fields['vbr_method'] = info_byte & 0x0F

    lowpass_byte = data[pos + 10]
    if _LOWPASS_BYTE_MIN <= lowpass_byte <= _LOWPASS_BYTE_MAX:
        fields['lowpass'] = lowpass_byte * 100
    else:
        fields['lowpass'] = 0

    if pos + 24 <= limit:
        packed = (data[pos + 21] << 16) | (data[pos + 22] << 8) | data[pos + 23]
        fields['encoder_delay'] = packed >> 12
        fields['encoder_padding'] = packed & 0xFFF
    return fields


def _parse_xing(data: bytes, frame: FrameDescriptor) -> Optional[EncoderMetadata]:
    limit = min(frame.end, len(data))
    pos = frame.offset + 4 + (2 if frame.crc_protected else 0) + side_info_size(frame)
    tag = data[pos:pos + 4]
    if tag not in (b'Xing', b'Info'):
        return None

    flags = _u32(data, pos + 4)
    if flags is None:
        return None
    cursor = pos + 8
    frame_count = byte_count = quality = None
    if flags & _XING_FRAMES:
        frame_count = _u32(data, cursor)
        cursor += 4
    if flags & _XING_BYTES:
        byte_count = _u32(data, cursor)
        cursor += 4
    if flags & _XING_TOC:
        cursor += 100
    if flags & _XING_QUALITY:
        quality = _u32(data, cursor)
        cursor += 4

    extension = _parse_extension(data, cursor, limit) or {}
    return EncoderMetadata(
        encoder=extension.get('encoder', ''),
        lowpass=extension.get('lowpass', 0),
        encoder_delay=extension.get('encoder_delay', 0),
        encoder_padding=extension.get('encoder_padding', 0),
        is_vbr=tag == b'Xing',
        tag=tag.decode('ascii'),
        frame_count=frame_count,
        byte_count=byte_count,
        quality=quality,
        vbr_method=extension.get('vbr_method'),
    )


def _parse_vbri(data: bytes, frame: FrameDescriptor) -> Optional[EncoderMetadata]:
    pos = frame.offset + 4 + _VBRI_OFFSET
    if data[pos:pos + 4] != b'VBRI':
        return None
    delay = _u16(data, pos + 6)
    quality = _u16(data, pos + 8)
    return EncoderMetadata(
        encoder='Fraunhofer',
        encoder_delay=delay or 0,
        is_vbr=True,
        tag='VBRI',
        byte_count=_u32(data, pos + 10),
        frame_count=_u32(data, pos + 14),
        quality=quality,
    )


def _bare_lame_string(data: bytes, frame: FrameDescriptor) -> Optional[EncoderMetadata]:
    """Older LAME builds leave only the version string in the first frame."""
    limit = min(frame.end, len(data))
    pos = data.find(b'LAME', frame.offset + 4, limit)
    if pos == -1:
        return None
    match = _VERSION_RE.match(data, pos, min(pos + 20, limit))
    encoder = match.group(0).decode('ascii') if match else 'LAME'
    return EncoderMetadata(encoder=encoder, tag='LAME')


def extract_encoder_metadata(data: bytes,
                             frames: Sequence[FrameDescriptor]) -> Optional[EncoderMetadata]:
    """Decode the VBR/encoder tag carried by the first (or second) frame.

    Returns None when neither frame carries a recognised tag.
    """
    for frame in frames[:2]:
        for parser in (_parse_xing, _parse_vbri):
            metadata = parser(data, frame)
            if metadata is not None:
                logger.debug(
                    f"{metadata.tag} tag at offset {frame.offset}: "
                    f"encoder={metadata.encoder!r} lowpass={metadata.lowpass}"
                )
                return metadata
    if frames:
        return _bare_lame_string(data, frames[0])
    return None


def scan_encoder_signatures(data: bytes, limit: int = 65536) -> List[str]:
    """Encoder families whose signature strings appear in the first ``limit`` bytes.

    FFmpeg alongside LAME is a single encoder chain (libavcodec encodes MP3
    through LAME) and is reported as LAME only.
    """
    region = data[:limit] if limit else data
    found = [
        family for family, patterns in SIGNATURE_PATTERNS
        if any(p in region for p in patterns)
    ]
    if 'LAME' in found and 'FFmpeg' in found:
        found.remove('FFmpeg')
    return found
