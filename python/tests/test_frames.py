"""Tests for MPEG frame scanning."""

import pytest

from losscheck import AnalysisConfig
from losscheck.frames import id3v2_size, parse_header, scan_frames
from losscheck.types import ChannelMode, Layer, MpegVersion

from conftest import build_stream, frame_length, id3v2, mpeg1_header


class TestParseHeader:
    def test_mpeg1_layer3_128k(self):
        frame = parse_header(mpeg1_header(128))
        assert frame is not None
        assert frame.version is MpegVersion.MPEG1
        assert frame.layer is Layer.LAYER3
        assert frame.bitrate == 128
        assert frame.sample_rate == 44100
        assert frame.length == 417
        assert frame.samples_per_frame == 1152
        assert frame.channel_mode is ChannelMode.JOINT_STEREO
        assert not frame.crc_protected

    def test_padding_adds_one_byte(self):
        frame = parse_header(mpeg1_header(128, padding=True))
        assert frame.length == 418
        assert frame.padding_size == 1

    def test_320k_length(self):
        assert parse_header(mpeg1_header(320)).length == 1044

    def test_crc_and_mono(self):
        frame = parse_header(mpeg1_header(128, mono=True, crc=True))
        assert frame.crc_protected
        assert frame.channel_mode is ChannelMode.MONO

    def test_layer1_length(self):
        # MPEG-1 Layer I, 384 kbps, 44.1 kHz
        frame = parse_header(bytes([0xFF, 0xFF, 0xC0, 0x00]))
        assert frame.layer is Layer.LAYER1
        assert frame.bitrate == 384
        assert frame.length == 416
        assert frame.samples_per_frame == 384

    def test_mpeg2_layer3_length(self):
        # MPEG-2 Layer III, 64 kbps, 22.05 kHz
        frame = parse_header(bytes([0xFF, 0xF3, 0x80, 0x00]))
        assert frame.version is MpegVersion.MPEG2
        assert frame.sample_rate == 22050
        assert frame.length == 208
        assert frame.samples_per_frame == 576

    def test_mpeg25_sample_rate(self):
        frame = parse_header(bytes([0xFF, 0xE3, 0x80, 0x00]))
        assert frame.version is MpegVersion.MPEG25
        assert frame.sample_rate == 11025

    @pytest.mark.parametrize("header", [
        bytes([0x00, 0xFB, 0x90, 0x00]),  # no sync
        bytes([0xFF, 0xEB, 0x90, 0x00]),  # reserved version
        bytes([0xFF, 0xF9, 0x90, 0x00]),  # reserved layer
        bytes([0xFF, 0xFB, 0xF0, 0x00]),  # bad bitrate index
        bytes([0xFF, 0xFB, 0x00, 0x00]),  # free format
        bytes([0xFF, 0xFB, 0x9C, 0x00]),  # reserved sample rate
    ])
    def test_invalid_headers(self, header):
        assert parse_header(header) is None

    def test_short_buffer(self):
        assert parse_header(b"\xFF\xFB") is None
        assert parse_header(mpeg1_header(), offset=2) is None


class TestId3:
    def test_no_tag(self):
        assert id3v2_size(mpeg1_header()) == 0

    def test_tag_size(self):
        assert id3v2_size(id3v2(bytes(100)) + mpeg1_header()) == 110

    def test_large_syncsafe_size(self):
        assert id3v2_size(id3v2(bytes(300))) == 310

    def test_footer_flag(self):
        tag = bytearray(id3v2(bytes(20)))
        tag[5] = 0x10
        assert id3v2_size(bytes(tag) + bytes(20)) == 40


class TestScanFrames:
    def test_constant_stream(self):
        data = build_stream(bitrate=128, count=20)
        scan = scan_frames(data)
        assert scan.valid
        assert scan.frame_count == 20
        assert scan.resync_failures == 0
        assert scan.is_cbr
        assert scan.average_bitrate == 128
        assert scan.frame_length_variance == 0.0

    def test_skips_id3(self):
        data = build_stream(count=10, prefix=id3v2(b"TIT2" + bytes(56)))
        scan = scan_frames(data)
        assert scan.start_offset == 70
        assert scan.frames[0].offset == 70
        assert scan.frame_count == 10

    def test_leading_junk(self):
        data = build_stream(count=10, prefix=b"junk" * 10)
        scan = scan_frames(data)
        assert scan.valid
        assert scan.frames[0].offset == 40

    def test_trailing_id3v1_tag(self):
        data = build_stream(count=10, suffix=b"TAG" + bytes(125))
        scan = scan_frames(data)
        assert scan.frame_count == 10
        assert scan.resync_failures == 0

    def test_truncated_final_frame_dropped(self):
        data = build_stream(count=10)[:-100]
        scan = scan_frames(data)
        assert scan.frame_count == 9

    def test_truncated_frames_counted_as_failures(self):
        data = build_stream(count=31, truncate_every=3)
        scan = scan_frames(data)
        assert scan.valid
        assert scan.frame_count == 31
        assert scan.resync_failures == 10
        assert scan.frame_length_variance > 0.5

    def test_padding_does_not_count_as_irregular(self):
        plain = frame_length(128)
        frames = []
        for i in range(12):
            padded = i % 2 == 0
            frames.append(mpeg1_header(128, padding=padded).ljust(frame_length(128, padded), b"\x00"))
        scan = scan_frames(b"".join(frames))
        assert scan.frame_count == 12
        assert set(scan.spacings) == {plain}
        assert scan.frame_length_variance == 0.0

    def test_garbage_is_invalid(self):
        scan = scan_frames(bytes(range(256)) * 40)
        assert not scan.valid

    def test_empty(self):
        scan = scan_frames(b"")
        assert not scan.valid
        assert scan.frame_count == 0

    def test_too_few_frames(self):
        scan = scan_frames(build_stream(count=3))
        assert scan.frame_count == 3
        assert not scan.valid

    def test_min_frames_configurable(self):
        scan = scan_frames(build_stream(count=3), AnalysisConfig(min_frames=2))
        assert scan.valid

    def test_max_frames(self):
        scan = scan_frames(build_stream(count=20), max_frames=5)
        assert scan.frame_count == 5

    def test_lone_sync_word_rejected(self):
        # A single header not followed by another one is not a stream
        data = bytes(50) + mpeg1_header(128) + bytes(1000)
        scan = scan_frames(data)
        assert scan.frame_count == 0
