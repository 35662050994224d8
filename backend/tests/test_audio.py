"""Tests for the capture-audio frame encoder."""

import base64
import math
import struct

import pytest

from aiforge.services.generation.audio import AudioFrameEncoder, decode_float32, float_to_pcm16
from aiforge.services.generation.models import INPUT_MIME_TYPE, INPUT_SAMPLE_RATE, AudioFrame


def _pcm_values(frame: AudioFrame) -> tuple[int, ...]:
    raw = base64.b64decode(frame.data)
    return struct.unpack(f"<{len(raw) // 2}h", raw)


class TestFloatToPcm16:
    def test_scales_by_32768(self):
        assert struct.unpack("<3h", float_to_pcm16([0.0, 0.5, -0.5])) == (0, 16384, -16384)

    def test_clamps_full_scale_positive(self):
        assert struct.unpack("<h", float_to_pcm16([1.0])) == (32767,)

    def test_negative_full_scale_is_exact(self):
        assert struct.unpack("<h", float_to_pcm16([-1.0])) == (-32768,)

    def test_clamps_out_of_range_input(self):
        assert struct.unpack("<2h", float_to_pcm16([2.5, -3.0])) == (32767, -32768)

    def test_empty_input(self):
        assert float_to_pcm16([]) == b""

    def test_non_finite_samples(self):
        samples = [math.inf, -math.inf, math.nan, 0.5]
        assert struct.unpack("<4h", float_to_pcm16(samples)) == (32767, -32768, 0, 16384)


class TestDecodeFloat32:
    def test_decodes_little_endian(self):
        data = struct.pack("<2f", 0.25, -0.75)
        assert decode_float32(data) == (0.25, -0.75)

    def test_rejects_partial_sample(self):
        with pytest.raises(ValueError, match="multiple of 4"):
            decode_float32(b"\x00\x00\x00")


class TestAudioFrameEncoder:
    def test_defaults(self):
        encoder = AudioFrameEncoder()
        assert encoder.sample_rate == 16000
        assert encoder.frame_samples == 4096
        assert encoder.mime_type == "audio/pcm;rate=16000"

    def test_encode_full_frame(self):
        encoder = AudioFrameEncoder()
        frame = encoder.encode([0.0] * 4096)

        assert frame.mime_type == INPUT_MIME_TYPE
        assert frame.sample_rate == INPUT_SAMPLE_RATE
        assert frame.sample_count == 4096
        assert len(frame.pcm) == 4096 * 2

    def test_encode_values(self):
        frame = AudioFrameEncoder().encode([0.25, -0.25, 1.0])
        assert _pcm_values(frame) == (8192, -8192, 32767)

    def test_encode_float32_bytes(self):
        data = struct.pack("<4f", 0.0, 0.5, -0.5, -1.0)
        frame = AudioFrameEncoder().encode(data)

        assert frame.sample_count == 4
        assert _pcm_values(frame) == (0, 16384, -16384, -32768)

    def test_encode_rejects_malformed_bytes(self):
        with pytest.raises(ValueError):
            AudioFrameEncoder().encode(b"\x01\x02\x03\x04\x05")

    def test_encode_rejects_oversized_block(self):
        encoder = AudioFrameEncoder(frame_samples=4)
        with pytest.raises(ValueError, match="exceeds the 4-sample frame size"):
            encoder.encode([0.0] * 5)
        with pytest.raises(ValueError, match="exceeds"):
            encoder.encode(struct.pack("<5f", *([0.0] * 5)))

    def test_encode_accepts_short_block(self):
        assert AudioFrameEncoder(frame_samples=4).encode([0.1, 0.2]).sample_count == 2

    def test_encode_float32_infinity(self):
        frame = AudioFrameEncoder().encode(struct.pack("<2f", 0.5, math.inf))
        assert _pcm_values(frame) == (16384, 32767)

    def test_custom_rate_mime_type(self):
        frame = AudioFrameEncoder(sample_rate=24000).encode([0.0])
        assert frame.mime_type == "audio/pcm;rate=24000"
        assert frame.sample_rate == 24000

    def test_to_wire(self):
        frame = AudioFrameEncoder().encode([0.5])
        wire = frame.to_wire()
        assert wire == {"media": {"data": frame.data, "mimeType": "audio/pcm;rate=16000"}}
