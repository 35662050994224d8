"""Capture-audio frame encoder for the live channel.

Converts one block of float capture samples (range -1.0..1.0, as delivered
by a Web Audio processor node) into 16-bit signed little-endian PCM at
16 kHz, base64-wrapped for the live channel's realtime input. No external
dependencies required.

Runs on the capture callback, so it is strictly O(frame size) and never
awaits.
"""

import base64
import math
import struct
from collections.abc import Sequence

from aiforge.services.generation.models import (
    DEFAULT_FRAME_SAMPLES,
    INPUT_MIME_TYPE,
    INPUT_SAMPLE_RATE,
    AudioFrame,
)

# 32-bit float input, 16-bit signed PCM output, little-endian, mono
FLOAT_SAMPLE_SIZE = 4
PCM_MIN = -32768
PCM_MAX = 32767
PCM_SCALE = 32768


def decode_float32(data: bytes) -> tuple[float, ...]:
    """Unpack little-endian float32 bytes (a browser Float32Array buffer).

    Raises:
        ValueError: If data length is not a multiple of FLOAT_SAMPLE_SIZE.
    """
    if len(data) % FLOAT_SAMPLE_SIZE != 0:
        raise ValueError(
            f"Audio data length ({len(data)}) must be a multiple of {FLOAT_SAMPLE_SIZE} bytes (float32 samples)"
        )
    return struct.unpack(f"<{len(data) // FLOAT_SAMPLE_SIZE}f", data)


def _to_pcm_sample(sample: float) -> int:
    if math.isnan(sample):
        return 0
    if math.isinf(sample):
        return PCM_MAX if sample > 0 else PCM_MIN
    return max(PCM_MIN, min(PCM_MAX, int(sample * PCM_SCALE)))


def float_to_pcm16(samples: Sequence[float]) -> bytes:
    """Convert float samples to 16-bit signed little-endian PCM.

    Out-of-range samples clamp to the PCM bounds, infinities to the matching
    bound, NaN to silence.
    """
    if not samples:
        return b""
    pcm = [_to_pcm_sample(s) for s in samples]
    return struct.pack(f"<{len(pcm)}h", *pcm)


class AudioFrameEncoder:
    """Encodes capture blocks into live-channel AudioFrames."""

    def __init__(
        self,
        sample_rate: int = INPUT_SAMPLE_RATE,
        frame_samples: int = DEFAULT_FRAME_SAMPLES,
    ) -> None:
        self.sample_rate = sample_rate
        self.frame_samples = frame_samples
        self.mime_type = INPUT_MIME_TYPE if sample_rate == INPUT_SAMPLE_RATE else f"audio/pcm;rate={sample_rate}"

    def encode(self, samples: Sequence[float] | bytes) -> AudioFrame:
        """Encode one capture block.

        Args:
            samples: Float samples, or raw little-endian float32 bytes.

        Raises:
            ValueError: If raw bytes are not whole float32 samples, or the
                block holds more than ``frame_samples`` samples.
        """
        if isinstance(samples, (bytes, bytearray, memoryview)):
            data = bytes(samples)
            self._check_size(len(data) // FLOAT_SAMPLE_SIZE)
            samples = decode_float32(data)
        else:
            self._check_size(len(samples))

        pcm = float_to_pcm16(samples)
        return AudioFrame(
            data=base64.b64encode(pcm).decode("ascii"),
            mime_type=self.mime_type,
            sample_rate=self.sample_rate,
            sample_count=len(samples),
        )

    def _check_size(self, count: int) -> None:
        if count > self.frame_samples:
            raise ValueError(f"Capture block of {count} samples exceeds the {self.frame_samples}-sample frame size")
