"""
Linear PCM frames exchanged with the speech service.
"""

from dataclasses import dataclass, field
import time

import numpy as np

INPUT_SAMPLE_RATE = 16000   # What the service expects from the microphone
OUTPUT_SAMPLE_RATE = 24000  # What the service sends back
CHANNELS = 1
BLOCK_SIZE = 4096           # Samples per captured frame (~256ms at 16kHz)

PCM16_SCALE = 32768.0


@dataclass(frozen=True)
class AudioFrame:
    """A block of 16-bit signed mono PCM tagged with its format."""
    samples: np.ndarray   # int16
    sample_rate: int = INPUT_SAMPLE_RATE
    channels: int = CHANNELS
    captured_at: float = field(default_factory=time.monotonic)

    @property
    def duration(self) -> float:
        """Length of the frame in seconds."""
        return len(self.samples) / float(self.sample_rate)

    def to_bytes(self) -> bytes:
        """Little-endian PCM bytes as sent on the wire."""
        return self.samples.astype('<i2', copy=False).tobytes()


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    """Convert float samples in [-1, 1] to int16.

    Values outside the range are clamped first so loud input saturates
    instead of wrapping around.
    """
    data = np.asarray(samples, dtype=np.float32)
    if data.ndim > 1:
        data = data[:, 0]
    scaled = np.clip(data, -1.0, 1.0) * PCM16_SCALE
    # +1.0 * 32768 is one past int16 max
    return np.clip(scaled, -32768, 32767).astype(np.int16)


def pcm16_to_float(samples: np.ndarray) -> np.ndarray:
    """Convert int16 samples to float32 in [-1, 1)."""
    return np.asarray(samples, dtype=np.int16).astype(np.float32) / PCM16_SCALE
