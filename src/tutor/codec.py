"""
Transport encoding for audio carried over the text WebSocket channel.

Outbound frames are base64 text; inbound audio payloads are base64 text of
little-endian 16-bit PCM.
"""

import base64
import binascii

import numpy as np

from .errors import ProtocolError
from .frames import AudioFrame, OUTPUT_SAMPLE_RATE, pcm16_to_float


def encode(pcm: bytes) -> str:
    """Encode raw PCM bytes as ASCII base64 text."""
    return base64.b64encode(pcm).decode('ascii')


def decode(text) -> bytes:
    """Decode base64 text back to raw bytes.

    Raises:
        ProtocolError: If the payload is not valid base64
    """
    if isinstance(text, str):
        if not text.isascii():
            raise ProtocolError("Audio payload is not base64 text")
        text = text.encode('ascii')
    if not isinstance(text, (bytes, bytearray)):
        raise ProtocolError("Audio payload is not base64 text")
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ProtocolError(f"Malformed base64 audio payload: {e}") from e


def encode_frame(frame: AudioFrame) -> str:
    """Encode an outbound frame for the wire."""
    return encode(frame.to_bytes())


def decode_pcm16(payload: bytes) -> np.ndarray:
    """Turn little-endian PCM16 bytes into float32 samples for playback.

    A trailing odd byte cannot form a sample and is dropped.
    """
    usable = len(payload) - (len(payload) % 2)
    samples = np.frombuffer(payload[:usable], dtype='<i2')
    return pcm16_to_float(samples)


def decode_audio(text, sample_rate: int = OUTPUT_SAMPLE_RATE):
    """Decode an inbound audio payload into (samples, duration_seconds)."""
    samples = decode_pcm16(decode(text))
    return samples, len(samples) / float(sample_rate)
