"""
Microphone capture for the tutoring session.

Opens a fixed-rate mono input stream and turns every block into a 16-bit PCM
AudioFrame. Frames are handed to the owner on the event loop thread; the
PortAudio callback itself never touches session state.
"""

import asyncio
from typing import Callable, Optional

from logger import get_logger
from .errors import DeviceUnavailableError, MicrophonePermissionError
from .frames import AudioFrame, BLOCK_SIZE, CHANNELS, INPUT_SAMPLE_RATE, float_to_pcm16
from .sound import import_sounddevice

logger = get_logger("capture")

_PERMISSION_HINTS = ("permission", "denied", "not permitted", "not authorized")


class CaptureEngine:
    """Captures fixed-size PCM frames from the microphone.

    Args:
        on_frame: Called on the event loop with each AudioFrame
        sample_rate: Input rate requested from the device
        block_size: Samples per frame
        device: sounddevice device name or index (None for the default)
    """

    def __init__(self, on_frame: Callable[[AudioFrame], None], sample_rate: int = INPUT_SAMPLE_RATE,
                 block_size: int = BLOCK_SIZE, device=None,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.device = device
        self._sink: Optional[Callable[[AudioFrame], None]] = on_frame
        self._loop = loop
        self._stream = None
        self._running = False
        self._closed = False
        self.frames_captured = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self):
        """Acquire the microphone and start streaming frames.

        Raises:
            MicrophonePermissionError: If access to the microphone was refused
            DeviceUnavailableError: If there is no usable input device
        """
        if self._stream is not None:
            return
        if self._closed:
            raise DeviceUnavailableError("Capture engine was already closed")
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        sd = import_sounddevice()
        # Opening a PortAudio stream blocks while the host API negotiates the device
        self._stream = await self._loop.run_in_executor(None, self._open_stream, sd)
        self._running = True
        logger.info(f"Microphone stream started ({self.sample_rate}Hz, {self.block_size} samples/frame)")

    def _open_stream(self, sd):
        try:
            sd.query_devices(self.device, kind='input')
        except (sd.PortAudioError, ValueError) as e:
            raise DeviceUnavailableError(f"No input device available: {e}") from e

        stream = None
        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=CHANNELS,
                dtype='float32',
                blocksize=self.block_size,
                device=self.device,
                callback=self._callback
            )
            stream.start()
            return stream
        except (sd.PortAudioError, ValueError) as e:
            if stream is not None:
                stream.close()
            message = str(e).lower()
            if any(hint in message for hint in _PERMISSION_HINTS):
                raise MicrophonePermissionError(f"Microphone access denied: {e}") from e
            raise DeviceUnavailableError(f"Could not open microphone: {e}") from e

    def _callback(self, indata, frames, time_info, status):
        """PortAudio callback: convert the block and post it to the loop."""
        sink = self._sink
        if sink is None:
            return
        if status:
            logger.debug(f"Input stream status: {status}")
        frame = AudioFrame(
            samples=float_to_pcm16(indata[:, 0]),
            sample_rate=self.sample_rate,
            channels=CHANNELS
        )
        self.frames_captured += 1
        try:
            self._loop.call_soon_threadsafe(sink, frame)
        except RuntimeError:
            # Event loop already closed during shutdown
            pass

    def detach(self):
        """Disconnect the frame sink so later callbacks are dropped."""
        self._sink = None

    def stop_stream(self):
        """Stop the input stream if it is running."""
        if not self._running or self._stream is None:
            return
        self._running = False
        self._stream.stop()

    def close(self):
        """Release the input device if it is still held."""
        if self._closed:
            return
        self._closed = True
        self._running = False
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.close()
            logger.info(f"Microphone released after {self.frames_captured} frames")

    def stop(self):
        """Detach, stop and release. Safe to call more than once."""
        self.detach()
        try:
            self.stop_stream()
        finally:
            self.close()
