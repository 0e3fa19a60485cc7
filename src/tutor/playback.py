"""
Scheduled playback of the tutor's synthesized speech.

Replies arrive as irregularly timed chunks. Each chunk is placed on a virtual
timeline right after the previous one so the speech plays back to back with
no gaps and no overlap, and can be cancelled as a whole when the user
interrupts.

OutputDevice owns the speaker stream and its clock. PlaybackScheduler decides
where on that clock each chunk starts.
"""

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import numpy as np

from logger import get_logger
from .errors import DeviceError, DeviceUnavailableError
from .frames import OUTPUT_SAMPLE_RATE, CHANNELS
from .sound import import_sounddevice

logger = get_logger("playback")


class ScheduledSource:
    """A buffer registered with the output device at a fixed start frame."""

    def __init__(self, samples: np.ndarray, start_frame: int, on_ended: Optional[Callable] = None):
        self.samples = samples
        self.start_frame = start_frame
        self.end_frame = start_frame + len(samples)
        self.on_ended = on_ended
        self.ended = False
        self.cancelled = False


class OutputDevice:
    """Speaker output with a sample-accurate clock and start-time scheduling.

    The clock starts at zero when the device is created and advances by the
    number of frames the audio callback has rendered, so ``current_time``
    never runs ahead of what has actually been played out.

    The audio callback runs on a PortAudio thread. The source list is the
    only state it shares with the event loop and is guarded by a lock;
    end-of-playback notifications are handed back to the loop.
    """

    def __init__(self, sample_rate: int = OUTPUT_SAMPLE_RATE, device=None,
                 loop: Optional[asyncio.AbstractEventLoop] = None, blocksize: int = 0):
        self.sample_rate = sample_rate
        self.device = device
        self.blocksize = blocksize
        self._loop = loop
        self._lock = threading.Lock()
        self._sources: List[ScheduledSource] = []
        self._frames_rendered = 0
        self._stream = None
        self._closed = False

    @property
    def current_time(self) -> float:
        """Seconds of audio rendered since the device was opened."""
        with self._lock:
            return self._frames_rendered / float(self.sample_rate)

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self):
        """Open and start the speaker stream.

        Raises:
            DeviceUnavailableError: If the output device cannot be opened
        """
        if self._stream is not None:
            return
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        sd = import_sounddevice()
        try:
            self._stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=CHANNELS,
                dtype='float32',
                device=self.device,
                blocksize=self.blocksize,
                callback=self._callback
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as e:
            self._stream = None
            self._closed = True
            raise DeviceUnavailableError(f"Could not open output device: {e}") from e
        logger.debug(f"Output stream started at {self.sample_rate}Hz")

    def schedule(self, samples: np.ndarray, start_time: float,
                 on_ended: Optional[Callable] = None) -> ScheduledSource:
        """Register ``samples`` to begin playing at ``start_time`` seconds.

        A start time already in the past plays as soon as possible.

        Raises:
            DeviceError: If the device is closed or the buffer is empty
        """
        if self._closed:
            raise DeviceError("Output device is closed")
        data = np.asarray(samples, dtype=np.float32)
        if data.ndim != 1 or data.size == 0:
            raise DeviceError("Cannot schedule an empty or multi-channel buffer")

        requested = int(round(start_time * self.sample_rate))
        with self._lock:
            source = ScheduledSource(data, max(requested, self._frames_rendered), on_ended)
            self._sources.append(source)
        return source

    def cancel(self, source: ScheduledSource) -> bool:
        """Stop a scheduled source. Returns False if it had already ended."""
        with self._lock:
            if source.ended or source.cancelled:
                return False
            source.cancelled = True
            if source in self._sources:
                self._sources.remove(source)
        return True

    def _callback(self, outdata, frames, time_info, status):
        if status:
            logger.debug(f"Output stream status: {status}")
        outdata.fill(0)
        finished = []

        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + frames

            for source in self._sources:
                if source.start_frame >= block_end or source.end_frame <= block_start:
                    continue
                out_from = max(source.start_frame, block_start) - block_start
                src_from = max(block_start - source.start_frame, 0)
                count = min(source.end_frame, block_end) - max(source.start_frame, block_start)
                outdata[out_from:out_from + count, 0] += source.samples[src_from:src_from + count]

            for source in self._sources:
                if source.end_frame <= block_end:
                    source.ended = True
                    finished.append(source)
            if finished:
                self._sources = [s for s in self._sources if not s.ended]
            self._frames_rendered = block_end

        np.clip(outdata, -1.0, 1.0, out=outdata)

        for source in finished:
            if source.on_ended is None:
                continue
            try:
                self._loop.call_soon_threadsafe(source.on_ended, source)
            except RuntimeError:
                # Event loop already closed during shutdown
                pass

    def close(self):
        """Stop the stream and forget every scheduled source."""
        if self._closed:
            return
        self._closed = True
        with self._lock:
            for source in self._sources:
                source.cancelled = True
            self._sources.clear()
        if self._stream is not None:
            stream, self._stream = self._stream, None
            try:
                stream.stop()
            finally:
                stream.close()
        logger.debug("Output stream closed")


@dataclass(eq=False)
class PlaybackUnit:
    """One decoded chunk placed on the playback timeline."""
    samples: np.ndarray
    start_time: float
    duration: float
    source: Optional[ScheduledSource] = field(default=None, repr=False)
    device: Optional[OutputDevice] = field(default=None, repr=False)
    stopped: bool = False

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def stop(self):
        """Cancel playback. Stopping a finished or stopped unit does nothing."""
        if self.stopped:
            return
        self.stopped = True
        if self.source is not None and self.device is not None:
            self.device.cancel(self.source)


class PlaybackScheduler:
    """Places decoded chunks back to back on the output device's clock.

    Args:
        device: Anything with ``current_time``, ``sample_rate``, ``schedule`` and ``cancel``
        on_unit_ended: Called with the unit when its playback finishes. The
            owner is expected to route it back to ``unit_ended``; by default it
            is handled directly.
        on_speaking_changed: Called with True when speech starts and False
            when the last active unit ends or playback is cancelled
    """

    def __init__(self, device, on_unit_ended: Optional[Callable] = None,
                 on_speaking_changed: Optional[Callable[[bool], None]] = None):
        self.device = device
        self.next_start_time = 0.0
        self._active: List[PlaybackUnit] = []
        self._on_unit_ended = on_unit_ended or self.unit_ended
        self._on_speaking_changed = on_speaking_changed or (lambda speaking: None)

    @property
    def active_units(self) -> tuple:
        return tuple(self._active)

    @property
    def is_speaking(self) -> bool:
        return bool(self._active)

    def enqueue(self, samples: np.ndarray) -> Optional[PlaybackUnit]:
        """Schedule a decoded chunk right after everything already queued.

        Returns:
            The scheduled unit, or None if the device refused it
        """
        duration = len(samples) / float(self.device.sample_rate)
        start_time = max(self.device.current_time, self.next_start_time)
        unit = PlaybackUnit(samples=samples, start_time=start_time, duration=duration, device=self.device)

        try:
            unit.source = self.device.schedule(
                samples, start_time, lambda _source: self._on_unit_ended(unit)
            )
        except DeviceError as e:
            logger.warning(f"Dropping {duration:.3f}s chunk: {e}")
            return None

        self.next_start_time = start_time + duration
        was_speaking = self.is_speaking
        self._active.append(unit)
        if not was_speaking:
            self._on_speaking_changed(True)
        return unit

    def unit_ended(self, unit: PlaybackUnit):
        """Remove a finished unit; signal silence when none remain."""
        if unit not in self._active:
            return
        self._active.remove(unit)
        if not self._active:
            self._on_speaking_changed(False)

    def stop_all(self) -> int:
        """Stop and forget every active unit. Returns how many were stopped."""
        units, self._active = self._active, []
        for unit in units:
            unit.stop()
        return len(units)

    def interrupt(self):
        """Cancel the current reply and start a fresh timeline for the next one."""
        stopped = self.stop_all()
        self.next_start_time = 0.0
        logger.info(f"Playback interrupted, {stopped} chunk(s) cancelled")
        self._on_speaking_changed(False)
