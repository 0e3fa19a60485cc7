"""
Pytest fixtures for Lingua tests.

Hardware and network are replaced by fakes: a channel fed from a queue, a
capture engine whose frames are pushed by the test, and an output device
with a clock the test moves by hand.
"""

import asyncio
import sys
import tempfile
from pathlib import Path

import numpy as np
import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tutor.errors import DeviceError
from tutor.frames import AudioFrame
from tutor.personas import LANGUAGES, TutorConfig


class FakeSource:
    def __init__(self, samples, start_time, on_ended):
        self.samples = samples
        self.start_time = start_time
        self.on_ended = on_ended
        self.cancelled = False


class FakeOutputDevice:
    """Output device with a hand-driven clock."""

    def __init__(self, sample_rate=24000):
        self.sample_rate = sample_rate
        self.current_time = 0.0
        self.scheduled = []
        self.cancelled = []
        self.closed = False
        self.fail_schedule = False

    def schedule(self, samples, start_time, on_ended=None):
        if self.closed or self.fail_schedule:
            raise DeviceError("Output device refused the buffer")
        source = FakeSource(samples, start_time, on_ended)
        self.scheduled.append(source)
        return source

    def cancel(self, source):
        if source.cancelled:
            return False
        source.cancelled = True
        self.cancelled.append(source)
        return True

    def finish(self, source):
        """Simulate the device reaching the end of a source."""
        source.on_ended(source)

    def close(self):
        self.closed = True


class FakeChannel:
    """Channel whose inbound events are pushed by the test."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self.close_calls = 0
        self.send_error = None
        self._inbox = asyncio.Queue()

    async def send_audio(self, message):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(message)

    def push(self, *events):
        for event in events:
            self._inbox.put_nowait(event)

    def fail(self, error):
        self._inbox.put_nowait(error)

    async def events(self):
        while True:
            item = await self._inbox.get()
            if isinstance(item, BaseException):
                raise item
            yield item

    async def close(self):
        self.close_calls += 1
        self.closed = True


class FakeCapture:
    """Capture engine whose frames come from ``emit``."""

    def __init__(self, on_frame, start_error=None):
        self.sink = on_frame
        self.original_sink = on_frame
        self.start_error = start_error
        self.is_running = False
        self.closed = False
        self.started = False

    async def start(self):
        if self.start_error is not None:
            raise self.start_error
        self.started = True
        self.is_running = True

    def emit(self, frame):
        if self.sink is not None:
            self.sink(frame)

    def detach(self):
        self.sink = None

    def stop_stream(self):
        self.is_running = False

    def close(self):
        self.is_running = False
        self.closed = True


class FakeHardware:
    """Factories handed to SessionController, remembering what they built."""

    def __init__(self):
        self.channels = []
        self.captures = []
        self.outputs = []
        self.connect_error = None
        self.capture_error = None
        self.output_error = None
        self.connect_gate = None

    async def open_channel(self, config):
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        channel = FakeChannel()
        self.channels.append(channel)
        return channel

    def create_capture(self, config, on_frame):
        capture = FakeCapture(on_frame, start_error=self.capture_error)
        self.captures.append(capture)
        return capture

    def open_output(self, config, loop=None):
        if self.output_error is not None:
            raise self.output_error
        output = FakeOutputDevice(config.output_sample_rate)
        self.outputs.append(output)
        return output

    @property
    def channel(self):
        return self.channels[-1]

    @property
    def capture(self):
        return self.captures[-1]

    @property
    def output(self):
        return self.outputs[-1]


def make_frame(value=0, samples=1600):
    return AudioFrame(samples=np.full(samples, value, dtype=np.int16))


async def settle(controller, rounds=10):
    """Let background tasks run and the controller drain its inbox."""
    for _ in range(rounds):
        await asyncio.sleep(0)
        await controller.flush()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def tutor_config():
    """Session config that never touches ConfigManager or the environment."""
    return TutorConfig(
        language=LANGUAGES[0],
        system_instruction="You are a test tutor.",
        api_key="test-key",
        max_pending_frames=4
    )


@pytest.fixture
def hardware():
    return FakeHardware()


@pytest.fixture
def output_device():
    return FakeOutputDevice()


@pytest.fixture
def config_manager(temp_dir):
    """A fresh ConfigManager reading the real schema and a throwaway user config."""
    from utils import ConfigManager

    ConfigManager.reset()
    config_path = temp_dir / "config.yaml"
    ConfigManager.initialize(config_path=config_path)
    yield ConfigManager, config_path
    ConfigManager.reset()
