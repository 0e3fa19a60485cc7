"""
Session lifecycle for a live tutoring conversation.

SessionController is a single serialized actor. Public requests (start, stop)
and every asynchronous callback (channel opened, server message, channel
failure, captured frame, finished playback) are posted as typed events onto
one queue and handled one at a time by a runner task, so session state is
never mutated concurrently and needs no locks.

Every callback event carries the id of the session that produced it. Events
whose session has been stopped or replaced are discarded, which keeps a late
callback from a previous session from touching the current one.

States:
    IDLE -> CONNECTING -> ACTIVE -> IDLE | ERROR
    ERROR -> IDLE (explicit stop) or CONNECTING (new start)
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from itertools import count
from typing import Any, Callable, List, Optional, Tuple

from logger import get_logger, log_error, log_exception
from utils import ConfigManager
from . import codec
from .capture import CaptureEngine
from .channel import (
    AudioChunk,
    ChannelClosed,
    GeminiLiveChannel,
    Interrupted,
    OutboundAudio,
    SetupComplete,
    TranscriptDelta,
    TurnComplete,
)
from .errors import ChannelConnectionError, ProtocolError, SessionStateError
from .frames import AudioFrame
from .personas import TutorConfig
from .playback import OutputDevice, PlaybackScheduler, PlaybackUnit
from .teardown import ResourceManager
from .transcript import TranscriptAssembler, TranscriptEntry

logger = get_logger("session")


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    ERROR = "error"


@dataclass(frozen=True)
class SessionSnapshot:
    """What the UI needs to render the conversation."""
    status: SessionState
    transcript: Tuple[TranscriptEntry, ...]
    speaking: bool
    error: Optional[str] = None


class ReadinessQueue:
    """Frames captured before the service finished its setup handshake.

    Bounded: when full the oldest frame is dropped. Frames are keyed by the
    session that captured them and only that session's frames are ever
    flushed.
    """

    def __init__(self, maxlen: int = 64):
        self.maxlen = maxlen
        self.dropped = 0
        self._entries: deque = deque()

    def __len__(self):
        return len(self._entries)

    def push(self, session_id: int, frame: AudioFrame):
        if len(self._entries) >= self.maxlen:
            self._entries.popleft()
            self.dropped += 1
            if self.dropped == 1:
                logger.warning(f"Readiness queue full ({self.maxlen} frames), dropping oldest audio")
        self._entries.append((session_id, frame))

    def drain(self, session_id: int) -> List[AudioFrame]:
        """Remove everything; return only the frames belonging to ``session_id``."""
        frames = [frame for owner, frame in self._entries if owner == session_id]
        discarded = len(self._entries) - len(frames)
        self._entries.clear()
        if discarded:
            logger.debug(f"Discarded {discarded} queued frame(s) from another session")
        return frames

    def clear(self):
        self._entries.clear()


@dataclass(eq=False)
class Session:
    """Everything owned by one live conversation."""
    session_id: int
    config: TutorConfig
    transcript: TranscriptAssembler = field(default_factory=TranscriptAssembler)
    pending: ReadinessQueue = field(default_factory=ReadinessQueue)
    connect_task: Optional[asyncio.Task] = None
    channel: Any = None
    receive_task: Optional[asyncio.Task] = None
    capture: Optional[CaptureEngine] = None
    output: Optional[OutputDevice] = None
    scheduler: Optional[PlaybackScheduler] = None
    ready: bool = False
    released: bool = False


# --- Actor events ------------------------------------------------------------

@dataclass
class StartRequested:
    config: TutorConfig
    reply: Optional[asyncio.Future] = None


@dataclass
class StopRequested:
    reply: Optional[asyncio.Future] = None


@dataclass
class Barrier:
    reply: Optional[asyncio.Future] = None


@dataclass
class ChannelOpened:
    session_id: int
    channel: Any


@dataclass
class ChannelFailed:
    session_id: int
    error: BaseException


@dataclass
class ChannelMessage:
    session_id: int
    event: Any


@dataclass
class FrameCaptured:
    session_id: int
    frame: AudioFrame


@dataclass
class PlaybackFinished:
    session_id: int
    unit: PlaybackUnit


def create_capture(config: TutorConfig, on_frame: Callable[[AudioFrame], None]) -> CaptureEngine:
    return CaptureEngine(
        on_frame,
        sample_rate=config.input_sample_rate,
        block_size=config.block_size,
        device=config.input_device
    )


def open_output(config: TutorConfig, loop: asyncio.AbstractEventLoop) -> OutputDevice:
    """Open the speaker. Called on an executor thread, so the loop is passed in."""
    device = OutputDevice(sample_rate=config.output_sample_rate, device=config.output_device, loop=loop)
    device.open()
    return device


class SessionController:
    """Runs at most one tutoring session at a time.

    Args:
        channel_factory: ``async (config) -> channel``; defaults to GeminiLiveChannel.open
        capture_factory: ``(config, on_frame) -> CaptureEngine``
        output_factory: ``(config, loop) -> OutputDevice`` (already open); run off the loop
        observer: Called with a SessionSnapshot after every visible change
    """

    def __init__(self, channel_factory=None, capture_factory=None, output_factory=None,
                 observer: Optional[Callable[[SessionSnapshot], None]] = None,
                 resource_manager: Optional[ResourceManager] = None):
        self._channel_factory = channel_factory or GeminiLiveChannel.open
        self._capture_factory = capture_factory or create_capture
        self._output_factory = output_factory or open_output
        self._observer = observer
        self._resources = resource_manager or ResourceManager()

        self._state = SessionState.IDLE
        self._session: Optional[Session] = None
        self._session_ids = count(1)
        self._transcript: Tuple[TranscriptEntry, ...] = ()
        self._speaking = False
        self.last_error: Optional[BaseException] = None

        self._inbox: Optional[asyncio.Queue] = None
        self._runner: Optional[asyncio.Task] = None
        self._closed = False

        self._handlers = {
            StartRequested: self._handle_start,
            StopRequested: self._handle_stop,
            Barrier: self._handle_barrier,
            ChannelOpened: self._handle_channel_opened,
            ChannelFailed: self._handle_channel_failed,
            ChannelMessage: self._handle_channel_message,
            FrameCaptured: self._handle_frame,
            PlaybackFinished: self._handle_playback_finished,
        }
        self._message_handlers = {
            SetupComplete: self._on_setup_complete,
            TranscriptDelta: self._on_transcript_delta,
            TurnComplete: self._on_turn_complete,
            AudioChunk: self._on_audio_chunk,
            Interrupted: self._on_interrupted,
            ChannelClosed: self._on_channel_closed,
        }

    # --- Public API ----------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def transcript(self) -> Tuple[TranscriptEntry, ...]:
        return self._transcript

    @property
    def speaking(self) -> bool:
        return self._speaking

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            status=self._state,
            transcript=self._transcript,
            speaking=self._speaking,
            error=str(self.last_error) if self._state == SessionState.ERROR and self.last_error else None
        )

    async def start(self, config: TutorConfig) -> int:
        """Begin a new session. Valid from IDLE or ERROR.

        Connection and device failures are reported asynchronously through
        the ERROR state, not raised here.

        Returns:
            The new session's id

        Raises:
            SessionStateError: If a session is already connecting or active
        """
        return await self._request(StartRequested(config))

    async def stop(self):
        """End the current session, if any. Always leaves the controller IDLE."""
        await self._request(StopRequested())

    async def flush(self):
        """Wait until every event posted so far has been handled."""
        await self._request(Barrier())

    async def aclose(self):
        """Stop the session and shut the runner down. The controller cannot be reused."""
        if self._closed:
            return
        if self._runner is not None:
            await self.stop()
        self._closed = True
        runner, self._runner = self._runner, None
        if runner is not None:
            runner.cancel()
            await asyncio.gather(runner, return_exceptions=True)
        self._inbox = None

    # --- Actor plumbing ------------------------------------------------------

    def _ensure_runner(self):
        if self._runner is None or self._runner.done():
            self._inbox = asyncio.Queue()
            self._runner = asyncio.create_task(self._run(), name="tutor-session")

    def _post(self, event):
        if self._closed:
            # Late device or channel callback after shutdown
            return
        self._ensure_runner()
        self._inbox.put_nowait(event)

    async def _request(self, event):
        if self._closed:
            raise RuntimeError("Session controller is closed")
        event.reply = asyncio.get_running_loop().create_future()
        self._post(event)
        return await event.reply

    async def _run(self):
        while True:
            event = await self._inbox.get()
            reply = getattr(event, 'reply', None)
            try:
                result = await self._handlers[type(event)](event)
            except asyncio.CancelledError:
                if reply is not None and not reply.done():
                    reply.cancel()
                raise
            except Exception as e:
                if reply is not None and not reply.done():
                    reply.set_exception(e)
                else:
                    log_exception(e, f"handling {type(event).__name__}")
            else:
                if reply is not None and not reply.done():
                    reply.set_result(result)

    def _current(self, session_id: int) -> Optional[Session]:
        """The live session if ``session_id`` still owns it, else None."""
        session = self._session
        if session is None or session.released or session.session_id != session_id:
            return None
        return session

    def _publish(self):
        if self._observer is None:
            return
        try:
            self._observer(self.snapshot())
        except Exception as e:
            log_exception(e, "in session observer")

    def _set_state(self, state: SessionState):
        if state == self._state:
            return
        logger.info(f"Session state {self._state.value} -> {state.value}")
        self._state = state
        self._publish()

    def _set_speaking(self, speaking: bool):
        if speaking == self._speaking:
            return
        self._speaking = speaking
        self._publish()

    # --- Request handlers ----------------------------------------------------

    async def _handle_start(self, event: StartRequested) -> int:
        if self._state not in (SessionState.IDLE, SessionState.ERROR):
            raise SessionStateError("start", self._state)

        config = event.config
        session = Session(
            session_id=next(self._session_ids),
            config=config,
            pending=ReadinessQueue(config.max_pending_frames)
        )
        self._session = session
        self._transcript = ()
        self._speaking = False
        self.last_error = None
        self._set_state(SessionState.CONNECTING)
        ConfigManager.console_print(f"Connecting to your {config.language.name} tutor...")

        loop = asyncio.get_running_loop()
        try:
            session.output = await loop.run_in_executor(None, self._output_factory, config, loop)
        except Exception as e:
            await self._fail(session, e)
            return session.session_id

        sid = session.session_id
        session.scheduler = PlaybackScheduler(
            session.output,
            on_unit_ended=lambda unit: self._post(PlaybackFinished(sid, unit)),
            on_speaking_changed=self._set_speaking
        )
        session.connect_task = asyncio.create_task(self._connect(session), name=f"tutor-connect-{sid}")
        return sid

    async def _handle_stop(self, event: StopRequested):
        # Observers see IDLE as soon as stop is handled, not after devices close
        self._set_speaking(False)
        self._set_state(SessionState.IDLE)
        await self._teardown()

    async def _handle_barrier(self, event: Barrier):
        return None

    # --- Channel lifecycle ---------------------------------------------------

    async def _connect(self, session: Session):
        """Open the channel outside the actor so stop() can cancel it."""
        sid = session.session_id
        try:
            channel = await self._channel_factory(session.config)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not isinstance(e, ChannelConnectionError):
                wrapped = ChannelConnectionError(f"Could not open channel: {e}")
                wrapped.__cause__ = e
                e = wrapped
            self._post(ChannelFailed(sid, e))
            return None
        self._post(ChannelOpened(sid, channel))
        return channel

    async def _receive(self, session_id: int, channel):
        try:
            async for message in channel.events():
                self._post(ChannelMessage(session_id, message))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._post(ChannelFailed(session_id, e))

    async def _handle_channel_opened(self, event: ChannelOpened):
        session = self._current(event.session_id)
        if session is None:
            # Connect finished after the session was stopped
            logger.debug(f"Closing channel opened for stale session {event.session_id}")
            await event.channel.close()
            return

        session.connect_task = None
        session.channel = event.channel
        session.receive_task = asyncio.create_task(
            self._receive(session.session_id, event.channel),
            name=f"tutor-receive-{session.session_id}"
        )

        sid = session.session_id
        session.capture = self._capture_factory(
            session.config, lambda frame: self._post(FrameCaptured(sid, frame))
        )
        try:
            await session.capture.start()
        except Exception as e:
            await self._fail(session, e)
            return

        self._set_state(SessionState.ACTIVE)
        ConfigManager.console_print("Listening... speak whenever you're ready.")

    async def _handle_channel_failed(self, event: ChannelFailed):
        session = self._current(event.session_id)
        if session is None:
            logger.debug(f"Ignoring failure from stale session {event.session_id}: {event.error}")
            return
        await self._fail(session, event.error)

    async def _handle_channel_message(self, event: ChannelMessage):
        session = self._current(event.session_id)
        if session is None:
            return
        handler = self._message_handlers.get(type(event.event))
        if handler is None:
            logger.warning(f"Unhandled server event {type(event.event).__name__}")
            return
        await handler(session, event.event)

    # --- Server messages -----------------------------------------------------

    async def _on_setup_complete(self, session: Session, message: SetupComplete):
        session.ready = True
        queued = session.pending.drain(session.session_id)
        if queued:
            logger.debug(f"Flushing {len(queued)} frame(s) captured during setup")
        for frame in queued:
            if not await self._send(session, frame):
                break

    async def _on_transcript_delta(self, session: Session, message: TranscriptDelta):
        session.transcript.append_delta(message.speaker, message.text)

    async def _on_turn_complete(self, session: Session, message: TurnComplete):
        created = session.transcript.complete_turn()
        if created:
            self._transcript = session.transcript.entries
            self._publish()

    async def _on_audio_chunk(self, session: Session, message: AudioChunk):
        try:
            samples, duration = codec.decode_audio(message.data, session.config.output_sample_rate)
        except ProtocolError as e:
            logger.warning(f"Ignoring undecodable audio chunk: {e}")
            return
        if not len(samples):
            return
        session.scheduler.enqueue(samples)

    async def _on_interrupted(self, session: Session, message: Interrupted):
        session.scheduler.interrupt()

    async def _on_channel_closed(self, session: Session, message: ChannelClosed):
        logger.info(f"Speech service closed the session (code={message.code} {message.reason})")
        self._set_speaking(False)
        self._set_state(SessionState.IDLE)
        await self._teardown()

    # --- Audio ---------------------------------------------------------------

    async def _handle_frame(self, event: FrameCaptured):
        session = self._current(event.session_id)
        if session is None:
            # Captured after stop: never sent, never queued
            return
        if not session.ready:
            session.pending.push(session.session_id, event.frame)
            return
        await self._send(session, event.frame)

    async def _send(self, session: Session, frame: AudioFrame) -> bool:
        message = OutboundAudio(
            audio=codec.encode_frame(frame),
            sample_rate=frame.sample_rate,
            channels=frame.channels
        )
        try:
            await session.channel.send_audio(message)
        except ChannelConnectionError as e:
            await self._fail(session, e)
            return False
        return True

    async def _handle_playback_finished(self, event: PlaybackFinished):
        session = self._current(event.session_id)
        if session is None or session.scheduler is None:
            return
        session.scheduler.unit_ended(event.unit)

    # --- Teardown ------------------------------------------------------------

    async def _teardown(self):
        """Release the live session, if any. The caller decides the final state."""
        session = self._session
        if session is None:
            return
        # Detach first so every later callback for this session is discarded
        self._session = None
        self._transcript = session.transcript.entries
        await self._resources.release(session)

    async def _fail(self, session: Session, error: BaseException):
        log_error(f"Session {session.session_id} failed", error)
        self.last_error = error
        await self._teardown()
        self._speaking = False
        self._state = SessionState.ERROR
        self._publish()
        ConfigManager.console_print(f"Session error: {error}")
