"""
Bidirectional message channel to the Gemini Live speech service.

The service speaks JSON over a WebSocket. This module turns that wire format
into a small set of typed events and back, so the session never handles raw
JSON.
"""

import json
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK, WebSocketException

from logger import get_logger
from .errors import ChannelConnectionError, ProtocolError
from .frames import CHANNELS, INPUT_SAMPLE_RATE
from .transcript import Speaker

logger = get_logger("channel")


# --- Outbound -------------------------------------------------------------

@dataclass(frozen=True)
class OutboundAudio:
    """One captured frame, transport-encoded."""
    audio: str
    sample_rate: int = INPUT_SAMPLE_RATE
    channels: int = CHANNELS


# --- Inbound --------------------------------------------------------------

@dataclass(frozen=True)
class SetupComplete:
    """The service accepted the session setup and will take audio."""


@dataclass(frozen=True)
class TranscriptDelta:
    speaker: Speaker
    text: str


@dataclass(frozen=True)
class TurnComplete:
    pass


@dataclass(frozen=True)
class AudioChunk:
    """Base64 PCM16 at the output rate, mono."""
    data: str


@dataclass(frozen=True)
class Interrupted:
    """The user started talking over the reply."""


@dataclass(frozen=True)
class ChannelClosed:
    code: Optional[int] = None
    reason: str = ""


ServerEvent = Union[SetupComplete, TranscriptDelta, TurnComplete, AudioChunk, Interrupted, ChannelClosed]


def build_setup_message(config) -> dict:
    """First message on a new connection: model, voice, persona and transcription."""
    return {
        "setup": {
            "model": config.model,
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {
                        "prebuiltVoiceConfig": {"voiceName": config.voice_name}
                    }
                }
            },
            "systemInstruction": {"parts": [{"text": config.system_instruction}]},
            "inputAudioTranscription": {},
            "outputAudioTranscription": {}
        }
    }


def build_audio_message(message: OutboundAudio) -> dict:
    """Wire form of an outbound audio frame."""
    if message.channels != 1:
        raise ValueError(f"Only mono audio can be sent, got {message.channels} channels")
    return {
        "realtimeInput": {
            "audio": {
                "data": message.audio,
                "mimeType": f"audio/pcm;rate={message.sample_rate}"
            }
        }
    }


def _transcription_text(content: dict, key: str) -> Optional[str]:
    block = content.get(key)
    if block is None:
        return None
    if not isinstance(block, dict):
        raise ProtocolError(f"'{key}' is not an object", raw=content)
    text = block.get("text", "")
    if not isinstance(text, str):
        raise ProtocolError(f"'{key}.text' is not a string", raw=content)
    return text


def _audio_parts(content: dict) -> List[str]:
    turn = content.get("modelTurn")
    if turn is None:
        return []
    parts = turn.get("parts", []) if isinstance(turn, dict) else None
    if not isinstance(parts, list):
        raise ProtocolError("'modelTurn.parts' is not a list", raw=content)

    chunks = []
    for part in parts:
        inline = part.get("inlineData") if isinstance(part, dict) else None
        if not isinstance(inline, dict):
            continue
        mime = inline.get("mimeType", "audio/pcm")
        data = inline.get("data")
        if not str(mime).startswith("audio/"):
            continue
        if not isinstance(data, str):
            raise ProtocolError("Inline audio data is not a string", raw=content)
        chunks.append(data)
    return chunks


def parse_server_message(raw) -> List[ServerEvent]:
    """Parse one wire message into events.

    Within a message, events come out in a fixed order: transcription deltas,
    turn completion, audio, interruption. Messages with nothing the session
    cares about (usage metadata, go-away notices) produce no events.

    Raises:
        ProtocolError: If the message is not valid JSON or has the wrong shape
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Message is not UTF-8: {e}") from e
    try:
        message = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Message is not JSON: {e}", raw=raw) from e
    if not isinstance(message, dict):
        raise ProtocolError("Message is not a JSON object", raw=raw)

    if "setupComplete" in message:
        return [SetupComplete()]

    content = message.get("serverContent")
    if content is None:
        return []
    if not isinstance(content, dict):
        raise ProtocolError("'serverContent' is not an object", raw=raw)

    events: List[ServerEvent] = []
    user_text = _transcription_text(content, "inputTranscription")
    if user_text:
        events.append(TranscriptDelta(Speaker.USER, user_text))
    assistant_text = _transcription_text(content, "outputTranscription")
    if assistant_text:
        events.append(TranscriptDelta(Speaker.ASSISTANT, assistant_text))
    if content.get("turnComplete"):
        events.append(TurnComplete())
    for data in _audio_parts(content):
        events.append(AudioChunk(data))
    if content.get("interrupted"):
        events.append(Interrupted())
    return events


class GeminiLiveChannel:
    """One WebSocket connection to Gemini Live.

    Usage:
        channel = await GeminiLiveChannel.open(config)
        await channel.send_audio(OutboundAudio(audio=...))
        async for event in channel.events():
            ...
        await channel.close()
    """

    def __init__(self, config, connect=None):
        self.config = config
        self._connect = connect or websockets.connect
        self._ws = None
        self._closed = False

    @classmethod
    async def open(cls, config, connect=None) -> "GeminiLiveChannel":
        channel = cls(config, connect=connect)
        await channel.connect()
        return channel

    @property
    def closed(self) -> bool:
        return self._closed

    def _url(self) -> str:
        return f"{self.config.endpoint}?key={self.config.api_key}"

    async def connect(self):
        """Open the socket and send the setup message.

        Raises:
            ChannelConnectionError: If the connection cannot be established
        """
        logger.info(f"Connecting to speech service ({self.config.model})")
        try:
            self._ws = await self._connect(self._url(), max_size=None, ping_interval=20, ping_timeout=20)
        except (OSError, WebSocketException) as e:
            raise ChannelConnectionError(f"Could not connect to speech service: {e}") from e
        try:
            await self._send_json(build_setup_message(self.config))
        except BaseException:
            # Failed or cancelled before the caller got the channel
            await self.close()
            raise
        logger.info("Speech service connected, setup sent")

    async def send_audio(self, message: OutboundAudio):
        """Send one encoded frame.

        Raises:
            ChannelConnectionError: If the channel is closed
        """
        await self._send_json(build_audio_message(message))

    async def _send_json(self, payload: dict):
        if self._closed or self._ws is None:
            raise ChannelConnectionError("Channel is closed")
        try:
            await self._ws.send(json.dumps(payload))
        except (ConnectionClosedError, ConnectionClosedOK) as e:
            raise ChannelConnectionError(f"Channel closed while sending: {e}") from e

    async def events(self) -> AsyncIterator[ServerEvent]:
        """Yield parsed events until the service closes the connection.

        Malformed messages are logged and skipped. The final event is always
        ChannelClosed after a clean close.

        Raises:
            ChannelConnectionError: If the connection drops abnormally
        """
        if self._ws is None:
            raise ChannelConnectionError("Channel was never opened")
        try:
            async for raw in self._ws:
                try:
                    events = parse_server_message(raw)
                except ProtocolError as e:
                    logger.warning(f"Ignoring malformed server message: {e}")
                    continue
                for event in events:
                    yield event
        except ConnectionClosedOK:
            pass
        except ConnectionClosedError as e:
            raise ChannelConnectionError(f"Speech service connection lost: {e}") from e

        yield ChannelClosed(code=getattr(self._ws, "close_code", None),
                            reason=getattr(self._ws, "close_reason", None) or "")

    async def close(self):
        """Close the socket. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._ws is not None:
            ws, self._ws = self._ws, None
            await ws.close()
            logger.info("Speech service connection closed")
