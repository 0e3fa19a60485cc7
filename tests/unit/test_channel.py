"""
Tests for the Gemini Live wire protocol and channel.
"""

import asyncio
import json

import pytest

from tutor.channel import (
    AudioChunk,
    ChannelClosed,
    GeminiLiveChannel,
    Interrupted,
    OutboundAudio,
    SetupComplete,
    TranscriptDelta,
    TurnComplete,
    build_audio_message,
    build_setup_message,
    parse_server_message,
)
from tutor.errors import ChannelConnectionError, ProtocolError
from tutor.transcript import Speaker


class FakeWebSocket:
    """Replays scripted inbound messages and records outbound ones."""

    def __init__(self, inbound=()):
        self.inbound = list(inbound)
        self.sent = []
        self.closed = False
        self.close_code = 1000
        self.close_reason = "bye"

    async def send(self, data):
        self.sent.append(json.loads(data))

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.inbound:
            yield message

    async def close(self):
        self.closed = True


class StalledWebSocket(FakeWebSocket):
    """Socket whose sends fail or wait until released."""

    def __init__(self, send_error=None):
        super().__init__()
        self.send_error = send_error
        self.send_started = asyncio.Event()
        self.release = asyncio.Event()

    async def send(self, data):
        self.send_started.set()
        if self.send_error is not None:
            raise self.send_error
        await self.release.wait()
        await super().send(data)


class TestParseServerMessage:
    """Tests for inbound message parsing."""

    def test_setup_complete(self):
        """setupComplete maps to SetupComplete."""
        assert parse_server_message('{"setupComplete": {}}') == [SetupComplete()]

    def test_event_order_within_message(self):
        """Deltas, turn completion, audio, then interruption."""
        raw = json.dumps({
            "serverContent": {
                "interrupted": True,
                "modelTurn": {"parts": [
                    {"inlineData": {"mimeType": "audio/pcm;rate=24000", "data": "AAA="}},
                    {"text": "ignored"},
                    {"inlineData": {"mimeType": "audio/pcm;rate=24000", "data": "AQE="}}
                ]},
                "turnComplete": True,
                "outputTranscription": {"text": "¡Hola!"},
                "inputTranscription": {"text": "Hola"}
            }
        })
        assert parse_server_message(raw) == [
            TranscriptDelta(Speaker.USER, "Hola"),
            TranscriptDelta(Speaker.ASSISTANT, "¡Hola!"),
            TurnComplete(),
            AudioChunk("AAA="),
            AudioChunk("AQE="),
            Interrupted(),
        ]

    def test_bytes_message(self):
        """Binary frames are decoded as UTF-8 JSON."""
        raw = json.dumps({"serverContent": {"turnComplete": True}}).encode("utf-8")
        assert parse_server_message(raw) == [TurnComplete()]

    def test_non_audio_inline_data_skipped(self):
        """Only audio parts become AudioChunks."""
        raw = json.dumps({"serverContent": {"modelTurn": {"parts": [
            {"inlineData": {"mimeType": "image/png", "data": "AAA="}}
        ]}}})
        assert parse_server_message(raw) == []

    def test_empty_transcription_ignored(self):
        """Empty transcription text produces no delta."""
        raw = json.dumps({"serverContent": {"inputTranscription": {"text": ""}}})
        assert parse_server_message(raw) == []

    def test_unrelated_message_ignored(self):
        """Messages without serverContent produce nothing."""
        assert parse_server_message('{"usageMetadata": {"totalTokenCount": 5}}') == []

    @pytest.mark.parametrize("raw", [
        "not json",
        "[1, 2]",
        '{"serverContent": "oops"}',
        '{"serverContent": {"inputTranscription": "oops"}}',
        '{"serverContent": {"outputTranscription": {"text": 5}}}',
        '{"serverContent": {"modelTurn": {"parts": "oops"}}}',
        '{"serverContent": {"modelTurn": {"parts": [{"inlineData": {"mimeType": "audio/pcm", "data": 1}}]}}}',
    ])
    def test_malformed_raises_protocol_error(self, raw):
        """Wrongly shaped messages raise ProtocolError."""
        with pytest.raises(ProtocolError):
            parse_server_message(raw)


class TestOutboundMessages:
    """Tests for outbound wire messages."""

    def test_audio_message(self):
        """Audio goes out as realtimeInput with its PCM rate."""
        message = build_audio_message(OutboundAudio(audio="AAA="))
        assert message == {"realtimeInput": {"audio": {
            "data": "AAA=", "mimeType": "audio/pcm;rate=16000"
        }}}

    def test_stereo_rejected(self):
        """Only mono audio can be sent."""
        with pytest.raises(ValueError):
            build_audio_message(OutboundAudio(audio="AAA=", channels=2))

    def test_setup_message(self, tutor_config):
        """Setup carries model, voice, persona and both transcriptions."""
        setup = build_setup_message(tutor_config)["setup"]
        assert setup["model"] == tutor_config.model
        assert setup["generationConfig"]["responseModalities"] == ["AUDIO"]
        voice = setup["generationConfig"]["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]
        assert voice["voiceName"] == "Kore"
        assert setup["systemInstruction"]["parts"][0]["text"] == "You are a test tutor."
        assert "inputAudioTranscription" in setup
        assert "outputAudioTranscription" in setup


class TestGeminiLiveChannel:
    """Tests for GeminiLiveChannel over a fake socket."""

    @pytest.mark.asyncio
    async def test_open_sends_setup_first(self, tutor_config):
        """Connecting sends the setup message before anything else."""
        ws = FakeWebSocket()
        urls = []

        async def connect(url, **kwargs):
            urls.append(url)
            return ws

        channel = await GeminiLiveChannel.open(tutor_config, connect=connect)
        await channel.send_audio(OutboundAudio(audio="AAA="))

        assert urls == [f"{tutor_config.endpoint}?key=test-key"]
        assert list(ws.sent[0]) == ["setup"]
        assert "realtimeInput" in ws.sent[1]

    @pytest.mark.asyncio
    async def test_connect_failure_raises(self, tutor_config):
        """Socket errors become ChannelConnectionError."""
        async def connect(url, **kwargs):
            raise OSError("network unreachable")

        with pytest.raises(ChannelConnectionError):
            await GeminiLiveChannel.open(tutor_config, connect=connect)

    @pytest.mark.asyncio
    async def test_events_skip_malformed_and_end_with_close(self, tutor_config):
        """Bad messages are skipped; a clean close yields ChannelClosed last."""
        ws = FakeWebSocket(inbound=[
            '{"setupComplete": {}}',
            "garbage",
            '{"serverContent": {"turnComplete": true}}',
        ])

        async def connect(url, **kwargs):
            return ws

        channel = await GeminiLiveChannel.open(tutor_config, connect=connect)
        events = [event async for event in channel.events()]

        assert events == [SetupComplete(), TurnComplete(), ChannelClosed(code=1000, reason="bye")]

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, tutor_config):
        """Closing twice is harmless and sending afterwards fails."""
        ws = FakeWebSocket()

        async def connect(url, **kwargs):
            return ws

        channel = await GeminiLiveChannel.open(tutor_config, connect=connect)
        await channel.close()
        await channel.close()

        assert ws.closed
        assert channel.closed
        with pytest.raises(ChannelConnectionError):
            await channel.send_audio(OutboundAudio(audio="AAA="))

    @pytest.mark.asyncio
    async def test_setup_send_failure_closes_socket(self, tutor_config):
        """A failed setup send closes the socket that was already opened."""
        ws = StalledWebSocket(send_error=OSError("broken pipe"))

        async def connect(url, **kwargs):
            return ws

        with pytest.raises(OSError):
            await GeminiLiveChannel.open(tutor_config, connect=connect)
        assert ws.closed

    @pytest.mark.asyncio
    async def test_cancel_during_setup_closes_socket(self, tutor_config):
        """Cancelling open while setup is being sent closes the socket."""
        ws = StalledWebSocket()

        async def connect(url, **kwargs):
            return ws

        task = asyncio.create_task(GeminiLiveChannel.open(tutor_config, connect=connect))
        await ws.send_started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert ws.closed
        assert ws.sent == []
