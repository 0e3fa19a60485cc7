"""
Tests for the terminal front end.
"""

import io

import pytest

import main
from main import TerminalView, build_parser, run_conversation
from tutor.personas import find_language
from tutor.session import SessionSnapshot, SessionState
from tutor.transcript import Speaker, TranscriptEntry


def snapshot(status=SessionState.ACTIVE, entries=(), speaking=False, error=None):
    return SessionSnapshot(status=status, transcript=tuple(entries), speaking=speaking, error=error)


class TestTerminalView:
    """Tests for rendering session snapshots."""

    def test_status_printed_once(self):
        """Only status changes are printed."""
        out = io.StringIO()
        view = TerminalView(out)
        view.render(snapshot(SessionState.CONNECTING))
        view.render(snapshot(SessionState.CONNECTING))
        view.render(snapshot(SessionState.ACTIVE))
        assert out.getvalue().splitlines() == ["[Connecting...]", "[Live]"]

    def test_new_entries_printed(self):
        """Each transcript entry is printed once with its speaker."""
        out = io.StringIO()
        view = TerminalView(out)
        first = TranscriptEntry(1, Speaker.USER, "Hola")
        second = TranscriptEntry(2, Speaker.ASSISTANT, "¡Hola!")
        view.render(snapshot(entries=[first]))
        view.render(snapshot(entries=[first, second]))

        lines = out.getvalue().splitlines()
        assert lines[1:] == ["You: Hola", "LinguaMaster: ¡Hola!"]

    def test_speaking_indicator(self):
        """The indicator is printed when the tutor starts speaking."""
        out = io.StringIO()
        view = TerminalView(out)
        view.render(snapshot(speaking=True))
        view.render(snapshot(speaking=True))
        assert out.getvalue().count("is speaking") == 1

    def test_error_shown_with_status(self):
        """The error message follows the status."""
        out = io.StringIO()
        view = TerminalView(out)
        view.render(snapshot(SessionState.ERROR, error="Microphone access denied"))
        assert out.getvalue().strip() == "[Error] Microphone access denied"


class TestParser:
    """Tests for command line options."""

    def test_language_and_voice(self):
        args = build_parser().parse_args(["--language", "French", "--voice", "Puck"])
        assert args.language == "French"
        assert args.voice == "Puck"
        assert not args.list_languages


class RecordingController:
    """Stands in for SessionController and remembers each start."""

    def __init__(self, state=SessionState.IDLE):
        self.state = state
        self.started = []
        self.stops = 0
        self.closed = False
        self.transcript = ()

    async def start(self, config):
        self.started.append(config)
        self.state = SessionState.ACTIVE

    async def stop(self):
        self.stops += 1
        self.state = SessionState.IDLE

    async def aclose(self):
        self.closed = True


def scripted_input(monkeypatch, *lines):
    remaining = list(lines)

    def fake_input(prompt=""):
        if not remaining:
            raise EOFError
        return remaining.pop(0)

    monkeypatch.setattr("builtins.input", fake_input)


class TestRunConversation:
    """Tests for the interactive command loop."""

    @pytest.mark.asyncio
    async def test_change_language_between_sessions(self, tutor_config, monkeypatch):
        """'l' switches the language used by the next start."""
        french = find_language("French")
        monkeypatch.setattr(main, "choose_language", lambda default=None: french)
        scripted_input(monkeypatch, "l", "", "q")
        controller = RecordingController()

        await run_conversation(tutor_config, controller)

        config = controller.started[0]
        assert config.language == french
        assert "French" in config.system_instruction
        assert config.api_key == tutor_config.api_key
        assert controller.closed

    @pytest.mark.asyncio
    async def test_language_change_refused_while_live(self, tutor_config, monkeypatch):
        """The language cannot change in the middle of a conversation."""
        chosen = []
        monkeypatch.setattr(main, "choose_language", lambda default=None: chosen.append(default))
        scripted_input(monkeypatch, "", "l", "", "", "q")
        controller = RecordingController()

        await run_conversation(tutor_config, controller)

        assert chosen == []
        assert [c.language for c in controller.started] == [tutor_config.language] * 2
        assert controller.stops == 1
