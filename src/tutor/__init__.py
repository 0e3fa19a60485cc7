"""
Live Tutor Mode

Streams microphone audio to Gemini Live, plays the spoken replies back
gaplessly and keeps a turn-by-turn transcript of the conversation.
"""

# Lazy imports so importing the package doesn't load sounddevice or websockets
def __getattr__(name):
    if name in ("SessionController", "SessionSnapshot", "SessionState"):
        from . import session
        return getattr(session, name)
    elif name in ("TutorConfig", "LANGUAGES", "find_language"):
        from . import personas
        return getattr(personas, name)
    elif name in ("TranscriptAssembler", "TranscriptEntry", "Speaker"):
        from . import transcript
        return getattr(transcript, name)
    elif name == "TutorError":
        from .errors import TutorError
        return TutorError
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    "SessionController",
    "SessionSnapshot",
    "SessionState",
    "TutorConfig",
    "LANGUAGES",
    "find_language",
    "TranscriptAssembler",
    "TranscriptEntry",
    "Speaker",
    "TutorError",
]
