"""
Turn-based transcript assembly.

The service streams transcription text in small deltas for both sides of the
conversation. Deltas accumulate per speaker and only become transcript
entries when the service confirms the turn is complete.
"""

from dataclasses import dataclass
from enum import Enum
from itertools import count
from typing import Dict, List, Tuple


class Speaker(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class TranscriptEntry:
    """A finalized line of the conversation."""
    id: int
    speaker: Speaker
    text: str

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "speaker": self.speaker.value,
            "text": self.text
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TranscriptEntry":
        """Create from dictionary."""
        return cls(
            id=int(data["id"]),
            speaker=Speaker(data["speaker"]),
            text=data["text"]
        )


class TranscriptAssembler:
    """Accumulates partial transcription per speaker and finalizes on turn boundaries.

    Finalization order is fixed: the user's line is always recorded before the
    assistant's, whatever order their deltas arrived in.
    """

    # Order in which buffers are flushed at a turn boundary
    FINALIZE_ORDER = (Speaker.USER, Speaker.ASSISTANT)

    def __init__(self):
        self._entries: List[TranscriptEntry] = []
        self._partials: Dict[Speaker, List[str]] = {speaker: [] for speaker in Speaker}
        self._ids = count(1)

    @property
    def entries(self) -> Tuple[TranscriptEntry, ...]:
        return tuple(self._entries)

    def partial(self, speaker: Speaker) -> str:
        """Current unconfirmed text for a speaker."""
        return "".join(self._partials[Speaker(speaker)])

    def append_delta(self, speaker, text: str):
        """Append a streamed fragment to the speaker's buffer."""
        if not text:
            return
        self._partials[Speaker(speaker)].append(text)

    def complete_turn(self) -> List[TranscriptEntry]:
        """Finalize non-empty buffers and clear both.

        Returns:
            The entries created by this turn boundary (possibly empty)
        """
        created = []
        for speaker in self.FINALIZE_ORDER:
            text = self.partial(speaker).strip()
            if text:
                entry = TranscriptEntry(id=next(self._ids), speaker=speaker, text=text)
                self._entries.append(entry)
                created.append(entry)

        for buffer in self._partials.values():
            buffer.clear()
        return created

    def reset(self):
        """Drop all entries and partial text (new session)."""
        self._entries = []
        for buffer in self._partials.values():
            buffer.clear()
        self._ids = count(1)

    def get_full_text(self) -> str:
        """Get all finalized text without formatting."""
        return "\n".join(f"{e.speaker.value}: {e.text}" for e in self._entries)
