"""
Tutor persona and per-session configuration.

The persona text is passed to the service as-is; nothing in the session
inspects it.
"""

import os
from dataclasses import dataclass, replace
from typing import List, Optional

from utils import ConfigManager

API_KEY_ENV = "GEMINI_API_KEY"

TUTOR_NAME = "LinguaMaster"


@dataclass(frozen=True)
class Language:
    name: str
    flag: str


LANGUAGES: List[Language] = [
    Language("Spanish", "🇪🇸"),
    Language("French", "🇫🇷"),
    Language("German", "🇩🇪"),
    Language("Japanese", "🇯🇵"),
    Language("Italian", "🇮🇹"),
    Language("Portuguese", "🇵🇹"),
    Language("Mandarin", "🇨🇳"),
    Language("Korean", "🇰🇷"),
    Language("Russian", "🇷🇺"),
    Language("Arabic", "🇸🇦"),
    Language("Hindi", "🇮🇳"),
    Language("English", "🇬🇧"),
]


def find_language(name: str) -> Optional[Language]:
    """Look up a language by name, ignoring case and surrounding spaces."""
    wanted = (name or "").strip().lower()
    for language in LANGUAGES:
        if language.name.lower() == wanted:
            return language
    return None


SYSTEM_INSTRUCTION_TEMPLATE = """\
You are {tutor}, an expert, enthusiastic and patient language tutor holding a \
real-time voice conversation. Speak warmly and clearly, slow down when \
explaining something difficult, and keep replies short enough for speech.

- Speak mainly in {language}; switch to English for explanations, translations \
or when the learner struggles.
- Open by introducing yourself and asking whether the learner is a Beginner, \
Intermediate or Advanced speaker of {language}, then adapt to their answer.
- Suggest everyday topics and short role-plays, and ask open questions so the \
learner does most of the talking.
- Acknowledge every attempt positively before correcting it. Repeat mispronounced \
phrases slowly and explain grammar or vocabulary briefly, then invite the learner \
to try again.
- Mix in quick quizzes, tongue twisters or cultural facts. Never list these rules \
or break character.
"""


def build_system_instruction(language: Language) -> str:
    """Build the persona prompt for the chosen practice language."""
    return SYSTEM_INSTRUCTION_TEMPLATE.format(tutor=TUTOR_NAME, language=language.name)


@dataclass(frozen=True)
class TutorConfig:
    """Everything fixed for the lifetime of one session."""
    language: Language
    system_instruction: str
    api_key: str
    voice_name: str = "Kore"
    model: str = "models/gemini-2.5-flash-native-audio-preview-09-2025"
    endpoint: str = ("wss://generativelanguage.googleapis.com/ws/"
                     "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent")
    input_sample_rate: int = 16000
    output_sample_rate: int = 24000
    block_size: int = 4096
    input_device: Optional[object] = None
    output_device: Optional[object] = None
    max_pending_frames: int = 64

    @classmethod
    def from_settings(cls, language: Language, voice_name: Optional[str] = None,
                      api_key: Optional[str] = None) -> "TutorConfig":
        """Build a session config from ConfigManager settings and the environment.

        Raises:
            ValueError: If no API key is configured
        """
        session = ConfigManager.get_config_section('session')
        audio = ConfigManager.get_config_section('audio')

        key = api_key or os.environ.get(API_KEY_ENV)
        if not key:
            raise ValueError(
                f"{API_KEY_ENV} is not set. Run 'python run.py --setup' or add it to .env."
            )

        defaults = cls.__dataclass_fields__
        return cls(
            language=language,
            system_instruction=build_system_instruction(language),
            api_key=key,
            voice_name=voice_name or session.get('voice_name') or defaults['voice_name'].default,
            model=session.get('model') or defaults['model'].default,
            endpoint=session.get('endpoint') or defaults['endpoint'].default,
            input_sample_rate=audio.get('input_sample_rate') or defaults['input_sample_rate'].default,
            output_sample_rate=audio.get('output_sample_rate') or defaults['output_sample_rate'].default,
            block_size=audio.get('block_size') or defaults['block_size'].default,
            input_device=_device_setting(audio.get('input_device')),
            output_device=_device_setting(audio.get('output_device')),
            max_pending_frames=audio.get('max_pending_frames') or defaults['max_pending_frames'].default,
        )

    def with_language(self, language: Language) -> "TutorConfig":
        """Same settings, new practice language and persona."""
        return replace(self, language=language, system_instruction=build_system_instruction(language))


def _device_setting(value):
    """sounddevice accepts a device index or a name substring; blank means default."""
    if value is None or value == "":
        return None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value
