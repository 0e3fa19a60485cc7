"""
Lingua - live voice tutor in the terminal.

Pick a language, press Enter to start talking with the tutor, press Enter
again to finish. The transcript and a speaking indicator are printed as the
conversation goes.
"""

import argparse
import asyncio
import sys

from logger import TutorLogger, log_exception
from utils import ConfigManager
from tutor.errors import SessionStateError
from tutor.personas import LANGUAGES, TUTOR_NAME, TutorConfig, find_language
from tutor.session import SessionController, SessionSnapshot, SessionState
from tutor.transcript import Speaker

STATUS_LABELS = {
    SessionState.IDLE: "Idle",
    SessionState.CONNECTING: "Connecting...",
    SessionState.ACTIVE: "Live",
    SessionState.ERROR: "Error",
}


def choose_language(default_name: str = None):
    """Ask for a practice language by number."""
    default = find_language(default_name) if default_name else None
    default_index = LANGUAGES.index(default) + 1 if default else None

    print("Which language would you like to practice?")
    print()
    for i, language in enumerate(LANGUAGES, 1):
        print(f"  {i:2}) {language.flag}  {language.name}")
    print()

    while True:
        if default_index:
            choice = input(f"Enter choice [1-{len(LANGUAGES)}] (default: {default_index}): ").strip()
        else:
            choice = input(f"Enter choice [1-{len(LANGUAGES)}]: ").strip()

        if not choice and default_index:
            return LANGUAGES[default_index - 1]

        try:
            num = int(choice)
            if 1 <= num <= len(LANGUAGES):
                return LANGUAGES[num - 1]
        except ValueError:
            language = find_language(choice)
            if language:
                return language

        print(f"Please enter a number between 1 and {len(LANGUAGES)}")


class TerminalView:
    """Prints session changes as they arrive from the controller."""

    def __init__(self, out=None):
        self.out = out or sys.stdout
        self._status = None
        self._speaking = False
        self._shown_entries = 0

    def render(self, snapshot: SessionSnapshot):
        if snapshot.status != self._status:
            self._status = snapshot.status
            line = f"[{STATUS_LABELS[snapshot.status]}]"
            if snapshot.error:
                line += f" {snapshot.error}"
            self._write(line)

        # A new session starts with an empty transcript
        if len(snapshot.transcript) < self._shown_entries:
            self._shown_entries = 0
        for entry in snapshot.transcript[self._shown_entries:]:
            name = "You" if entry.speaker == Speaker.USER else TUTOR_NAME
            self._write(f"{name}: {entry.text}")
        self._shown_entries = len(snapshot.transcript)

        if snapshot.speaking != self._speaking:
            self._speaking = snapshot.speaking
            if snapshot.speaking:
                self._write(f"  ({TUTOR_NAME} is speaking...)")

    def _write(self, line: str):
        print(line, file=self.out, flush=True)


async def run_conversation(config: TutorConfig, controller: SessionController = None):
    """Toggle the session with Enter until the user quits."""
    view = TerminalView()
    controller = controller or SessionController(observer=view.render)
    loop = asyncio.get_running_loop()

    print()
    print(f"Practicing {config.language.flag}  {config.language.name} with {TUTOR_NAME}.")
    print("Press Enter to start or finish a conversation, 'l' to change language, 'q' to quit.")
    print()

    try:
        while True:
            try:
                command = await loop.run_in_executor(None, input)
            except EOFError:
                break

            command = command.strip().lower()
            if command in ("q", "quit", "exit"):
                break

            if command in ("l", "language"):
                if controller.state not in (SessionState.IDLE, SessionState.ERROR):
                    print("Finish the current conversation before changing language.")
                    continue
                language = await loop.run_in_executor(None, choose_language, config.language.name)
                config = config.with_language(language)
                print(f"Practicing {config.language.flag}  {config.language.name} with {TUTOR_NAME}.")
                continue

            if controller.state in (SessionState.IDLE, SessionState.ERROR):
                try:
                    await controller.start(config)
                except SessionStateError as e:
                    print(e)
            else:
                await controller.stop()
    finally:
        await controller.aclose()

    if controller.transcript:
        print(f"\nConversation finished after {len(controller.transcript)} transcript entries.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Lingua - live voice language tutor")
    parser.add_argument("--language", help="Language to practice (e.g. Spanish)")
    parser.add_argument("--voice", help="Prebuilt voice for the tutor (e.g. Kore)")
    parser.add_argument("--list-languages", action="store_true", help="List available languages and exit")
    parser.add_argument("--setup", action="store_true", help="Run first-time setup and exit")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.setup:
        from setup_cli import run_setup
        run_setup()
        return 0

    if args.list_languages:
        for language in LANGUAGES:
            print(f"{language.flag}  {language.name}")
        return 0

    ConfigManager.initialize()
    TutorLogger.set_level(ConfigManager.get_config_value('misc', 'log_level') or "WARNING")

    if args.language:
        language = find_language(args.language)
        if language is None:
            print(f"Unknown language '{args.language}'. Use --list-languages to see the options.")
            return 2
    else:
        language = choose_language(ConfigManager.get_config_value('session', 'language'))

    try:
        config = TutorConfig.from_settings(language, voice_name=args.voice)
    except ValueError as e:
        print(f"[ERROR] {e}")
        return 1

    try:
        asyncio.run(run_conversation(config))
    except KeyboardInterrupt:
        print("\nGoodbye!")
    except Exception as e:
        log_exception(e, "in main loop")
        print(f"[ERROR] {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
