"""
Lingua Setup CLI - Terminal-based first-time setup.

Asks for the Gemini API key, a default practice language and a tutor voice,
then writes .env and src/config.yaml.
"""

import os
import sys
from pathlib import Path

from tutor.personas import API_KEY_ENV, LANGUAGES
from utils import ConfigManager

VOICES = [
    ("Kore", "Firm, clear female voice (default)"),
    ("Puck", "Upbeat male voice"),
    ("Charon", "Calm, informative male voice"),
    ("Fenrir", "Excitable male voice"),
    ("Aoede", "Breezy female voice"),
    ("Leda", "Youthful female voice"),
    ("Orus", "Firm male voice"),
    ("Zephyr", "Bright female voice"),
]

LINGUA_DIR = Path(__file__).parent.parent


def clear_screen():
    """Clear terminal screen."""
    os.system('cls' if sys.platform == 'win32' else 'clear')


def print_header(title: str):
    """Print a section header."""
    print()
    print("=" * 50)
    print(f"  {title}")
    print("=" * 50)
    print()


def print_box(lines: list[str]):
    """Print text in a simple box."""
    width = max(len(line) for line in lines) + 4
    print("+" + "-" * width + "+")
    for line in lines:
        print(f"|  {line.ljust(width - 2)}|")
    print("+" + "-" * width + "+")


def get_input(prompt: str, default: str = None) -> str:
    """Get user input with optional default."""
    if default:
        prompt = f"{prompt} [{default}]: "
    else:
        prompt = f"{prompt}: "

    value = input(prompt).strip()
    return value if value else default


def get_choice(prompt: str, options: list[str], default: int = None) -> int:
    """Get numbered choice from user."""
    print(prompt)
    print()
    for i, option in enumerate(options, 1):
        print(f"  {i}) {option}")
    print()

    while True:
        if default:
            choice = input(f"Enter choice [1-{len(options)}] (default: {default}): ").strip()
        else:
            choice = input(f"Enter choice [1-{len(options)}]: ").strip()

        if not choice and default:
            return default

        try:
            num = int(choice)
            if 1 <= num <= len(options):
                return num
        except ValueError:
            pass

        print(f"Please enter a number between 1 and {len(options)}")


def save_config(api_key: str, language: str, voice_name: str, base_dir: Path = LINGUA_DIR):
    """Write .env (secrets) and src/config.yaml (preferences)."""
    env_path = base_dir / ".env"
    with open(env_path, 'w', encoding='utf-8') as f:
        f.write(f"{API_KEY_ENV}={api_key}\n")

    config_path = base_dir / "src" / "config.yaml"
    config_path.parent.mkdir(parents=True, exist_ok=True)

    # Settings already in the file are kept
    ConfigManager.reset()
    try:
        ConfigManager.initialize(config_path=config_path)
        ConfigManager.set_config_value(language, 'session', 'language')
        ConfigManager.set_config_value(voice_name, 'session', 'voice_name')
        ConfigManager.set_config_value(True, 'misc', 'print_to_terminal')
        ConfigManager.save_config(config_path)
    finally:
        ConfigManager.reset()

    print("\n[OK] Configuration saved!")


def run_setup():
    """Run the terminal setup."""
    clear_screen()

    print("""
    Lingua - Live Voice Language Tutor
    """)

    print("This will set up Lingua on your system.\n")

    # =========================================================================
    # API KEY
    # =========================================================================
    print_header("1. Gemini API Key")

    print("Lingua talks to Google's Gemini Live speech service.")
    print("To get a key:")
    print("  1. Go to https://aistudio.google.com/apikey")
    print("  2. Create an API key")
    print()

    existing_key = os.environ.get(API_KEY_ENV)
    while True:
        api_key = get_input("Enter Gemini API key", existing_key)
        if api_key:
            break
        print("An API key is required.")

    # =========================================================================
    # LANGUAGE
    # =========================================================================
    print_header("2. Practice Language")

    options = [f"{language.flag}  {language.name}" for language in LANGUAGES]
    language_choice = get_choice("Which language do you want to practice by default?", options, default=1)
    language = LANGUAGES[language_choice - 1].name
    print(f"\nSelected: {language}")

    # =========================================================================
    # VOICE
    # =========================================================================
    print_header("3. Tutor Voice")

    options = [f"{name.ljust(8)} - {desc}" for name, desc in VOICES]
    voice_choice = get_choice("Pick the tutor's voice:", options, default=1)
    voice_name = VOICES[voice_choice - 1][0]
    print(f"\nSelected: {voice_name}")

    save_config(api_key, language, voice_name)

    print()
    print_box([
        "Setup complete!",
        "",
        "Start practicing:  python run.py",
        "Pick a language:   python run.py --language French",
        "Run setup again:   python run.py --setup",
    ])


if __name__ == '__main__':
    run_setup()
