"""
Lingua - Live voice language tutor.

Entry point that checks for first-time setup and runs the appropriate mode.
"""

import os
import sys
import subprocess
from pathlib import Path
from dotenv import load_dotenv

API_KEY_ENV = "GEMINI_API_KEY"
SRC_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'src')


def needs_setup() -> bool:
    """Check if setup needs to run."""
    lingua_dir = Path(__file__).parent

    # A key exported in the shell is enough
    if os.environ.get(API_KEY_ENV):
        return False

    env_path = lingua_dir / ".env"
    if env_path.exists():
        with open(env_path, encoding='utf-8') as f:
            for line in f:
                if line.strip().startswith(f"{API_KEY_ENV}=") and line.split("=", 1)[1].strip():
                    return False

    return True


def run_setup():
    """Run the terminal setup."""
    print("First-time setup required...")
    subprocess.run([sys.executable, os.path.join(SRC_DIR, 'setup_cli.py')])


def run_lingua(args):
    """Run the main Lingua application."""
    print('Starting Lingua...')
    load_dotenv()
    subprocess.run([sys.executable, os.path.join(SRC_DIR, 'main.py'), *args])


if __name__ == '__main__':
    # Check command line args for forcing setup
    if '--setup' in sys.argv:
        run_setup()
    elif needs_setup():
        run_setup()
    else:
        run_lingua(sys.argv[1:])
