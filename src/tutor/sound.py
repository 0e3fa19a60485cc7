"""
Lazy access to the PortAudio bindings.

sounddevice raises OSError at import time when the PortAudio shared library
is missing, so it is only imported when a stream is actually opened.
"""

from .errors import DeviceUnavailableError


def import_sounddevice():
    """Import sounddevice, raising DeviceUnavailableError if it cannot load."""
    try:
        import sounddevice as sd

        return sd
    except (ImportError, OSError) as e:
        raise DeviceUnavailableError(
            f"Audio I/O is unavailable ({e}). Install PortAudio and the sounddevice package."
        ) from e
