"""
Exceptions raised by the tutoring session.

Each class also derives from the matching builtin so callers can catch
``PermissionError`` or ``ConnectionError`` without importing this module.
"""


class TutorError(Exception):
    """Base class for session errors."""


class MicrophonePermissionError(TutorError, PermissionError):
    """Raised when the microphone cannot be opened because access was denied."""


class DeviceUnavailableError(TutorError, OSError):
    """Raised when no usable input device exists."""


class ChannelConnectionError(TutorError, ConnectionError):
    """Raised when the remote channel fails to open or drops mid-session."""


class DeviceError(TutorError):
    """Raised when the output device rejects a playback request."""


class ProtocolError(TutorError, ValueError):
    """Raised for an inbound message that cannot be understood."""
    def __init__(self, message: str, raw=None):
        self.raw = raw
        super().__init__(message)


class SessionStateError(TutorError, RuntimeError):
    """Raised when an operation is not valid in the current session state."""
    def __init__(self, operation: str, state):
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} while session is {state.value}")
