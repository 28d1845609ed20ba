"""Error taxonomy for practice sessions

Only the two device errors raised at session start are blocking failures. The
rest are recovered where they occur and show up in the report as
``partial=True`` or reduced confidence.
"""

from typing import Optional


class SessionError(Exception):
    """Base class for all session errors"""
    kind = "SessionError"


class DeviceError(SessionError):
    """Capture device could not be used"""
    kind = "DeviceError"


class DevicePermissionDeniedError(DeviceError):
    """User or OS refused access to the microphone or camera"""
    kind = "DevicePermissionDenied"


class DeviceUnavailableError(DeviceError):
    """Device missing at start, or a track lost mid-recording"""
    kind = "DeviceUnavailable"

    def __init__(self, message: str = "", track: Optional[str] = None):
        super().__init__(message or f"Device unavailable: {track or 'unknown track'}")
        self.track = track


class TranscriptionUnavailableError(SessionError):
    """Transcription provider missing or failed"""
    kind = "TranscriptionUnavailable"


class AnalysisJoinTimeoutError(SessionError):
    """An analyzer did not finish within the join timeout"""
    kind = "AnalysisJoinTimeout"


class InvalidStateTransitionError(SessionError):
    """Operation called from a state that does not allow it"""
    kind = "InvalidStateTransition"

    def __init__(self, operation: str, state):
        super().__init__(f"Cannot {operation} from state {getattr(state, 'value', state)}")
        self.operation = operation
        self.state = state
