"""
Exception hierarchy shared by the recorder, the transcription adapters and the API
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ent_scribe.models.domain import NoteRequest


class ScribeError(Exception):
    """Base class for all ENT Scribe errors."""
    pass


class PermissionDenied(ScribeError):
    """The microphone could not be opened, was refused, or is held by another session."""
    pass


class ConfigurationError(ScribeError):
    """Required backend credentials or settings are missing."""
    pass


class InvalidStateTransition(ScribeError):
    """A lifecycle call is not allowed in the current session state."""

    def __init__(self, action: str, state: str):
        super().__init__(f"Cannot {action} while session is {state}")
        self.action = action
        self.state = state


class TranscriptionBackendError(ScribeError):
    """A transcription provider rejected or failed a chunk."""

    def __init__(self, message: str, status_code: Optional[int] = None, provider: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.provider = provider


class GenerationFailure(ScribeError):
    """The note backend failed or returned an empty note. The request can be retried as-is."""

    def __init__(self, message: str, request: Optional["NoteRequest"] = None):
        super().__init__(message)
        self.message = message
        self.request = request
