"""
Error taxonomy shared by the gateway, the retry wrapper and the orchestrators
"""

from typing import Optional


class ConsultAssistError(Exception):
    """Base class for all service errors."""


class ConfigurationError(ConsultAssistError):
    """A required credential or setting is missing. Never retried."""


class UpstreamError(ConsultAssistError):
    """An upstream provider call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamNetworkError(UpstreamError):
    """The request never produced an HTTP response (DNS, connect, read timeout)."""


class UpstreamStatusError(UpstreamError):
    """The provider answered with a non-2xx HTTP status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message, status_code=status_code)

    def __str__(self) -> str:
        return f"HTTP {self.status_code}: {self.args[0]}"


class ResponseFormatError(ConsultAssistError):
    """Model output could not be decoded into the expected shape."""


class TranscriptionError(ConsultAssistError):
    """Both the primary recognizer and the fallback transcription failed."""

    def __init__(self, primary_error: BaseException, fallback_error: BaseException):
        super().__init__(
            f"Speech recognition failed: {primary_error}; "
            f"fallback transcription failed: {fallback_error}"
        )
        self.primary_error = primary_error
        self.fallback_error = fallback_error


class RecordGenerationError(ConsultAssistError):
    """A medical record draft could not be produced from the transcript."""


class SessionLoggingError(ConsultAssistError):
    """A must-succeed write to the session logging collaborator failed."""


class UnsupportedAudioError(ConsultAssistError):
    """The upload cannot be sent to any available recognizer."""
