"""Exception hierarchy shared by the API and the worker.

Two families live here:

* ``TranscriptionError`` and its subclasses are raised inside the
  transcription pipeline.  Each one is constructed at its throw site with a
  fixed ``ErrorKind`` (and, for API failures, an ``ApiErrorReason``), so the
  user-facing message is chosen by matching on those enums rather than by
  inspecting exception text.
* ``AppBaseException`` and its subclasses are request-side rejections that
  the FastAPI exception handler turns into ``{"detail": ...}`` responses.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Closed set of transcription failure classes."""

    CONFIG = "config"
    NETWORK = "network"
    TIMEOUT = "timeout"
    API = "api"
    FILE = "file"
    PARSE = "parse"
    GENERIC = "generic"


class ApiErrorReason(str, Enum):
    """Why the external service rejected a request."""

    QUOTA = "quota"
    SAFETY = "safety"
    AUTH = "auth"
    INVALID_IMAGE = "invalid_image"
    UNAVAILABLE = "unavailable"
    SERVICE = "service"


class TranscriptionError(Exception):
    """Base class of every classified transcription failure."""

    kind: ErrorKind = ErrorKind.GENERIC


class ConfigError(TranscriptionError):
    kind = ErrorKind.CONFIG


class NetworkError(TranscriptionError):
    kind = ErrorKind.NETWORK


class TranscriptionTimeout(NetworkError):
    """The attempt exceeded its time bound (HTTP timeout or soft time limit)."""

    kind = ErrorKind.TIMEOUT


class ApiError(TranscriptionError):
    kind = ErrorKind.API

    def __init__(
        self,
        message: str,
        reason: ApiErrorReason = ApiErrorReason.SERVICE,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code


class FileError(TranscriptionError):
    kind = ErrorKind.FILE


class ParseError(TranscriptionError):
    kind = ErrorKind.PARSE


class GenericError(TranscriptionError):
    kind = ErrorKind.GENERIC


# ---------------------------------------------------------------------------
# User-facing messages
# ---------------------------------------------------------------------------

GENERIC_MESSAGE = (
    "An unexpected error occurred during transcription. "
    "Our team has been notified. Please try again later."
)

_KIND_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.CONFIG: "The transcription service is not properly configured. Please contact support.",
    ErrorKind.NETWORK: (
        "Unable to connect to the transcription service. "
        "Please check your internet connection and try again."
    ),
    ErrorKind.TIMEOUT: "The transcription took too long to complete. Please try again.",
    ErrorKind.FILE: "There was a problem reading your image file. Please try uploading the image again.",
    ErrorKind.PARSE: "The transcription result could not be processed. Please try again.",
    ErrorKind.GENERIC: GENERIC_MESSAGE,
}

_API_MESSAGES: dict[ApiErrorReason, str] = {
    ApiErrorReason.QUOTA: (
        "The transcription service is temporarily at capacity. Please try again in a few minutes."
    ),
    ApiErrorReason.SAFETY: (
        "The document content could not be processed due to safety restrictions. "
        "Please contact support if you believe this is an error."
    ),
    ApiErrorReason.AUTH: (
        "There was an authentication issue with the transcription service. Please contact support."
    ),
    ApiErrorReason.INVALID_IMAGE: (
        "The uploaded image format is not supported or is corrupted. "
        "Please try uploading a different image."
    ),
    ApiErrorReason.UNAVAILABLE: (
        "The transcription service is temporarily unavailable. Please try again later."
    ),
    ApiErrorReason.SERVICE: "The transcription service encountered an error. Please try again later.",
}


def error_kind(exc: BaseException) -> ErrorKind:
    """Return the failure class of *exc*; unknown exceptions are ``GENERIC``."""
    if isinstance(exc, TranscriptionError):
        return exc.kind
    return ErrorKind.GENERIC


def user_message(exc: BaseException) -> str:
    """Short, user-safe sentence describing why a transcription failed."""
    kind = error_kind(exc)
    if kind is ErrorKind.API:
        reason = getattr(exc, "reason", ApiErrorReason.SERVICE)
        return _API_MESSAGES.get(reason, _API_MESSAGES[ApiErrorReason.SERVICE])
    return _KIND_MESSAGES[kind]


# ---------------------------------------------------------------------------
# Request-side exceptions
# ---------------------------------------------------------------------------


class AppBaseException(Exception):
    """Domain-level base exception so we can map to JSON responses easily."""

    status_code: int = 400

    def __init__(self, detail: str, status_code: Optional[int] = None) -> None:
        super().__init__(detail)
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail


class TranscriptNotFound(AppBaseException):
    status_code = 404

    def __init__(self, transcript_id: str) -> None:
        super().__init__("Transcript not found")
        self.transcript_id = transcript_id


class InvalidImage(AppBaseException):
    status_code = 400


class TranscriptBusy(AppBaseException):
    status_code = 409


class RetryNotAllowed(AppBaseException):
    status_code = 400

    def __init__(self) -> None:
        super().__init__("Only failed transcripts can be retried.")
