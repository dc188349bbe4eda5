"""Failure taxonomy shared by the transport, the controller and the upload helpers."""

from __future__ import annotations

from typing import Optional

NETWORK_ERROR_MESSAGE = "Network error occurred. Please check your connection."


class StudioError(Exception):
    """Base class for every error raised by the studio client."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class GenerationCancelled(StudioError):
    """Attempt was cancelled; never retried and never shown to the user."""

    def __init__(self, message: str = "Generation cancelled") -> None:
        super().__init__(message)


class RequestValidationError(StudioError):
    """Server rejected the request shape (HTTP 400/422). Not retried."""


class TransportError(StudioError):
    """Transient failure; retried automatically by the controller."""


class NetworkError(TransportError):
    """Connection, DNS or timeout failure."""

    def __init__(self, message: str = NETWORK_ERROR_MESSAGE) -> None:
        super().__init__(message)


class ServerError(TransportError):
    """Non-2xx response or a success body that reports a failure."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UploadError(StudioError):
    """Uploaded file is not a usable PNG/JPEG image."""
