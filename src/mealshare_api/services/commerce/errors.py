"""Error taxonomy for the GET commerce RPC service."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    FATAL = "fatal"


# GET reports failures as free text only; these fragments mark retryable ones.
TRANSIENT_MARKERS: tuple[str, ...] = ("unexpected error", "timed out", "timeout", "temporar")


def classify_message(message: str) -> ErrorKind:
    lowered = message.lower()
    if any(marker in lowered for marker in TRANSIENT_MARKERS):
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


class CommerceAPIError(RuntimeError):
    """Base exception for failed GET RPC calls."""

    kind: ErrorKind = ErrorKind.FATAL

    def __init__(
        self,
        message: str,
        *,
        service: str,
        method: str,
        raw_exception: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.service = service
        self.method = method
        self.raw_exception = raw_exception

    @property
    def is_transient(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT


class ExternalTransientError(CommerceAPIError):
    """Failure judged likely to succeed on retry."""

    kind = ErrorKind.TRANSIENT


class ExternalFatalError(CommerceAPIError):
    """Failure that will not improve on retry (bad credentials, malformed request)."""

    kind = ErrorKind.FATAL


class MissingResponseError(ExternalFatalError):
    """Envelope carried neither ``response`` nor ``exception``."""


def build_error(
    message: str,
    *,
    service: str,
    method: str,
    raw_exception: Any | None = None,
) -> CommerceAPIError:
    """Construct the transient or fatal error variant for ``message``."""

    error_cls = ExternalTransientError if classify_message(message) is ErrorKind.TRANSIENT else ExternalFatalError
    return error_cls(message, service=service, method=method, raw_exception=raw_exception)


def is_transient_error(error: BaseException) -> bool:
    if isinstance(error, CommerceAPIError):
        return error.is_transient
    return classify_message(str(error)) is ErrorKind.TRANSIENT


__all__ = [
    "CommerceAPIError",
    "ErrorKind",
    "ExternalFatalError",
    "ExternalTransientError",
    "MissingResponseError",
    "TRANSIENT_MARKERS",
    "build_error",
    "classify_message",
    "is_transient_error",
]
