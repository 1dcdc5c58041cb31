"""Normalized result shape shared by the transport and every backend adapter."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class ErrorKind(str, Enum):
    """Failure taxonomy for backend calls and conversation turns."""

    TIMEOUT = "Timeout"
    NETWORK_ERROR = "NetworkError"
    HTTP_ERROR = "HttpError"
    DECODE_ERROR = "DecodeError"
    BACKEND_REJECTED = "BackendRejected"
    TRANSCRIPTION_FAILED = "TranscriptionFailed"
    CONCURRENT_SUBMISSION_REJECTED = "ConcurrentSubmissionRejected"


@dataclass(frozen=True)
class RequestOutcome(Generic[T]):
    """Either ``ok=True`` with a ``value`` or ``ok=False`` with an error kind.

    ``detail`` carries the error text a backend reported in a JSON error body,
    so callers can show what the service actually said.
    """

    ok: bool
    value: T | None = None
    error_kind: ErrorKind | None = None
    message: str = ""
    detail: str | None = None
    status_code: int | None = None

    @classmethod
    def success(cls, value: T) -> RequestOutcome[T]:
        return cls(ok=True, value=value)

    @classmethod
    def failure(
        cls,
        error_kind: ErrorKind,
        message: str,
        *,
        detail: str | None = None,
        status_code: int | None = None,
    ) -> RequestOutcome[Any]:
        return cls(
            ok=False,
            error_kind=error_kind,
            message=message,
            detail=detail,
            status_code=status_code,
        )

    def cast_failure(self) -> RequestOutcome[U]:
        """Re-type a failed outcome so it can be returned from another layer."""
        if self.ok:
            raise ValueError("Cannot cast a successful outcome as a failure.")
        return RequestOutcome(
            ok=False,
            error_kind=self.error_kind,
            message=self.message,
            detail=self.detail,
            status_code=self.status_code,
        )

    def describe(self) -> str:
        """Return a one-line human description of a failure."""
        if self.ok:
            return "ok"
        kind = self.error_kind.value if self.error_kind is not None else "Error"
        text = f"{kind}: {self.message}" if self.message else kind
        if self.detail and self.detail not in text:
            text = f"{text} ({self.detail})"
        return text
