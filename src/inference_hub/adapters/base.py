"""Adapter interface shared by every backend."""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol, TypeVar, runtime_checkable

from ..outcome import ErrorKind, RequestOutcome
from ..transport import TransportClient

RequestT = TypeVar("RequestT", contravariant=True)
ResponseT = TypeVar("ResponseT", covariant=True)


class BackendKind(str, Enum):
    """The local inference services the hub knows how to talk to."""

    GENERATION = "generation"
    TRANSCRIPTION = "transcription"
    IMAGE_SYNTHESIS = "image_synthesis"
    WEBUI = "webui"


DISPLAY_NAMES: dict[BackendKind, str] = {
    BackendKind.GENERATION: "Ollama",
    BackendKind.TRANSCRIPTION: "Whisper",
    BackendKind.IMAGE_SYNTHESIS: "ComfyUI",
    BackendKind.WEBUI: "Open WebUI",
}


@runtime_checkable
class Adapter(Protocol[RequestT, ResponseT]):
    """A backend adapter exposes one domain call and one liveness probe.

    Neither method may raise for backend failures; both return outcomes.
    """

    backend_id: str
    kind: BackendKind

    async def invoke(self, request: RequestT) -> RequestOutcome[ResponseT]: ...

    async def probe(self) -> RequestOutcome[None]: ...


async def probe_endpoint(
    transport: TransportClient, path: str, *, decode: bool = True
) -> RequestOutcome[None]:
    """Hit a cheap endpoint and collapse the result to a unit outcome."""
    outcome = await transport.request(path, "GET", decode=decode)
    if outcome.ok:
        return RequestOutcome.success(None)
    return outcome.cast_failure()


def rejected_by_backend(payload: Any) -> RequestOutcome[Any] | None:
    """Return a ``BackendRejected`` outcome when a 2xx body reports an error."""
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            error = error.get("message") or error.get("type") or str(error)
        if isinstance(error, str) and error.strip():
            return RequestOutcome.failure(
                ErrorKind.BACKEND_REJECTED, error.strip(), detail=error.strip()
            )
    return None


def promote_rejection(outcome: RequestOutcome[Any]) -> RequestOutcome[Any]:
    """Promote a 4xx reply carrying a JSON backend error to ``BackendRejected``.

    Other failures pass through unchanged.
    """
    if (
        not outcome.ok
        and outcome.error_kind is ErrorKind.HTTP_ERROR
        and outcome.detail
        and outcome.status_code is not None
        and 400 <= outcome.status_code < 500
    ):
        return RequestOutcome.failure(
            ErrorKind.BACKEND_REJECTED,
            outcome.detail,
            detail=outcome.message,
            status_code=outcome.status_code,
        )
    return outcome
