"""Speech transcription adapter for a Whisper ASR web service."""

from __future__ import annotations

from dataclasses import dataclass
import logging

from ..outcome import ErrorKind, RequestOutcome
from ..transport import TransportClient
from .base import BackendKind, probe_endpoint, promote_rejection, rejected_by_backend

LOGGER = logging.getLogger(__name__)

ASR_PATH = "/asr"
PROBE_PATH = "/"


@dataclass(frozen=True)
class TranscriptionRequest:
    audio_bytes: bytes
    filename: str = "audio.wav"
    content_type: str = "audio/wav"
    language: str | None = None


@dataclass(frozen=True)
class Transcript:
    text: str
    language: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


class TranscriptionAdapter:
    """Upload audio as multipart form data and return the recognised text.

    An empty transcript is a successful outcome; deciding what silence means
    is left to the caller.
    """

    kind = BackendKind.TRANSCRIPTION

    def __init__(
        self,
        transport: TransportClient,
        language: str = "en",
        backend_id: str = BackendKind.TRANSCRIPTION.value,
    ) -> None:
        self.transport = transport
        self.language = language
        self.backend_id = backend_id

    async def invoke(self, request: TranscriptionRequest) -> RequestOutcome[Transcript]:
        if not request.audio_bytes:
            return RequestOutcome.failure(
                ErrorKind.DECODE_ERROR, "No audio data to transcribe."
            )
        form = {
            "task": "transcribe",
            "language": request.language or self.language,
            "output": "json",
        }
        files = {
            "audio_file": (request.filename, request.audio_bytes, request.content_type)
        }
        outcome = await self.transport.request(ASR_PATH, "POST", form, files=files)
        if not outcome.ok:
            return promote_rejection(outcome).cast_failure()

        payload = outcome.value
        rejected = rejected_by_backend(payload)
        if rejected is not None:
            return rejected
        if not isinstance(payload, dict):
            return RequestOutcome.failure(
                ErrorKind.DECODE_ERROR, "Transcription response is not an object."
            )
        text = payload.get("text", "")
        if text is None:
            text = ""
        if not isinstance(text, str):
            return RequestOutcome.failure(
                ErrorKind.DECODE_ERROR, "Transcription response 'text' is not a string."
            )
        language = payload.get("language")
        LOGGER.debug(
            "transcription.completed",
            extra={"event": "transcription.completed", "characters": len(text)},
        )
        return RequestOutcome.success(
            Transcript(
                text=text.strip(),
                language=language if isinstance(language, str) else None,
            )
        )

    async def probe(self) -> RequestOutcome[None]:
        # The service root serves HTML docs; only the status matters.
        return await probe_endpoint(self.transport, PROBE_PATH, decode=False)
