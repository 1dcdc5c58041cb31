"""Text and vision generation adapters for an Ollama-compatible backend."""

from __future__ import annotations

import base64
from dataclasses import dataclass
import logging
from typing import Any

from ..outcome import ErrorKind, RequestOutcome
from ..transport import TransportClient
from .base import BackendKind, probe_endpoint, promote_rejection, rejected_by_backend

LOGGER = logging.getLogger(__name__)

GENERATE_PATH = "/api/generate"
TAGS_PATH = "/api/tags"


@dataclass(frozen=True)
class TextRequest:
    model: str
    prompt: str


@dataclass(frozen=True)
class VisionRequest:
    model: str
    prompt: str
    image: bytes


def encode_image(data: bytes) -> str:
    """Return the bare base64 text the generate endpoint expects for images."""
    return base64.b64encode(data).decode("ascii")


class TextAdapter:
    """Single non-streaming completion against ``/api/generate``."""

    kind = BackendKind.GENERATION

    def __init__(
        self, transport: TransportClient, backend_id: str = BackendKind.GENERATION.value
    ) -> None:
        self.transport = transport
        self.backend_id = backend_id

    async def invoke(self, request: TextRequest) -> RequestOutcome[str]:
        return await self.generate(request.model, request.prompt)

    async def probe(self) -> RequestOutcome[None]:
        return await probe_endpoint(self.transport, TAGS_PATH)

    async def generate(
        self, model: str, prompt: str, images: list[str] | None = None
    ) -> RequestOutcome[str]:
        """Post one generate request; ``images`` are already base64 encoded."""
        body: dict[str, Any] = {"model": model, "prompt": prompt, "stream": False}
        if images:
            body["images"] = images

        outcome = await self.transport.request(GENERATE_PATH, "POST", body)
        if not outcome.ok:
            return promote_rejection(outcome).cast_failure()

        payload = outcome.value
        rejected = rejected_by_backend(payload)
        if rejected is not None:
            LOGGER.info(
                "generation.rejected",
                extra={
                    "event": "generation.rejected",
                    "model": model,
                    "error": rejected.message,
                },
            )
            return rejected
        if not isinstance(payload, dict) or not isinstance(payload.get("response"), str):
            return RequestOutcome.failure(
                ErrorKind.DECODE_ERROR, "Generate response has no 'response' text."
            )
        return RequestOutcome.success(payload["response"])

    async def list_models(self) -> RequestOutcome[list[str]]:
        """Return the model names the backend has installed."""
        outcome = await self.transport.request(TAGS_PATH, "GET")
        if not outcome.ok:
            return outcome.cast_failure()

        models = outcome.value.get("models") if isinstance(outcome.value, dict) else None
        if not isinstance(models, list):
            return RequestOutcome.failure(
                ErrorKind.DECODE_ERROR, "Tags response has no 'models' list."
            )
        names: list[str] = []
        for model in models:
            if not isinstance(model, dict):
                continue
            for key in ("name", "model"):
                value = model.get(key)
                if isinstance(value, str) and value.strip():
                    names.append(value.strip())
                    break
        return RequestOutcome.success(names)


class VisionAdapter:
    """Generate with one image attached.

    Shares the text adapter's wire request and response parsing; only the
    ``images`` field is added.
    """

    kind = BackendKind.GENERATION

    def __init__(self, text_adapter: TextAdapter) -> None:
        self.text = text_adapter
        self.backend_id = text_adapter.backend_id

    async def invoke(self, request: VisionRequest) -> RequestOutcome[str]:
        try:
            encoded = encode_image(request.image)
        except (TypeError, ValueError) as exc:
            return RequestOutcome.failure(
                ErrorKind.DECODE_ERROR, f"Unable to encode image: {exc}"
            )
        return await self.text.generate(request.model, request.prompt, [encoded])

    async def probe(self) -> RequestOutcome[None]:
        return await self.text.probe()
