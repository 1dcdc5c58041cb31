"""Liveness and model listing for an Open WebUI front end."""

from __future__ import annotations

from typing import Any

from ..outcome import ErrorKind, RequestOutcome
from ..transport import TransportClient
from .base import BackendKind, probe_endpoint

HEALTH_PATH = "/api/health"
MODELS_PATH = "/api/models"


class WebUIAdapter:
    """The web UI is monitored, not chatted through; ``invoke`` lists its models."""

    kind = BackendKind.WEBUI

    def __init__(
        self, transport: TransportClient, backend_id: str = BackendKind.WEBUI.value
    ) -> None:
        self.transport = transport
        self.backend_id = backend_id

    async def invoke(self, request: Any = None) -> RequestOutcome[list[str]]:
        outcome = await self.transport.request(MODELS_PATH, "GET")
        if not outcome.ok:
            return outcome.cast_failure()
        payload = outcome.value
        # Newer releases wrap the list as {"data": [...]}.
        if isinstance(payload, dict):
            payload = payload.get("data")
        if not isinstance(payload, list):
            return RequestOutcome.failure(
                ErrorKind.DECODE_ERROR, "Models response is not a list."
            )
        names = [
            str(item.get("id") or item.get("name"))
            for item in payload
            if isinstance(item, dict) and (item.get("id") or item.get("name"))
        ]
        return RequestOutcome.success(names)

    async def probe(self) -> RequestOutcome[None]:
        return await probe_endpoint(self.transport, HEALTH_PATH)
