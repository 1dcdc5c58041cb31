"""Composition root: build transports, adapters and services from config."""

from __future__ import annotations

from collections.abc import Callable
import logging
from typing import Any

from .adapters.generation import TextAdapter, VisionAdapter
from .adapters.image_synthesis import (
    GeneratedImages,
    ImageDefaults,
    ImageSettings,
    ImageSynthesisAdapter,
    ImageSynthesisRequest,
)
from .adapters.transcription import Transcript, TranscriptionAdapter, TranscriptionRequest
from .adapters.webui import WebUIAdapter
from .attachments import AttachmentManager
from .config import DEFAULT_CONFIG
from .conversation import ConversationOrchestrator
from .events.bus import EventBus
from .export import FileTranscriptExporter, TranscriptExporter
from .health import HealthMonitor
from .notifications import NotificationSink, log_notification
from .outcome import ErrorKind, RequestOutcome
from .registry import InMemoryServiceRegistry, ServiceRegistry
from .transport import TransportClient

LOGGER = logging.getLogger(__name__)

TransportFactory = Callable[[str, float], TransportClient]


def _default_transport(base_url: str, timeout: float) -> TransportClient:
    return TransportClient(base_url, timeout=timeout)


class InferenceHub:
    """Wire every backend, the health monitor and one conversation together.

    All collaborators are injectable; by default they are built from the
    validated config dictionary returned by ``load_config()``.
    """

    def __init__(
        self,
        config: dict[str, dict[str, Any]] | None = None,
        *,
        transport_factory: TransportFactory = _default_transport,
        registry: ServiceRegistry | None = None,
        bus: EventBus | None = None,
        notify: NotificationSink = log_notification,
        exporter: TranscriptExporter | None = None,
        health: HealthMonitor | None = None,
    ) -> None:
        self.config = config or DEFAULT_CONFIG
        self.bus = bus or EventBus()
        self.registry = registry or InMemoryServiceRegistry()
        self.notify = notify

        generation_cfg = self.config["generation"]
        transcription_cfg = self.config["transcription"]
        image_cfg = self.config["image_synthesis"]
        webui_cfg = self.config["webui"]

        self._transports: list[TransportClient] = []

        def build(section: dict[str, Any]) -> TransportClient:
            transport = transport_factory(str(section["url"]), float(section["timeout"]))
            self._transports.append(transport)
            return transport

        self.text_adapter = TextAdapter(build(generation_cfg))
        self.vision_adapter = VisionAdapter(self.text_adapter)
        self.transcription_adapter = TranscriptionAdapter(
            build(transcription_cfg), language=str(transcription_cfg["language"])
        )
        self.image_adapter = ImageSynthesisAdapter(
            build(image_cfg),
            defaults=ImageDefaults(
                model=str(image_cfg["checkpoint"]),
                steps=int(image_cfg["steps"]),
                cfg_scale=float(image_cfg["cfg_scale"]),
                sampler=str(image_cfg["sampler"]),
                width=int(image_cfg["width"]),
                height=int(image_cfg["height"]),
            ),
            poll_interval_seconds=float(image_cfg["poll_interval_seconds"]),
            max_wait_seconds=float(image_cfg["max_wait_seconds"]),
        )
        self.webui_adapter: WebUIAdapter | None = None
        if webui_cfg.get("enabled", True):
            self.webui_adapter = WebUIAdapter(build(webui_cfg))

        self.health = health or HealthMonitor(
            float(self.config["health"]["interval_seconds"]),
            registry=self.registry,
            bus=self.bus,
        )
        self.health.register(self.text_adapter)
        self.health.register(self.transcription_adapter)
        self.health.register(self.image_adapter)
        if self.webui_adapter is not None:
            self.health.register(self.webui_adapter)

        attachments_cfg = self.config["attachments"]
        self.conversation = ConversationOrchestrator(
            self.text_adapter,
            self.vision_adapter,
            self.transcription_adapter,
            model=str(generation_cfg["model"]),
            vision_model=generation_cfg.get("vision_model") or None,
            attachments=AttachmentManager(
                max_image_bytes=int(attachments_cfg["max_image_bytes"]),
                max_audio_bytes=int(attachments_cfg["max_audio_bytes"]),
            ),
            health=self.health,
            notify=notify,
            bus=self.bus,
            exporter=exporter or FileTranscriptExporter(self.config["export"]["directory"]),
            transcript_label=str(self.config["chat"]["transcript_label"]),
        )

    async def __aenter__(self) -> InferenceHub:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def start(self) -> None:
        """Begin periodic health checks."""
        await self.health.start()
        LOGGER.info(
            "hub.started",
            extra={"event": "hub.started", "backends": self.health.backend_ids},
        )

    async def stop(self) -> None:
        await self.health.stop()

    async def aclose(self) -> None:
        """Stop monitoring, release conversation resources and close transports."""
        await self.stop()
        self.conversation.close()
        for transport in self._transports:
            await transport.aclose()
        LOGGER.info("hub.closed", extra={"event": "hub.closed"})

    def _offline(self, backend_id: str) -> RequestOutcome[Any] | None:
        if not self.health.is_offline(backend_id):
            return None
        name = self.health.display_name(backend_id)
        return RequestOutcome.failure(
            ErrorKind.NETWORK_ERROR, f"{name} is offline; request not sent"
        )

    async def generate_image(
        self, prompt: str, settings: ImageSettings | None = None
    ) -> RequestOutcome[GeneratedImages]:
        """Run one image job outside of the conversation."""
        unavailable = self._offline(self.image_adapter.backend_id)
        if unavailable is not None:
            return unavailable
        return await self.image_adapter.invoke(
            ImageSynthesisRequest(prompt=prompt, settings=settings or ImageSettings())
        )

    async def transcribe(
        self,
        audio_bytes: bytes,
        filename: str = "audio.wav",
        content_type: str = "audio/wav",
    ) -> RequestOutcome[Transcript]:
        unavailable = self._offline(self.transcription_adapter.backend_id)
        if unavailable is not None:
            return unavailable
        return await self.transcription_adapter.invoke(
            TranscriptionRequest(
                audio_bytes=audio_bytes, filename=filename, content_type=content_type
            )
        )

    async def list_models(self) -> RequestOutcome[list[str]]:
        return await self.text_adapter.list_models()

