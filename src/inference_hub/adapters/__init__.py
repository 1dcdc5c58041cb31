"""Backend adapters, one per local inference service."""

from __future__ import annotations

from .base import DISPLAY_NAMES, Adapter, BackendKind
from .generation import TextAdapter, TextRequest, VisionAdapter, VisionRequest
from .image_synthesis import (
    GeneratedImages,
    ImageDefaults,
    ImageSettings,
    ImageSynthesisAdapter,
    ImageSynthesisRequest,
)
from .transcription import Transcript, TranscriptionAdapter, TranscriptionRequest
from .webui import WebUIAdapter

__all__ = [
    "Adapter",
    "BackendKind",
    "DISPLAY_NAMES",
    "GeneratedImages",
    "ImageDefaults",
    "ImageSettings",
    "ImageSynthesisAdapter",
    "ImageSynthesisRequest",
    "TextAdapter",
    "TextRequest",
    "Transcript",
    "TranscriptionAdapter",
    "TranscriptionRequest",
    "VisionAdapter",
    "VisionRequest",
    "WebUIAdapter",
]
