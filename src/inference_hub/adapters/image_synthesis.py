"""Image synthesis adapter for a ComfyUI-style job queue.

Processing flow:
    1. Build the text-to-image job graph from the prompt and settings.
    2. Submit it to ``/prompt`` and read back the ``prompt_id``.
    3. Poll ``/history/{prompt_id}`` until the job completes or fails.
    4. Return ``/view`` locators for every saved image.

Polling uses injected ``sleep``/``clock`` callables so the wait can be driven
by virtual time.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import logging
import random
import time
from typing import Any
from urllib.parse import urlencode
from uuid import uuid4

from ..outcome import ErrorKind, RequestOutcome
from ..transport import TransportClient
from .base import BackendKind, probe_endpoint, promote_rejection, rejected_by_backend

LOGGER = logging.getLogger(__name__)

PROMPT_PATH = "/prompt"
HISTORY_PATH = "/history/{prompt_id}"
VIEW_PATH = "/view"
PROBE_PATH = "/system_stats"

POLL_INTERVAL_SECONDS = 1.0
MAX_WAIT_SECONDS = 300.0
MAX_SEED = 1_000_000
NEGATIVE_PROMPT = "bad quality, blurry"


@dataclass(frozen=True)
class ImageSettings:
    """Per-request options; ``None`` means use the adapter default."""

    model: str | None = None
    steps: int | None = None
    cfg_scale: float | None = None
    sampler: str | None = None
    width: int | None = None
    height: int | None = None
    seed: int | None = None


@dataclass(frozen=True)
class ImageDefaults:
    model: str = "v1-5-pruned-emaonly.ckpt"
    steps: int = 20
    cfg_scale: float = 7.0
    sampler: str = "euler"
    scheduler: str = "normal"
    width: int = 512
    height: int = 512


@dataclass(frozen=True)
class ImageSynthesisRequest:
    prompt: str
    settings: ImageSettings = field(default_factory=ImageSettings)


@dataclass(frozen=True)
class GeneratedImages:
    prompt_id: str
    locators: list[str]
    seed: int


class ImageSynthesisAdapter:
    """Submit a generation job, then poll until it reaches a terminal state."""

    kind = BackendKind.IMAGE_SYNTHESIS

    def __init__(
        self,
        transport: TransportClient,
        *,
        defaults: ImageDefaults | None = None,
        poll_interval_seconds: float = POLL_INTERVAL_SECONDS,
        max_wait_seconds: float = MAX_WAIT_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
        backend_id: str = BackendKind.IMAGE_SYNTHESIS.value,
    ) -> None:
        self.transport = transport
        self.defaults = defaults or ImageDefaults()
        self.poll_interval_seconds = poll_interval_seconds
        self.max_wait_seconds = max_wait_seconds
        self.backend_id = backend_id
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()
        self._client_id = uuid4().hex

    def resolve_seed(self, seed: int | None) -> int:
        if seed is None or seed < 0:
            return self._rng.randrange(MAX_SEED)
        return seed

    def build_workflow(self, prompt: str, settings: ImageSettings, seed: int) -> dict[str, Any]:
        """Return the node graph for a plain text-to-image run."""
        d = self.defaults
        return {
            "3": {
                "class_type": "KSampler",
                "inputs": {
                    "seed": seed,
                    "steps": d.steps if settings.steps is None else settings.steps,
                    "cfg": d.cfg_scale if settings.cfg_scale is None else settings.cfg_scale,
                    "sampler_name": settings.sampler or d.sampler,
                    "scheduler": d.scheduler,
                    "denoise": 1,
                    "model": ["4", 0],
                    "positive": ["6", 0],
                    "negative": ["7", 0],
                    "latent_image": ["5", 0],
                },
            },
            "4": {
                "class_type": "CheckpointLoaderSimple",
                "inputs": {"ckpt_name": settings.model or d.model},
            },
            "5": {
                "class_type": "EmptyLatentImage",
                "inputs": {
                    "width": d.width if settings.width is None else settings.width,
                    "height": d.height if settings.height is None else settings.height,
                    "batch_size": 1,
                },
            },
            "6": {
                "class_type": "CLIPTextEncode",
                "inputs": {"text": prompt, "clip": ["4", 1]},
            },
            "7": {
                "class_type": "CLIPTextEncode",
                "inputs": {"text": NEGATIVE_PROMPT, "clip": ["4", 1]},
            },
            "8": {
                "class_type": "VAEDecode",
                "inputs": {"samples": ["3", 0], "vae": ["4", 2]},
            },
            "9": {
                "class_type": "SaveImage",
                "inputs": {"filename_prefix": "InferenceHub", "images": ["8", 0]},
            },
        }

    async def invoke(self, request: ImageSynthesisRequest) -> RequestOutcome[GeneratedImages]:
        seed = self.resolve_seed(request.settings.seed)
        workflow = self.build_workflow(request.prompt, request.settings, seed)

        submitted = await self.transport.request(
            PROMPT_PATH, "POST", {"prompt": workflow, "client_id": self._client_id}
        )
        if not submitted.ok:
            return promote_rejection(submitted).cast_failure()

        payload = submitted.value
        rejected = rejected_by_backend(payload)
        if rejected is not None:
            return rejected
        if not isinstance(payload, dict):
            return RequestOutcome.failure(
                ErrorKind.DECODE_ERROR, "Prompt response is not an object."
            )
        node_errors = payload.get("node_errors")
        if isinstance(node_errors, dict) and node_errors:
            return RequestOutcome.failure(
                ErrorKind.BACKEND_REJECTED,
                "Job graph rejected: " + ", ".join(sorted(node_errors)),
            )
        prompt_id = payload.get("prompt_id")
        if not isinstance(prompt_id, str) or not prompt_id:
            return RequestOutcome.failure(
                ErrorKind.DECODE_ERROR, "Prompt response has no 'prompt_id'."
            )

        LOGGER.info(
            "image.job.submitted",
            extra={"event": "image.job.submitted", "prompt_id": prompt_id, "seed": seed},
        )
        return await self._wait_for_completion(prompt_id, seed)

    async def _wait_for_completion(
        self, prompt_id: str, seed: int
    ) -> RequestOutcome[GeneratedImages]:
        deadline = self._clock() + self.max_wait_seconds
        path = HISTORY_PATH.format(prompt_id=prompt_id)
        while True:
            polled = await self.transport.request(path, "GET")
            if not polled.ok:
                return polled.cast_failure()

            entry = polled.value.get(prompt_id) if isinstance(polled.value, dict) else None
            if isinstance(entry, dict):
                terminal = self._read_terminal_state(prompt_id, entry, seed)
                if terminal is not None:
                    return terminal

            remaining = deadline - self._clock()
            if remaining <= 0:
                LOGGER.warning(
                    "image.job.timeout",
                    extra={
                        "event": "image.job.timeout",
                        "prompt_id": prompt_id,
                        "max_wait_seconds": self.max_wait_seconds,
                    },
                )
                return RequestOutcome.failure(
                    ErrorKind.TIMEOUT,
                    f"Image job {prompt_id} did not finish within "
                    f"{self.max_wait_seconds:g}s",
                )
            await self._sleep(min(self.poll_interval_seconds, remaining))

    def _read_terminal_state(
        self, prompt_id: str, entry: dict[str, Any], seed: int
    ) -> RequestOutcome[GeneratedImages] | None:
        status = entry.get("status") if isinstance(entry.get("status"), dict) else {}
        if status.get("status_str") == "error":
            return RequestOutcome.failure(
                ErrorKind.BACKEND_REJECTED,
                _execution_error(status) or f"Image job {prompt_id} failed.",
            )

        locators = self._collect_locators(entry.get("outputs"))
        if locators:
            return RequestOutcome.success(
                GeneratedImages(prompt_id=prompt_id, locators=locators, seed=seed)
            )
        if status.get("completed"):
            return RequestOutcome.failure(
                ErrorKind.BACKEND_REJECTED,
                f"Image job {prompt_id} completed without images.",
            )
        return None

    def _collect_locators(self, outputs: Any) -> list[str]:
        locators: list[str] = []
        if not isinstance(outputs, dict):
            return locators
        for node_output in outputs.values():
            images = node_output.get("images") if isinstance(node_output, dict) else None
            for image in images or []:
                if not isinstance(image, dict) or not image.get("filename"):
                    continue
                query = urlencode(
                    {
                        "filename": image["filename"],
                        "subfolder": image.get("subfolder", ""),
                        "type": image.get("type", "output"),
                    }
                )
                locators.append(f"{self.transport.url_for(VIEW_PATH)}?{query}")
        return locators

    async def probe(self) -> RequestOutcome[None]:
        return await probe_endpoint(self.transport, PROBE_PATH)


def _execution_error(status: dict[str, Any]) -> str | None:
    for item in status.get("messages") or []:
        if (
            isinstance(item, list)
            and len(item) == 2
            and item[0] == "execution_error"
            and isinstance(item[1], dict)
        ):
            message = item[1].get("exception_message")
            if isinstance(message, str) and message.strip():
                return message.strip()
    return None
