"""Conversation orchestration: one user turn in, one assistant turn out.

A submitted turn moves Composing -> Dispatched -> Completed | Failed:

1. Audio attachments are transcribed first. A transcript is appended to the
   typed text (or replaces it when nothing was typed). A transcription
   failure only raises a notification; the turn continues with the text.
2. If any image is attached, the first one goes to the vision adapter and
   the rest stay on the message for display. Otherwise the text adapter is
   used.
3. The assistant reply, or a readable error line, is appended to history.

Only one turn may be in flight per conversation.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
import logging
import mimetypes
from typing import TYPE_CHECKING, Any

from .adapters.generation import TextAdapter, TextRequest, VisionAdapter, VisionRequest
from .adapters.transcription import Transcript, TranscriptionAdapter, TranscriptionRequest
from .attachments import AttachmentManager
from .events.bus import (
    TURN_BUSY,
    TURN_COMPLETED,
    TURN_DISPATCHED,
    TURN_FAILED,
    TURN_REJECTED,
    EventBus,
)
from .exceptions import AttachmentError, ExportError
from .export import TranscriptExporter, format_transcript
from .models import Attachment, AttachmentKind, Message, Role
from .notifications import Notification, NotificationSink, Severity, log_notification
from .outcome import ErrorKind, RequestOutcome
from .state import TurnState, TurnStateMachine

if TYPE_CHECKING:
    from .health import HealthMonitor

LOGGER = logging.getLogger(__name__)

DEFAULT_TRANSCRIPT_LABEL = "Audio transcription"


class Route(str, Enum):
    TEXT = "text"
    VISION = "vision"


def select_route(attachments: Sequence[Attachment]) -> tuple[Route, Attachment | None]:
    """Pick the generation path for a turn and the single image it sends."""
    for attachment in attachments:
        if attachment.kind is AttachmentKind.IMAGE:
            return Route.VISION, attachment
    return Route.TEXT, None


def merge_transcript(text: str, transcript: str, label: str = DEFAULT_TRANSCRIPT_LABEL) -> str:
    """Append a transcript to typed text, or use it alone when nothing was typed."""
    if not text:
        return transcript
    return f"{text}\n\n{label}: {transcript}"


@dataclass(frozen=True)
class Turn:
    """What happened to one submission.

    A rejected submission never left ``COMPOSING`` and carries
    ``ConcurrentSubmissionRejected``.
    """

    state: TurnState
    route: Route | None = None
    dispatched_text: str = ""
    user_message: Message | None = None
    assistant_message: Message | None = None
    error_kind: ErrorKind | None = None

    @property
    def rejected(self) -> bool:
        return self.error_kind is ErrorKind.CONCURRENT_SUBMISSION_REJECTED


class ConversationOrchestrator:
    """Owns the message history of one conversation and runs its turns."""

    def __init__(
        self,
        text_adapter: TextAdapter,
        vision_adapter: VisionAdapter,
        transcription_adapter: TranscriptionAdapter | None = None,
        *,
        model: str,
        vision_model: str | None = None,
        attachments: AttachmentManager | None = None,
        health: HealthMonitor | None = None,
        notify: NotificationSink = log_notification,
        bus: EventBus | None = None,
        exporter: TranscriptExporter | None = None,
        transcript_label: str = DEFAULT_TRANSCRIPT_LABEL,
        initial_messages: Iterable[Message] = (),
    ) -> None:
        self.text = text_adapter
        self.vision = vision_adapter
        self.transcription = transcription_adapter
        self.model = model
        self.vision_model = vision_model
        self.attachments = attachments or AttachmentManager()
        self.health = health
        self.notify = notify
        self.bus = bus or EventBus()
        self.exporter = exporter
        self.transcript_label = transcript_label
        self._turns = TurnStateMachine()
        self._messages: list[Message] = list(initial_messages)

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def state(self) -> TurnState:
        return self._turns.state

    @property
    def busy(self) -> bool:
        """True while a turn is dispatched; the UI should disable input."""
        return self._turns.busy

    def set_model(self, model_name: str, vision_model: str | None = None) -> None:
        normalized = model_name.strip()
        if normalized:
            self.model = normalized
        if vision_model is not None:
            self.vision_model = vision_model.strip() or None

    async def submit(self, text: str, model: str | None = None) -> Turn | None:
        """Run one turn with ``text`` and whatever is attached.

        Returns ``None`` for an empty submission (no text, no attachments).
        """
        typed = text.strip()
        if not typed and not self.attachments.has_any():
            return None

        if not self._turns.try_dispatch():
            LOGGER.warning(
                "turn.rejected",
                extra={"event": "turn.rejected", "reason": "turn already dispatched"},
            )
            await self.bus.publish(
                TURN_REJECTED,
                {"error_kind": ErrorKind.CONCURRENT_SUBMISSION_REJECTED.value},
                source="conversation",
            )
            return Turn(
                state=TurnState.COMPOSING,
                error_kind=ErrorKind.CONCURRENT_SUBMISSION_REJECTED,
            )

        active_model = (model or self.model).strip() or self.model
        taken = self.attachments.take()
        user_message: Message | None = None
        try:
            await self.bus.publish(TURN_BUSY, {"busy": True}, source="conversation")
            prompt = await self._resolve_audio(typed, taken)
            route, image = select_route(taken)
            user_message = Message.create(
                Role.USER,
                prompt,
                attachments=[a for a in taken if a.kind is AttachmentKind.IMAGE],
            )
            self._messages.append(user_message)

            used_model = active_model
            if route is Route.VISION and model is None and self.vision_model:
                used_model = self.vision_model
            LOGGER.info(
                "turn.dispatched",
                extra={
                    "event": "turn.dispatched",
                    "route": route.value,
                    "model": used_model,
                    "attachments": len(taken),
                },
            )
            await self.bus.publish(
                TURN_DISPATCHED,
                {"route": route.value, "model": used_model, "message_id": user_message.id},
                source="conversation",
            )
            outcome = await self._generate(prompt, image, used_model)
            return await self._finish(route, prompt, user_message, outcome, used_model)
        finally:
            self._release_after_turn(taken, user_message)
            # Still DISPATCHED only when the turn was cancelled or crashed mid-flight.
            self._turns.transition_if(TurnState.DISPATCHED, TurnState.FAILED)
            await self.bus.publish(TURN_BUSY, {"busy": False}, source="conversation")

    async def _finish(
        self,
        route: Route,
        prompt: str,
        user_message: Message,
        outcome: RequestOutcome[str],
        used_model: str,
    ) -> Turn:
        if outcome.ok:
            reply = Message.create(Role.ASSISTANT, outcome.value or "", model=used_model)
            self._messages.append(reply)
            self._turns.transition_to(TurnState.COMPLETED)
            LOGGER.info(
                "turn.completed",
                extra={"event": "turn.completed", "route": route.value, "model": used_model},
            )
            self.notify(
                Notification("Success", "Response generated successfully", Severity.SUCCESS)
            )
            await self.bus.publish(
                TURN_COMPLETED, {"message_id": reply.id}, source="conversation"
            )
            return Turn(
                state=TurnState.COMPLETED,
                route=route,
                dispatched_text=prompt,
                user_message=user_message,
                assistant_message=reply,
            )

        error_kind = outcome.error_kind or ErrorKind.NETWORK_ERROR
        reply = Message.create(
            Role.ASSISTANT,
            f"Sorry, I encountered an error ({outcome.describe()}). "
            "Please make sure the backend is running and the model is available.",
            model=used_model,
        )
        self._messages.append(reply)
        self._turns.transition_to(TurnState.FAILED)
        LOGGER.warning(
            "turn.failed",
            extra={
                "event": "turn.failed",
                "route": route.value,
                "model": used_model,
                "error_kind": error_kind.value,
                "error": outcome.message,
            },
        )
        self.notify(
            Notification(
                "Error", f"Failed to generate response ({error_kind.value})", Severity.ERROR
            )
        )
        await self.bus.publish(
            TURN_FAILED,
            {"message_id": reply.id, "error_kind": error_kind.value},
            source="conversation",
        )
        return Turn(
            state=TurnState.FAILED,
            route=route,
            dispatched_text=prompt,
            user_message=user_message,
            assistant_message=reply,
            error_kind=error_kind,
        )

    async def _resolve_audio(self, text: str, taken: Sequence[Attachment]) -> str:
        for attachment in taken:
            if attachment.kind is not AttachmentKind.AUDIO:
                continue
            outcome = await self._transcribe(attachment)
            if not outcome.ok:
                LOGGER.warning(
                    "turn.transcription.failed",
                    extra={
                        "event": "turn.transcription.failed",
                        "error_kind": ErrorKind.TRANSCRIPTION_FAILED.value,
                        "cause": outcome.describe(),
                    },
                )
                self.notify(
                    Notification(
                        "Error",
                        f"Failed to transcribe audio ({outcome.describe()})",
                        Severity.ERROR,
                    )
                )
                continue
            transcript = outcome.value
            if transcript is None or transcript.is_empty:
                LOGGER.info(
                    "turn.transcription.empty",
                    extra={
                        "event": "turn.transcription.empty",
                        "display_name": attachment.display_name,
                    },
                )
                continue
            text = merge_transcript(text, transcript.text, self.transcript_label)
        return text

    async def _transcribe(self, attachment: Attachment) -> RequestOutcome[Transcript]:
        if self.transcription is None:
            return RequestOutcome.failure(
                ErrorKind.NETWORK_ERROR, "No transcription backend is configured."
            )
        unavailable = self._short_circuit(self.transcription.backend_id)
        if unavailable is not None:
            return unavailable
        try:
            audio = await attachment.load_bytes()
        except AttachmentError as exc:
            return RequestOutcome.failure(ErrorKind.DECODE_ERROR, str(exc))

        path = attachment.locator.path
        filename = path.name if path is not None else "audio.wav"
        content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        return await self.transcription.invoke(
            TranscriptionRequest(audio_bytes=audio, filename=filename, content_type=content_type)
        )

    async def _generate(
        self, prompt: str, image: Attachment | None, model: str
    ) -> RequestOutcome[str]:
        unavailable = self._short_circuit(self.text.backend_id)
        if unavailable is not None:
            return unavailable
        if image is None:
            return await self.text.invoke(TextRequest(model=model, prompt=prompt))
        try:
            data = await image.load_bytes()
        except AttachmentError as exc:
            return RequestOutcome.failure(ErrorKind.DECODE_ERROR, str(exc))
        return await self.vision.invoke(VisionRequest(model=model, prompt=prompt, image=data))

    def _short_circuit(self, backend_id: str) -> RequestOutcome[Any] | None:
        """Fail fast when the health monitor already knows the backend is down."""
        if self.health is None or not self.health.is_offline(backend_id):
            return None
        name = self.health.display_name(backend_id)
        LOGGER.info(
            "turn.short_circuit",
            extra={"event": "turn.short_circuit", "backend_id": backend_id},
        )
        return RequestOutcome.failure(
            ErrorKind.NETWORK_ERROR, f"{name} is offline; request not sent"
        )

    def _release_after_turn(
        self, taken: Sequence[Attachment], user_message: Message | None
    ) -> None:
        retained = user_message.attachments if user_message is not None else ()
        for attachment in taken:
            attachment.raw_payload = None
            if not any(attachment is kept for kept in retained):
                attachment.locator.release()

    def clear(self) -> bool:
        """Forget the history and release every locator it retained.

        Returns False, leaving history untouched, while a turn is in flight.
        """
        if not self._turns.can_submit():
            return False
        for message in self._messages:
            for attachment in message.attachments:
                attachment.locator.release()
        self._messages.clear()
        if self.state is not TurnState.COMPOSING:
            self._turns.transition_to(TurnState.COMPOSING)
        return True

    def close(self) -> None:
        """Release pending and retained resources; the history itself is kept."""
        self.attachments.discard_all()
        for message in self._messages:
            for attachment in message.attachments:
                attachment.locator.release()

    def transcript(self) -> str:
        return format_transcript(self._messages)

    def export(self) -> str:
        """Hand the formatted transcript to the export collaborator."""
        if self.exporter is None:
            raise ExportError("No transcript exporter is configured.")
        return self.exporter.export(self.transcript())
