"""Tests for the conversation orchestrator."""

from __future__ import annotations

import asyncio
from pathlib import Path
import tempfile
import unittest

from inference_hub.adapters.base import BackendKind
from inference_hub.adapters.generation import TextRequest, VisionRequest
from inference_hub.adapters.transcription import Transcript, TranscriptionRequest
from inference_hub.conversation import (
    ConversationOrchestrator,
    Route,
    merge_transcript,
    select_route,
)
from inference_hub.events import (
    TURN_BUSY,
    TURN_COMPLETED,
    TURN_DISPATCHED,
    TURN_FAILED,
    TURN_REJECTED,
    EventBus,
)
from inference_hub.exceptions import ExportError
from inference_hub.health import HealthMonitor
from inference_hub.models import Attachment, AttachmentKind, Locator, Role
from inference_hub.notifications import Notification, Severity
from inference_hub.outcome import ErrorKind, RequestOutcome
from inference_hub.state import TurnState


class FakeTextAdapter:
    backend_id = "generation"
    kind = BackendKind.GENERATION

    def __init__(self, *results: RequestOutcome[str]) -> None:
        self.results = list(results)
        self.requests: list[TextRequest] = []
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    async def invoke(self, request: TextRequest) -> RequestOutcome[str]:
        self.requests.append(request)
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.results:
            return self.results.pop(0)
        return RequestOutcome.success("text reply")

    async def probe(self) -> RequestOutcome[None]:
        return RequestOutcome.success(None)


class FakeVisionAdapter:
    backend_id = "generation"

    def __init__(self) -> None:
        self.requests: list[VisionRequest] = []

    async def invoke(self, request: VisionRequest) -> RequestOutcome[str]:
        self.requests.append(request)
        return RequestOutcome.success("vision reply")


class FakeTranscriptionAdapter:
    backend_id = "transcription"
    kind = BackendKind.TRANSCRIPTION

    def __init__(self, result: RequestOutcome[Transcript]) -> None:
        self.result = result
        self.requests: list[TranscriptionRequest] = []

    async def invoke(self, request: TranscriptionRequest) -> RequestOutcome[Transcript]:
        self.requests.append(request)
        return self.result

    async def probe(self) -> RequestOutcome[None]:
        return RequestOutcome.failure(ErrorKind.NETWORK_ERROR, "connection refused")


class CountingLocator(Locator):
    """In-memory locator that counts how often it is freed."""

    def __init__(self) -> None:
        self.freed = 0
        super().__init__("memory://image", on_release=self._free)

    def _free(self) -> None:
        self.freed += 1


class MemoryExporter:
    def __init__(self) -> None:
        self.exported: list[str] = []

    def export(self, transcript: str) -> str:
        self.exported.append(transcript)
        return "/tmp/chat_export_1.txt"


class ConversationTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.dir = Path(self._tmp.name)
        self.notifications: list[Notification] = []
        self.bus = EventBus()
        self.events: list[tuple[str, dict]] = []
        for name in (TURN_BUSY, TURN_DISPATCHED, TURN_COMPLETED, TURN_FAILED, TURN_REJECTED):
            self.bus.subscribe(name, lambda event: self.events.append((event.name, event.data)))

    def _file(self, name: str, data: bytes) -> str:
        path = self.dir / name
        path.write_bytes(data)
        return str(path)

    def _orchestrator(
        self,
        text: FakeTextAdapter | None = None,
        transcription: FakeTranscriptionAdapter | None = None,
        **kwargs,
    ) -> ConversationOrchestrator:
        self.text = text or FakeTextAdapter()
        self.vision = FakeVisionAdapter()
        return ConversationOrchestrator(
            self.text,
            self.vision,
            transcription,
            model="llama3:8b",
            notify=self.notifications.append,
            bus=self.bus,
            **kwargs,
        )

    async def test_text_turn_appends_user_and_assistant_messages(self) -> None:
        conversation = self._orchestrator()

        turn = await conversation.submit("Hello")

        self.assertIs(turn.state, TurnState.COMPLETED)
        self.assertIs(turn.route, Route.TEXT)
        self.assertEqual(self.text.requests, [TextRequest(model="llama3:8b", prompt="Hello")])
        roles = [message.role for message in conversation.messages]
        self.assertEqual(roles, [Role.USER, Role.ASSISTANT])
        self.assertEqual(conversation.messages[1].content, "text reply")
        self.assertEqual(conversation.messages[1].model, "llama3:8b")
        self.assertIsNone(conversation.messages[0].model)
        self.assertEqual([n.severity for n in self.notifications], [Severity.SUCCESS])
        self.assertEqual(
            [name for name, _ in self.events],
            [TURN_BUSY, TURN_DISPATCHED, TURN_COMPLETED, TURN_BUSY],
        )
        self.assertFalse(conversation.busy)

    async def test_empty_submission_is_ignored(self) -> None:
        conversation = self._orchestrator()
        self.assertIsNone(await conversation.submit("   "))
        self.assertEqual(conversation.messages, ())
        self.assertEqual(self.text.requests, [])

    async def test_image_only_turn_uses_vision_with_first_image(self) -> None:
        conversation = self._orchestrator(vision_model="llava:7b")
        conversation.attachments.add_image_file(self._file("one.png", b"first"))
        conversation.attachments.add_image_file(self._file("two.png", b"second"))

        turn = await conversation.submit("")

        self.assertIs(turn.route, Route.VISION)
        self.assertEqual(self.text.requests, [])
        self.assertEqual(len(self.vision.requests), 1)
        self.assertEqual(self.vision.requests[0].image, b"first")
        self.assertEqual(self.vision.requests[0].model, "llava:7b")
        self.assertEqual(self.vision.requests[0].prompt, "")
        user = conversation.messages[0]
        self.assertEqual([a.display_name for a in user.attachments], ["one.png", "two.png"])
        self.assertEqual(conversation.messages[1].content, "vision reply")

    async def test_explicit_model_wins_over_vision_model(self) -> None:
        conversation = self._orchestrator(vision_model="llava:7b")
        conversation.attachments.add_image_bytes(b"img", "pasted.png")
        await conversation.submit("what is it", model="bakllava")
        self.assertEqual(self.vision.requests[0].model, "bakllava")

    async def test_set_model_applies_to_next_turn(self) -> None:
        conversation = self._orchestrator()
        conversation.set_model("  mistral ")
        conversation.set_model("   ")
        await conversation.submit("Hi")
        self.assertEqual(self.text.requests[0].model, "mistral")
        self.assertEqual(conversation.messages[-1].model, "mistral")

    async def test_audio_transcript_is_appended_to_text(self) -> None:
        transcription = FakeTranscriptionAdapter(
            RequestOutcome.success(Transcript(text="turn on the lights"))
        )
        conversation = self._orchestrator(transcription=transcription)
        audio = conversation.attachments.add_recording(b"RIFFdata")

        turn = await conversation.submit("Please help")

        expected = "Please help\n\nAudio transcription: turn on the lights"
        self.assertEqual(turn.dispatched_text, expected)
        self.assertEqual(self.text.requests[0].prompt, expected)
        self.assertEqual(conversation.messages[0].content, expected)
        self.assertEqual(transcription.requests[0].audio_bytes, b"RIFFdata")
        self.assertIn("wav", transcription.requests[0].content_type)
        self.assertTrue(audio.locator.released)
        self.assertIsNone(audio.raw_payload)
        self.assertEqual(conversation.messages[0].attachments, ())

    async def test_transcript_alone_when_nothing_typed(self) -> None:
        transcription = FakeTranscriptionAdapter(
            RequestOutcome.success(Transcript(text="what time is it"))
        )
        conversation = self._orchestrator(transcription=transcription)
        conversation.attachments.add_recording(b"RIFF")

        turn = await conversation.submit("")

        self.assertEqual(turn.dispatched_text, "what time is it")

    async def test_transcription_failure_keeps_text_and_notifies_once(self) -> None:
        transcription = FakeTranscriptionAdapter(
            RequestOutcome.failure(ErrorKind.HTTP_ERROR, "500 Internal Server Error")
        )
        conversation = self._orchestrator(transcription=transcription)
        audio = conversation.attachments.add_recording(b"RIFF")

        turn = await conversation.submit("X")

        self.assertIs(turn.state, TurnState.COMPLETED)
        self.assertEqual(self.text.requests[0].prompt, "X")
        errors = [n for n in self.notifications if n.severity is Severity.ERROR]
        self.assertEqual(len(errors), 1)
        self.assertIn("Failed to transcribe audio", errors[0].description)
        self.assertTrue(audio.locator.released)

    async def test_empty_transcript_leaves_text_unchanged(self) -> None:
        transcription = FakeTranscriptionAdapter(RequestOutcome.success(Transcript(text="")))
        conversation = self._orchestrator(transcription=transcription)
        conversation.attachments.add_recording(b"RIFF")

        turn = await conversation.submit("X")

        self.assertEqual(turn.dispatched_text, "X")
        self.assertEqual([n.severity for n in self.notifications], [Severity.SUCCESS])

    async def test_failed_turn_records_error_and_unblocks_next_turn(self) -> None:
        text = FakeTextAdapter(
            RequestOutcome.failure(ErrorKind.TIMEOUT, "Request timed out after 30s")
        )
        conversation = self._orchestrator(text=text)

        failed = await conversation.submit("first")

        self.assertIs(failed.state, TurnState.FAILED)
        self.assertIs(failed.error_kind, ErrorKind.TIMEOUT)
        self.assertIn("Timeout", conversation.messages[-1].content)
        self.assertIs(conversation.messages[-1].role, Role.ASSISTANT)
        self.assertEqual(self.notifications[-1].severity, Severity.ERROR)
        self.assertIn("Timeout", self.notifications[-1].description)
        self.assertIn(TURN_FAILED, [name for name, _ in self.events])

        second = await conversation.submit("second")
        self.assertIs(second.state, TurnState.COMPLETED)
        self.assertEqual(len(conversation.messages), 4)

    async def test_concurrent_submission_is_rejected_without_touching_history(self) -> None:
        text = FakeTextAdapter()
        text.gate = asyncio.Event()
        conversation = self._orchestrator(text=text)

        first = asyncio.create_task(conversation.submit("first"))
        await text.entered.wait()
        self.assertTrue(conversation.busy)
        history_before = conversation.messages

        rejected = await conversation.submit("second")

        self.assertTrue(rejected.rejected)
        self.assertIs(rejected.error_kind, ErrorKind.CONCURRENT_SUBMISSION_REJECTED)
        self.assertEqual(conversation.messages, history_before)
        self.assertIn(TURN_REJECTED, [name for name, _ in self.events])

        text.gate.set()
        completed = await first
        self.assertIs(completed.state, TurnState.COMPLETED)
        self.assertEqual(len(text.requests), 1)

    async def test_cancelled_turn_ends_failed_and_clear_waits_for_it(self) -> None:
        text = FakeTextAdapter()
        text.gate = asyncio.Event()
        conversation = self._orchestrator(text=text)

        pending = asyncio.create_task(conversation.submit("first"))
        await text.entered.wait()
        self.assertFalse(conversation.clear())
        self.assertEqual(len(conversation.messages), 1)

        pending.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await pending

        self.assertIs(conversation.state, TurnState.FAILED)
        self.assertFalse(conversation.busy)
        self.assertEqual(self.events[-1], (TURN_BUSY, {"busy": False}))
        self.assertTrue(conversation.clear())

    async def test_offline_backend_is_short_circuited(self) -> None:
        health = HealthMonitor()
        conversation = self._orchestrator(health=health)
        health.register(self.text)
        self.text.probe = _offline_probe
        await health.check("generation")

        turn = await conversation.submit("hello")

        self.assertIs(turn.error_kind, ErrorKind.NETWORK_ERROR)
        self.assertEqual(self.text.requests, [])
        self.assertIn("offline", conversation.messages[-1].content)

    async def test_offline_transcription_counts_as_transcription_failure(self) -> None:
        transcription = FakeTranscriptionAdapter(
            RequestOutcome.success(Transcript(text="never used"))
        )
        health = HealthMonitor()
        health.register(transcription)
        await health.check("transcription")
        conversation = self._orchestrator(transcription=transcription, health=health)
        conversation.attachments.add_recording(b"RIFF")

        turn = await conversation.submit("X")

        self.assertEqual(turn.dispatched_text, "X")
        self.assertEqual(transcription.requests, [])
        self.assertEqual(
            len([n for n in self.notifications if n.severity is Severity.ERROR]), 1
        )

    async def test_clear_releases_retained_images_once(self) -> None:
        conversation = self._orchestrator()
        image = conversation.attachments.add_image_bytes(b"img", "pasted.png")
        await conversation.submit("look")
        self.assertFalse(image.locator.released)

        self.assertTrue(conversation.clear())

        self.assertTrue(image.locator.released)
        self.assertEqual(conversation.messages, ())
        self.assertIs(conversation.state, TurnState.COMPOSING)
        self.assertFalse(image.locator.release())

    async def test_removed_attachment_is_left_out_and_released_once(self) -> None:
        conversation = self._orchestrator()
        first = conversation.attachments.add_image_bytes(b"a", "a.png")
        counted = CountingLocator()
        conversation.attachments.add(Attachment(AttachmentKind.IMAGE, counted, "b.png"))
        third = conversation.attachments.add_image_bytes(b"c", "c.png")

        conversation.attachments.remove(1)
        await conversation.submit("compare")

        user = conversation.messages[0]
        self.assertEqual(list(user.attachments), [first, third])
        self.assertEqual(self.vision.requests[0].image, b"a")
        self.assertEqual(counted.freed, 1)

        self.assertTrue(conversation.clear())
        self.assertEqual(counted.freed, 1)
        self.assertTrue(first.locator.released)
        self.assertTrue(third.locator.released)

    async def test_export_uses_exporter_and_requires_one(self) -> None:
        exporter = MemoryExporter()
        conversation = self._orchestrator(exporter=exporter)
        await conversation.submit("Hi")

        path = conversation.export()

        self.assertEqual(path, "/tmp/chat_export_1.txt")
        self.assertIn("User (", exporter.exported[0])
        self.assertIn("): Hi\n\nAssistant (", exporter.exported[0])
        with self.assertRaises(ExportError):
            self._orchestrator().export()


async def _offline_probe() -> RequestOutcome[None]:
    return RequestOutcome.failure(ErrorKind.NETWORK_ERROR, "connection refused")


class RoutingTests(unittest.TestCase):
    def test_select_route_prefers_first_image(self) -> None:
        audio = Attachment(AttachmentKind.AUDIO, Locator("memory://a"), "a.wav")
        image = Attachment(AttachmentKind.IMAGE, Locator("memory://b"), "b.png")
        self.assertEqual(select_route([audio, image]), (Route.VISION, image))
        self.assertEqual(select_route([audio]), (Route.TEXT, None))

    def test_merge_transcript_uses_label(self) -> None:
        self.assertEqual(merge_transcript("X", "Y"), "X\n\nAudio transcription: Y")
        self.assertEqual(merge_transcript("", "Y"), "Y")
        self.assertEqual(merge_transcript("X", "Y", "Voice"), "X\n\nVoice: Y")


if __name__ == "__main__":
    unittest.main()
