"""Tests for attachment buffering and locator release."""

from __future__ import annotations

from pathlib import Path
import tempfile
import unittest

from inference_hub.attachments import AttachmentManager
from inference_hub.exceptions import AttachmentError
from inference_hub.models import Attachment, AttachmentKind, Locator


class CountingLocator(Locator):
    """Locator whose release callback counts invocations."""

    def __init__(self) -> None:
        self.freed = 0
        super().__init__("memory://clip", on_release=self._free)

    def _free(self) -> None:
        self.freed += 1


class LocatorTests(unittest.IsolatedAsyncioTestCase):
    async def test_spilled_locator_deletes_file_exactly_once(self) -> None:
        locator = Locator.spill(b"audio", suffix=".wav")
        self.assertTrue(locator.temporary)
        self.assertTrue(locator.path.exists())
        self.assertEqual(await locator.read_bytes(), b"audio")

        self.assertTrue(locator.release())
        self.assertFalse(locator.release())
        self.assertFalse(locator.path.exists())
        with self.assertRaises(AttachmentError):
            await locator.read_bytes()

    async def test_file_locator_never_deletes_user_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "photo.png"
            path.write_bytes(b"png")
            locator = Locator.for_file(path)
            self.assertFalse(locator.temporary)
            locator.release()
            self.assertTrue(path.exists())


class AttachmentManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.dir = Path(self._tmp.name)

    def _file(self, name: str, data: bytes = b"data") -> str:
        path = self.dir / name
        path.write_bytes(data)
        return str(path)

    def test_add_image_file_validates_and_attaches(self) -> None:
        manager = AttachmentManager()
        statuses: list[str] = []
        manager.on_status_update(statuses.append)

        attachment = manager.add_image_file(self._file("cat.png"))

        self.assertIs(attachment.kind, AttachmentKind.IMAGE)
        self.assertEqual(attachment.display_name, "cat.png")
        self.assertEqual(len(manager), 1)
        self.assertEqual(statuses, ["Image attached: cat.png (1 total)"])

    def test_missing_file_is_rejected(self) -> None:
        with self.assertRaises(AttachmentError):
            AttachmentManager().add_image_file(str(self.dir / "nope.png"))

    def test_wrong_extension_is_rejected(self) -> None:
        with self.assertRaises(AttachmentError) as ctx:
            AttachmentManager().add_audio_file(self._file("notes.txt"))
        self.assertIn("Invalid audio type", str(ctx.exception))

    def test_oversize_image_is_rejected(self) -> None:
        manager = AttachmentManager(max_image_bytes=4)
        with self.assertRaises(AttachmentError):
            manager.add_image_file(self._file("big.png", b"12345"))
        with self.assertRaises(AttachmentError):
            manager.add_image_bytes(b"12345", "pasted.png")

    def test_recording_is_spilled_and_keeps_payload(self) -> None:
        manager = AttachmentManager()
        attachment = manager.add_recording(b"RIFF")
        self.assertIs(attachment.kind, AttachmentKind.AUDIO)
        self.assertTrue(attachment.locator.temporary)
        self.assertEqual(attachment.raw_payload, b"RIFF")
        manager.discard_all()
        self.assertFalse(attachment.locator.path.exists())

    def test_remove_releases_locator_exactly_once(self) -> None:
        manager = AttachmentManager()
        locator = CountingLocator()
        manager.add(Attachment(AttachmentKind.AUDIO, locator, "clip"))

        removed = manager.remove(0)

        self.assertEqual(locator.freed, 1)
        self.assertTrue(removed.locator.released)
        removed.locator.release()
        self.assertEqual(locator.freed, 1)
        self.assertEqual(len(manager), 0)

    def test_remove_bad_index_raises(self) -> None:
        with self.assertRaises(AttachmentError):
            AttachmentManager().remove(0)

    def test_take_hands_off_and_blocks_reuse(self) -> None:
        manager = AttachmentManager()
        first = manager.add_image_file(self._file("a.png"))
        manager.add_audio_file(self._file("b.wav"))

        taken = manager.take()

        self.assertEqual(len(taken), 2)
        self.assertFalse(manager.has_any())
        self.assertFalse(first.locator.released)
        with self.assertRaises(AttachmentError):
            manager.add(first)

    def test_released_attachment_cannot_be_added(self) -> None:
        locator = CountingLocator()
        locator.release()
        with self.assertRaises(AttachmentError):
            AttachmentManager().add(Attachment(AttachmentKind.IMAGE, locator, "gone"))


if __name__ == "__main__":
    unittest.main()
