"""Pending-turn attachment buffer.

Owns image and audio attachments while a turn is being composed: validates
them on the way in, releases their locators on removal, and hands the whole
set to the orchestrator on submission.
"""

from __future__ import annotations

from collections.abc import Callable
import logging
from pathlib import Path
import weakref

from .exceptions import AttachmentError
from .models import Attachment, AttachmentKind, Locator

LOGGER = logging.getLogger(__name__)

IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".tiff", ".tif"}
)
AUDIO_EXTENSIONS: frozenset[str] = frozenset(
    {".wav", ".mp3", ".m4a", ".ogg", ".oga", ".webm", ".flac", ".aac"}
)

_EXTENSIONS = {
    AttachmentKind.IMAGE: IMAGE_EXTENSIONS,
    AttachmentKind.AUDIO: AUDIO_EXTENSIONS,
}


class AttachmentManager:
    """Manages attachments for the turn currently being composed.

    Responsibilities:
    - Validating attachments (existence, type, size)
    - Buffering recorded or pasted bytes behind temporary locators
    - Releasing a locator when its attachment is removed
    - Handing everything over, exactly once, when the turn is submitted
    """

    def __init__(
        self,
        *,
        max_image_bytes: int = 10 * 1024 * 1024,
        max_audio_bytes: int = 25 * 1024 * 1024,
    ) -> None:
        self.max_image_bytes = max_image_bytes
        self.max_audio_bytes = max_audio_bytes
        self._pending: list[Attachment] = []
        self._handed_off: weakref.WeakSet[Attachment] = weakref.WeakSet()
        self._on_status_update: Callable[[str], None] | None = None

    def on_status_update(self, callback: Callable[[str], None]) -> None:
        """Register callback for status/subtitle updates."""
        self._on_status_update = callback

    def _status(self, message: str) -> None:
        if self._on_status_update:
            self._on_status_update(message)

    @property
    def pending(self) -> tuple[Attachment, ...]:
        return tuple(self._pending)

    def __len__(self) -> int:
        return len(self._pending)

    def has_any(self) -> bool:
        return bool(self._pending)

    def _max_bytes(self, kind: AttachmentKind) -> int:
        return self.max_image_bytes if kind is AttachmentKind.IMAGE else self.max_audio_bytes

    def add(self, attachment: Attachment) -> Attachment:
        """Append an attachment the buffer now owns."""
        if any(existing is attachment for existing in self._pending):
            raise AttachmentError(f"{attachment.display_name} is already attached.")
        if attachment in self._handed_off:
            raise AttachmentError(
                f"{attachment.display_name} already belongs to a submitted turn."
            )
        if attachment.locator.released:
            raise AttachmentError(f"{attachment.display_name} was already released.")
        self._pending.append(attachment)
        LOGGER.debug(
            "attachment.added",
            extra={
                "event": "attachment.added",
                "kind": attachment.kind.value,
                "display_name": attachment.display_name,
                "pending": len(self._pending),
            },
        )
        return attachment

    def add_file(self, path: str, kind: AttachmentKind) -> Attachment:
        """Validate a file on disk and attach it in place."""
        resolved = self.validate_file(
            path,
            kind=kind,
            max_bytes=self._max_bytes(kind),
            allowed_extensions=_EXTENSIONS[kind],
        )
        attachment = self.add(
            Attachment(kind=kind, locator=Locator.for_file(resolved), display_name=resolved.name)
        )
        self._status(f"{kind.value.capitalize()} attached: {resolved.name} ({len(self)} total)")
        return attachment

    def add_image_file(self, path: str) -> Attachment:
        return self.add_file(path, AttachmentKind.IMAGE)

    def add_audio_file(self, path: str) -> Attachment:
        return self.add_file(path, AttachmentKind.AUDIO)

    def add_bytes(
        self, data: bytes, kind: AttachmentKind, display_name: str, suffix: str = ""
    ) -> Attachment:
        """Attach in-memory media behind a temporary locator."""
        if not data:
            raise AttachmentError(f"{display_name} is empty.")
        max_bytes = self._max_bytes(kind)
        if len(data) > max_bytes:
            raise AttachmentError(
                f"{kind.value.capitalize()} too large (max {max_bytes / (1024 * 1024):.1f}MB)"
            )
        locator = Locator.spill(data, suffix=suffix)
        attachment = self.add(
            Attachment(kind=kind, locator=locator, display_name=display_name, raw_payload=data)
        )
        self._status(f"{kind.value.capitalize()} attached: {display_name} ({len(self)} total)")
        return attachment

    def add_image_bytes(self, data: bytes, display_name: str, suffix: str = ".png") -> Attachment:
        return self.add_bytes(data, AttachmentKind.IMAGE, display_name, suffix)

    def add_recording(
        self, data: bytes, display_name: str = "Audio recording", suffix: str = ".wav"
    ) -> Attachment:
        return self.add_bytes(data, AttachmentKind.AUDIO, display_name, suffix)

    def remove(self, index: int) -> Attachment:
        """Drop the attachment at ``index`` and release its locator immediately."""
        if not 0 <= index < len(self._pending):
            raise AttachmentError(f"No pending attachment at index {index}.")
        attachment = self._pending.pop(index)
        attachment.locator.release()
        attachment.raw_payload = None
        LOGGER.debug(
            "attachment.removed",
            extra={
                "event": "attachment.removed",
                "display_name": attachment.display_name,
                "pending": len(self._pending),
            },
        )
        return attachment

    def take(self) -> list[Attachment]:
        """Hand every pending attachment to the caller and empty the buffer.

        The caller becomes responsible for releasing what it does not retain.
        """
        taken = list(self._pending)
        self._pending.clear()
        for attachment in taken:
            self._handed_off.add(attachment)
        return taken

    def discard_all(self) -> None:
        """Release and forget every pending attachment."""
        while self._pending:
            self.remove(len(self._pending) - 1)

    @staticmethod
    def validate_file(
        path: str,
        *,
        kind: AttachmentKind,
        max_bytes: int,
        allowed_extensions: frozenset[str] | None,
    ) -> Path:
        """Resolve ``path`` and check existence, type and size.

        Raises ``AttachmentError`` describing the first problem found.
        """
        label = kind.value.capitalize()
        try:
            resolved = Path(path).expanduser().resolve()
            if not resolved.exists():
                raise AttachmentError(f"{label} not found: {path}")
            if not resolved.is_file():
                raise AttachmentError(f"Not a file: {path}")
            if allowed_extensions and resolved.suffix.lower() not in allowed_extensions:
                exts = ", ".join(sorted(allowed_extensions))
                raise AttachmentError(f"Invalid {kind.value} type. Allowed: {exts}")
            size = resolved.stat().st_size
        except OSError as exc:
            raise AttachmentError(f"Error validating {kind.value}: {exc}") from exc
        if size > max_bytes:
            raise AttachmentError(f"{label} too large (max {max_bytes / (1024 * 1024):.1f}MB)")
        return resolved
