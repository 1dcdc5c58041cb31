"""Conversation data model: messages, attachments and their locators."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
import itertools
import logging
import os
from pathlib import Path
import tempfile
import time

from .exceptions import AttachmentError

LOGGER = logging.getLogger(__name__)

_SEQUENCE = itertools.count(1)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class AttachmentKind(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"


class Locator:
    """Addressable reference to attachment bytes.

    A temporary locator owns a resource (a spilled temp file) that is freed by
    :meth:`release`. Release is idempotent: the resource is freed exactly once
    however many exit paths call it.
    """

    def __init__(
        self,
        uri: str,
        *,
        path: Path | None = None,
        on_release: Callable[[], None] | None = None,
    ) -> None:
        self.uri = uri
        self.path = path
        self._on_release = on_release
        self._released = False

    def __repr__(self) -> str:
        return f"Locator({self.uri!r}, temporary={self.temporary}, released={self._released})"

    @classmethod
    def for_file(cls, path: Path) -> Locator:
        """Reference a user file in place; releasing it never touches the file."""
        return cls(path.as_uri(), path=path)

    @classmethod
    def spill(cls, data: bytes, suffix: str = "") -> Locator:
        """Write ``data`` to a private temp file owned by the returned locator."""
        fd, raw_path = tempfile.mkstemp(prefix="inference-hub-", suffix=suffix)
        path = Path(raw_path)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
        except OSError as exc:
            path.unlink(missing_ok=True)
            raise AttachmentError(f"Unable to buffer attachment: {exc}") from exc

        def _delete() -> None:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                LOGGER.warning(
                    "attachment.release.failed",
                    extra={
                        "event": "attachment.release.failed",
                        "path": str(path),
                        "error": str(exc),
                    },
                )

        return cls(path.as_uri(), path=path, on_release=_delete)

    @property
    def temporary(self) -> bool:
        return self._on_release is not None

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """Free the underlying resource; returns False if already released."""
        if self._released:
            return False
        self._released = True
        if self._on_release is not None:
            self._on_release()
        return True

    async def read_bytes(self) -> bytes:
        if self._released:
            raise AttachmentError(f"Locator {self.uri} was already released.")
        if self.path is None:
            raise AttachmentError(f"Locator {self.uri} has no readable path.")
        try:
            return await asyncio.to_thread(self.path.read_bytes)
        except OSError as exc:
            raise AttachmentError(f"Unable to read {self.path}: {exc}") from exc


@dataclass(eq=False)
class Attachment:
    """User media attached to a pending or sent message.

    ``raw_payload`` is an optional in-memory copy of the bytes; it is dropped
    once the turn that consumed it has finished.
    """

    kind: AttachmentKind
    locator: Locator
    display_name: str
    raw_payload: bytes | None = None

    async def load_bytes(self) -> bytes:
        if self.raw_payload is not None:
            return self.raw_payload
        return await self.locator.read_bytes()


def new_message_id() -> str:
    """Time-based id with a sequence suffix so same-millisecond ids still sort."""
    return f"{time.time_ns() // 1_000_000}-{next(_SEQUENCE):06d}"


@dataclass(frozen=True)
class Message:
    id: str
    role: Role
    content: str
    timestamp: datetime
    model: str | None = None
    attachments: tuple[Attachment, ...] = field(default_factory=tuple)

    @classmethod
    def create(
        cls,
        role: Role,
        content: str,
        *,
        model: str | None = None,
        attachments: tuple[Attachment, ...] | list[Attachment] = (),
        timestamp: datetime | None = None,
    ) -> Message:
        return cls(
            id=new_message_id(),
            role=role,
            content=content,
            timestamp=timestamp or datetime.now(UTC),
            model=model if role is Role.ASSISTANT else None,
            attachments=tuple(attachments),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "model": self.model,
            "attachments": [
                {
                    "kind": attachment.kind.value,
                    "locator": attachment.locator.uri,
                    "display_name": attachment.display_name,
                }
                for attachment in self.attachments
            ],
        }
