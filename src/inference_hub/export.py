"""Plain-text transcript export and the file-backed export collaborator."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
import logging
import os
from pathlib import Path
import re
from typing import Protocol

from .exceptions import ExportError
from .models import Message, Role

LOGGER = logging.getLogger(__name__)

ROLE_LABELS = {Role.USER: "User", Role.ASSISTANT: "Assistant"}
TIME_FORMAT = "%H:%M:%S"
SEPARATOR = "\n\n"

_LINE_START = re.compile(r"^(User|Assistant) \((\d{2}:\d{2}:\d{2})\): ", re.MULTILINE)


@dataclass(frozen=True)
class TranscriptLine:
    role: str
    time: str
    content: str

    def render(self) -> str:
        return f"{self.role} ({self.time}): {self.content}"


def transcript_line(message: Message) -> TranscriptLine:
    """Render one message as ``<role> (<local time>): <content>``."""
    return TranscriptLine(
        role=ROLE_LABELS[message.role],
        time=message.timestamp.astimezone().strftime(TIME_FORMAT),
        content=message.content,
    )


def format_transcript(messages: Iterable[Message]) -> str:
    return SEPARATOR.join(transcript_line(message).render() for message in messages)


def parse_transcript(text: str) -> list[TranscriptLine]:
    """Rebuild transcript lines from exported text, preserving order.

    Content that itself starts a line with ``User (hh:mm:ss): `` cannot be told
    apart from a new entry.
    """
    matches = list(_LINE_START.finditer(text))
    lines: list[TranscriptLine] = []
    for index, match in enumerate(matches):
        end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        content = text[match.end() : end]
        if index + 1 < len(matches):
            content = content.removesuffix(SEPARATOR)
        lines.append(TranscriptLine(role=match.group(1), time=match.group(2), content=content))
    return lines


class TranscriptExporter(Protocol):
    def export(self, transcript: str) -> str: ...


class FileTranscriptExporter:
    """Write transcripts as ``chat_export_<epoch-ms>.txt`` into a directory."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory).expanduser()

    def _enforce_permissions(self, path: Path, mode: int = 0o600) -> None:
        if os.name != "posix":
            return
        try:
            path.chmod(mode)
        except OSError:
            LOGGER.warning("Unable to enforce %o permissions for %s", mode, path)

    def export(self, transcript: str) -> str:
        """Persist ``transcript`` and return the written file path."""
        stamp = int(datetime.now(UTC).timestamp() * 1000)
        target = self.directory / f"chat_export_{stamp}.txt"
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._enforce_permissions(self.directory, 0o700)
            target.write_text(transcript, encoding="utf-8")
        except OSError as exc:
            raise ExportError(f"Unable to write transcript to {target}: {exc}") from exc
        self._enforce_permissions(target)
        LOGGER.info(
            "export.written",
            extra={"event": "export.written", "path": str(target), "bytes": len(transcript)},
        )
        return str(target)
