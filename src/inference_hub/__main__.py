"""CLI entrypoint for inference-hub."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from importlib import metadata
import sys
from typing import Any

from .adapters.image_synthesis import ImageSettings
from .config import ensure_config_dir, load_config
from .exceptions import HubError
from .hub import InferenceHub
from .logging_utils import configure_logging
from .notifications import Notification, Severity


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inference-hub",
        description="Inference Hub - one front end for local AI backends",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )
    commands = parser.add_subparsers(dest="command")

    commands.add_parser("health", help="Probe every backend once and print its status")

    chat = commands.add_parser("chat", help="Send one chat turn")
    chat.add_argument("text", nargs="?", default="", help="Message text")
    chat.add_argument(
        "--image", action="append", default=[], metavar="PATH", help="Attach an image"
    )
    chat.add_argument("--audio", metavar="PATH", help="Attach an audio file to transcribe")
    chat.add_argument("--model", help="Override the configured model for this turn")

    imagine = commands.add_parser("imagine", help="Generate an image from a prompt")
    imagine.add_argument("prompt")
    imagine.add_argument("--model", help="Checkpoint name")
    imagine.add_argument("--steps", type=int)
    imagine.add_argument("--cfg-scale", type=float)
    imagine.add_argument("--sampler")
    imagine.add_argument("--width", type=int)
    imagine.add_argument("--height", type=int)
    imagine.add_argument("--seed", type=int)
    return parser


def _print_notification(notification: Notification) -> None:
    if notification.severity in {Severity.ERROR, Severity.WARNING}:
        print(f"{notification.title}: {notification.description}", file=sys.stderr)


async def _health(hub: InferenceHub) -> int:
    snapshot = await hub.health.check_all()
    for backend_id, record in snapshot.items():
        latency = (
            f"{record.last_latency_ms:.0f}ms" if record.last_latency_ms is not None else "-"
        )
        line = f"{hub.health.display_name(backend_id):<12} {record.status.value:<8} {latency:>8}"
        if record.last_error:
            line = f"{line}  {record.last_error}"
        print(line)
    return 0


async def _chat(hub: InferenceHub, args: argparse.Namespace) -> int:
    attachments = hub.conversation.attachments
    for path in args.image:
        attachments.add_image_file(path)
    if args.audio:
        attachments.add_audio_file(args.audio)

    turn = await hub.conversation.submit(args.text, model=args.model)
    if turn is None:
        print("Nothing to send.", file=sys.stderr)
        return 2
    if turn.assistant_message is not None:
        print(turn.assistant_message.content)
    return 0 if turn.error_kind is None else 1


async def _imagine(hub: InferenceHub, args: argparse.Namespace) -> int:
    settings = ImageSettings(
        model=args.model,
        steps=args.steps,
        cfg_scale=args.cfg_scale,
        sampler=args.sampler,
        width=args.width,
        height=args.height,
        seed=args.seed,
    )
    outcome = await hub.generate_image(args.prompt, settings)
    if not outcome.ok or outcome.value is None:
        print(f"Image generation failed: {outcome.describe()}", file=sys.stderr)
        return 1
    for locator in outcome.value.locators:
        print(locator)
    return 0


async def _run(args: argparse.Namespace, config: dict[str, Any]) -> int:
    hub = InferenceHub(config, notify=_print_notification)
    try:
        if args.command == "health":
            return await _health(hub)
        if args.command == "chat":
            return await _chat(hub, args)
        return await _imagine(hub, args)
    finally:
        await hub.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    """Ensure configuration exists, handle CLI flags, and run one command."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        try:
            version = metadata.version("inference-hub")
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        print(f"inference-hub {version}")
        return 0

    if args.command is None:
        parser.print_help()
        return 2

    ensure_config_dir()
    config = load_config()
    configure_logging(config["logging"])
    try:
        return asyncio.run(_run(args, config))
    except HubError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
