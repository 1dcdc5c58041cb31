"""Tests for CLI entrypoint wiring."""

from __future__ import annotations

import contextlib
import io
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from inference_hub.__main__ import main
from inference_hub.adapters.image_synthesis import GeneratedImages
from inference_hub.config import DEFAULT_CONFIG
from inference_hub.conversation import Turn
from inference_hub.health import AdapterHealth, HealthStatus
from inference_hub.models import Message, Role
from inference_hub.outcome import ErrorKind, RequestOutcome
from inference_hub.state import TurnState


def _fake_hub() -> MagicMock:
    hub = MagicMock()
    hub.aclose = AsyncMock()
    hub.health.check_all = AsyncMock(
        return_value={
            "generation": AdapterHealth(
                "generation", HealthStatus.ONLINE, last_latency_ms=12.0
            ),
            "transcription": AdapterHealth(
                "transcription", HealthStatus.OFFLINE, last_error="NetworkError: refused"
            ),
        }
    )
    hub.health.display_name.side_effect = {
        "generation": "Ollama",
        "transcription": "Whisper",
    }.get
    return hub


class MainEntrypointTests(unittest.TestCase):
    """Validate top-level main() behavior."""

    def _run(self, argv: list[str], hub: MagicMock) -> tuple[int, str, str]:
        out, err = io.StringIO(), io.StringIO()
        with patch("inference_hub.__main__.ensure_config_dir") as ensure_mock, patch(
            "inference_hub.__main__.load_config", return_value=DEFAULT_CONFIG
        ), patch("inference_hub.__main__.configure_logging"), patch(
            "inference_hub.__main__.InferenceHub", return_value=hub
        ), contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            code = main(argv)
            ensure_mock.assert_called_once()
        hub.aclose.assert_awaited_once()
        return code, out.getvalue(), err.getvalue()

    def test_version_flag_prints_version(self) -> None:
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            code = main(["--version"])
        self.assertEqual(code, 0)
        self.assertTrue(out.getvalue().startswith("inference-hub "))

    def test_no_command_prints_help(self) -> None:
        with contextlib.redirect_stdout(io.StringIO()):
            self.assertEqual(main([]), 2)

    def test_health_prints_one_row_per_backend(self) -> None:
        code, out, _ = self._run(["health"], _fake_hub())
        self.assertEqual(code, 0)
        lines = out.splitlines()
        self.assertEqual(len(lines), 2)
        self.assertIn("Ollama", lines[0])
        self.assertIn("online", lines[0])
        self.assertIn("12ms", lines[0])
        self.assertIn("offline", lines[1])
        self.assertIn("NetworkError: refused", lines[1])

    def test_chat_attaches_files_and_prints_reply(self) -> None:
        hub = _fake_hub()
        reply = Message.create(Role.ASSISTANT, "It is a cat.", model="llava")
        hub.conversation.submit = AsyncMock(
            return_value=Turn(state=TurnState.COMPLETED, assistant_message=reply)
        )

        code, out, _ = self._run(
            ["chat", "what is this?", "--image", "cat.png", "--audio", "q.wav"], hub
        )

        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), "It is a cat.")
        hub.conversation.attachments.add_image_file.assert_called_once_with("cat.png")
        hub.conversation.attachments.add_audio_file.assert_called_once_with("q.wav")
        hub.conversation.submit.assert_awaited_once_with("what is this?", model=None)

    def test_failed_chat_turn_exits_nonzero(self) -> None:
        hub = _fake_hub()
        reply = Message.create(Role.ASSISTANT, "Sorry, I encountered an error (Timeout).")
        hub.conversation.submit = AsyncMock(
            return_value=Turn(
                state=TurnState.FAILED,
                assistant_message=reply,
                error_kind=ErrorKind.TIMEOUT,
            )
        )
        code, out, _ = self._run(["chat", "hi"], hub)
        self.assertEqual(code, 1)
        self.assertIn("Timeout", out)

    def test_imagine_prints_locators(self) -> None:
        hub = _fake_hub()
        hub.generate_image = AsyncMock(
            return_value=RequestOutcome.success(
                GeneratedImages(
                    prompt_id="abc",
                    locators=["http://localhost:8188/view?filename=a.png"],
                    seed=1,
                )
            )
        )

        code, out, _ = self._run(["imagine", "a fox", "--steps", "25"], hub)

        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), "http://localhost:8188/view?filename=a.png")
        settings = hub.generate_image.await_args.args[1]
        self.assertEqual(settings.steps, 25)
        self.assertIsNone(settings.seed)

    def test_imagine_failure_reports_error(self) -> None:
        hub = _fake_hub()
        hub.generate_image = AsyncMock(
            return_value=RequestOutcome.failure(ErrorKind.NETWORK_ERROR, "ComfyUI is offline")
        )
        code, _, err = self._run(["imagine", "a fox"], hub)
        self.assertEqual(code, 1)
        self.assertIn("NetworkError: ComfyUI is offline", err)


if __name__ == "__main__":
    unittest.main()
