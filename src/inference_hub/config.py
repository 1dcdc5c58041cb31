"""Configuration loading and validation for the inference hub."""

from __future__ import annotations

from copy import deepcopy
import logging
import os
from pathlib import Path
import tomllib
from typing import Any
from urllib.parse import urlparse

from platformdirs import user_config_path, user_state_path
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .exceptions import ConfigValidationError

LOGGER = logging.getLogger(__name__)

APP_NAME = "inference-hub"
CONFIG_DIR = user_config_path(APP_NAME)
CONFIG_PATH = CONFIG_DIR / "config.toml"
STATE_DIR = user_state_path(APP_NAME)

VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def _non_empty_string(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("Expected a string value.")
    normalized = value.strip()
    if not normalized:
        raise ValueError("String value must not be empty.")
    return normalized


class _BackendSection(BaseModel):
    url: str
    timeout: float = Field(default=30.0, gt=0, le=3600)

    @field_validator("url", mode="before")
    @classmethod
    def _validate_url(cls, value: Any) -> str:
        normalized = _non_empty_string(value).rstrip("/")
        parsed = urlparse(normalized)
        if parsed.scheme.lower() not in {"http", "https"}:
            raise ValueError("Backend url must use http or https scheme.")
        if not parsed.hostname:
            raise ValueError("Backend url must include a hostname.")
        return normalized


class AppConfig(BaseModel):
    title: str = "Inference Hub"

    @field_validator("title", mode="before")
    @classmethod
    def _validate_title(cls, value: Any) -> str:
        return _non_empty_string(value)


class GenerationConfig(_BackendSection):
    """Text and vision generation backend (Ollama API)."""

    url: str = "http://localhost:11434"
    model: str = "llama3:8b"
    vision_model: str = ""

    @field_validator("model", mode="before")
    @classmethod
    def _validate_model(cls, value: Any) -> str:
        return _non_empty_string(value)

    @field_validator("vision_model", mode="before")
    @classmethod
    def _normalize_vision_model(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError("vision_model must be a string.")
        return value.strip()


class TranscriptionConfig(_BackendSection):
    """Whisper ASR web service."""

    url: str = "http://localhost:9000"
    timeout: float = Field(default=120.0, gt=0, le=3600)
    language: str = "en"

    @field_validator("language", mode="before")
    @classmethod
    def _validate_language(cls, value: Any) -> str:
        return _non_empty_string(value).lower()


class ImageSynthesisConfig(_BackendSection):
    """ComfyUI job queue and default generation options."""

    url: str = "http://localhost:8188"
    poll_interval_seconds: float = Field(default=1.0, gt=0, le=60)
    max_wait_seconds: float = Field(default=300.0, gt=0, le=3600)
    checkpoint: str = "v1-5-pruned-emaonly.ckpt"
    sampler: str = "euler"
    steps: int = Field(default=20, ge=1, le=200)
    cfg_scale: float = Field(default=7.0, gt=0, le=30)
    width: int = Field(default=512, ge=64, le=4096)
    height: int = Field(default=512, ge=64, le=4096)

    @field_validator("checkpoint", "sampler", mode="before")
    @classmethod
    def _validate_names(cls, value: Any) -> str:
        return _non_empty_string(value)


class WebUIConfig(_BackendSection):
    enabled: bool = True
    url: str = "http://localhost:3000"
    timeout: float = Field(default=10.0, gt=0, le=3600)


class HealthConfig(BaseModel):
    interval_seconds: float = Field(default=30.0, ge=1, le=3600)


class ChatConfig(BaseModel):
    transcript_label: str = "Audio transcription"

    @field_validator("transcript_label", mode="before")
    @classmethod
    def _validate_label(cls, value: Any) -> str:
        return _non_empty_string(value)


class AttachmentsConfig(BaseModel):
    max_image_bytes: int = Field(default=10 * 1024 * 1024, ge=1024, le=200 * 1024 * 1024)
    max_audio_bytes: int = Field(default=25 * 1024 * 1024, ge=1024, le=500 * 1024 * 1024)


class SecurityConfig(BaseModel):
    """Security policy for remote backend access."""

    allow_remote_hosts: bool = False
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "::1"]

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def _validate_allowed_hosts(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            raise ValueError("allowed_hosts must be a list.")
        normalized_hosts = [
            item.strip().lower()
            for item in value
            if isinstance(item, str) and item.strip()
        ]
        if not normalized_hosts:
            raise ValueError("allowed_hosts must contain at least one host.")
        return normalized_hosts


class LoggingConfig(BaseModel):
    """Logging behavior and output destinations."""

    level: str = "INFO"
    structured: bool = True
    log_to_file: bool = False
    log_file_path: str = str(STATE_DIR / "hub.log")

    @field_validator("level", mode="before")
    @classmethod
    def _validate_level(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("Logging level must be a string.")
        normalized = value.strip().upper()
        if normalized not in VALID_LOG_LEVELS:
            raise ValueError(f"Unsupported log level {normalized!r}.")
        return normalized

    @field_validator("log_file_path", mode="before")
    @classmethod
    def _validate_log_file_path(cls, value: Any) -> str:
        return _non_empty_string(value)


class ExportConfig(BaseModel):
    directory: str = str(STATE_DIR / "exports")

    @field_validator("directory", mode="before")
    @classmethod
    def _validate_directory(cls, value: Any) -> str:
        return _non_empty_string(value)


class Config(BaseModel):
    """Root configuration model for all sections."""

    model_config = ConfigDict(populate_by_name=True)
    app: AppConfig = AppConfig()
    generation: GenerationConfig = GenerationConfig()
    transcription: TranscriptionConfig = TranscriptionConfig()
    image_synthesis: ImageSynthesisConfig = ImageSynthesisConfig()
    webui: WebUIConfig = WebUIConfig()
    health: HealthConfig = HealthConfig()
    chat: ChatConfig = ChatConfig()
    attachments: AttachmentsConfig = AttachmentsConfig()
    security: SecurityConfig = SecurityConfig()
    logging: LoggingConfig = LoggingConfig()
    export: ExportConfig = ExportConfig()

    @model_validator(mode="after")
    def _validate_security_policy(self) -> Config:
        if self.security.allow_remote_hosts:
            return self
        allowed = set(self.security.allowed_hosts)
        sections = {
            "generation": self.generation,
            "transcription": self.transcription,
            "image_synthesis": self.image_synthesis,
            "webui": self.webui,
        }
        for name, section in sections.items():
            hostname = (urlparse(section.url).hostname or "").lower()
            if hostname not in allowed:
                raise ValueError(
                    f"{name}.url is not in security.allowed_hosts while "
                    "allow_remote_hosts is false."
                )
        return self


DEFAULT_CONFIG: dict[str, dict[str, Any]] = Config().model_dump()


def ensure_config_dir(config_dir: Path | None = None) -> Path:
    """Ensure that the config directory exists and return its path."""
    directory = config_dir or CONFIG_DIR
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create config directory %s: %s", directory, exc)
    return directory


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override values onto base values."""
    merged: dict[str, Any] = deepcopy(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _enforce_private_permissions(path: Path) -> None:
    """Best-effort enforcement of private file permissions on POSIX systems."""
    if os.name != "posix" or not path.exists():
        return
    try:
        path.chmod(0o600)
    except OSError as exc:
        LOGGER.warning("Unable to enforce 0600 permissions for %s: %s", path, exc)


def _safe_default_config() -> dict[str, dict[str, Any]]:
    return deepcopy(DEFAULT_CONFIG)


def _validate_config(raw: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Validate merged config and fall back to safe defaults when possible."""
    try:
        config = Config.model_validate(raw)
        return config.model_dump()
    except ValidationError as exc:
        LOGGER.warning("Configuration validation failed, using safe defaults: %s", exc)
        return _safe_default_config()
    except Exception as exc:  # noqa: BLE001 - unexpected model construction failure.
        raise ConfigValidationError(f"Unable to validate configuration: {exc}") from exc


def load_config(config_path: Path | None = None) -> dict[str, dict[str, Any]]:
    """
    Load configuration from TOML, merge with defaults, and validate.

    The optional ``config_path`` argument is intended for tests and tooling.
    """
    target_path = config_path or CONFIG_PATH
    ensure_config_dir(target_path.parent)

    raw_data: dict[str, Any] = {}
    if target_path.exists():
        _enforce_private_permissions(target_path)
        try:
            raw_data = tomllib.loads(target_path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            LOGGER.warning("Failed to parse config at %s: %s", target_path, exc)
            raw_data = {}

    merged = (
        _deep_merge(DEFAULT_CONFIG, raw_data)
        if isinstance(raw_data, dict)
        else _safe_default_config()
    )
    return _validate_config(merged)
