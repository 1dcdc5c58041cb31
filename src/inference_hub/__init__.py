"""Top-level package for inference-hub."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .config import ensure_config_dir, load_config
    from .conversation import ConversationOrchestrator, Turn
    from .exceptions import (
        AttachmentError,
        ConfigValidationError,
        ExportError,
        HubError,
        UnknownBackendError,
    )
    from .health import AdapterHealth, HealthMonitor, HealthStatus
    from .hub import InferenceHub
    from .outcome import ErrorKind, RequestOutcome
    from .transport import TransportClient

__all__ = [
    "AdapterHealth",
    "AttachmentError",
    "ConfigValidationError",
    "ConversationOrchestrator",
    "ErrorKind",
    "ExportError",
    "HealthMonitor",
    "HealthStatus",
    "HubError",
    "InferenceHub",
    "RequestOutcome",
    "TransportClient",
    "Turn",
    "UnknownBackendError",
    "ensure_config_dir",
    "load_config",
]

_EXCEPTIONS = {
    "AttachmentError",
    "ConfigValidationError",
    "ExportError",
    "HubError",
    "UnknownBackendError",
}


def __getattr__(name: str) -> Any:
    """Lazily import symbols so importing the package stays cheap."""
    if name in {"ensure_config_dir", "load_config"}:
        from .config import ensure_config_dir, load_config

        return {"ensure_config_dir": ensure_config_dir, "load_config": load_config}[name]
    if name in _EXCEPTIONS:
        from . import exceptions

        return getattr(exceptions, name)
    if name in {"ErrorKind", "RequestOutcome"}:
        from .outcome import ErrorKind, RequestOutcome

        return {"ErrorKind": ErrorKind, "RequestOutcome": RequestOutcome}[name]
    if name == "TransportClient":
        from .transport import TransportClient

        return TransportClient
    if name in {"AdapterHealth", "HealthMonitor", "HealthStatus"}:
        from .health import AdapterHealth, HealthMonitor, HealthStatus

        return {
            "AdapterHealth": AdapterHealth,
            "HealthMonitor": HealthMonitor,
            "HealthStatus": HealthStatus,
        }[name]
    if name in {"ConversationOrchestrator", "Turn"}:
        from .conversation import ConversationOrchestrator, Turn

        return {"ConversationOrchestrator": ConversationOrchestrator, "Turn": Turn}[name]
    if name == "InferenceHub":
        from .hub import InferenceHub

        return InferenceHub
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
