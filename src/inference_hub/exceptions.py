"""Domain exception hierarchy for the inference hub.

Backend failures never surface as exceptions; they travel as
:class:`~inference_hub.outcome.RequestOutcome` values. The classes below cover
setup and caller mistakes only.
"""

from __future__ import annotations


class HubError(RuntimeError):
    """Base class for all domain-level hub errors."""


class ConfigValidationError(HubError):
    """Raised when configuration cannot be validated safely."""


class AttachmentError(HubError):
    """Raised when an attachment cannot be accepted or addressed."""


class ExportError(HubError):
    """Raised when a transcript export cannot be written."""


class UnknownBackendError(HubError):
    """Raised when a backend id is not registered with the health monitor."""
