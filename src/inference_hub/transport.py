"""Bounded HTTP transport returning uniform request outcomes."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from .outcome import ErrorKind, RequestOutcome

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


def _extract_error_detail(response: httpx.Response) -> str | None:
    """Return the error text a backend reported in a JSON error body, if any."""
    try:
        payload = response.json()
    except (json.JSONDecodeError, ValueError, UnicodeDecodeError):
        return None
    if isinstance(payload, dict):
        for key in ("error", "detail", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
            if isinstance(value, (dict, list)) and value:
                return json.dumps(value, ensure_ascii=False)[:500]
    return None


def _status_message(response: httpx.Response, detail: str | None) -> str:
    """Describe a non-2xx reply; short plain-text bodies are appended, markup is not."""
    message = f"{response.status_code} {response.reason_phrase}".strip()
    if detail is not None:
        return message
    content_type = response.headers.get("content-type", "").lower()
    text = response.text.strip()
    if text and "html" not in content_type and not text.startswith("<"):
        message = f"{message}: {text[:200]}"
    return message


class TransportClient:
    """Thin wrapper around ``httpx.AsyncClient`` for a single backend base URL.

    Every call is raced against a timer. Network, status and decode failures
    are converted to :class:`RequestOutcome` values; nothing but
    ``asyncio.CancelledError`` escapes :meth:`request`. No retries happen here.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.timeout)

    def url_for(self, path: str) -> str:
        """Return the absolute URL for an endpoint path."""
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"

    async def request(
        self,
        path: str,
        method: str = "GET",
        body: Any | None = None,
        headers: dict[str, str] | None = None,
        *,
        files: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
        decode: bool = True,
    ) -> RequestOutcome[Any]:
        """Issue one request and normalize the result.

        ``body`` is sent as JSON, or as multipart form fields when ``files`` is
        given. With ``decode=False`` the body is not parsed and a successful
        outcome carries ``None``.
        """
        bound = self.timeout if timeout is None else float(timeout)
        url = self.url_for(path)
        method = method.upper()

        request_kwargs: dict[str, Any] = {"headers": headers, "params": params}
        if files is not None:
            request_kwargs["files"] = files
            if body is not None:
                request_kwargs["data"] = body
        elif body is not None:
            request_kwargs["json"] = body

        try:
            response = await asyncio.wait_for(
                self._client.request(method, url, timeout=bound, **request_kwargs),
                timeout=bound,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            LOGGER.warning(
                "transport.request.timeout",
                extra={
                    "event": "transport.request.timeout",
                    "method": method,
                    "url": url,
                    "timeout_seconds": bound,
                },
            )
            return RequestOutcome.failure(
                ErrorKind.TIMEOUT, f"Request timed out after {bound:g}s"
            )
        except (httpx.HTTPError, OSError) as exc:
            LOGGER.warning(
                "transport.request.network_error",
                extra={
                    "event": "transport.request.network_error",
                    "method": method,
                    "url": url,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return RequestOutcome.failure(
                ErrorKind.NETWORK_ERROR, str(exc) or type(exc).__name__
            )

        if not response.is_success:
            detail = _extract_error_detail(response)
            message = _status_message(response, detail)
            LOGGER.info(
                "transport.request.http_error",
                extra={
                    "event": "transport.request.http_error",
                    "method": method,
                    "url": url,
                    "status": response.status_code,
                },
            )
            return RequestOutcome.failure(
                ErrorKind.HTTP_ERROR,
                message,
                detail=detail,
                status_code=response.status_code,
            )

        if not decode:
            return RequestOutcome.success(None)

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError, UnicodeDecodeError) as exc:
            return RequestOutcome.failure(
                ErrorKind.DECODE_ERROR,
                f"Response from {path} is not valid JSON: {exc}",
                status_code=response.status_code,
            )
        return RequestOutcome.success(data)

    async def aclose(self) -> None:
        """Close the underlying client when this transport created it."""
        if self._owns_client:
            await self._client.aclose()
