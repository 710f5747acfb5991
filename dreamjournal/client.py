from __future__ import annotations

"""HTTP client for the proxy endpoints, used by the CLI and the controller."""

import logging
from typing import Any

import httpx

from .config import CONFIG
from .errors import (
    JournalError,
    MalformedResponseError,
    RateLimitedError,
    TransportError,
    ValidationError,
)

_LOGGER = logging.getLogger(__name__)

# Slightly above the server-side upstream timeouts so the server answers first
_CLIENT_TIMEOUT_MARGIN_SECONDS = 15.0


class ProxyError(JournalError):
    """Error answer from the proxy that has no more specific client-side type."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProxyClient:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or CONFIG.server_url).rstrip("/")
        self._client = httpx.Client(base_url=self.base_url, transport=transport)

    def __enter__(self) -> "ProxyClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def analyze(self, text: str, method: str, context: str = "") -> str:
        payload = self._post(
            "/analyze",
            json={"dream_text": text, "analysis_method": method, "context": context},
            timeout=CONFIG.llm_timeout_seconds + _CLIENT_TIMEOUT_MARGIN_SECONDS,
        )
        result = payload.get("result")
        if not isinstance(result, str):
            raise MalformedResponseError("Proxy response is missing 'result'")
        return result

    def transcribe(
        self,
        data: bytes,
        filename: str = "recording.webm",
        content_type: str = "audio/webm",
    ) -> str:
        payload = self._post(
            "/transcribe",
            files={"audio": (filename, data, content_type)},
            timeout=CONFIG.stt_timeout_seconds + _CLIENT_TIMEOUT_MARGIN_SECONDS,
        )
        text = payload.get("text")
        if not isinstance(text, str):
            raise MalformedResponseError("Proxy response is missing 'text'")
        return text

    def _post(self, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.post(path, **kwargs)
        except httpx.TransportError as exc:
            _LOGGER.warning("Proxy unreachable at %s%s: %s", self.base_url, path, exc)
            raise TransportError(f"Could not reach {self.base_url}: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"HTTP {response.status_code}: unexpected response from proxy"
            ) from exc
        if not isinstance(payload, dict):
            raise MalformedResponseError(
                f"HTTP {response.status_code}: unexpected response from proxy"
            )

        if response.status_code == 200 and payload.get("success"):
            return payload
        message = str(payload.get("error") or response.reason_phrase or "Unknown error")
        raise _error_for_status(response.status_code, message)


def _error_for_status(status_code: int, message: str) -> JournalError:
    if status_code == 400:
        return ValidationError(message)
    if status_code == 429:
        return RateLimitedError(message)
    return ProxyError(status_code, message)
