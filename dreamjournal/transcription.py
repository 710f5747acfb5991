from __future__ import annotations

"""Speech-to-text proxy for uploaded voice recordings."""

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any

from .config import CONFIG, resolve_api_key
from .errors import (
    ConfigError,
    MalformedResponseError,
    RateLimitedError,
    ValidationError,
)
from .events import log_event
from .ratelimit import FALLBACK_CLIENT_ID, RateLimiter
from .upstream import ClientFactory, default_client_factory, translate_sdk_error

_LOGGER = logging.getLogger(__name__)

# Browsers disagree on recorder MIME types; others are logged, not rejected
ALLOWED_MIME_TYPES = frozenset(
    {
        "audio/webm",
        "audio/mp4",
        "audio/mpeg",
        "audio/wav",
        "audio/ogg",
        "audio/x-m4a",
    }
)


@dataclass
class AudioUpload:
    data: bytes
    filename: str = "recording.webm"
    content_type: str = "audio/webm"


@dataclass
class TranscriptionResult:
    """Holds the core fields returned to the client."""

    text: str
    raw_response: dict[str, Any]
    model: str


class Transcriber:
    """Forwards one audio upload to the transcription endpoint.

    No retries: a failed upload is reported and the client may record again.
    """

    def __init__(
        self,
        limiter: RateLimiter,
        *,
        model: str | None = None,
        language: str | None = None,
        api_key: str | None = None,
        client_factory: ClientFactory = default_client_factory,
        timeout_seconds: float | None = None,
        max_bytes: int | None = None,
        config_path: Path | None = None,
    ) -> None:
        self.limiter = limiter
        self.model = model or CONFIG.model_stt
        self.language = language or CONFIG.stt_language
        self.timeout_seconds = timeout_seconds or CONFIG.stt_timeout_seconds
        self.max_bytes = max_bytes or CONFIG.max_audio_bytes
        self._client_factory = client_factory
        self._client: Any = None
        self.config_error: ConfigError | None = None
        self._api_key = api_key
        if self._api_key is None:
            try:
                self._api_key = resolve_api_key("openai", config_path)
            except ConfigError as exc:
                self.config_error = exc
                _LOGGER.error("Transcription endpoint disabled: %s", exc.message)

    @property
    def configured(self) -> bool:
        return self.config_error is None

    def validate(self, upload: AudioUpload) -> None:
        size = len(upload.data)
        if size == 0:
            raise ValidationError("Audio file is empty", field="audio", bound="min")
        if size > self.max_bytes:
            max_mb = self.max_bytes / 1024 / 1024
            raise ValidationError(
                f"Audio file too large (maximum {max_mb:g} MB)",
                field="audio",
                bound="max",
            )
        mime = (upload.content_type or "").split(";")[0].strip().lower()
        if mime not in ALLOWED_MIME_TYPES:
            _LOGGER.warning("Unexpected audio MIME type: %s", mime or "(none)")

    def transcribe(
        self, upload: AudioUpload, client_id: str = FALLBACK_CLIENT_ID
    ) -> TranscriptionResult:
        if self.config_error is not None:
            raise self.config_error

        self.validate(upload)

        if not self.limiter.is_allowed(client_id):
            log_event("stt.rate_limited", {"limiter": self.limiter.name})
            raise RateLimitedError()

        log_event(
            "stt.start",
            {
                "filename": upload.filename,
                "bytes": len(upload.data),
                "model": self.model,
                "language": self.language,
            },
        )
        try:
            raw = self._call(upload)
        except Exception as exc:
            mapped = translate_sdk_error(exc)
            _LOGGER.warning("Transcription failed: %s", mapped)
            log_event(
                "stt.failed",
                {
                    "filename": upload.filename,
                    "model": self.model,
                    "error_type": mapped.__class__.__name__,
                },
            )
            if mapped is exc:
                raise
            raise mapped from exc
        finally:
            self.limiter.record(client_id)

        text = raw.get("text")
        if not isinstance(text, str):
            log_event("stt.failed", {"error_type": "MalformedResponseError"})
            raise MalformedResponseError("Invalid API response: no text found")

        _LOGGER.info("Transcription succeeded (len=%s chars)", len(text))
        log_event(
            "stt.success",
            {"filename": upload.filename, "model": self.model, "text_len": len(text)},
        )
        return TranscriptionResult(
            text=text.strip(), raw_response=raw, model=self.model
        )

    def _call(self, upload: AudioUpload) -> dict[str, Any]:
        if self._client is None:
            self._client = self._client_factory(
                "openai", self._api_key or "", self.timeout_seconds
            )
        response = self._client.audio.transcriptions.create(
            file=(upload.filename, upload.data, upload.content_type),
            model=self.model,
            language=self.language,
            response_format="json",
        )
        # The OpenAI SDK returns a pydantic model; convert to a serialisable dict
        if hasattr(response, "model_dump"):
            raw = response.model_dump()
        else:
            raw = response
        if not isinstance(raw, dict):
            raise MalformedResponseError("Invalid API response")
        return raw
