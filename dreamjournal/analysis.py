from __future__ import annotations

"""Dream analysis proxy: validation, prompt construction and the upstream call."""

from dataclasses import dataclass
import logging
import time
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from bs4 import BeautifulSoup
from gjdutils.strings import jinja_render

from .config import CONFIG, resolve_api_key
from .errors import (
    ConfigError,
    InvalidMethodError,
    MalformedResponseError,
    RateLimitedError,
    ValidationError,
)
from .events import log_event
from .ratelimit import FALLBACK_CLIENT_ID, RateLimiter
from .upstream import (
    ClientFactory,
    default_client_factory,
    split_model_spec,
    translate_sdk_error,
)
from .utils.time_utils import iso_timestamp

_LOGGER = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"

# method -> prompt template; the set of methods is closed
ANALYSIS_TEMPLATES: dict[str, str] = {
    "jungian": "jungian.prompt.md.jinja",
    "freudian": "freudian.prompt.md.jinja",
    "sentiment": "sentiment.prompt.md.jinja",
    "archetypes": "archetypes.prompt.md.jinja",
    "what_if": "what_if.prompt.md.jinja",
    "poem": "poem.prompt.md.jinja",
}
ANALYSIS_METHODS = tuple(ANALYSIS_TEMPLATES)

ANALYSIS_TITLES: dict[str, str] = {
    "jungian": "Jungian analysis",
    "freudian": "Freudian analysis",
    "sentiment": "Sentiment analysis",
    "archetypes": "Archetype analysis",
    "what_if": "What-if question",
    "poem": "Dream poem",
}

SYSTEM_PROMPT = (
    "You are an experienced dream analyst and psychologist. "
    "Be empathetic and helpful."
)


@dataclass
class AnalysisRequest:
    """Raw inputs as received from the client."""

    text: Any
    method: Any
    context: Any = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AnalysisRequest":
        return cls(
            text=payload.get("dream_text"),
            method=payload.get("analysis_method"),
            context=payload.get("context"),
        )


@dataclass
class PreparedAnalysis:
    """Validated and sanitized inputs."""

    text: str
    method: str
    context: str


@dataclass
class AnalysisResponse:
    result: str
    method: str
    model: str
    timestamp: str


def analysis_title(method: str) -> str:
    return ANALYSIS_TITLES.get(method, "Analysis")


def sanitize_text(value: str) -> str:
    """Strip markup tags, keeping the text content.

    get_text() decodes entities, so encoded tags surface as real ones; strip
    again until the text stops shrinking.
    """

    while True:
        stripped = BeautifulSoup(value, "html.parser").get_text()
        if len(stripped) >= len(value):
            return stripped.strip()
        value = stripped


def validate_analysis_request(
    request: AnalysisRequest,
    *,
    min_length: int | None = None,
    max_length: int | None = None,
) -> PreparedAnalysis:
    """Check required fields, method and length bounds; sanitize text and context."""

    if min_length is None:
        min_length = CONFIG.min_text_length
    if max_length is None:
        max_length = CONFIG.max_text_length

    if request.text is None or request.method is None:
        raise ValidationError(
            "Missing required fields: dream_text, analysis_method",
            field="dream_text" if request.text is None else "analysis_method",
        )
    if not isinstance(request.text, str):
        raise ValidationError("dream_text must be a string", field="dream_text")
    if not isinstance(request.method, str) or request.method not in ANALYSIS_TEMPLATES:
        raise InvalidMethodError(str(request.method))

    text = sanitize_text(request.text)
    if len(text) < min_length:
        raise ValidationError(
            f"Dream text too short (minimum {min_length} characters)",
            field="dream_text",
            bound="min",
        )
    if len(text) > max_length:
        raise ValidationError(
            f"Dream text too long (maximum {max_length} characters)",
            field="dream_text",
            bound="max",
        )

    context = request.context
    if context is not None and not isinstance(context, str):
        raise ValidationError("context must be a string", field="context")
    return PreparedAnalysis(
        text=text,
        method=request.method,
        context=sanitize_text(context) if context else "",
    )


@lru_cache(maxsize=8)
def _load_prompt(filename: str) -> str:
    path = PROMPTS_DIR / filename
    if not path.exists():
        raise FileNotFoundError(path)
    return path.read_text(encoding="utf-8")


def build_prompt(prepared: PreparedAnalysis) -> str:
    template = _load_prompt(ANALYSIS_TEMPLATES[prepared.method])
    rendered = jinja_render(
        template,
        {"text": prepared.text, "context": prepared.context},
        filesystem_loader=PROMPTS_DIR,
    )
    return rendered.strip()


class AnalysisProxy:
    """Turns one analysis request into exactly one upstream generation call.

    Flow: configuration check, validation, rate check, upstream call. Nothing
    is retried; any failure is terminal for the request.
    """

    def __init__(
        self,
        limiter: RateLimiter,
        *,
        model: str | None = None,
        api_key: str | None = None,
        client_factory: ClientFactory = default_client_factory,
        max_tokens: int | None = None,
        temperature: float | None = None,
        timeout_seconds: float | None = None,
        min_length: int | None = None,
        max_length: int | None = None,
        config_path: Path | None = None,
    ) -> None:
        self.limiter = limiter
        self.model_spec = model or CONFIG.model_llm
        self.provider, self.model = split_model_spec(self.model_spec)
        self.max_tokens = max_tokens or CONFIG.llm_max_tokens_analysis
        self.temperature = (
            temperature if temperature is not None else CONFIG.llm_temperature_analysis
        )
        self.timeout_seconds = timeout_seconds or CONFIG.llm_timeout_seconds
        self.min_length = (
            min_length if min_length is not None else CONFIG.min_text_length
        )
        self.max_length = (
            max_length if max_length is not None else CONFIG.max_text_length
        )
        self._client_factory = client_factory
        self._client: Any = None
        self.config_error: ConfigError | None = None
        self._api_key = api_key
        if self._api_key is None:
            try:
                self._api_key = resolve_api_key(self.provider, config_path)
            except ConfigError as exc:
                self.config_error = exc
                _LOGGER.error("Analysis endpoint disabled: %s", exc.message)

    @property
    def configured(self) -> bool:
        return self.config_error is None

    def analyze(
        self, request: AnalysisRequest, client_id: str = FALLBACK_CLIENT_ID
    ) -> AnalysisResponse:
        if self.config_error is not None:
            raise self.config_error

        prepared = validate_analysis_request(
            request, min_length=self.min_length, max_length=self.max_length
        )

        if not self.limiter.is_allowed(client_id):
            log_event(
                "llm.analysis.rate_limited",
                {"method": prepared.method, "limiter": self.limiter.name},
            )
            raise RateLimitedError()

        prompt = build_prompt(prepared)
        started = time.monotonic()
        log_event(
            "llm.analysis.started",
            {
                "provider": self.provider,
                "model": self.model,
                "method": prepared.method,
                "text_len": len(prepared.text),
            },
        )
        try:
            text = self._generate(prompt)
        except Exception as exc:
            mapped = translate_sdk_error(exc)
            _LOGGER.warning("Analysis call failed: %s", mapped)
            log_event(
                "llm.analysis.failed",
                {
                    "provider": self.provider,
                    "model": self.model,
                    "method": prepared.method,
                    "error_type": mapped.__class__.__name__,
                },
            )
            if mapped is exc:
                raise
            raise mapped from exc
        finally:
            # The attempt counts against the limit whatever its outcome
            self.limiter.record(client_id)

        log_event(
            "llm.analysis.success",
            {
                "provider": self.provider,
                "model": self.model,
                "method": prepared.method,
                "result_len": len(text),
                "elapsed_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return AnalysisResponse(
            result=text,
            method=prepared.method,
            model=self.model_spec,
            timestamp=iso_timestamp(),
        )

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = self._client_factory(
                self.provider, self._api_key or "", self.timeout_seconds
            )
        return self._client

    def _generate(self, prompt: str) -> str:
        client = self._get_client()
        if self.provider == "anthropic":
            return self._call_anthropic(client, prompt)
        return self._call_openai(client, prompt)

    def _call_openai(self, client: Any, prompt: str) -> str:
        response = client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as exc:
            raise MalformedResponseError("Invalid API response") from exc
        if not isinstance(content, str):
            raise MalformedResponseError("Invalid API response: missing content")
        return content.strip()

    def _call_anthropic(self, client: Any, prompt: str) -> str:
        response = client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )
        blocks = [
            block.text
            for block in (getattr(response, "content", None) or [])
            if getattr(block, "type", None) == "text"
        ]
        if not blocks:
            raise MalformedResponseError("Invalid API response: missing content")
        return "".join(blocks).strip()
