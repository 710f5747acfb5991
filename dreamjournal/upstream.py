from __future__ import annotations

"""Upstream SDK clients and error normalisation shared by the proxy endpoints."""

import logging
from typing import Any, Callable, Mapping

import anthropic
import openai

from .errors import MalformedResponseError, TransportError, UpstreamError

_LOGGER = logging.getLogger(__name__)

GENERIC_UPSTREAM_MESSAGE = "Unknown API error"
SUPPORTED_PROVIDERS = ("openai", "anthropic")

# (provider, api_key, timeout_seconds) -> SDK client
ClientFactory = Callable[[str, str, float], Any]


def split_model_spec(spec: str) -> tuple[str, str]:
    """Parse ``provider:model`` → (provider, provider_model_id).

    A bare model name is taken as an OpenAI model. Anthropic aliases without a
    date suffix are mapped to a stable dated id.
    """
    if ":" in spec:
        provider, model = spec.split(":", 1)
    else:
        provider, model = "openai", spec
    provider = provider.strip().lower()
    model = model.strip()
    if not model:
        raise ValueError("Invalid model spec: missing model segment")
    if provider not in SUPPORTED_PROVIDERS:
        raise ValueError(f"Unsupported provider '{provider}'")
    if provider == "anthropic":
        model = _normalize_anthropic_model(model)
    return provider, model


def _normalize_anthropic_model(model_name: str) -> str:
    # Already a full id with a date suffix
    if any(token.isdigit() and len(token) == 8 for token in model_name.split("-")):
        return model_name
    default_versions: dict[str, str] = {
        "claude-sonnet-4": "20250514",
        "sonnet-4": "20250514",
        "claude-sonnet": "20250514",
    }
    if model_name in default_versions:
        return f"{model_name}-{default_versions[model_name]}"
    return model_name


def default_client_factory(provider: str, api_key: str, timeout: float) -> Any:
    """Build an SDK client; retries are disabled, every failure is terminal."""

    if provider == "openai":
        return openai.OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
    if provider == "anthropic":
        return anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)
    raise ValueError(f"Unsupported provider '{provider}'")


def upstream_message(exc: Exception) -> str:
    """Extract the service's own error message from an SDK status error."""

    body = getattr(exc, "body", None)
    if isinstance(body, Mapping):
        message = body.get("message")
        nested = body.get("error")
        if not message and isinstance(nested, Mapping):
            message = nested.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return GENERIC_UPSTREAM_MESSAGE


def translate_sdk_error(exc: Exception) -> Exception:
    """Map an OpenAI/Anthropic SDK exception onto the proxy error taxonomy.

    Exceptions that are not SDK transport/status errors are returned unchanged.
    """

    if isinstance(exc, (openai.APIConnectionError, anthropic.APIConnectionError)):
        # Timeouts are a subclass of the connection error in both SDKs
        return TransportError(f"Upstream service unreachable: {exc}")
    if isinstance(exc, (openai.APIStatusError, anthropic.APIStatusError)):
        return UpstreamError(exc.status_code, upstream_message(exc))
    if isinstance(
        exc,
        (openai.APIResponseValidationError, anthropic.APIResponseValidationError),
    ):
        return MalformedResponseError(f"Invalid API response: {exc}")
    return exc
