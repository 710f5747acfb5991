from __future__ import annotations

"""Error taxonomy shared by the store, the proxy and the web layer.

Every error carries the HTTP status the proxy answers with, so the web layer
can map exceptions to responses without a lookup table of its own.
"""


class JournalError(Exception):
    """Base class for all expected failures."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(JournalError):
    """Bad input shape, length or method."""

    status_code = 400

    def __init__(
        self, message: str, *, field: str | None = None, bound: str | None = None
    ) -> None:
        super().__init__(message)
        self.field = field
        # "min" or "max" when a length bound was violated
        self.bound = bound


class InvalidMethodError(ValidationError):
    def __init__(self, method: str) -> None:
        super().__init__(f"Invalid analysis method: {method}", field="analysis_method")
        self.method = method


class NotFoundError(JournalError):
    status_code = 404

    def __init__(self, entry_id: int) -> None:
        super().__init__(f"Entry {entry_id} not found")
        self.entry_id = entry_id


class AnalysisNotFoundError(NotFoundError):
    def __init__(self, entry_id: int, method: str) -> None:
        super().__init__(entry_id)
        self.method = method
        self.message = f"Analysis '{method}' not found for entry {entry_id}"
        self.args = (self.message,)


class RateLimitedError(JournalError):
    status_code = 429

    def __init__(
        self, message: str = "Rate limit reached. Please try again later."
    ) -> None:
        super().__init__(message)


class UpstreamError(JournalError):
    """Non-2xx answer from the external service."""

    status_code = 500

    def __init__(self, upstream_status: int, message: str) -> None:
        super().__init__(f"Upstream API error ({upstream_status}): {message}")
        self.upstream_status = upstream_status
        self.upstream_message = message


class MalformedResponseError(JournalError):
    """2xx answer without the expected content."""

    status_code = 500


class TransportError(JournalError):
    """DNS, connect or timeout failure talking to the external service."""

    status_code = 500


class ConfigError(JournalError):
    """Missing or invalid operator configuration (e.g. no API key)."""

    status_code = 500
