from __future__ import annotations

"""Starlette application exposing the analysis and transcription proxy."""

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from .. import __version__
from ..analysis import AnalysisProxy, AnalysisRequest
from ..config import CONFIG
from ..errors import JournalError
from ..events import log_event
from ..ratelimit import RateLimiter, client_identifier
from ..transcription import AudioUpload, Transcriber
from ..utils.time_utils import iso_timestamp


_LOGGER = logging.getLogger(__name__)

ANALYSIS_LEDGER_FILENAME = "rate_limit.json"
TRANSCRIBE_LEDGER_FILENAME = "transcribe_rate_limit.json"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}
# Every method is routed so that wrong ones get the JSON 405 body
_ROUTED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@dataclass(slots=True)
class WebAppConfig:
    """Runtime configuration for the proxy server."""

    state_dir: Path = field(default_factory=lambda: CONFIG.state_dir)
    host: str = "127.0.0.1"
    port: int = 8765
    user_config_path: Path | None = None

    def resolved(self) -> "WebAppConfig":
        """Return a copy with absolute paths for filesystem access."""

        return WebAppConfig(
            state_dir=self.state_dir.expanduser().resolve(),
            host=self.host,
            port=self.port,
            user_config_path=(
                self.user_config_path.expanduser().resolve()
                if self.user_config_path
                else None
            ),
        )


@dataclass(slots=True)
class ProxyServices:
    analysis: AnalysisProxy
    transcriber: Transcriber


def build_services(config: WebAppConfig) -> ProxyServices:
    """Create the two proxies, each with its own persisted ledger and threshold."""

    resolved = config.resolved()
    resolved.state_dir.mkdir(parents=True, exist_ok=True)
    analysis_limiter = RateLimiter(
        CONFIG.analysis_requests_per_hour,
        ledger_path=resolved.state_dir / ANALYSIS_LEDGER_FILENAME,
        name="analysis",
    )
    transcribe_limiter = RateLimiter(
        CONFIG.transcribe_requests_per_hour,
        ledger_path=resolved.state_dir / TRANSCRIBE_LEDGER_FILENAME,
        name="transcribe",
    )
    return ProxyServices(
        analysis=AnalysisProxy(
            analysis_limiter, config_path=resolved.user_config_path
        ),
        transcriber=Transcriber(
            transcribe_limiter, config_path=resolved.user_config_path
        ),
    )


def build_app(
    config: WebAppConfig, services: ProxyServices | None = None
) -> Starlette:
    """Construct the Starlette app; ``services`` may be injected by tests."""

    resolved = config.resolved()
    if services is None:
        services = build_services(resolved)

    async def analyze(request: Request) -> Response:
        proxy: AnalysisProxy = request.app.state.services.analysis
        try:
            payload = await request.json()
        except ValueError:
            return _error("Invalid JSON body", 400)
        if not isinstance(payload, dict):
            return _error("Invalid JSON body: expected an object", 400)

        client_id = _client_id(request)
        response = await run_in_threadpool(
            proxy.analyze, AnalysisRequest.from_payload(payload), client_id
        )
        log_event(
            "web.analyze.completed",
            {"method": response.method, "result_len": len(response.result)},
        )
        return _json(
            {"success": True, "result": response.result, "timestamp": iso_timestamp()}
        )

    async def transcribe(request: Request) -> Response:
        transcriber: Transcriber = request.app.state.services.transcriber
        try:
            form = await request.form()
        except Exception as exc:  # multipart parser errors vary by version
            _LOGGER.warning("Unreadable upload: %s", exc)
            return _error("No valid audio file uploaded", 400)
        upload = form.get("audio")
        if upload is None:
            return _error("No valid audio file uploaded: missing 'audio' field", 400)
        if not isinstance(upload, UploadFile):
            return _error("No valid audio file uploaded: invalid payload", 400)

        blob = await upload.read()
        audio = AudioUpload(
            data=blob,
            filename=upload.filename or "recording.webm",
            content_type=upload.content_type or "audio/webm",
        )
        log_event(
            "web.upload.received",
            {
                "filename": audio.filename,
                "content_type": audio.content_type,
                "bytes": len(blob),
            },
        )
        result = await run_in_threadpool(
            transcriber.transcribe, audio, _client_id(request)
        )
        return _json(
            {"success": True, "text": result.text, "timestamp": iso_timestamp()}
        )

    async def health(request: Request) -> Response:
        state: ProxyServices = request.app.state.services
        return JSONResponse(
            {
                "status": "ok",
                "version": __version__,
                "analysis_configured": state.analysis.configured,
                "transcription_configured": state.transcriber.configured,
            }
        )

    routes = [
        Route(
            "/analyze",
            _proxy_endpoint(analyze, "analysis"),
            methods=_ROUTED_METHODS,
        ),
        Route(
            "/transcribe",
            _proxy_endpoint(transcribe, "transcriber"),
            methods=_ROUTED_METHODS,
        ),
        Route("/health", health, methods=["GET"]),
    ]
    app = Starlette(routes=routes)
    app.state.config = resolved
    app.state.services = services
    return app


def _proxy_endpoint(
    handler: Callable[[Request], Awaitable[Response]], service_name: str
) -> Callable[[Request], Awaitable[Response]]:
    """Wrap a POST handler with preflight, method, config and error handling."""

    async def endpoint(request: Request) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        if request.method != "POST":
            return _error("Only POST requests are allowed", 405)

        service: Any = getattr(request.app.state.services, service_name)
        if service.config_error is not None:
            return _error(service.config_error.message, 500)

        try:
            return await handler(request)
        except JournalError as exc:
            log_event(
                "web.request.failed",
                {
                    "path": request.url.path,
                    "status": exc.status_code,
                    "error_type": exc.__class__.__name__,
                },
            )
            return _error(exc.message, exc.status_code)
        except Exception:
            _LOGGER.exception("Unhandled error on %s", request.url.path)
            return _error("Internal server error", 500)

    return endpoint


def _client_id(request: Request) -> str:
    remote = request.client.host if request.client else None
    return client_identifier(request.headers, remote)


def _json(payload: dict[str, Any], status_code: int = 200) -> JSONResponse:
    return JSONResponse(payload, status_code=status_code, headers=CORS_HEADERS)


def _error(message: str, status_code: int = 400) -> JSONResponse:
    return _json(
        {"success": False, "error": message, "timestamp": iso_timestamp()},
        status_code=status_code,
    )


def run_app(config: WebAppConfig, services: ProxyServices | None = None) -> None:
    """Serve the proxy with uvicorn."""

    app = build_app(config, services)
    import uvicorn

    uvicorn.run(app, host=config.host, port=config.port)
