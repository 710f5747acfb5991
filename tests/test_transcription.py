from __future__ import annotations

from types import SimpleNamespace

import httpx
import openai
import pytest

from dreamjournal.errors import (
    MalformedResponseError,
    RateLimitedError,
    TransportError,
    UpstreamError,
    ValidationError,
)
from dreamjournal.ratelimit import RateLimiter
from dreamjournal.transcription import AudioUpload, Transcriber


class _FakeTranscriptions:
    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.calls: list[dict] = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _transcriber(outcome, threshold=50, **kwargs):
    transcriptions = _FakeTranscriptions(outcome)
    client = SimpleNamespace(audio=SimpleNamespace(transcriptions=transcriptions))
    limiter = RateLimiter(threshold)
    transcriber = Transcriber(
        limiter,
        api_key="test-key",
        client_factory=lambda provider, key, timeout: client,
        **kwargs,
    )
    return transcriber, limiter, transcriptions


def test_transcribe_forwards_upload_and_returns_text():
    transcriber, limiter, transcriptions = _transcriber(
        {"text": "  I dreamt of a lighthouse.  "}
    )
    upload = AudioUpload(
        data=b"RIFFdata", filename="clip.wav", content_type="audio/wav"
    )

    result = transcriber.transcribe(upload, "8.8.8.8")

    assert result.text == "I dreamt of a lighthouse."
    assert result.model == "whisper-1"
    call = transcriptions.calls[0]
    assert call["file"] == ("clip.wav", b"RIFFdata", "audio/wav")
    assert call["model"] == "whisper-1"
    assert call["language"] == "en"
    assert limiter.count("8.8.8.8") == 1


def test_pydantic_style_response_is_converted():
    response = SimpleNamespace(model_dump=lambda: {"text": "hello"})
    transcriber, _, _ = _transcriber(response)

    result = transcriber.transcribe(AudioUpload(data=b"x"))

    assert result.text == "hello"
    assert result.raw_response == {"text": "hello"}


def test_empty_and_oversized_uploads_are_rejected():
    transcriber, limiter, transcriptions = _transcriber({"text": "x"}, max_bytes=4)

    with pytest.raises(ValidationError) as empty:
        transcriber.transcribe(AudioUpload(data=b""), "8.8.8.8")
    assert empty.value.bound == "min"

    with pytest.raises(ValidationError) as large:
        transcriber.transcribe(AudioUpload(data=b"12345"), "8.8.8.8")
    assert large.value.bound == "max"

    assert transcriptions.calls == []
    assert limiter.count("8.8.8.8") == 0


def test_unknown_mime_type_is_accepted():
    transcriber, _, transcriptions = _transcriber({"text": "ok"})

    transcriber.transcribe(AudioUpload(data=b"x", content_type="application/x-weird"))

    assert len(transcriptions.calls) == 1


def test_rate_limit_applies_to_transcription():
    transcriber, limiter, transcriptions = _transcriber({"text": "x"}, threshold=1)
    limiter.record("8.8.8.8")

    with pytest.raises(RateLimitedError):
        transcriber.transcribe(AudioUpload(data=b"x"), "8.8.8.8")
    assert transcriptions.calls == []


def test_missing_text_is_malformed():
    transcriber, limiter, _ = _transcriber({"language": "en"})

    with pytest.raises(MalformedResponseError):
        transcriber.transcribe(AudioUpload(data=b"x"), "8.8.8.8")
    assert limiter.count("8.8.8.8") == 1


def test_sdk_errors_are_translated():
    request = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")
    status_error = openai.APIStatusError(
        "bad",
        response=httpx.Response(413, request=request),
        body={"message": "File too large"},
    )
    transcriber, _, _ = _transcriber(status_error)
    with pytest.raises(UpstreamError) as excinfo:
        transcriber.transcribe(AudioUpload(data=b"x"))
    assert excinfo.value.upstream_status == 413
    assert "File too large" in excinfo.value.message

    transcriber, _, _ = _transcriber(openai.APITimeoutError(request=request))
    with pytest.raises(TransportError):
        transcriber.transcribe(AudioUpload(data=b"x"))
