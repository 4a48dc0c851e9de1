from __future__ import annotations

from pathlib import Path

import allure
import httpx
import pytest

from call_transcribe.errors import ExternalServiceError, ValidationError
from call_transcribe.services.transcription import WhisperTranscriber

pytestmark = [
    allure.epic("Services"),
    allure.feature("Transcription"),
]


def _transcriber(handler, **kwargs) -> WhisperTranscriber:
    return WhisperTranscriber(
        api_key="sk-test",
        base_url="https://api.test/v1",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _audio(tmp_path: Path, name: str = "call_playable.mp3", size: int = 16) -> Path:
    path = tmp_path / name
    path.write_bytes(b"\0" * size)
    return path


def test_posts_multipart_and_parses_transcript(tmp_path: Path) -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["authorization"]
        seen["body"] = request.read()
        return httpx.Response(
            200,
            json={"text": "Hello, thanks for calling.", "language": "english", "duration": 12.5},
        )

    with _transcriber(handler) as transcriber:
        result = transcriber.process(_audio(tmp_path))

    assert seen["path"] == "/v1/audio/transcriptions"
    assert seen["auth"] == "Bearer sk-test"
    assert b'name="model"' in seen["body"]
    assert b"whisper-1" in seen["body"]
    assert b'filename="call_playable.mp3"' in seen["body"]
    assert result.text == "Hello, thanks for calling."
    assert result.model == "whisper-1"
    assert result.language == "english"
    assert result.duration_seconds == 12.5


def test_oversized_file_is_rejected_before_upload(tmp_path: Path) -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"text": ""})

    transcriber = _transcriber(handler, max_file_size_bytes=10)

    with pytest.raises(ValidationError) as raised:
        transcriber.process(_audio(tmp_path, size=11))

    assert raised.value.code == "file_too_large"
    assert raised.value.retryable is False
    assert calls == []


def test_disallowed_extension_is_rejected(tmp_path: Path) -> None:
    transcriber = _transcriber(lambda request: httpx.Response(200, json={"text": ""}))

    with pytest.raises(ValidationError) as raised:
        transcriber.process(_audio(tmp_path, name="call.ogg"))

    assert raised.value.code == "invalid_format"
    assert raised.value.context["extension"] == ".ogg"


@pytest.mark.parametrize(
    ("status_code", "retryable"),
    [(500, True), (503, True), (400, False), (401, False)],
)
def test_http_errors_map_to_typed_errors(tmp_path: Path, status_code: int, retryable: bool) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"error": {"message": "nope"}})

    with pytest.raises(ExternalServiceError) as raised:
        _transcriber(handler).process(_audio(tmp_path))

    assert raised.value.code == "transcription_api_error"
    assert raised.value.retryable is retryable
    assert raised.value.context["status_code"] == status_code
    assert "nope" in str(raised.value.context["original_error"])


def test_rate_limit_reports_retry_after(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"retry-after": "7"}, json={})

    with pytest.raises(ExternalServiceError) as raised:
        _transcriber(handler).process(_audio(tmp_path))

    assert raised.value.code == "rate_limit_exceeded"
    assert raised.value.retryable is True
    assert raised.value.context["retry_after"] == 7.0


def test_network_error_is_retryable(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("connect timed out", request=request)

    with pytest.raises(ExternalServiceError) as raised:
        _transcriber(handler).process(_audio(tmp_path))

    assert raised.value.retryable is True
    assert raised.value.context["reason"] == "transient"


def test_response_without_text_is_an_error(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"segments": []})

    with pytest.raises(ExternalServiceError, match="transcription transcribe failed"):
        _transcriber(handler).process(_audio(tmp_path))
