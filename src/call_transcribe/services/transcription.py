"""Whisper transcription over the OpenAI-compatible HTTP API."""

from __future__ import annotations

import logging
from pathlib import Path

import httpx

from call_transcribe.errors import (
    HTTP_TOO_MANY_REQUESTS,
    ExternalServiceError,
    ValidationError,
)
from call_transcribe.pipeline.contracts import TranscriptionResult
from call_transcribe.pipeline.scratch import file_size

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "whisper-1"
DEFAULT_TIMEOUT_SECONDS = 300.0
MAX_FILE_SIZE_BYTES = 25_000_000
ALLOWED_EXTENSIONS: tuple[str, ...] = (".wav", ".mp3", ".m4a", ".flac")

_CONTENT_TYPES = {
    ".wav": "audio/wav",
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".flac": "audio/flac",
}


class WhisperTranscriber:
    """Posts one audio file per call to ``{base_url}/audio/transcriptions``."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_file_size_bytes: int = MAX_FILE_SIZE_BYTES,
        allowed_extensions: tuple[str, ...] = ALLOWED_EXTENSIONS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.model = model
        self.max_file_size_bytes = max_file_size_bytes
        self.allowed_extensions = tuple(ext.lower() for ext in allowed_extensions)
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    def validate(self, local_path: Path) -> None:
        """Reject files the API would refuse, before uploading anything."""

        extension = local_path.suffix.lower()
        if extension not in self.allowed_extensions:
            raise ValidationError.invalid_format(
                str(local_path),
                extension,
                self.allowed_extensions,
            )
        size_bytes = file_size(local_path)
        if size_bytes > self.max_file_size_bytes:
            raise ValidationError.file_too_large(
                str(local_path),
                size_bytes,
                self.max_file_size_bytes,
            )

    def process(self, local_path: Path) -> TranscriptionResult:
        self.validate(local_path)
        content_type = _CONTENT_TYPES.get(local_path.suffix.lower(), "application/octet-stream")
        try:
            with local_path.open("rb") as audio:
                response = self._client.post(
                    "/audio/transcriptions",
                    data={"model": self.model, "response_format": "verbose_json"},
                    files={"file": (local_path.name, audio, content_type)},
                )
        except httpx.HTTPError as error:
            raise ExternalServiceError.transcription_failed(str(local_path), error) from error

        if response.status_code == HTTP_TOO_MANY_REQUESTS:
            raise ExternalServiceError.rate_limited(
                "transcription",
                _retry_after_seconds(response),
            )
        if not response.is_success:
            raise ExternalServiceError.transcription_failed(
                str(local_path),
                _error_message(response),
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as error:
            raise ExternalServiceError.transcription_failed(
                str(local_path),
                "malformed JSON response",
                status_code=response.status_code,
            ) from error

        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise ExternalServiceError.transcription_failed(
                str(local_path),
                "response has no transcript text",
                status_code=response.status_code,
            )

        duration = payload.get("duration")
        logger.info("Transcribed %s (%d chars)", local_path.name, len(text))
        return TranscriptionResult(
            text=text,
            model=self.model,
            language=payload.get("language"),
            duration_seconds=float(duration) if isinstance(duration, int | float) else None,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> WhisperTranscriber:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _retry_after_seconds(response: httpx.Response) -> float | None:
    raw = response.headers.get("retry-after")
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.text[:200]}"
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return f"HTTP {response.status_code}: {error['message']}"
    return f"HTTP {response.status_code}"
