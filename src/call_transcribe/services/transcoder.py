"""ffmpeg-based audio normalization."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from call_transcribe.errors import ExternalServiceError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300.0
STDERR_TAIL_CHARS = 500


class FfmpegTranscoder:
    """Convert recordings to 16 kHz mono MP3 suitable for playback and transcription."""

    def __init__(
        self,
        *,
        binary: str = "ffmpeg",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.binary = binary
        self.timeout_seconds = timeout_seconds

    def build_command(self, input_path: Path, output_path: Path) -> list[str]:
        return [
            self.binary,
            "-y",
            "-i",
            str(input_path),
            "-codec:a",
            "libmp3lame",
            "-qscale:a",
            "4",
            "-ar",
            "16000",
            "-ac",
            "1",
            str(output_path),
        ]

    def transcode(self, input_path: Path, output_path: Path) -> None:
        command = self.build_command(input_path, output_path)
        logger.debug("Running %s", " ".join(command))
        try:
            completed = subprocess.run(  # noqa: S603
                command,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout_seconds,
            )
        except FileNotFoundError as error:
            raise ExternalServiceError.transcode_failed(
                str(input_path),
                f"{self.binary} executable not found",
                retryable=False,
            ) from error
        except subprocess.TimeoutExpired as error:
            raise ExternalServiceError.transcode_failed(
                str(input_path),
                f"timed out after {self.timeout_seconds:.0f}s",
                retryable=True,
            ) from error

        if completed.returncode != 0:
            stderr_tail = (completed.stderr or "").strip()[-STDERR_TAIL_CHARS:]
            raise ExternalServiceError.transcode_failed(
                str(input_path),
                f"exit code {completed.returncode}: {stderr_tail}",
                retryable=False,
            )
        logger.info("Transcoded %s -> %s", input_path.name, output_path.name)
