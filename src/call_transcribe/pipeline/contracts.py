"""Collaborator contracts and the records exchanged with them."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from call_transcribe.ingestion.models import RemoteItem


@dataclass(slots=True, frozen=True)
class TranscriptionResult:
    """Text produced by the transcription engine for one recording."""

    text: str
    model: str
    language: str | None = None
    duration_seconds: float | None = None


@dataclass(slots=True, frozen=True)
class PublishedArtifacts:
    """Object-storage URLs of the uploaded audio and transcript."""

    audio_url: str | None = None
    transcript_url: str | None = None


class Transcoder(Protocol):
    def transcode(self, input_path: Path, output_path: Path) -> None:
        """Convert ``input_path`` to the normalized audio form at ``output_path``."""
        raise NotImplementedError


class Transcriber(Protocol):
    def process(self, local_path: Path) -> TranscriptionResult:
        """Transcribe one local audio file.

        Raises ``ValidationError`` before calling the engine when the file is
        too large or has a disallowed format.
        """
        raise NotImplementedError


class RecordSink(Protocol):
    def store(
        self,
        item: RemoteItem,
        result: TranscriptionResult,
        artifacts: PublishedArtifacts,
    ) -> None:
        """Persist the outcome of one processed recording."""
        raise NotImplementedError


class ObjectStorage(Protocol):
    def put(self, local_path: Path, key: str, content_type: str) -> str:
        """Upload ``local_path`` under ``key`` and return its URL."""
        raise NotImplementedError


class MetricsSink(Protocol):
    def increment(self, counter_name: str, labels: dict[str, str]) -> None:
        raise NotImplementedError
