"""SQLite-backed record of processed recordings."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlmodel import Session, SQLModel, col, select

from call_transcribe.errors import ExternalServiceError, classify_service_failure
from call_transcribe.ingestion.models import RemoteItem
from call_transcribe.pipeline.contracts import PublishedArtifacts, TranscriptionResult
from call_transcribe.storage.common import build_sqlite_engine, utc_now
from call_transcribe.storage.models import ProcessedRecording

logger = logging.getLogger(__name__)

TRANSCRIPT_MAX_CHARS = 2000
DEFAULT_BUSY_TIMEOUT_MS = 5000
UNKNOWN = "Unknown"

_PHONE_PATTERN = re.compile(r"-(\d{10})\s+by")
_AGENT_PATTERN = re.compile(r"by\s+([^@\s]+)")
_TIME_PATTERN = re.compile(r"@\s+([^.]+)\.wav")
_DATE_PATTERN = re.compile(r"(\d{1,2}_\d{1,2}_\d{4})")


@dataclass(slots=True, frozen=True)
class RecordingMetadata:
    """Call details encoded in a recording's file name and folder."""

    phone_number: str
    agent_name: str
    call_date: str
    call_time: str


def parse_recording_metadata(name: str, remote_path: str) -> RecordingMetadata:
    """Extract call details from names like ``Campaign-5551234567 by jane@acme.com @ 10_15_00.wav``.

    The call date comes from the ``MM_DD_YYYY`` date folder in ``remote_path``.
    Missing parts fall back to an empty phone number and ``Unknown``.
    """

    phone_match = _PHONE_PATTERN.search(name)
    agent_match = _AGENT_PATTERN.search(name)
    time_match = _TIME_PATTERN.search(name)
    date_match = _DATE_PATTERN.search(remote_path)

    agent = agent_match.group(1) if agent_match else UNKNOWN
    return RecordingMetadata(
        phone_number=phone_match.group(1) if phone_match else "",
        agent_name=agent[:1].upper() + agent[1:],
        call_date=date_match.group(1).replace("_", "/") if date_match else UNKNOWN,
        call_time=time_match.group(1).replace("_", ":") if time_match else UNKNOWN,
    )


class SqliteRecordStore:
    """Upserts one ``processed_recordings`` row per remote path."""

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        transcript_max_chars: int = TRANSCRIPT_MAX_CHARS,
    ) -> None:
        self.db_path = db_path
        self.transcript_max_chars = transcript_max_chars
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def init_schema(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        SQLModel.metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    def store(
        self,
        item: RemoteItem,
        result: TranscriptionResult,
        artifacts: PublishedArtifacts,
    ) -> None:
        metadata = parse_recording_metadata(item.name, item.remote_path)
        row = ProcessedRecording(
            remote_path=item.remote_path,
            name=item.name,
            phone_number=metadata.phone_number,
            agent_name=metadata.agent_name,
            call_date=metadata.call_date,
            call_time=metadata.call_time,
            language=result.language,
            duration_seconds=result.duration_seconds,
            model=result.model,
            transcript=result.text[: self.transcript_max_chars],
            audio_url=artifacts.audio_url,
            transcript_url=artifacts.transcript_url,
            remote_modified_at=item.modified_at,
            processed_at=utc_now(),
        )
        try:
            with Session(self.engine) as session:
                session.merge(row)
                session.commit()
        except IntegrityError as error:
            raise ExternalServiceError.record_store_failed(
                "store",
                error.orig or error,
                retryable=False,
                recording_name=item.name,
            ) from error
        except OperationalError as error:
            raise ExternalServiceError.record_store_failed(
                "store",
                error.orig or error,
                retryable=True,
                recording_name=item.name,
            ) from error
        except SQLAlchemyError as error:
            raise ExternalServiceError.record_store_failed(
                "store",
                error,
                retryable=classify_service_failure(status_code=None, message=str(error)).retryable,
                recording_name=item.name,
            ) from error
        logger.info(
            "Recorded %s (agent=%s phone=%s)",
            item.name,
            metadata.agent_name,
            metadata.phone_number or "-",
        )

    def get(self, remote_path: str) -> ProcessedRecording | None:
        with Session(self.engine) as session:
            return session.get(ProcessedRecording, remote_path)

    def list_recent(self, limit: int) -> list[ProcessedRecording]:
        with Session(self.engine) as session:
            statement = (
                select(ProcessedRecording)
                .order_by(col(ProcessedRecording.processed_at).desc())
                .limit(limit)
            )
            return list(session.exec(statement).all())
