"""Per-run event journal with optional JSONL persistence."""

from __future__ import annotations

import json
import logging
import secrets
import socket
import string
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import IO

logger = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS_IN_MEMORY = 50
ERROR_SUMMARY_TOP = 5
_RUN_ID_ALPHABET = string.ascii_lowercase + string.digits
_IMPORTANT_MARKERS = ("started", "completed", "failed")


class JournalLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(slots=True)
class JournalEvent:
    """One journal line."""

    ts: str
    run_id: str
    level: JournalLevel
    step: str
    message: str
    fields: dict[str, object] = field(default_factory=dict)

    def to_json(self) -> str:
        payload = {
            "ts": self.ts,
            "run_id": self.run_id,
            "level": self.level.value,
            "step": self.step,
            "message": self.message,
            **self.fields,
        }
        return json.dumps(payload, default=str, ensure_ascii=False)


class RunJournal:
    """Collects stage events, durations and failures for one pipeline run.

    Warnings, errors and started/completed/failed events are kept in memory
    (bounded by ``max_events_in_memory``) for the end-of-run summary. When a
    ``log_dir`` is given every event is also appended to
    ``<log_dir>/<run_id>.jsonl``.
    """

    def __init__(
        self,
        *,
        log_dir: Path | None = None,
        service_name: str = "call-transcribe",
        max_events_in_memory: int = DEFAULT_MAX_EVENTS_IN_MEMORY,
        run_id: str | None = None,
    ) -> None:
        self.run_id = run_id or generate_run_id()
        self.service_name = service_name
        self.max_events_in_memory = max_events_in_memory
        self.started_at = datetime.now(tz=UTC)
        self.log_path = log_dir / f"{self.run_id}.jsonl" if log_dir is not None else None
        self.stage_seconds: dict[str, float] = {}
        self._important: list[JournalEvent] = []
        self._error_groups: Counter[str] = Counter()
        self._stream: IO[str] | None = None
        if self.log_path is not None:
            try:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                self._stream = self.log_path.open("a", encoding="utf-8")
            except OSError as error:
                logger.error(
                    "Failed to open run journal %s, continuing without file journal: %s",
                    self.log_path,
                    error,
                )
                self.log_path = None

    def record(
        self,
        level: JournalLevel,
        step: str,
        message: str,
        **fields: object,
    ) -> JournalEvent:
        event = JournalEvent(
            ts=datetime.now(tz=UTC).isoformat(),
            run_id=self.run_id,
            level=level,
            step=step,
            message=message,
            fields=fields,
        )
        if self._stream is not None:
            self._write(self._stream, event)
        if event.level is JournalLevel.ERROR:
            self._error_groups[_error_group(event)] += 1
        if _is_important(event) and len(self._important) < self.max_events_in_memory:
            self._important.append(event)
        return event

    def _write(self, stream: IO[str], event: JournalEvent) -> None:
        try:
            stream.write(event.to_json() + "\n")
            stream.flush()
        except OSError as error:
            logger.error(
                "Failed to write run journal %s, continuing without file journal: %s",
                self.log_path,
                error,
            )
            self._stream = None
            try:
                stream.close()
            except OSError:
                logger.debug("Ignoring close error for broken run journal %s", self.log_path)

    def add_stage_duration(self, stage: str, seconds: float) -> None:
        self.stage_seconds[stage] = self.stage_seconds.get(stage, 0.0) + seconds

    def important_events(self) -> list[JournalEvent]:
        return list(self._important)

    def error_summary(self) -> str:
        """Most frequent ``step: code`` error groups, one per line.

        Every error event of the run is counted, including those past the
        in-memory event cap.
        """

        if not self._error_groups:
            return "No errors"
        return "\n".join(
            f"{group} ({count}x)"
            for group, count in self._error_groups.most_common(ERROR_SUMMARY_TOP)
        )

    def metadata(self) -> dict[str, object]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "host": socket.gethostname(),
            "service_name": self.service_name,
            "log_path": str(self.log_path) if self.log_path else None,
        }

    def close(self) -> None:
        if self._stream is None:
            return
        self._stream.close()
        self._stream = None


def generate_run_id() -> str:
    timestamp = datetime.now(tz=UTC).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    suffix = "".join(secrets.choice(_RUN_ID_ALPHABET) for _ in range(6))
    return f"{timestamp}-{suffix}"


def _error_group(event: JournalEvent) -> str:
    error = event.fields.get("error")
    code = error.get("code", event.message) if isinstance(error, dict) else event.message
    return f"{event.step}: {code}"


def _is_important(event: JournalEvent) -> bool:
    if event.level in (JournalLevel.WARNING, JournalLevel.ERROR):
        return True
    lowered = event.message.lower()
    return any(marker in lowered for marker in _IMPORTANT_MARKERS)
