"""Sequential per-run pipeline: list recent recordings, then process each one.

One run owns the remote connection from ``start()`` until the last item is
done or ``stop()`` is called. Items are processed strictly one at a time and
every item failure is recorded and skipped; only a failure to connect or to
list the remote tree aborts the run.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TypeVar

from call_transcribe.errors import PipelineError, ResourceError, error_log_fields
from call_transcribe.ingestion.catalog import RemoteFileCatalog
from call_transcribe.ingestion.models import RemoteItem
from call_transcribe.ingestion.stores.base import RemoteStore
from call_transcribe.pipeline.contracts import (
    MetricsSink,
    ObjectStorage,
    PublishedArtifacts,
    RecordSink,
    Transcoder,
    Transcriber,
    TranscriptionResult,
)
from call_transcribe.pipeline.journal import JournalLevel, RunJournal
from call_transcribe.pipeline.scratch import (
    ensure_directory,
    item_scratch_dir,
    move_to_directory,
    remove_tree,
    write_text,
)
from call_transcribe.retry import RetryExecutor, RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

ITEMS_COUNTER = "items_processed_total"
FAILURES_COUNTER = "item_failures_total"
PLAYABLE_SUFFIX = "_playable.mp3"


class Stage(str, Enum):
    """Fixed per-item sub-pipeline, in execution order."""

    FETCH = "fetch"
    TRANSCODE = "transcode"
    TRANSCRIBE = "transcribe"
    RECORD = "record"


@dataclass(slots=True, frozen=True)
class RunState:
    """Read-only snapshot of one orchestrator's run state."""

    running: bool
    stop_requested: bool
    processed_count: int
    failed_count: int


@dataclass(slots=True)
class OrchestratorConfig:
    """Run parameters for one orchestrator."""

    base_path: str
    cap_count: int
    scratch_dir: Path
    failed_dir: Path | None = None
    object_key_prefix: str = "recordings"


@dataclass(slots=True)
class PipelineCollaborators:
    """External capabilities called by the per-item stages."""

    transcoder: Transcoder
    transcriber: Transcriber
    record_sink: RecordSink
    object_storage: ObjectStorage | None = None
    metrics: MetricsSink | None = None


class PipelineOrchestrator:
    """Drives a single run; construct a new instance for every run."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        config: OrchestratorConfig,
        store: RemoteStore,
        catalog: RemoteFileCatalog,
        collaborators: PipelineCollaborators,
        executor: RetryExecutor,
        remote_policy: RetryPolicy,
        service_policy: RetryPolicy,
        journal: RunJournal | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.catalog = catalog
        self.collaborators = collaborators
        self.executor = executor
        self.remote_policy = remote_policy
        self.service_policy = service_policy
        self.journal = journal or RunJournal()
        self._started = False
        self._running = False
        self._stop_requested = False
        self._processed_count = 0
        self._failed_count = 0

    def start(self) -> RunState:
        """Run the pipeline once and return the final state.

        Raises the connect or listing error when the run cannot begin.
        """

        if self._started:
            raise RuntimeError("PipelineOrchestrator runs once; create a new instance per run.")
        self._started = True
        self._running = True
        self.journal.record(JournalLevel.INFO, "system", "Run started", **self.journal.metadata())
        logger.info("Pipeline run %s started", self.journal.run_id)

        items: list[RemoteItem] = []
        try:
            self.executor.execute(self.store.connect, self.remote_policy, "remote connect")
            items = self.catalog.list_recent(self.config.base_path, self.config.cap_count)
            self.journal.record(
                JournalLevel.INFO,
                "list",
                "Remote listing completed",
                count=len(items),
                base_path=self.config.base_path,
            )
            logger.info("Found %d recording(s) to process", len(items))

            for position, item in enumerate(items, start=1):
                if self._stop_requested:
                    logger.info(
                        "Stop requested, leaving %d item(s) unprocessed",
                        len(items) - position + 1,
                    )
                    break
                self._process_item(item, position=position, total=len(items))
        except Exception as error:
            self.journal.record(
                JournalLevel.ERROR,
                "system",
                "Run failed",
                error=error_log_fields(error),
            )
            logger.error("Pipeline run %s aborted: %s", self.journal.run_id, error)
            raise
        finally:
            self._running = False
            self.store.close()
            self._log_summary(total=len(items))

        self.journal.record(
            JournalLevel.INFO,
            "system",
            "Run completed",
            processed=self._processed_count,
            failed=self._failed_count,
            stage_seconds=dict(self.journal.stage_seconds),
        )
        return self.get_state()

    def stop(self) -> None:
        """Let the in-flight item finish, start no new item, close the connection."""

        self._stop_requested = True
        logger.info("Pipeline stop requested")
        self.journal.record(JournalLevel.INFO, "system", "Stop requested")
        self.store.close()

    def get_state(self) -> RunState:
        return RunState(
            running=self._running,
            stop_requested=self._stop_requested,
            processed_count=self._processed_count,
            failed_count=self._failed_count,
        )

    def _process_item(self, item: RemoteItem, *, position: int, total: int) -> None:
        logger.info("Processing %d/%d: %s", position, total, item.remote_path)
        scratch = item_scratch_dir(self.config.scratch_dir, item.remote_path)
        local_audio = scratch / item.name
        stage = Stage.FETCH
        started = time.monotonic()
        try:
            ensure_directory(scratch)
            self._run_stage(
                stage,
                item,
                lambda: self.executor.execute(
                    lambda: self.store.fetch(item.remote_path, local_audio),
                    self.remote_policy,
                    f"fetch {item.remote_path}",
                ),
            )

            stage = Stage.TRANSCODE
            playable = local_audio.with_name(f"{local_audio.stem}{PLAYABLE_SUFFIX}")
            self._run_stage(
                stage,
                item,
                lambda: self.executor.execute(
                    lambda: self.collaborators.transcoder.transcode(local_audio, playable),
                    self.service_policy,
                    f"transcode {item.name}",
                ),
            )

            stage = Stage.TRANSCRIBE
            result = self._run_stage(
                stage,
                item,
                lambda: self.executor.execute(
                    lambda: self.collaborators.transcriber.process(playable),
                    self.service_policy,
                    f"transcribe {item.name}",
                ),
            )

            stage = Stage.RECORD
            self._run_stage(stage, item, lambda: self._record(item, playable, result))
        except Exception as error:  # noqa: BLE001
            self._record_failure(item, stage, error, local_audio)
        else:
            self._processed_count += 1
            self._increment(ITEMS_COUNTER, {"status": "success"})
            self.journal.record(
                JournalLevel.INFO,
                "item",
                "Item completed",
                item=item.name,
                remote_path=item.remote_path,
                duration_seconds=round(time.monotonic() - started, 3),
            )
            logger.info("Processed %s", item.name)
        finally:
            try:
                remove_tree(scratch)
            except ResourceError as cleanup_error:
                logger.warning("Scratch cleanup failed for %s: %s", scratch, cleanup_error)

    def _record(self, item: RemoteItem, playable: Path, result: TranscriptionResult) -> None:
        transcript_path = write_text(playable.with_name(f"{Path(item.name).stem}.txt"), result.text)
        artifacts = PublishedArtifacts()
        storage = self.collaborators.object_storage
        if storage is not None:
            audio_url = self.executor.execute(
                lambda: storage.put(playable, self._object_key(playable), "audio/mpeg"),
                self.service_policy,
                f"upload {playable.name}",
            )
            transcript_url = self.executor.execute(
                lambda: storage.put(
                    transcript_path,
                    self._object_key(transcript_path),
                    "text/plain",
                ),
                self.service_policy,
                f"upload {transcript_path.name}",
            )
            artifacts = PublishedArtifacts(audio_url=audio_url, transcript_url=transcript_url)

        self.executor.execute(
            lambda: self.collaborators.record_sink.store(item, result, artifacts),
            self.service_policy,
            f"record {item.name}",
        )

    def _run_stage(self, stage: Stage, item: RemoteItem, operation: Callable[[], T]) -> T:
        logger.debug("Stage %s started for %s", stage.value, item.name)
        started = time.monotonic()
        try:
            result = operation()
        except Exception as error:
            elapsed = time.monotonic() - started
            self.journal.add_stage_duration(stage.value, elapsed)
            self.journal.record(
                JournalLevel.ERROR,
                stage.value,
                f"{stage.value} failed",
                item=item.name,
                remote_path=item.remote_path,
                duration_seconds=round(elapsed, 3),
                error=error_log_fields(error),
            )
            raise
        elapsed = time.monotonic() - started
        self.journal.add_stage_duration(stage.value, elapsed)
        self.journal.record(
            JournalLevel.INFO,
            stage.value,
            f"{stage.value} completed",
            item=item.name,
            duration_seconds=round(elapsed, 3),
        )
        logger.info(
            "Stage %s completed for %s in %.2fs",
            stage.value,
            item.name,
            elapsed,
            extra={"stage": stage.value, "remote_path": item.remote_path},
        )
        return result

    def _record_failure(
        self,
        item: RemoteItem,
        stage: Stage,
        error: Exception,
        local_audio: Path,
    ) -> None:
        self._failed_count += 1
        fields = error_log_fields(error)
        logger.error(
            "Failed to process %s at stage %s: [%s] %s",
            item.remote_path,
            stage.value,
            fields["code"],
            error,
            exc_info=not isinstance(error, PipelineError),
            extra={
                "stage": stage.value,
                "remote_path": item.remote_path,
                "error": fields,
            },
        )
        self._increment(ITEMS_COUNTER, {"status": "failure"})
        self._increment(FAILURES_COUNTER, {"stage": stage.value, "code": str(fields["code"])})

        if self.config.failed_dir is not None and local_audio.exists():
            try:
                kept = move_to_directory(local_audio, self.config.failed_dir)
            except ResourceError as move_error:
                logger.warning("Could not keep failed recording %s: %s", local_audio, move_error)
            else:
                logger.info("Kept failed recording at %s", kept)

    def _object_key(self, path: Path) -> str:
        prefix = self.config.object_key_prefix.strip("/")
        if not prefix:
            return path.name
        return f"{prefix}/{path.name}"

    def _increment(self, counter_name: str, labels: dict[str, str]) -> None:
        metrics = self.collaborators.metrics
        if metrics is None:
            return
        try:
            metrics.increment(counter_name, labels)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Metrics update failed for %s %s",
                counter_name,
                labels,
                exc_info=True,
            )

    def _log_summary(self, *, total: int) -> None:
        logger.info(
            "Pipeline run %s finished: listed=%d processed=%d failed=%d stopped=%s",
            self.journal.run_id,
            total,
            self._processed_count,
            self._failed_count,
            "yes" if self._stop_requested else "no",
        )
