"""Controllers for pipeline CLI commands."""

from __future__ import annotations

import json
import logging
import signal
import time
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass

from call_transcribe.config import Settings
from call_transcribe.errors import error_log_fields
from call_transcribe.ingestion.catalog import RemoteFileCatalog
from call_transcribe.ingestion.stores import LocalDirectoryStore, RemoteStore, SftpRemoteStore
from call_transcribe.ingestion.stores.sftp import SftpStoreConfig
from call_transcribe.metrics import PrometheusMetricsSink
from call_transcribe.pipeline.contracts import MetricsSink
from call_transcribe.pipeline.journal import RunJournal
from call_transcribe.pipeline.orchestrator import (
    OrchestratorConfig,
    PipelineCollaborators,
    PipelineOrchestrator,
    RunState,
)
from call_transcribe.retry import RetryExecutor
from call_transcribe.services.notification import RunSummary, SlackNotifier
from call_transcribe.services.object_storage import S3ObjectStorage, create_s3_client
from call_transcribe.services.record_store import SqliteRecordStore
from call_transcribe.services.transcoder import FfmpegTranscoder
from call_transcribe.services.transcription import WhisperTranscriber

logger = logging.getLogger(__name__)

CollaboratorsFactory = Callable[
    [Settings, MetricsSink],
    AbstractContextManager[PipelineCollaborators],
]
NotifierFactory = Callable[[Settings, RetryExecutor], SlackNotifier | None]


@dataclass(slots=True)
class RunPipelineCommand:
    """CLI inputs for one pipeline run."""

    base_path: str | None
    max_files: int | None
    metrics_port: int | None


@dataclass(slots=True)
class ListRecentCommand:
    """CLI inputs for the recent-recordings listing."""

    base_path: str | None
    max_files: int | None


class PipelineCliController:
    """Coordinates pipeline command execution.

    Factories are injectable so the commands can run against fake
    collaborators and a local remote tree.
    """

    def __init__(
        self,
        *,
        settings_loader: Callable[[], Settings] = Settings.from_env,
        store_factory: Callable[[Settings], RemoteStore] | None = None,
        collaborators_factory: CollaboratorsFactory | None = None,
        notifier_factory: NotifierFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings_loader = settings_loader
        self._store_factory = store_factory or build_remote_store
        self._collaborators_factory = collaborators_factory or default_collaborators
        self._notifier_factory = notifier_factory or build_notifier
        self._sleep = sleep

    def run(self, command: RunPipelineCommand) -> list[str]:
        settings = self._settings_loader()
        _apply_overrides(settings, base_path=command.base_path, max_files=command.max_files)
        if command.metrics_port is not None:
            settings.monitoring.metrics_port = command.metrics_port
        settings.validate_for_run()

        metrics = PrometheusMetricsSink()
        if settings.monitoring.metrics_port is not None:
            metrics.serve(settings.monitoring.metrics_port)

        executor = RetryExecutor(sleep=self._sleep)
        journal = RunJournal(
            log_dir=settings.journal.log_dir if settings.journal.enabled else None,
            service_name=settings.journal.service_name,
            max_events_in_memory=settings.journal.max_events_in_memory,
        )
        notifier = self._notifier_factory(settings, executor)
        started = time.monotonic()
        try:
            state = self._start_orchestrator(settings, executor, journal, metrics)
        except Exception as error:
            if notifier is not None:
                notifier.notify_failure(
                    error,
                    {
                        "run_id": journal.run_id,
                        "base_path": settings.remote.base_path,
                        "error": error_log_fields(error),
                    },
                )
            raise
        else:
            if notifier is not None:
                notifier.notify_success(
                    RunSummary(
                        run_id=journal.run_id,
                        total_files=state.processed_count + state.failed_count,
                        success_count=state.processed_count,
                        failure_count=state.failed_count,
                        duration_seconds=time.monotonic() - started,
                        error_summary=journal.error_summary(),
                        stopped=state.stop_requested,
                    ),
                )
        finally:
            journal.close()
            if notifier is not None:
                notifier.close()

        lines = [
            "Pipeline run completed: "
            f"run_id={journal.run_id} "
            f"processed={state.processed_count} "
            f"failed={state.failed_count} "
            f"stopped={'yes' if state.stop_requested else 'no'}",
        ]
        if journal.stage_seconds:
            lines.append(
                "Stage seconds: "
                + " ".join(
                    f"{stage}={seconds:.2f}" for stage, seconds in journal.stage_seconds.items()
                ),
            )
        lines.append("Errors:")
        lines.extend(f"  {line}" for line in journal.error_summary().splitlines())
        if journal.log_path is not None:
            lines.append(f"Run journal: {journal.log_path}")
        return lines

    def _start_orchestrator(
        self,
        settings: Settings,
        executor: RetryExecutor,
        journal: RunJournal,
        metrics: MetricsSink,
    ) -> RunState:
        store = self._store_factory(settings)
        remote_policy = settings.remote_retry_policy()
        with self._collaborators_factory(settings, metrics) as collaborators:
            orchestrator = PipelineOrchestrator(
                config=OrchestratorConfig(
                    base_path=settings.remote.base_path,
                    cap_count=settings.processing.max_files,
                    scratch_dir=settings.processing.scratch_dir,
                    failed_dir=settings.processing.failed_dir,
                    object_key_prefix=settings.object_storage.folder,
                ),
                store=store,
                catalog=RemoteFileCatalog(
                    store=store,
                    executor=executor,
                    policy=remote_policy,
                    audio_extensions=settings.processing.audio_extensions,
                ),
                collaborators=collaborators,
                executor=executor,
                remote_policy=remote_policy,
                service_policy=settings.service_retry_policy(),
                journal=journal,
            )
            with _stop_on_signals(orchestrator):
                return orchestrator.start()

    def list_recent(self, command: ListRecentCommand) -> list[str]:
        settings = self._settings_loader()
        _apply_overrides(settings, base_path=command.base_path, max_files=command.max_files)
        settings.validate_remote()

        store = self._store_factory(settings)
        executor = RetryExecutor(sleep=self._sleep)
        policy = settings.remote_retry_policy()
        catalog = RemoteFileCatalog(
            store=store,
            executor=executor,
            policy=policy,
            audio_extensions=settings.processing.audio_extensions,
        )
        try:
            executor.execute(store.connect, policy, "remote connect")
            items = catalog.list_recent(settings.remote.base_path, settings.processing.max_files)
        finally:
            store.close()

        lines = [f"Recent recordings under {settings.remote.base_path}: {len(items)}"]
        lines.extend(
            f"  {item.modified_at.isoformat()} size={item.size_bytes} {item.remote_path}"
            for item in items
        )
        return lines

    def show_config(self) -> list[str]:
        settings = self._settings_loader()
        return json.dumps(settings.sanitized(), indent=2).splitlines()


def build_remote_store(settings: Settings) -> RemoteStore:
    if settings.remote.backend == "local":
        return LocalDirectoryStore(settings.remote.local_root)
    return SftpRemoteStore(
        SftpStoreConfig(
            host=settings.remote.host,
            port=settings.remote.port,
            username=settings.remote.username,
            password=settings.remote.password,
            connect_timeout_seconds=settings.remote.connect_timeout_seconds,
            strict_host_key_checking=settings.remote.strict_host_key_checking,
        ),
    )


def build_notifier(settings: Settings, executor: RetryExecutor) -> SlackNotifier | None:
    if not settings.notification.enabled:
        return None
    return SlackNotifier(
        webhook_url=settings.notification.slack_webhook_url,
        executor=executor,
        policy=settings.service_retry_policy(),
        timeout_seconds=settings.notification.timeout_seconds,
    )


@contextmanager
def default_collaborators(
    settings: Settings,
    metrics: MetricsSink,
) -> Iterator[PipelineCollaborators]:
    """Production collaborators; closes HTTP and database resources on exit."""

    transcriber = WhisperTranscriber(
        api_key=settings.transcription.api_key,
        base_url=settings.transcription.base_url,
        model=settings.transcription.model,
        timeout_seconds=settings.transcription.timeout_seconds,
        max_file_size_bytes=settings.transcription.max_file_size_bytes,
        allowed_extensions=settings.transcription.allowed_extensions,
    )
    record_store = SqliteRecordStore(
        settings.record_store.db_path,
        busy_timeout_ms=settings.record_store.busy_timeout_ms,
        transcript_max_chars=settings.record_store.transcript_max_chars,
    )
    object_storage = None
    if settings.object_storage.enabled:
        object_storage = S3ObjectStorage(
            client=create_s3_client(
                endpoint_url=settings.object_storage.endpoint_url,
                access_key=settings.object_storage.access_key,
                secret_key=settings.object_storage.secret_key,
                region=settings.object_storage.region,
            ),
            bucket=settings.object_storage.bucket,
            endpoint_url=settings.object_storage.endpoint_url,
            public_base_url=settings.object_storage.public_base_url,
        )
    try:
        record_store.init_schema()
        yield PipelineCollaborators(
            transcoder=FfmpegTranscoder(
                binary=settings.processing.ffmpeg_binary,
                timeout_seconds=settings.processing.transcode_timeout_seconds,
            ),
            transcriber=transcriber,
            record_sink=record_store,
            object_storage=object_storage,
            metrics=metrics,
        )
    finally:
        transcriber.close()
        record_store.close()


@contextmanager
def _stop_on_signals(orchestrator: PipelineOrchestrator) -> Iterator[None]:
    if not hasattr(signal, "SIGINT"):
        yield
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        logger.warning("Received %s, finishing the current recording before stopping", name)
        orchestrator.stop()

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # Signal handlers can only be installed in main thread.
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)


def _apply_overrides(settings: Settings, *, base_path: str | None, max_files: int | None) -> None:
    if base_path is not None:
        settings.remote.base_path = base_path
    if max_files is not None:
        settings.processing.max_files = max_files
