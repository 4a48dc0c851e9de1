"""Runtime configuration for the recording pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from call_transcribe.retry import RetryPolicy

ENV_PREFIX = "CALL_TRANSCRIBE_"
REMOTE_BACKENDS = ("sftp", "local")
REDACTED = "***"
MAX_TCP_PORT = 65_535


@dataclass(slots=True)
class RemoteSettings:
    """Remote recording store settings."""

    backend: str = "sftp"
    host: str = ""
    port: int = 22
    username: str = ""
    password: str = ""
    base_path: str = "/recordings"
    local_root: Path = Path("./data/remote")
    connect_timeout_seconds: float = 30.0
    strict_host_key_checking: bool = False


@dataclass(slots=True)
class RetrySettings:
    """Retry budgets for remote-store calls and external-service calls."""

    remote_max_retries: int = 3
    remote_delay_seconds: float = 2.0
    service_max_retries: int = 3
    service_delay_seconds: float = 1.0
    exponential: bool = True


@dataclass(slots=True)
class ProcessingSettings:
    """Per-run processing settings."""

    max_files: int = 50
    scratch_dir: Path = Path("./data/downloads")
    failed_dir: Path | None = Path("./data/failed")
    audio_extensions: tuple[str, ...] = (".wav",)
    ffmpeg_binary: str = "ffmpeg"
    transcode_timeout_seconds: float = 300.0


@dataclass(slots=True)
class TranscriptionSettings:
    """Whisper API settings."""

    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model: str = "whisper-1"
    timeout_seconds: float = 300.0
    max_file_size_bytes: int = 25_000_000
    allowed_extensions: tuple[str, ...] = (".wav", ".mp3", ".m4a", ".flac")


@dataclass(slots=True)
class ObjectStorageSettings:
    """S3-compatible object storage settings; uploads are skipped when disabled."""

    enabled: bool = False
    endpoint_url: str = "https://sfo3.digitaloceanspaces.com"
    bucket: str = "spaces-bucket"
    access_key: str = ""
    secret_key: str = ""
    region: str = "us-east-1"
    folder: str = "recordings"
    public_base_url: str | None = None


@dataclass(slots=True)
class RecordStoreSettings:
    """SQLite record store settings."""

    db_path: Path = Path(".call_transcribe.db")
    busy_timeout_ms: int = 5_000
    transcript_max_chars: int = 2_000


@dataclass(slots=True)
class JournalSettings:
    """Run journal settings."""

    enabled: bool = False
    log_dir: Path = Path("./data/logs")
    service_name: str = "call-transcribe"
    max_events_in_memory: int = 50


@dataclass(slots=True)
class MonitoringSettings:
    """Metrics exposition settings."""

    metrics_port: int | None = None


@dataclass(slots=True)
class NotificationSettings:
    """Slack webhook settings; notifications are sent only when a webhook URL is set."""

    slack_webhook_url: str = ""
    timeout_seconds: float = 10.0

    @property
    def enabled(self) -> bool:
        return bool(self.slack_webhook_url)


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    remote: RemoteSettings = field(default_factory=RemoteSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    processing: ProcessingSettings = field(default_factory=ProcessingSettings)
    transcription: TranscriptionSettings = field(default_factory=TranscriptionSettings)
    object_storage: ObjectStorageSettings = field(default_factory=ObjectStorageSettings)
    record_store: RecordStoreSettings = field(default_factory=RecordStoreSettings)
    journal: JournalSettings = field(default_factory=JournalSettings)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)
    notification: NotificationSettings = field(default_factory=NotificationSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        failed_dir = _env("PROCESSING_FAILED_DIR", "./data/failed").strip()
        public_base_url = _env("STORAGE_PUBLIC_BASE_URL", "").strip()
        return cls(
            remote=RemoteSettings(
                backend=_env("REMOTE_BACKEND", "sftp").strip().lower(),
                host=_env("SFTP_HOST", ""),
                port=_env_int("SFTP_PORT", 22),
                username=_env("SFTP_USERNAME", ""),
                password=_env("SFTP_PASSWORD", ""),
                base_path=_env("REMOTE_BASE_PATH", "/recordings"),
                local_root=Path(_env("REMOTE_LOCAL_ROOT", "./data/remote")),
                connect_timeout_seconds=_env_float("SFTP_CONNECT_TIMEOUT_SECONDS", 30.0),
                strict_host_key_checking=_env_bool(
                    f"{ENV_PREFIX}SFTP_STRICT_HOST_KEY_CHECKING",
                    default=False,
                ),
            ),
            retry=RetrySettings(
                remote_max_retries=_env_int("REMOTE_MAX_RETRIES", 3),
                remote_delay_seconds=_env_float("REMOTE_RETRY_DELAY_SECONDS", 2.0),
                service_max_retries=_env_int("SERVICE_MAX_RETRIES", 3),
                service_delay_seconds=_env_float("SERVICE_RETRY_DELAY_SECONDS", 1.0),
                exponential=_env_bool(f"{ENV_PREFIX}RETRY_EXPONENTIAL", default=True),
            ),
            processing=ProcessingSettings(
                max_files=_env_int("MAX_FILES", 50),
                scratch_dir=Path(_env("PROCESSING_SCRATCH_DIR", "./data/downloads")),
                failed_dir=Path(failed_dir) if failed_dir else None,
                audio_extensions=_env_csv("AUDIO_EXTENSIONS", ".wav"),
                ffmpeg_binary=_env("FFMPEG_BINARY", "ffmpeg"),
                transcode_timeout_seconds=_env_float("TRANSCODE_TIMEOUT_SECONDS", 300.0),
            ),
            transcription=TranscriptionSettings(
                api_key=_env("OPENAI_API_KEY", os.getenv("OPENAI_API_KEY", "")),
                base_url=_env("OPENAI_BASE_URL", "https://api.openai.com/v1"),
                model=_env("TRANSCRIPTION_MODEL", "whisper-1"),
                timeout_seconds=_env_float("TRANSCRIPTION_TIMEOUT_SECONDS", 300.0),
                max_file_size_bytes=_env_int("MAX_FILE_SIZE_BYTES", 25_000_000),
                allowed_extensions=_env_csv("ALLOWED_EXTENSIONS", ".wav,.mp3,.m4a,.flac"),
            ),
            object_storage=ObjectStorageSettings(
                enabled=_env_bool(f"{ENV_PREFIX}STORAGE_ENABLED", default=False),
                endpoint_url=_env("STORAGE_ENDPOINT_URL", "https://sfo3.digitaloceanspaces.com"),
                bucket=_env("STORAGE_BUCKET", "spaces-bucket"),
                access_key=_env("STORAGE_ACCESS_KEY", ""),
                secret_key=_env("STORAGE_SECRET_KEY", ""),
                region=_env("STORAGE_REGION", "us-east-1"),
                folder=_env("STORAGE_FOLDER", "recordings"),
                public_base_url=public_base_url or None,
            ),
            record_store=RecordStoreSettings(
                db_path=Path(_env("DB_PATH", ".call_transcribe.db")),
                busy_timeout_ms=_env_int("DB_BUSY_TIMEOUT_MS", 5_000),
                transcript_max_chars=_env_int("TRANSCRIPT_MAX_CHARS", 2_000),
            ),
            journal=JournalSettings(
                enabled=_env_bool(f"{ENV_PREFIX}JOURNAL_ENABLED", default=False),
                log_dir=Path(_env("JOURNAL_LOG_DIR", "./data/logs")),
                service_name=_env("JOURNAL_SERVICE_NAME", "call-transcribe"),
                max_events_in_memory=_env_int("JOURNAL_MAX_EVENTS", 50),
            ),
            monitoring=MonitoringSettings(
                metrics_port=_env_optional_int("METRICS_PORT"),
            ),
            notification=NotificationSettings(
                slack_webhook_url=_env("SLACK_WEBHOOK_URL", "").strip(),
                timeout_seconds=_env_float("NOTIFICATION_TIMEOUT_SECONDS", 10.0),
            ),
        )

    def validate_for_run(self) -> None:
        """Raise configuration error if a pipeline run cannot be built from these settings."""

        self.validate_remote()

        if self.processing.max_files < 0:
            raise ValueError(f"{ENV_PREFIX}MAX_FILES must be >= 0.")
        if self.retry.remote_max_retries < 0:
            raise ValueError(f"{ENV_PREFIX}REMOTE_MAX_RETRIES must be >= 0.")
        if self.retry.service_max_retries < 0:
            raise ValueError(f"{ENV_PREFIX}SERVICE_MAX_RETRIES must be >= 0.")
        if self.retry.remote_delay_seconds < 0:
            raise ValueError(f"{ENV_PREFIX}REMOTE_RETRY_DELAY_SECONDS must be >= 0.")
        if self.retry.service_delay_seconds < 0:
            raise ValueError(f"{ENV_PREFIX}SERVICE_RETRY_DELAY_SECONDS must be >= 0.")
        if self.processing.transcode_timeout_seconds <= 0:
            raise ValueError(f"{ENV_PREFIX}TRANSCODE_TIMEOUT_SECONDS must be > 0.")

        if not self.transcription.api_key:
            raise ValueError(
                "Transcription API key is required. "
                f"Set {ENV_PREFIX}OPENAI_API_KEY or OPENAI_API_KEY.",
            )
        _validate_http_url(self.transcription.base_url, f"{ENV_PREFIX}OPENAI_BASE_URL")
        if self.transcription.max_file_size_bytes <= 0:
            raise ValueError(f"{ENV_PREFIX}MAX_FILE_SIZE_BYTES must be > 0.")
        if not self.transcription.allowed_extensions:
            raise ValueError(f"{ENV_PREFIX}ALLOWED_EXTENSIONS must list at least one extension.")

        if self.object_storage.enabled:
            _validate_http_url(
                self.object_storage.endpoint_url,
                f"{ENV_PREFIX}STORAGE_ENDPOINT_URL",
            )
            if not self.object_storage.bucket:
                raise ValueError(f"{ENV_PREFIX}STORAGE_BUCKET is required when storage is enabled.")
            if not self.object_storage.access_key or not self.object_storage.secret_key:
                raise ValueError(
                    f"{ENV_PREFIX}STORAGE_ACCESS_KEY and {ENV_PREFIX}STORAGE_SECRET_KEY "
                    "are required when storage is enabled.",
                )

        if self.record_store.transcript_max_chars <= 0:
            raise ValueError(f"{ENV_PREFIX}TRANSCRIPT_MAX_CHARS must be > 0.")
        if self.journal.max_events_in_memory <= 0:
            raise ValueError(f"{ENV_PREFIX}JOURNAL_MAX_EVENTS must be > 0.")
        port = self.monitoring.metrics_port
        if port is not None and not 0 < port <= MAX_TCP_PORT:
            raise ValueError(f"{ENV_PREFIX}METRICS_PORT must be between 1 and {MAX_TCP_PORT}.")
        if self.notification.enabled:
            _validate_http_url(
                self.notification.slack_webhook_url,
                f"{ENV_PREFIX}SLACK_WEBHOOK_URL",
            )
        if self.notification.timeout_seconds <= 0:
            raise ValueError(f"{ENV_PREFIX}NOTIFICATION_TIMEOUT_SECONDS must be > 0.")

    def validate_remote(self) -> None:
        """Raise configuration error if the remote store settings are incomplete."""

        if self.remote.backend not in REMOTE_BACKENDS:
            raise ValueError(
                f"Invalid {ENV_PREFIX}REMOTE_BACKEND: {self.remote.backend!r}. "
                f"Expected one of: {', '.join(REMOTE_BACKENDS)}.",
            )
        if not self.remote.base_path:
            raise ValueError(f"{ENV_PREFIX}REMOTE_BASE_PATH must not be empty.")
        if self.remote.backend == "local":
            return
        if not self.remote.host:
            raise ValueError(f"{ENV_PREFIX}SFTP_HOST is required for the sftp backend.")
        if not self.remote.username:
            raise ValueError(f"{ENV_PREFIX}SFTP_USERNAME is required for the sftp backend.")
        if not self.remote.password:
            raise ValueError(f"{ENV_PREFIX}SFTP_PASSWORD is required for the sftp backend.")
        if not 0 < self.remote.port <= MAX_TCP_PORT:
            raise ValueError(f"{ENV_PREFIX}SFTP_PORT must be between 1 and {MAX_TCP_PORT}.")

    def remote_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts_after_first=self.retry.remote_max_retries,
            base_delay_seconds=self.retry.remote_delay_seconds,
            exponential=self.retry.exponential,
        )

    def service_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts_after_first=self.retry.service_max_retries,
            base_delay_seconds=self.retry.service_delay_seconds,
            exponential=self.retry.exponential,
        )

    def sanitized(self) -> dict[str, dict[str, object]]:
        """Settings as a log-safe mapping with credentials redacted."""

        return {
            "remote": {
                "backend": self.remote.backend,
                "host": self.remote.host,
                "port": self.remote.port,
                "username": self.remote.username,
                "password": _redact(self.remote.password),
                "base_path": self.remote.base_path,
                "local_root": str(self.remote.local_root),
            },
            "retry": {
                "remote_max_retries": self.retry.remote_max_retries,
                "remote_delay_seconds": self.retry.remote_delay_seconds,
                "service_max_retries": self.retry.service_max_retries,
                "service_delay_seconds": self.retry.service_delay_seconds,
                "exponential": self.retry.exponential,
            },
            "processing": {
                "max_files": self.processing.max_files,
                "scratch_dir": str(self.processing.scratch_dir),
                "failed_dir": _optional_path(self.processing.failed_dir),
                "audio_extensions": list(self.processing.audio_extensions),
            },
            "transcription": {
                "api_key": _redact(self.transcription.api_key),
                "base_url": self.transcription.base_url,
                "model": self.transcription.model,
                "max_file_size_bytes": self.transcription.max_file_size_bytes,
            },
            "object_storage": {
                "enabled": self.object_storage.enabled,
                "endpoint_url": self.object_storage.endpoint_url,
                "bucket": self.object_storage.bucket,
                "access_key": _redact(self.object_storage.access_key),
                "secret_key": _redact(self.object_storage.secret_key),
                "folder": self.object_storage.folder,
            },
            "record_store": {
                "db_path": str(self.record_store.db_path),
            },
            "journal": {
                "enabled": self.journal.enabled,
                "log_dir": str(self.journal.log_dir),
                "service_name": self.journal.service_name,
            },
            "monitoring": {
                "metrics_port": self.monitoring.metrics_port,
            },
            "notification": {
                "enabled": self.notification.enabled,
                "slack_webhook_url": _redact(self.notification.slack_webhook_url),
            },
        }


def _env(suffix: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{suffix}", default)


def _env_csv(suffix: str, default: str) -> tuple[str, ...]:
    raw = _env(suffix, default)
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")


def _redact(value: str) -> str:
    return REDACTED if value else ""


def _optional_path(value: Path | None) -> str | None:
    return str(value) if value is not None else None


def _validate_http_url(value: str, name: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_int(suffix: str, default: int) -> int:
    raw = _env(suffix, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {ENV_PREFIX}{suffix}: {raw!r}") from error


def _env_optional_int(suffix: str) -> int | None:
    raw = _env(suffix, "").strip()
    if not raw:
        return None
    return _env_int(suffix, 0)


def _env_float(suffix: str, default: float) -> float:
    raw = _env(suffix, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as error:
        raise ValueError(f"Invalid number value for {ENV_PREFIX}{suffix}: {raw!r}") from error
