from __future__ import annotations

from pathlib import Path

import allure
import pytest

from call_transcribe.config import Settings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Settings"),
]


def _valid_sftp_env(monkeypatch) -> None:
    monkeypatch.setenv("CALL_TRANSCRIBE_SFTP_HOST", "sftp.example.com")
    monkeypatch.setenv("CALL_TRANSCRIBE_SFTP_USERNAME", "bob")
    monkeypatch.setenv("CALL_TRANSCRIBE_SFTP_PASSWORD", "hunter2")
    monkeypatch.setenv("CALL_TRANSCRIBE_OPENAI_API_KEY", "sk-test")


def test_defaults_without_environment() -> None:
    settings = Settings.from_env()

    assert settings.remote.backend == "sftp"
    assert settings.remote.port == 22
    assert settings.processing.max_files == 50
    assert settings.processing.failed_dir == Path("./data/failed")
    assert settings.transcription.model == "whisper-1"
    assert settings.transcription.max_file_size_bytes == 25_000_000
    assert settings.transcription.allowed_extensions == (".wav", ".mp3", ".m4a", ".flac")
    assert settings.object_storage.enabled is False
    assert settings.monitoring.metrics_port is None


def test_environment_overrides(monkeypatch) -> None:
    _valid_sftp_env(monkeypatch)
    monkeypatch.setenv("CALL_TRANSCRIBE_SFTP_PORT", "2222")
    monkeypatch.setenv("CALL_TRANSCRIBE_MAX_FILES", "7")
    monkeypatch.setenv("CALL_TRANSCRIBE_AUDIO_EXTENSIONS", "WAV, .mp3")
    monkeypatch.setenv("CALL_TRANSCRIBE_PROCESSING_FAILED_DIR", "")
    monkeypatch.setenv("CALL_TRANSCRIBE_METRICS_PORT", "9100")
    monkeypatch.setenv("CALL_TRANSCRIBE_JOURNAL_ENABLED", "yes")

    settings = Settings.from_env()
    settings.validate_for_run()

    assert settings.remote.port == 2222
    assert settings.processing.max_files == 7
    assert settings.processing.audio_extensions == ("wav", ".mp3")
    assert settings.processing.failed_dir is None
    assert settings.monitoring.metrics_port == 9100
    assert settings.journal.enabled is True


def test_plain_openai_api_key_is_used_as_fallback(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-plain")

    assert Settings.from_env().transcription.api_key == "sk-plain"


def test_retry_policies_follow_settings(monkeypatch) -> None:
    monkeypatch.setenv("CALL_TRANSCRIBE_REMOTE_MAX_RETRIES", "5")
    monkeypatch.setenv("CALL_TRANSCRIBE_REMOTE_RETRY_DELAY_SECONDS", "0.5")
    monkeypatch.setenv("CALL_TRANSCRIBE_SERVICE_MAX_RETRIES", "1")
    monkeypatch.setenv("CALL_TRANSCRIBE_RETRY_EXPONENTIAL", "false")

    settings = Settings.from_env()
    remote = settings.remote_retry_policy()
    service = settings.service_retry_policy()

    assert (remote.max_attempts_after_first, remote.base_delay_seconds) == (5, 0.5)
    assert service.max_attempts_after_first == 1
    assert remote.exponential is False


@pytest.mark.parametrize(
    ("missing", "message"),
    [
        ("CALL_TRANSCRIBE_SFTP_HOST", "SFTP_HOST"),
        ("CALL_TRANSCRIBE_SFTP_USERNAME", "SFTP_USERNAME"),
        ("CALL_TRANSCRIBE_SFTP_PASSWORD", "SFTP_PASSWORD"),
        ("CALL_TRANSCRIBE_OPENAI_API_KEY", "API key"),
    ],
)
def test_validate_for_run_names_missing_variable(monkeypatch, missing: str, message: str) -> None:
    _valid_sftp_env(monkeypatch)
    monkeypatch.delenv(missing)

    with pytest.raises(ValueError, match=message):
        Settings.from_env().validate_for_run()


def test_local_backend_needs_no_sftp_credentials(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CALL_TRANSCRIBE_REMOTE_BACKEND", "local")
    monkeypatch.setenv("CALL_TRANSCRIBE_REMOTE_LOCAL_ROOT", str(tmp_path))
    monkeypatch.setenv("CALL_TRANSCRIBE_OPENAI_API_KEY", "sk-test")

    settings = Settings.from_env()
    settings.validate_for_run()

    assert settings.remote.local_root == tmp_path


def test_unknown_backend_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("CALL_TRANSCRIBE_REMOTE_BACKEND", "ftp")

    with pytest.raises(ValueError, match="REMOTE_BACKEND"):
        Settings.from_env().validate_remote()


def test_enabled_storage_requires_credentials(monkeypatch) -> None:
    _valid_sftp_env(monkeypatch)
    monkeypatch.setenv("CALL_TRANSCRIBE_STORAGE_ENABLED", "true")

    with pytest.raises(ValueError, match="STORAGE_ACCESS_KEY"):
        Settings.from_env().validate_for_run()


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("CALL_TRANSCRIBE_STORAGE_ENABLED", "maybe")

    with pytest.raises(ValueError, match="Invalid boolean"):
        Settings.from_env()


def test_sanitized_redacts_secrets(monkeypatch) -> None:
    _valid_sftp_env(monkeypatch)
    monkeypatch.setenv("CALL_TRANSCRIBE_STORAGE_SECRET_KEY", "s3cr3t")

    sanitized = Settings.from_env().sanitized()

    assert sanitized["remote"]["password"] == "***"
    assert sanitized["remote"]["username"] == "bob"
    assert sanitized["transcription"]["api_key"] == "***"
    assert sanitized["object_storage"]["secret_key"] == "***"
    assert sanitized["object_storage"]["access_key"] == ""
    assert "hunter2" not in repr(sanitized)


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("CALL_TRANSCRIBE_SFTP_PORT", "twenty-two", "integer value for CALL_TRANSCRIBE_SFTP_PORT"),
        ("CALL_TRANSCRIBE_MAX_FILES", "1.5", "integer value for CALL_TRANSCRIBE_MAX_FILES"),
        (
            "CALL_TRANSCRIBE_REMOTE_RETRY_DELAY_SECONDS",
            "soon",
            "number value for CALL_TRANSCRIBE_REMOTE_RETRY_DELAY_SECONDS",
        ),
        ("CALL_TRANSCRIBE_METRICS_PORT", "http", "integer value for CALL_TRANSCRIBE_METRICS_PORT"),
    ],
)
def test_malformed_number_names_the_variable(
    monkeypatch,
    name: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=message):
        Settings.from_env()


def test_blank_number_falls_back_to_default(monkeypatch) -> None:
    monkeypatch.setenv("CALL_TRANSCRIBE_MAX_FILES", "  ")

    assert Settings.from_env().processing.max_files == 50


def test_notifications_follow_webhook_url(monkeypatch) -> None:
    _valid_sftp_env(monkeypatch)
    assert Settings.from_env().notification.enabled is False

    monkeypatch.setenv("CALL_TRANSCRIBE_SLACK_WEBHOOK_URL", "https://hooks.slack.test/T0/B0/xyz")
    settings = Settings.from_env()
    settings.validate_for_run()

    assert settings.notification.enabled is True
    assert settings.sanitized()["notification"]["slack_webhook_url"] == "***"


def test_invalid_webhook_url_is_rejected(monkeypatch) -> None:
    _valid_sftp_env(monkeypatch)
    monkeypatch.setenv("CALL_TRANSCRIBE_SLACK_WEBHOOK_URL", "hooks.slack.test/xyz")

    with pytest.raises(ValueError, match="SLACK_WEBHOOK_URL"):
        Settings.from_env().validate_for_run()
