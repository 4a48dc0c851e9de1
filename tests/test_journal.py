from __future__ import annotations

import json
import re
from pathlib import Path

import allure

from call_transcribe.pipeline.journal import JournalLevel, RunJournal, generate_run_id

pytestmark = [
    allure.epic("Pipeline"),
    allure.feature("Run journal"),
]


def test_run_id_has_timestamp_and_random_suffix() -> None:
    run_id = generate_run_id()

    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{6}Z-[a-z0-9]{6}", run_id)
    assert generate_run_id() != run_id


def test_events_are_appended_as_jsonl(tmp_path: Path) -> None:
    journal = RunJournal(log_dir=tmp_path, run_id="run-42", service_name="test-service")

    journal.record(JournalLevel.INFO, "fetch", "fetch completed", item="a.wav")
    journal.record(JournalLevel.DEBUG, "fetch", "chunk", size=10)
    journal.close()

    lines = (tmp_path / "run-42.jsonl").read_text("utf-8").splitlines()
    first = json.loads(lines[0])
    assert len(lines) == 2
    assert first["run_id"] == "run-42"
    assert first["level"] == "info"
    assert first["step"] == "fetch"
    assert first["item"] == "a.wav"
    assert journal.metadata()["service_name"] == "test-service"
    assert journal.metadata()["log_path"] == str(tmp_path / "run-42.jsonl")


def test_only_important_events_are_kept_in_memory(tmp_path: Path) -> None:
    journal = RunJournal(max_events_in_memory=3)

    journal.record(JournalLevel.INFO, "system", "Run started")
    journal.record(JournalLevel.DEBUG, "fetch", "chunk")
    journal.record(JournalLevel.INFO, "fetch", "fetch completed")
    journal.record(JournalLevel.WARNING, "list", "listing capped")
    journal.record(JournalLevel.ERROR, "record", "record failed")

    assert [event.message for event in journal.important_events()] == [
        "Run started",
        "fetch completed",
        "listing capped",
    ]
    assert journal.log_path is None


def test_error_summary_groups_by_step_and_code() -> None:
    journal = RunJournal()
    for _ in range(2):
        journal.record(
            JournalLevel.ERROR,
            "transcribe",
            "transcribe failed",
            error={"code": "transcription_api_error"},
        )
    journal.record(
        JournalLevel.ERROR,
        "fetch",
        "fetch failed",
        error={"code": "remote_download_failed"},
    )
    journal.record(JournalLevel.ERROR, "system", "Run failed")

    summary = journal.error_summary().splitlines()

    assert summary[0] == "transcribe: transcription_api_error (2x)"
    assert "fetch: remote_download_failed (1x)" in summary
    assert "system: Run failed (1x)" in summary


def test_error_summary_without_errors() -> None:
    assert RunJournal().error_summary() == "No errors"


def test_stage_durations_accumulate() -> None:
    journal = RunJournal()

    journal.add_stage_duration("fetch", 1.5)
    journal.add_stage_duration("fetch", 0.5)

    assert journal.stage_seconds == {"fetch": 2.0}


def test_unwritable_log_dir_degrades_to_memory_only(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", "utf-8")

    journal = RunJournal(log_dir=blocker / "logs")
    journal.record(JournalLevel.ERROR, "fetch", "fetch failed")

    assert journal.log_path is None
    assert len(journal.important_events()) == 1


def test_error_summary_counts_errors_past_the_memory_cap() -> None:
    journal = RunJournal(max_events_in_memory=2)
    for index in range(5):
        journal.record(JournalLevel.INFO, "fetch", "fetch completed", item=f"{index}.wav")
    journal.record(
        JournalLevel.ERROR,
        "transcribe",
        "transcribe failed",
        error={"code": "transcription_failed"},
    )

    assert len(journal.important_events()) == 2
    assert journal.error_summary() == "transcribe: transcription_failed (1x)"


class _BrokenStream:
    def __init__(self) -> None:
        self.closed = False

    def write(self, _: str) -> int:
        raise OSError("disk full")

    def flush(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True


def test_write_failure_stops_file_journal_but_keeps_memory(tmp_path: Path) -> None:
    journal = RunJournal(log_dir=tmp_path, run_id="run-7")
    journal.close()
    broken = _BrokenStream()
    journal._stream = broken

    journal.record(JournalLevel.ERROR, "record", "record failed", error={"code": "db"})
    journal.record(JournalLevel.INFO, "system", "Run completed")

    assert broken.closed
    assert journal.error_summary() == "record: db (1x)"
    assert [event.message for event in journal.important_events()] == [
        "record failed",
        "Run completed",
    ]
