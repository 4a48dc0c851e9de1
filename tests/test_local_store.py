from __future__ import annotations

from pathlib import Path

import allure
import pytest

from call_transcribe.errors import RemoteAccessError
from call_transcribe.ingestion.models import EntryKind
from call_transcribe.ingestion.stores import LocalDirectoryStore

pytestmark = [
    allure.epic("Ingestion"),
    allure.feature("Remote stores"),
]


def _tree(root: Path) -> Path:
    day = root / "SB CS" / "11_02_2024"
    day.mkdir(parents=True)
    (day / "call.wav").write_bytes(b"RIFF0000WAVE")
    return root


def test_list_maps_directories_and_files(tmp_path: Path) -> None:
    store = LocalDirectoryStore(_tree(tmp_path))
    store.connect()

    root_entries = store.list("/")
    day_entries = store.list("/SB CS/11_02_2024")

    assert [(entry.name, entry.kind) for entry in root_entries] == [("SB CS", EntryKind.DIRECTORY)]
    assert len(day_entries) == 1
    assert day_entries[0].kind is EntryKind.FILE
    assert day_entries[0].size_bytes == len(b"RIFF0000WAVE")
    assert day_entries[0].modified_at.tzinfo is not None


def test_fetch_copies_and_delete_removes(tmp_path: Path) -> None:
    remote_root = _tree(tmp_path / "remote")
    store = LocalDirectoryStore(remote_root)
    store.connect()
    local = tmp_path / "call.wav"

    store.fetch("/SB CS/11_02_2024/call.wav", local)
    store.delete("/SB CS/11_02_2024/call.wav")

    assert local.read_bytes() == b"RIFF0000WAVE"
    assert not (remote_root / "SB CS" / "11_02_2024" / "call.wav").exists()


def test_missing_root_fails_to_connect(tmp_path: Path) -> None:
    store = LocalDirectoryStore(tmp_path / "absent")

    with pytest.raises(RemoteAccessError) as raised:
        store.connect()

    assert raised.value.code == "remote_connection_failed"
    assert raised.value.retryable is True


def test_calls_before_connect_or_after_close_are_rejected(tmp_path: Path) -> None:
    store = LocalDirectoryStore(_tree(tmp_path))

    with pytest.raises(RemoteAccessError) as raised:
        store.list("/")
    assert raised.value.code == "remote_not_connected"
    assert raised.value.retryable is False

    store.connect()
    store.close()
    store.close()
    with pytest.raises(RemoteAccessError):
        store.fetch("/SB CS/11_02_2024/call.wav", tmp_path / "x.wav")


def test_listing_missing_directory_is_retryable_list_failure(tmp_path: Path) -> None:
    store = LocalDirectoryStore(_tree(tmp_path))
    store.connect()

    with pytest.raises(RemoteAccessError) as raised:
        store.list("/nope")

    assert raised.value.code == "remote_list_failed"
    assert raised.value.context["remote_path"] == "/nope"
