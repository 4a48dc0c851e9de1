"""Local directory exposed through the remote store contract."""

from __future__ import annotations

import logging
import os
import shutil
from datetime import UTC, datetime
from pathlib import Path

from call_transcribe.errors import RemoteAccessError
from call_transcribe.ingestion.models import EntryKind, RemoteEntry

logger = logging.getLogger(__name__)


class LocalDirectoryStore:
    """Serves a local directory tree as if it were the remote store.

    Remote paths are POSIX paths rooted at ``root``; ``/`` is the root itself.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self._connected = False

    @property
    def host(self) -> str:
        return f"file://{self.root}"

    def connect(self) -> None:
        if self._connected:
            return
        if not self.root.is_dir():
            raise RemoteAccessError.connection_failed(
                self.host,
                FileNotFoundError(f"Directory not found: {self.root}"),
            )
        self._connected = True
        logger.info("Local store opened at %s", self.root)

    def list(self, path: str) -> list[RemoteEntry]:
        self._require_connection("list")
        target = self._resolve(path)
        try:
            with os.scandir(target) as iterator:
                return [_entry_from_dir_entry(entry) for entry in iterator]
        except OSError as error:
            raise RemoteAccessError.list_failed(path, error) from error

    def fetch(self, remote_path: str, local_path: Path) -> None:
        self._require_connection("fetch")
        try:
            shutil.copyfile(self._resolve(remote_path), local_path)
        except OSError as error:
            raise RemoteAccessError.download_failed(remote_path, str(local_path), error) from error

    def delete(self, remote_path: str) -> None:
        self._require_connection("delete")
        try:
            self._resolve(remote_path).unlink()
        except OSError as error:
            raise RemoteAccessError.delete_failed(remote_path, error) from error

    def close(self) -> None:
        self._connected = False

    def _require_connection(self, operation: str) -> None:
        if not self._connected:
            raise RemoteAccessError.not_connected(operation)

    def _resolve(self, remote_path: str) -> Path:
        return self.root / remote_path.lstrip("/")


def _entry_from_dir_entry(entry: os.DirEntry[str]) -> RemoteEntry:
    stat = entry.stat(follow_symlinks=False)
    if entry.is_dir(follow_symlinks=False):
        kind = EntryKind.DIRECTORY
    elif entry.is_file(follow_symlinks=False):
        kind = EntryKind.FILE
    else:
        kind = EntryKind.OTHER
    return RemoteEntry(
        name=entry.name,
        kind=kind,
        size_bytes=stat.st_size,
        modified_at=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
    )
