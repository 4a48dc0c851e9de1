"""Common remote store contract."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from call_transcribe.ingestion.models import RemoteEntry


class RemoteStore(Protocol):
    """Hierarchical remote file store.

    Every failure is raised as ``RemoteAccessError``; retrying is the
    caller's job.
    """

    def connect(self) -> None:
        """Open the connection; calling it while connected is a no-op."""
        raise NotImplementedError

    def list(self, path: str) -> list[RemoteEntry]:
        """List the immediate children of ``path``."""
        raise NotImplementedError

    def fetch(self, remote_path: str, local_path: Path) -> None:
        """Download ``remote_path`` to ``local_path``."""
        raise NotImplementedError

    def delete(self, remote_path: str) -> None:
        """Remove one remote file."""
        raise NotImplementedError

    def close(self) -> None:
        """Close the connection; calling it while closed is a no-op."""
        raise NotImplementedError
