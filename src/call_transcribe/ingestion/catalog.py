"""Discovery of the most recent recordings in a date-organised remote tree.

Recordings are expected under ``<base>/<campaign>/<date>/...`` where the
date folder is named ``YYYY-MM-DD`` or ``MM-DD-YYYY`` (``_`` is accepted as a
separator too). Date folders are visited newest first so that the walk can
stop as soon as the cap is reached. Trees without any date folder are walked
in full instead.
"""

from __future__ import annotations

import logging
import posixpath
import re
from collections.abc import Iterator
from datetime import UTC, datetime

from call_transcribe.ingestion.models import DateFolder, EntryKind, RemoteEntry, RemoteItem
from call_transcribe.ingestion.stores.base import RemoteStore
from call_transcribe.retry import RetryExecutor, RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_AUDIO_EXTENSIONS: tuple[str, ...] = (".wav",)

_YEAR_FIRST_PATTERN = re.compile(r"^(\d{4})[-_](\d{1,2})[-_](\d{1,2})$")
_YEAR_LAST_PATTERN = re.compile(r"^(\d{1,2})[-_](\d{1,2})[-_](\d{4})$")


def parse_date_folder_name(name: str) -> datetime | None:
    """Parse a folder name as a date, trying year-first before year-last.

    Returns ``None`` for names matching neither pattern and for impossible
    calendar dates such as ``2024-13-40``.
    """

    match = _YEAR_FIRST_PATTERN.match(name)
    if match is not None:
        year, month, day = match.groups()
    else:
        match = _YEAR_LAST_PATTERN.match(name)
        if match is None:
            return None
        month, day, year = match.groups()
    try:
        return datetime(int(year), int(month), int(day), tzinfo=UTC)
    except ValueError:
        return None


class RemoteFileCatalog:
    """Builds the bounded, newest-first list of recordings for one run."""

    def __init__(
        self,
        *,
        store: RemoteStore,
        executor: RetryExecutor,
        policy: RetryPolicy,
        audio_extensions: tuple[str, ...] = DEFAULT_AUDIO_EXTENSIONS,
    ) -> None:
        self.store = store
        self.executor = executor
        self.policy = policy
        self.audio_extensions = tuple(_normalize_extension(ext) for ext in audio_extensions)

    def list_recent(self, base_path: str, cap_count: int) -> list[RemoteItem]:
        """Return at most ``cap_count`` recordings, newest ``modified_at`` first."""

        if cap_count < 0:
            raise ValueError("cap_count must be >= 0.")
        if cap_count == 0:
            return []

        date_folders = self._list_date_folders(base_path)
        if not date_folders:
            logger.warning(
                "No date folders detected under %s, falling back to full recursive listing",
                base_path,
            )
            collected: list[RemoteItem] = []
            self._walk(base_path, collected, cap_count=None)
            items = _newest_first(collected)
            if len(items) > cap_count:
                logger.warning(
                    "Remote listing capped at %d of %d files; older files are skipped",
                    cap_count,
                    len(items),
                )
            return items[:cap_count]

        collected = []
        capped = False
        for folder in date_folders:
            if len(collected) >= cap_count:
                capped = True
                break
            capped = self._walk(folder.path, collected, cap_count=cap_count)

        items = _newest_first(collected)
        if capped:
            logger.warning(
                "Remote listing capped at %d files; older files may be skipped",
                cap_count,
            )
        logger.info(
            "Listed %d recent files from %d date folder(s) under %s",
            min(len(items), cap_count),
            len(date_folders),
            base_path,
        )
        return items[:cap_count]

    def _list_date_folders(self, base_path: str) -> list[DateFolder]:
        folders: list[DateFolder] = []
        for campaign in self._list(base_path):
            if campaign.kind is not EntryKind.DIRECTORY:
                continue
            campaign_path = posixpath.join(base_path, campaign.name)
            for child in self._list(campaign_path):
                if child.kind is not EntryKind.DIRECTORY:
                    continue
                parsed = parse_date_folder_name(child.name)
                if parsed is None:
                    continue
                folders.append(
                    DateFolder(path=posixpath.join(campaign_path, child.name), parsed_date=parsed),
                )
        return sorted(folders, key=lambda folder: folder.parsed_date, reverse=True)

    def _walk(self, root: str, collected: list[RemoteItem], *, cap_count: int | None) -> bool:
        """Depth-first walk appending audio files in listing order.

        Returns ``True`` when the cap left an audio file or a subdirectory
        unvisited. A walk that fills the cap with its last file returns ``False``.
        """

        stack: list[tuple[str, Iterator[RemoteEntry]]] = [(root, iter(self._list(root)))]
        while stack:
            parent, entries = stack[-1]
            entry = next(entries, None)
            if entry is None:
                stack.pop()
                continue
            is_directory = entry.kind is EntryKind.DIRECTORY
            if not is_directory and (
                entry.kind is not EntryKind.FILE or not self._is_audio(entry.name)
            ):
                continue
            if cap_count is not None and len(collected) >= cap_count:
                return True
            entry_path = posixpath.join(parent, entry.name)
            if is_directory:
                stack.append((entry_path, iter(self._list(entry_path))))
                continue
            collected.append(
                RemoteItem(
                    name=entry.name,
                    size_bytes=entry.size_bytes,
                    modified_at=entry.modified_at,
                    remote_path=entry_path,
                ),
            )
        return False

    def _list(self, path: str) -> list[RemoteEntry]:
        return self.executor.execute(
            lambda: self.store.list(path),
            self.policy,
            f"remote list {path}",
        )

    def _is_audio(self, name: str) -> bool:
        return posixpath.splitext(name)[1].lower() in self.audio_extensions


def _newest_first(items: list[RemoteItem]) -> list[RemoteItem]:
    return sorted(items, key=lambda item: item.modified_at, reverse=True)


def _normalize_extension(extension: str) -> str:
    extension = extension.strip().lower()
    if not extension.startswith("."):
        return f".{extension}"
    return extension
