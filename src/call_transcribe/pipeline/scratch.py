"""Local scratch storage helpers raising ``ResourceError``."""

from __future__ import annotations

import hashlib
import logging
import shutil
from datetime import UTC, datetime
from pathlib import Path

from call_transcribe.errors import ResourceError

logger = logging.getLogger(__name__)


def ensure_directory(path: Path) -> Path:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        raise ResourceError.directory_create_failed(str(path), error) from error
    return path


def item_scratch_dir(scratch_root: Path, remote_path: str) -> Path:
    """Per-item scratch directory name derived from the remote path."""

    digest = hashlib.sha256(remote_path.encode("utf-8")).hexdigest()[:16]
    return scratch_root / digest


def write_text(path: Path, content: str) -> Path:
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as error:
        raise ResourceError.file_write_failed(str(path), error) from error
    return path


def file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError as error:
        raise ResourceError.file_read_failed(str(path), error) from error


def move_to_directory(path: Path, directory: Path) -> Path:
    """Move ``path`` into ``directory`` under a timestamp-prefixed name."""

    ensure_directory(directory)
    timestamp = datetime.now(tz=UTC).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    destination = directory / f"{timestamp}_{path.name}"
    try:
        shutil.move(str(path), destination)
    except OSError as error:
        raise ResourceError.file_move_failed(str(path), str(destination), error) from error
    logger.debug("Moved %s to %s", path, destination)
    return destination


def remove_tree(path: Path) -> None:
    if not path.exists():
        return
    try:
        shutil.rmtree(path)
    except OSError as error:
        raise ResourceError.file_delete_failed(str(path), error) from error
