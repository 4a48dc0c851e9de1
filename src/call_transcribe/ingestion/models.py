"""Domain models for remote listings and catalog results."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class EntryKind(str, Enum):
    """Type of one remote directory entry."""

    DIRECTORY = "directory"
    FILE = "file"
    OTHER = "other"


@dataclass(slots=True, frozen=True)
class RemoteEntry:
    """One row of a remote directory listing."""

    name: str
    kind: EntryKind
    size_bytes: int
    modified_at: datetime


@dataclass(slots=True, frozen=True)
class RemoteItem:
    """A discovered recording; identity is ``remote_path``."""

    name: str
    size_bytes: int
    modified_at: datetime
    remote_path: str


@dataclass(slots=True, frozen=True)
class DateFolder:
    """Second-level folder whose name parses as a calendar date."""

    path: str
    parsed_date: datetime
