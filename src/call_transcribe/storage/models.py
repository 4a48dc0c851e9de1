"""SQLModel ORM tables for processed recordings."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Text
from sqlmodel import Field, SQLModel


class ProcessedRecording(SQLModel, table=True):
    __tablename__ = "processed_recordings"  # type: ignore[bad-override]

    remote_path: str = Field(primary_key=True)
    name: str = Field(index=True)
    phone_number: str = ""
    agent_name: str = Field(default="Unknown", index=True)
    call_date: str = "Unknown"
    call_time: str = "Unknown"
    language: str | None = None
    duration_seconds: float | None = None
    model: str
    transcript: str = Field(default="", sa_column=Column(Text, nullable=False))
    audio_url: str | None = None
    transcript_url: str | None = None
    remote_modified_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    processed_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
