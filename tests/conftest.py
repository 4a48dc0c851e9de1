"""Shared test fixtures."""

from __future__ import annotations

import os

import pytest

from call_transcribe.config import ENV_PREFIX


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Drop settings leaked from the developer shell so defaults are predictable."""
    for name in list(os.environ):
        if name.startswith(ENV_PREFIX) or name == "OPENAI_API_KEY":
            monkeypatch.delenv(name, raising=False)
