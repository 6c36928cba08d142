"""Shared fixtures for turn-capture tests."""

from __future__ import annotations

import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from turn_capture.config import ENV_ADMIN_KEY, ENV_CRON_SECRET, load_config
from turn_capture.storage.filesystem import FilesystemBlobStore
from turn_capture.types import TurnCaptureConfig, TurnRecord

CRON_SECRET = "cron-secret-123"
ADMIN_KEY = "admin-key-456"


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep secrets from the developer's shell out of config loading."""
    monkeypatch.delenv(ENV_CRON_SECRET, raising=False)
    monkeypatch.delenv(ENV_ADMIN_KEY, raising=False)


@pytest.fixture
def tmp_store_dir():
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def store(tmp_store_dir) -> FilesystemBlobStore:
    return FilesystemBlobStore(tmp_store_dir / "blobs")


@pytest.fixture
def sample_config(tmp_store_dir) -> TurnCaptureConfig:
    return load_config(config_dict={
        "storage": {"backend": "filesystem", "root": str(tmp_store_dir / "blobs")},
        "auth": {"cron_secret": CRON_SECRET, "admin_key": ADMIN_KEY},
        "compaction": {"batch_size": 3, "max_workers": 2},
    })


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2025, 3, 14, 15, 9, 26, 535000, tzinfo=timezone.utc)


class RecordingSink:
    """Turn sink that just collects records."""

    def __init__(self):
        self.records: list[TurnRecord] = []

    def __call__(self, record: TurnRecord) -> None:
        self.records.append(record)


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()
