"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml

from .types import (
    AuthConfig,
    CaptureConfig,
    CompactionConfig,
    ServerConfig,
    StorageConfig,
    TurnCaptureConfig,
)

CONFIG_FILENAMES = [
    "turn-capture.yaml",
    "turn-capture.yml",
    "turn-capture.json",
]

# Environment variables that override secrets from the config file
ENV_CRON_SECRET = "CRON_SECRET"
ENV_ADMIN_KEY = "LOG_ADMIN_KEY"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _build_config(raw: dict[str, Any]) -> TurnCaptureConfig:
    """Build a TurnCaptureConfig from a raw dict."""
    storage_raw = raw.get("storage", {})
    storage = StorageConfig(
        backend=storage_raw.get("backend", "filesystem"),
        root=storage_raw.get("root", ".turn-capture/blobs"),
        public_base_url=storage_raw.get("public_base_url", ""),
        bucket=storage_raw.get("bucket", ""),
        prefix=storage_raw.get("prefix", ""),
        region=storage_raw.get("region", ""),
        public_read=storage_raw.get("public_read", True),
    )

    auth_raw = raw.get("auth", {})
    auth = AuthConfig(
        cron_secret=os.environ.get(ENV_CRON_SECRET) or auth_raw.get("cron_secret", ""),
        admin_key=os.environ.get(ENV_ADMIN_KEY) or auth_raw.get("admin_key", ""),
    )

    compaction_raw = raw.get("compaction", {})
    compaction = CompactionConfig(
        batch_size=compaction_raw.get("batch_size", 50),
        max_workers=compaction_raw.get("max_workers", 8),
    )

    capture_raw = raw.get("capture", {})
    defaults = CaptureConfig()
    capture = CaptureConfig(
        endpoint=capture_raw.get("endpoint", defaults.endpoint),
        exclude_patterns=capture_raw.get("exclude_patterns", defaults.exclude_patterns),
        user_agent=capture_raw.get("user_agent", defaults.user_agent),
        page_path=capture_raw.get("page_path", defaults.page_path),
        host_selector=capture_raw.get("host_selector", defaults.host_selector),
        attach_retry_delay=capture_raw.get("attach_retry_delay", defaults.attach_retry_delay),
        composer_poll_interval=capture_raw.get(
            "composer_poll_interval", defaults.composer_poll_interval,
        ),
        dedup_chars=capture_raw.get("dedup_chars", defaults.dedup_chars),
    )

    server_raw = raw.get("server", {})
    server = ServerConfig(
        host=server_raw.get("host", "127.0.0.1"),
        port=server_raw.get("port", 3000),
    )

    return TurnCaptureConfig(
        version=str(raw.get("version", "1.0")),
        log_level=str(raw.get("log_level", "INFO")).upper(),
        storage=storage,
        auth=auth,
        compaction=compaction,
        capture=capture,
        server=server,
    )


def validate_config(config: TurnCaptureConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    if config.storage.backend not in ("filesystem", "s3"):
        errors.append(
            f"Unknown storage backend '{config.storage.backend}' "
            f"(expected 'filesystem' or 's3')"
        )
    if config.storage.backend == "s3" and not config.storage.bucket:
        errors.append("storage.bucket is required for the s3 backend")

    if not config.auth.cron_secret and not config.auth.admin_key:
        errors.append(
            f"No compaction credentials: set auth.cron_secret / auth.admin_key "
            f"or {ENV_CRON_SECRET} / {ENV_ADMIN_KEY}"
        )

    if config.compaction.batch_size < 1:
        errors.append("compaction.batch_size must be >= 1")
    if config.compaction.max_workers < 1:
        errors.append("compaction.max_workers must be >= 1")

    if config.capture.dedup_chars < 1:
        errors.append("capture.dedup_chars must be >= 1")
    if config.capture.attach_retry_delay < 0:
        errors.append("capture.attach_retry_delay must be >= 0")

    if config.log_level not in _LOG_LEVELS:
        errors.append(f"Unknown log_level '{config.log_level}'")

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> TurnCaptureConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        # Return defaults
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    return _build_config(raw)
