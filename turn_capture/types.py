"""All dataclasses, exceptions, and type aliases for turn-capture."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Callable, Protocol, runtime_checkable


# ---------------------------------------------------------------------------
# Turns & events
# ---------------------------------------------------------------------------

@dataclass
class PendingTurn:
    """The single in-flight user utterance waiting for an assistant reply."""
    id: str
    user_text: str
    user_ts: str  # ISO-8601


@dataclass
class TurnRecord:
    """One completed user -> assistant round trip."""
    id: str
    user_text: str
    user_ts: str
    assistant_text: str
    assistant_ts: str
    meta: dict[str, str] = field(default_factory=dict)
    user_agent: str = ""
    type: str = "turn"

    def to_payload(self) -> dict:
        """Body shape accepted by ``POST /api/log-event``."""
        return {
            "type": self.type,
            "id": self.id,
            "user_text": self.user_text,
            "user_ts": self.user_ts,
            "assistant_text": self.assistant_text,
            "assistant_ts": self.assistant_ts,
            "meta": dict(self.meta),
        }


@dataclass
class LegacyEventRecord:
    """Single-sided event (backward-compatible shape)."""
    role: str
    text: str
    len: int
    sessionId: str = ""
    threadId: str = ""
    meta: dict[str, str] = field(default_factory=dict)
    user_agent: str = ""
    ts: str = ""


TurnSink = Callable[[TurnRecord], None]


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

@dataclass
class BlobInfo:
    key: str
    url: str = ""
    size: int = 0
    content_type: str = ""


@dataclass
class CompactionResult:
    """Outcome of one compaction run for a single day."""
    day: str
    out_key: str
    written: bool = False
    events: int = 0
    deleted: int = 0
    message: str = ""
    ok: bool = True

    def to_dict(self) -> dict:
        data: dict = {
            "ok": self.ok,
            "day": self.day,
            "outKey": self.out_key,
            "written": self.written,
            "deleted": self.deleted,
        }
        if self.written:
            data["events"] = self.events
        if self.message:
            data["message"] = self.message
        return data


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class TurnCaptureError(Exception):
    """Base class for turn-capture errors."""


class BlobNotFoundError(TurnCaptureError, KeyError):
    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"Blob not found: {self.key}"


class MalformedEventError(TurnCaptureError, ValueError):
    """Raised when an ingestion body cannot be shaped into a record."""


class InvalidDayError(TurnCaptureError, ValueError):
    def __init__(self, day: str) -> None:
        super().__init__(f"Invalid day (expected YYYY-MM-DD): {day!r}")
        self.day = day


class InterceptorError(TurnCaptureError):
    """Raised on misuse of the transport interceptor lifecycle."""


class WidgetNotFoundError(TurnCaptureError):
    def __init__(self, selector: str, waited: float = 0.0) -> None:
        super().__init__(f"Widget host {selector!r} not found after {waited:.1f}s")
        self.selector = selector
        self.waited = waited


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

@runtime_checkable
class Beacon(Protocol):
    """Fire-and-forget send primitive: returns True if the payload was queued."""
    def __call__(self, url: str, data: str | bytes | dict | None = None) -> bool: ...


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class StorageConfig:
    backend: str = "filesystem"  # "filesystem" or "s3"
    root: str = ".turn-capture/blobs"
    public_base_url: str = ""
    bucket: str = ""
    prefix: str = ""
    region: str = ""
    public_read: bool = True


@dataclass
class AuthConfig:
    cron_secret: str = ""  # Authorization: Bearer <cron_secret>
    admin_key: str = ""    # ?key=<admin_key>


@dataclass
class CompactionConfig:
    batch_size: int = 50
    max_workers: int = 8


@dataclass
class CaptureConfig:
    endpoint: str = "http://127.0.0.1:3000/api/log-event"
    exclude_patterns: list[str] = field(default_factory=lambda: [
        "/api/create-session",
        "/api/log-event",
        "/track?",
        "/_next/",
    ])
    user_agent: str = "turn-capture"
    page_path: str = "/"
    host_selector: str = "openai-chatkit"
    attach_retry_delay: float = 0.7
    composer_poll_interval: float = 1.5
    dedup_chars: int = 240


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 3000


@dataclass
class TurnCaptureConfig:
    version: str = "1.0"
    log_level: str = "INFO"
    storage: StorageConfig = field(default_factory=StorageConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    compaction: CompactionConfig = field(default_factory=CompactionConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    def to_dict(self) -> dict:
        return asdict(self)
