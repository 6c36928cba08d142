"""LogWriter: shapes ingestion bodies into records and persists one object per event."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from ..types import LegacyEventRecord, MalformedEventError, TurnRecord
from .store import BlobStore

logger = logging.getLogger(__name__)

# Field caps (characters)
ROLE_MAX = 20
TEXT_MAX = 4000
ID_MAX = 200
USER_AGENT_MAX = 400
TIMESTAMP_MAX = 64
META_MAX_KEYS = 32
META_KEY_MAX = 64
META_VALUE_MAX = 400

TURN_SUFFIX = ".turn.json"
EVENT_SUFFIX = ".json"
LOG_PREFIX = "logs"


def _cap(value: Any, limit: int) -> str:
    if value is None:
        return ""
    return str(value)[:limit]


def _cap_meta(meta: Any) -> dict[str, str]:
    if not isinstance(meta, dict):
        return {}
    capped: dict[str, str] = {}
    for key, value in list(meta.items())[:META_MAX_KEYS]:
        capped[_cap(key, META_KEY_MAX)] = _cap(value, META_VALUE_MAX)
    return capped


def _iso(ts: datetime) -> str:
    return ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def day_of(ts: datetime) -> str:
    """``YYYY-MM-DD`` (UTC)."""
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%d")


def event_key(ts: datetime, suffix: str) -> str:
    """``logs/{YYYY-MM-DD}/{HH-MM-SS-mmm}{suffix}`` for a UTC timestamp."""
    ts = ts.astimezone(timezone.utc)
    time_part = ts.strftime("%H-%M-%S") + f"-{ts.microsecond // 1000:03d}"
    return f"{LOG_PREFIX}/{day_of(ts)}/{time_part}{suffix}"


def day_prefix(day: str) -> str:
    return f"{LOG_PREFIX}/{day}/"


def compacted_key(day: str) -> str:
    return f"{LOG_PREFIX}/{day}.ndjson"


class LogWriter:
    """Persist ingestion bodies as ``logs/{day}/{time}.json`` objects.

    Keys derive from the server clock, never the client timestamp. Within one
    writer two writes never share a key: a write landing in the same
    millisecond as the previous one is moved forward by 1 ms.
    """

    def __init__(
        self,
        store: BlobStore,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._last_ms: datetime | None = None

    def _next_timestamp(self) -> datetime:
        now = self._clock().astimezone(timezone.utc)
        now = now.replace(microsecond=(now.microsecond // 1000) * 1000)
        with self._lock:
            if self._last_ms is not None and now <= self._last_ms:
                now = self._last_ms + timedelta(milliseconds=1)
            self._last_ms = now
        return now

    @staticmethod
    def shape(body: Any, user_agent: str, ts: datetime) -> tuple[dict, str]:
        """Normalize a request body. Returns ``(record_dict, key_suffix)``."""
        if not isinstance(body, dict):
            raise MalformedEventError("Event body must be a JSON object")

        ts_iso = _iso(ts)
        ua = _cap(user_agent, USER_AGENT_MAX)

        if body.get("type") == "turn":
            turn = TurnRecord(
                id=_cap(body.get("id"), ID_MAX),
                user_text=_cap(body.get("user_text"), TEXT_MAX),
                user_ts=_cap(body.get("user_ts"), TIMESTAMP_MAX),
                assistant_text=_cap(body.get("assistant_text"), TEXT_MAX),
                assistant_ts=_cap(body.get("assistant_ts"), TIMESTAMP_MAX),
                meta=_cap_meta(body.get("meta")),
                user_agent=ua,
            )
            record = {"ts": ts_iso, **asdict(turn)}
            return record, TURN_SUFFIX

        text = "" if body.get("text") is None else str(body.get("text"))
        event = LegacyEventRecord(
            role=_cap(body.get("role") or "user", ROLE_MAX),
            text=text[:TEXT_MAX],
            len=len(text),
            sessionId=_cap(body.get("sessionId"), ID_MAX),
            threadId=_cap(body.get("threadId"), ID_MAX),
            meta=_cap_meta(body.get("meta")),
            user_agent=ua,
            ts=ts_iso,
        )
        return asdict(event), EVENT_SUFFIX

    def write(self, body: Any, user_agent: str = "") -> str:
        """Shape and store *body*. Returns the object key."""
        ts = self._next_timestamp()
        record, suffix = self.shape(body, user_agent, ts)
        key = event_key(ts, suffix)
        data = json.dumps(record, ensure_ascii=False).encode("utf-8")
        self.store.put(key, data, content_type="application/json")
        logger.debug("Stored %s (%d bytes)", key, len(data))
        return key

    def write_turn(self, record: TurnRecord) -> str:
        """Store a TurnRecord produced in-process by the correlator."""
        return self.write(record.to_payload(), user_agent=record.user_agent)
