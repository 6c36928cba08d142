"""CompactionJob: merges one day's per-event objects into a single NDJSON object."""

from __future__ import annotations

import hmac
import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone
from typing import Callable

from ..types import AuthConfig, BlobNotFoundError, CompactionConfig, CompactionResult, InvalidDayError
from .store import BlobStore
from .writer import compacted_key, day_prefix

logger = logging.getLogger(__name__)

_DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_BEARER_PREFIX = "bearer "


def authorize(authorization: str | None, key: str | None, auth: AuthConfig) -> bool:
    """Accept a matching bearer token (automated) or admin key (manual).

    Unset secrets never match, so an unconfigured deployment rejects everything.
    """
    if authorization and auth.cron_secret:
        if authorization[:len(_BEARER_PREFIX)].lower() == _BEARER_PREFIX:
            token = authorization[len(_BEARER_PREFIX):].strip()
            if hmac.compare_digest(token.encode(), auth.cron_secret.encode()):
                return True
    if key and auth.admin_key:
        if hmac.compare_digest(key.encode(), auth.admin_key.encode()):
            return True
    return False


def yesterday_utc(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return (now.astimezone(timezone.utc).date() - timedelta(days=1)).isoformat()


def resolve_day(day: str | None, now: datetime | None = None) -> str:
    """Explicit ``YYYY-MM-DD`` day, or yesterday (UTC) when omitted."""
    if not day:
        return yesterday_utc(now)
    if not _DAY_RE.match(day):
        raise InvalidDayError(day)
    try:
        date.fromisoformat(day)
    except ValueError:
        raise InvalidDayError(day) from None
    return day


def to_ndjson_line(content: bytes) -> str:
    """One compact JSON line; non-JSON content is kept verbatim, newline-terminated."""
    text = content.decode("utf-8", errors="replace")
    try:
        obj = json.loads(text)
    except ValueError:
        return text if text.endswith("\n") else text + "\n"
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":")) + "\n"


class CompactionJob:
    """Idempotent daily merge: ``logs/{day}/*.json`` -> ``logs/{day}.ndjson``.

    The existence check before writing is best-effort, not transactional: two
    runs started together may both merge and both delete. Deletes are counted
    only when they succeed, so across such runs every per-event object is
    counted once.
    """

    def __init__(
        self,
        store: BlobStore,
        config: CompactionConfig | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.config = config or CompactionConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def run(self, day: str | None = None, force: bool = False) -> CompactionResult:
        day = resolve_day(day, self._clock())
        prefix = day_prefix(day)
        out_key = compacted_key(day)

        if not force and self.store.exists(out_key):
            logger.info("Day %s already compacted (%s)", day, out_key)
            return CompactionResult(day=day, out_key=out_key, message="Already compacted")

        keys = [info.key for info in self.store.list(prefix) if info.key.endswith(".json")]
        if not keys:
            logger.info("Day %s: no per-event files to compact", day)
            return CompactionResult(
                day=day, out_key=out_key, message="No per-event files to compact",
            )

        lines, merged = self._merge(keys)
        if not merged:
            return CompactionResult(
                day=day, out_key=out_key, message="No per-event files to compact",
            )

        self.store.put(out_key, "".join(lines).encode("utf-8"), content_type="application/x-ndjson")
        logger.info("Day %s: wrote %s with %d events", day, out_key, len(merged))

        deleted = 0
        for key in merged:
            try:
                if self.store.delete(key):
                    deleted += 1
            except Exception:
                logger.warning("Failed to delete %s after compaction", key, exc_info=True)

        if deleted < len(merged):
            logger.warning(
                "Day %s: deleted %d of %d merged objects; re-run with force to reconcile",
                day, deleted, len(merged),
            )
        return CompactionResult(
            day=day,
            out_key=out_key,
            written=True,
            events=len(merged),
            deleted=deleted,
        )

    def _read_line(self, key: str) -> str | None:
        try:
            return to_ndjson_line(self.store.get(key))
        except BlobNotFoundError:
            logger.warning("Object %s vanished before it could be merged", key)
            return None

    def _merge(self, keys: list[str]) -> tuple[list[str], list[str]]:
        """Read *keys* in bounded batches. Returns ``(lines, merged_keys)`` in listing order."""
        batch_size = max(1, self.config.batch_size)
        workers = max(1, min(self.config.max_workers, batch_size))
        lines: list[str] = []
        merged: list[str] = []

        with ThreadPoolExecutor(max_workers=workers) as executor:
            for start in range(0, len(keys), batch_size):
                batch = keys[start:start + batch_size]
                for key, line in zip(batch, executor.map(self._read_line, batch)):
                    if line is None:
                        continue
                    lines.append(line)
                    merged.append(key)
        return lines, merged
