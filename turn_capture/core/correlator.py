"""TurnCorrelator: pairs the latest user utterance with the next assistant reply.

The correlator holds exactly one PendingTurn. It is driven from a single
cooperative event loop (every capture callback runs on the loop thread), so
``begin``/``complete`` need no locking and the last write wins. A host that
calls these from several threads must serialize access itself, e.g. by
funnelling calls through ``loop.call_soon_threadsafe``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable

from ..types import PendingTurn, TurnRecord, TurnSink

logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _fresh_id() -> str:
    return uuid.uuid4().hex


class TurnCorrelator:
    """Two-operation state machine: ``begin`` stores, ``complete`` emits and clears."""

    def __init__(
        self,
        sink: TurnSink,
        *,
        page_path: str = "/",
        user_agent: str = "",
        clock: Callable[[], str] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.sink = sink
        self.page_path = page_path
        self.user_agent = user_agent
        self._clock = clock or _utc_now_iso
        self._id_factory = id_factory or _fresh_id
        self._pending: PendingTurn | None = None
        self._reset_callbacks: list[Callable[[], None]] = []

    @property
    def pending(self) -> PendingTurn | None:
        return self._pending

    def begin(self, user_text: str, timestamp: str | None = None) -> PendingTurn | None:
        """Buffer a user utterance, replacing any unconsumed one."""
        if not user_text or not user_text.strip():
            return None
        if self._pending is not None:
            logger.debug("Replacing unconsumed pending turn %s", self._pending.id)
        self._pending = PendingTurn(
            id=self._id_factory(),
            user_text=user_text,
            user_ts=timestamp or self._clock(),
        )
        return self._pending

    def complete(
        self,
        assistant_text: str,
        meta: dict[str, str] | None = None,
    ) -> TurnRecord | None:
        """Emit a TurnRecord for *assistant_text* and clear the pending turn.

        Blank replies are ignored. Without a pending turn the record is still
        emitted, with an empty user side.
        """
        if not assistant_text or not assistant_text.strip():
            return None

        current = self._pending
        record = TurnRecord(
            id=current.id if current else self._id_factory(),
            user_text=current.user_text if current else "",
            user_ts=current.user_ts if current else "",
            assistant_text=assistant_text,
            assistant_ts=self._clock(),
            meta={**(meta or {}), "path": self.page_path},
            user_agent=self.user_agent,
        )
        self._pending = None

        try:
            self.sink(record)
        except Exception:
            logger.warning("Turn sink failed for turn %s", record.id, exc_info=True)
        return record

    # -- thread changes ------------------------------------------------------

    def on_thread_change(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a dedup-reset callback. Returns a function that unregisters it."""
        self._reset_callbacks.append(callback)

        def _remove() -> None:
            if callback in self._reset_callbacks:
                self._reset_callbacks.remove(callback)

        return _remove

    def thread_changed(self) -> None:
        """New conversation: reset capture-path dedup state; keep the pending turn."""
        for callback in list(self._reset_callbacks):
            try:
                callback()
            except Exception:
                logger.warning("Thread-change callback failed", exc_info=True)
