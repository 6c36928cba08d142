"""Background sinks that hand completed turns to the log writer.

Every sink submits work to a single-worker pool so the capture path returns
immediately. Failures are logged and dropped; nothing is retried.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor

import httpx

from ..core.writer import LogWriter
from ..types import TurnRecord

logger = logging.getLogger(__name__)


class BackgroundSink:
    """Base sink: ``__call__`` schedules :meth:`deliver` on a worker thread."""

    def __init__(self) -> None:
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="turn-sink")
        self._pending: list[Future] = []

    def __call__(self, record: TurnRecord) -> None:
        self._pending = [f for f in self._pending if not f.done()]
        self._pending.append(self._pool.submit(self._run, record))

    def _run(self, record: TurnRecord) -> None:
        t0 = time.monotonic()
        try:
            self.deliver(record)
        except Exception:
            logger.warning("Failed to log turn %s", record.id, exc_info=True)
            return
        logger.debug(
            "Logged turn %s (%dms)", record.id, int((time.monotonic() - t0) * 1000),
        )

    def deliver(self, record: TurnRecord) -> None:
        raise NotImplementedError

    def wait(self) -> None:
        """Block until every scheduled delivery finishes."""
        pending, self._pending = self._pending, []
        for future in pending:
            future.result()

    def close(self) -> None:
        self._pool.shutdown(wait=True)


class HttpLogSink(BackgroundSink):
    """POST each turn to the ingestion endpoint."""

    def __init__(
        self,
        endpoint: str,
        user_agent: str = "turn-capture",
        *,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__()
        self.endpoint = endpoint
        self._client = client or httpx.Client(
            timeout=timeout, headers={"User-Agent": user_agent},
        )
        self._owns_client = client is None

    def deliver(self, record: TurnRecord) -> None:
        resp = self._client.post(self.endpoint, json=record.to_payload())
        resp.raise_for_status()

    def close(self) -> None:
        super().close()
        if self._owns_client:
            self._client.close()


class WriterLogSink(BackgroundSink):
    """Write each turn straight through a :class:`LogWriter`."""

    def __init__(self, writer: LogWriter) -> None:
        super().__init__()
        self.writer = writer

    def deliver(self, record: TurnRecord) -> None:
        self.writer.write_turn(record)
