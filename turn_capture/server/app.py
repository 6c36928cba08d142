"""FastAPI app: turn ingestion and the daily compaction trigger."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from ..config import load_config
from ..core.compactor import CompactionJob, authorize, resolve_day
from ..core.store import BlobStore
from ..core.writer import LogWriter
from ..storage import create_store
from ..types import InvalidDayError, TurnCaptureConfig

logger = logging.getLogger(__name__)


def _bad_request() -> JSONResponse:
    return JSONResponse({"ok": False, "error": "bad_request"}, status_code=400)


def create_app(
    config: TurnCaptureConfig | None = None,
    config_path: str | None = None,
    *,
    store: BlobStore | None = None,
) -> FastAPI:
    """Create the ingestion/compaction application.

    Args:
        config: Loaded configuration. Discovered/loaded from *config_path* when omitted.
        config_path: Path to a turn-capture config file.
        store: Storage backend override (tests inject one); otherwise built from config.
    """
    if config is None:
        config = load_config(config_path)
    if store is None:
        store = create_store(config.storage)
    writer = LogWriter(store)

    logger.info(
        "turn-capture ready: storage=%s, compaction auth=%s",
        config.storage.backend,
        "+".join(
            name for name, value in (
                ("bearer", config.auth.cron_secret), ("key", config.auth.admin_key),
            ) if value
        ) or "disabled",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        yield
        logger.debug("turn-capture shutting down")

    app = FastAPI(title="turn-capture", lifespan=lifespan)
    app.state.config = config
    app.state.store = store
    app.state.writer = writer

    @app.post("/api/log-event")
    async def log_event(request: Request):
        try:
            body = json.loads(await request.body())
            key = await asyncio.to_thread(
                writer.write, body, request.headers.get("user-agent", ""),
            )
        except Exception:
            logger.exception("Rejected log event")
            return _bad_request()
        return {"ok": True, "key": key}

    @app.get("/api/admin/compact")
    async def compact(request: Request):
        params = request.query_params
        if not authorize(
            request.headers.get("authorization"), params.get("key"), config.auth,
        ):
            logger.warning("Unauthorized compaction request from %s",
                           request.client.host if request.client else "unknown")
            return PlainTextResponse("Forbidden", status_code=403)

        try:
            day = resolve_day(params.get("day"))
        except InvalidDayError:
            return JSONResponse({"ok": False, "error": "invalid_day"}, status_code=400)

        job = CompactionJob(store, config.compaction)
        result = await asyncio.to_thread(job.run, day, params.get("force") == "1")
        return result.to_dict()

    return app
