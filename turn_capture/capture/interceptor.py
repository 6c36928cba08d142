"""Transport interceptor: observes outgoing chat calls without changing them.

``install()`` patches ``httpx.Client.send`` and ``httpx.AsyncClient.send``.
For every inspected POST the request body feeds ``TurnCorrelator.begin`` and
the response body (buffered, or teed while the caller streams it) feeds
``TurnCorrelator.complete``. Beacon callables and socket-like connections are
observed through :meth:`TransportInterceptor.wrap_beacon` and
:meth:`TransportInterceptor.wrap_socket`.

Observation never raises into the caller: parse failures are logged at debug
level and the original call proceeds untouched. Errors raised by the
original call propagate unchanged.
"""

from __future__ import annotations

import inspect
import json
import logging
import re
from typing import Any, AsyncIterator, Callable, Iterator

import httpx

from ..core.correlator import TurnCorrelator
from ..types import Beacon, InterceptorError
from .formats import extract_output_text, extract_stream_fragment, extract_user_text
from .sse import StreamDecoder

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_PATTERNS = (
    "/api/create-session",
    "/api/log-event",
    "/track?",
    "/_next/",
)

METHOD_STREAM = "STREAM:SSE"
METHOD_NONSTREAM = "POST:nonstream"
METHOD_SOCKET = "SOCKET"

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)
_IDENTITY_ENCODINGS = {"", "identity"}


def endpoint_of(url: Any) -> str:
    """URL without its scheme, e.g. ``api.example.com/v1/chat``."""
    return _SCHEME_RE.sub("", str(url))


def _is_event_stream(response: httpx.Response) -> bool:
    return "text/event-stream" in response.headers.get("content-type", "").lower()


def _body_text(data: Any) -> str:
    if data is None:
        return ""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data).decode("utf-8", errors="replace")
    if isinstance(data, str):
        return data
    return json.dumps(data)


class _ResponseObserver:
    """Accumulates one response body and completes the turn exactly once."""

    def __init__(self, interceptor: TransportInterceptor, meta: dict[str, str], streamed: bool) -> None:
        self._interceptor = interceptor
        self._meta = meta
        self._decoder = StreamDecoder() if streamed else None
        self._chunks: list[bytes] = []
        self._done = False

    def feed(self, chunk: bytes) -> None:
        if self._done:
            return
        try:
            if self._decoder is not None:
                self._decoder.feed(chunk)
            else:
                self._chunks.append(chunk)
        except Exception:
            logger.debug("Dropping unreadable response chunk", exc_info=True)

    def finish(self) -> None:
        if self._done:
            return
        self._done = True
        try:
            if self._decoder is not None:
                text = self._decoder.finish()
            else:
                text = extract_output_text(b"".join(self._chunks))
        except Exception:
            logger.debug("Could not assemble response for %s", self._meta.get("endpoint"), exc_info=True)
            return
        self._interceptor._complete(text, self._meta)

    def abandon(self) -> None:
        if not self._done:
            self._done = True
            logger.debug("Response for %s closed before exhaustion", self._meta.get("endpoint"))


class _TeeSyncStream(httpx.SyncByteStream):
    def __init__(self, inner: httpx.SyncByteStream, observer: _ResponseObserver) -> None:
        self._inner = inner
        self._observer = observer

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._inner:
            self._observer.feed(chunk)
            yield chunk
        self._observer.finish()

    def close(self) -> None:
        self._observer.abandon()
        self._inner.close()


class _TeeAsyncStream(httpx.AsyncByteStream):
    def __init__(self, inner: httpx.AsyncByteStream, observer: _ResponseObserver) -> None:
        self._inner = inner
        self._observer = observer

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in self._inner:
            self._observer.feed(chunk)
            yield chunk
        self._observer.finish()

    async def aclose(self) -> None:
        self._observer.abandon()
        await self._inner.aclose()


class InterceptorHandle:
    """Restore handle returned by ``install()``: call it, or use it as a context manager."""

    def __init__(self, interceptor: TransportInterceptor) -> None:
        self._interceptor = interceptor

    def __call__(self) -> None:
        self._interceptor.uninstall()

    def __enter__(self) -> InterceptorHandle:
        return self

    def __exit__(self, *exc: Any) -> None:
        self._interceptor.uninstall()


class TransportInterceptor:
    """Observe outgoing POST calls across httpx, beacons, and sockets."""

    _active: TransportInterceptor | None = None

    def __init__(
        self,
        correlator: TurnCorrelator,
        exclude_patterns: list[str] | tuple[str, ...] | None = None,
    ) -> None:
        self.correlator = correlator
        self.exclude_patterns = tuple(
            DEFAULT_EXCLUDE_PATTERNS if exclude_patterns is None else exclude_patterns
        )
        self._installed = False
        self._used = False
        self._originals: dict[str, Callable] = {}

    @property
    def installed(self) -> bool:
        return self._installed

    # -- lifecycle -------------------------------------------------------------

    def install(self) -> InterceptorHandle:
        if self._used:
            raise InterceptorError("TransportInterceptor can only be installed once")
        if TransportInterceptor._active is not None:
            raise InterceptorError("Another TransportInterceptor is already installed")

        interceptor = self
        orig_send = httpx.Client.send
        orig_asend = httpx.AsyncClient.send

        def send(client: httpx.Client, request: httpx.Request, **kwargs: Any) -> httpx.Response:
            observe = interceptor._on_request(request)
            response = orig_send(client, request, **kwargs)
            if observe:
                interceptor._on_response(request, response, is_async=False)
            return response

        async def asend(client: httpx.AsyncClient, request: httpx.Request, **kwargs: Any) -> httpx.Response:
            observe = interceptor._on_request(request)
            response = await orig_asend(client, request, **kwargs)
            if observe:
                interceptor._on_response(request, response, is_async=True)
            return response

        self._originals = {"sync": orig_send, "async": orig_asend}
        httpx.Client.send = send
        httpx.AsyncClient.send = asend
        self._installed = True
        self._used = True
        TransportInterceptor._active = self
        logger.debug("Transport interceptor installed (%d exclusions)", len(self.exclude_patterns))
        return InterceptorHandle(self)

    def uninstall(self) -> None:
        if not self._installed:
            return
        httpx.Client.send = self._originals["sync"]
        httpx.AsyncClient.send = self._originals["async"]
        self._originals = {}
        self._installed = False
        if TransportInterceptor._active is self:
            TransportInterceptor._active = None
        logger.debug("Transport interceptor uninstalled")

    def __enter__(self) -> TransportInterceptor:
        self.install()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.uninstall()

    # -- filtering -------------------------------------------------------------

    def should_inspect(self, method: str, url: Any) -> bool:
        if method.upper() != "POST":
            return False
        url_str = str(url)
        return not any(pattern in url_str for pattern in self.exclude_patterns)

    # -- emission --------------------------------------------------------------

    def _begin(self, raw: Any) -> None:
        user_text = extract_user_text(_body_text(raw))
        if user_text:
            self.correlator.begin(user_text)

    def _complete(self, text: str, meta: dict[str, str]) -> None:
        if text and text.strip():
            self.correlator.complete(text, meta)

    # -- httpx -----------------------------------------------------------------

    def _on_request(self, request: httpx.Request) -> bool:
        try:
            if not self.should_inspect(request.method, request.url):
                return False
            try:
                body = request.content
            except httpx.RequestNotRead:
                logger.debug("Streaming request body to %s not inspected", request.url)
                return True
            self._begin(body)
            return True
        except Exception:
            logger.debug("Request inspection failed", exc_info=True)
            return False

    def _on_response(self, request: httpx.Request, response: httpx.Response, *, is_async: bool) -> None:
        try:
            streamed = _is_event_stream(response)
            meta = {
                "endpoint": endpoint_of(request.url),
                "method": METHOD_STREAM if streamed else METHOD_NONSTREAM,
            }
            try:
                content = response.content
            except httpx.ResponseNotRead:
                content = None

            if content is not None:
                if streamed:
                    decoder = StreamDecoder()
                    decoder.feed(content)
                    self._complete(decoder.finish(), meta)
                else:
                    self._complete(extract_output_text(content), meta)
                return

            encoding = response.headers.get("content-encoding", "").strip().lower()
            if encoding not in _IDENTITY_ENCODINGS:
                logger.debug("Encoded (%s) streamed body from %s not observed", encoding, request.url)
                return

            observer = _ResponseObserver(self, meta, streamed)
            if is_async:
                response.stream = _TeeAsyncStream(response.stream, observer)
            else:
                response.stream = _TeeSyncStream(response.stream, observer)
        except Exception:
            logger.debug("Response inspection failed for %s", request.url, exc_info=True)

    # -- beacons & sockets -----------------------------------------------------

    def wrap_beacon(self, fn: Beacon) -> Beacon:
        """Wrap a fire-and-forget sender; only its outgoing payload is inspected."""
        interceptor = self

        def beacon(url: str, data: Any = None) -> bool:
            if interceptor._installed:
                try:
                    if interceptor.should_inspect("POST", url):
                        interceptor._begin(data)
                except Exception:
                    logger.debug("Beacon inspection failed", exc_info=True)
            return fn(url, data)

        beacon.__wrapped__ = fn  # type: ignore[attr-defined]
        return beacon

    def wrap_socket(self, conn: Any, url: str = "") -> ObservedSocket:
        return ObservedSocket(self, conn, url=url)


class ObservedSocket:
    """Socket-like proxy: outgoing frames begin turns, incoming frames build replies.

    Works for sync connections and for ones whose ``send``/``recv``/``close``
    return awaitables. Unknown attributes pass through to the wrapped object.
    """

    def __init__(self, interceptor: TransportInterceptor, conn: Any, url: str = "") -> None:
        self._interceptor = interceptor
        self._conn = conn
        self._url = url or str(getattr(conn, "url", "") or "")
        self._parts: list[str] = []

    def __getattr__(self, name: str) -> Any:
        return getattr(self._conn, name)

    @property
    def _active(self) -> bool:
        return self._interceptor.installed and not any(
            p in self._url for p in self._interceptor.exclude_patterns
        )

    def _meta(self) -> dict[str, str]:
        return {"endpoint": endpoint_of(self._url), "method": METHOD_SOCKET}

    def send(self, data: Any, *args: Any, **kwargs: Any) -> Any:
        if self._active:
            try:
                self._interceptor._begin(data)
            except Exception:
                logger.debug("Socket send inspection failed", exc_info=True)
        return self._conn.send(data, *args, **kwargs)

    def recv(self, *args: Any, **kwargs: Any) -> Any:
        result = self._conn.recv(*args, **kwargs)
        if inspect.isawaitable(result):
            return self._arecv(result)
        self._on_frame(result)
        return result

    async def _arecv(self, pending: Any) -> Any:
        data = await pending
        self._on_frame(data)
        return data

    def close(self, *args: Any, **kwargs: Any) -> Any:
        result = self._conn.close(*args, **kwargs)
        if inspect.isawaitable(result):
            return self._aclose(result)
        self._flush()
        return result

    async def _aclose(self, pending: Any) -> Any:
        result = await pending
        self._flush()
        return result

    def _on_frame(self, data: Any) -> None:
        if not self._active:
            return
        try:
            obj = json.loads(_body_text(data))
        except (ValueError, TypeError):
            return
        if not isinstance(obj, dict):
            return
        try:
            piece = extract_stream_fragment(obj)
            if piece:
                self._parts.append(piece)
            frame_type = obj.get("type")
            if isinstance(frame_type, str) and (
                frame_type == "done"
                or frame_type.endswith(".completed")
                or frame_type.endswith(".done")
            ):
                self._flush()
        except Exception:
            logger.debug("Socket frame inspection failed", exc_info=True)

    def _flush(self) -> None:
        text, self._parts = "".join(self._parts), []
        if self._active:
            try:
                self._interceptor._complete(text, self._meta())
            except Exception:
                logger.debug("Socket completion failed", exc_info=True)
