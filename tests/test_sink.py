"""Tests for background log sinks."""

import json
import threading

import httpx
import pytest

from turn_capture.capture.sink import HttpLogSink, WriterLogSink
from turn_capture.core.writer import LogWriter
from turn_capture.types import TurnRecord


def make_record(turn_id="t1"):
    return TurnRecord(
        id=turn_id, user_text="q", user_ts="2025-01-01T00:00:00.000Z",
        assistant_text="a", assistant_ts="2025-01-01T00:00:01.000Z",
        meta={"path": "/"},
    )


class TestHttpLogSink:
    def test_posts_turn_payload(self):
        seen = []

        def handler(request):
            seen.append((request.url, request.headers["user-agent"], json.loads(request.content)))
            return httpx.Response(200, json={"ok": True, "key": "logs/x.turn.json"})

        client = httpx.Client(
            transport=httpx.MockTransport(handler), headers={"User-Agent": "capture-test"},
        )
        sink = HttpLogSink("http://logs.local/api/log-event", client=client)
        sink(make_record())
        sink.wait()
        sink.close()

        url, agent, body = seen[0]
        assert str(url) == "http://logs.local/api/log-event"
        assert agent == "capture-test"
        assert body == make_record().to_payload()
        assert body["type"] == "turn"

    def test_http_errors_logged_not_raised(self, caplog):
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(400)))
        sink = HttpLogSink("http://logs.local/api/log-event", client=client)
        with caplog.at_level("WARNING"):
            sink(make_record("t-fail"))
            sink.wait()
        sink.close()
        assert "Failed to log turn t-fail" in caplog.text

    def test_call_returns_before_delivery(self):
        release = threading.Event()
        delivered = []

        def handler(request):
            release.wait(timeout=5)
            delivered.append(True)
            return httpx.Response(200)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        sink = HttpLogSink("http://logs.local/api/log-event", client=client)
        sink(make_record())
        assert delivered == []
        release.set()
        sink.wait()
        assert delivered == [True]
        sink.close()


class TestWriterLogSink:
    def test_writes_through_writer(self, store):
        sink = WriterLogSink(LogWriter(store))
        sink(make_record("t1"))
        sink(make_record("t2"))
        sink.wait()
        sink.close()

        objects = store.list("logs/")
        assert len(objects) == 2
        assert all(o.key.endswith(".turn.json") for o in objects)
        ids = sorted(json.loads(store.get(o.key))["id"] for o in objects)
        assert ids == ["t1", "t2"]

    def test_storage_error_is_swallowed(self, caplog):
        class Broken:
            def write_turn(self, record):
                raise OSError("no space")

        sink = WriterLogSink(Broken())
        with caplog.at_level("WARNING"):
            sink(make_record())
            sink.wait()
        sink.close()
        assert "Failed to log turn" in caplog.text


@pytest.mark.asyncio
async def test_interceptor_to_sink_end_to_end(store):
    """A captured turn flows through the correlator into storage without recursion."""
    from turn_capture.capture.interceptor import TransportInterceptor
    from turn_capture.core.correlator import TurnCorrelator

    sink = WriterLogSink(LogWriter(store))
    correlator = TurnCorrelator(sink)

    def upstream(request):
        return httpx.Response(200, json={"output_text": "pong"})

    with TransportInterceptor(correlator):
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
            await client.post("https://api.example.com/v1/responses", json={"input": "ping"})
    sink.wait()
    sink.close()

    (info,) = store.list("logs/")
    stored = json.loads(store.get(info.key))
    assert stored["user_text"] == "ping"
    assert stored["assistant_text"] == "pong"
    assert stored["meta"]["method"] == "POST:nonstream"
