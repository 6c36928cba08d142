"""Tests for LogWriter shaping, capping, and key derivation."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from turn_capture.core.writer import (
    LogWriter,
    compacted_key,
    day_prefix,
    event_key,
)
from turn_capture.types import MalformedEventError, TurnRecord


def _load(store, key):
    return json.loads(store.get(key))


class TestKeys:
    def test_event_key_format(self, fixed_now):
        assert event_key(fixed_now, ".json") == "logs/2025-03-14/15-09-26-535.json"
        assert event_key(fixed_now, ".turn.json") == "logs/2025-03-14/15-09-26-535.turn.json"

    def test_event_key_uses_utc(self):
        ts = datetime(2025, 3, 15, 1, 0, 0, tzinfo=timezone(timedelta(hours=5)))
        assert event_key(ts, ".json") == "logs/2025-03-14/20-00-00-000.json"

    def test_day_keys(self):
        assert day_prefix("2025-03-14") == "logs/2025-03-14/"
        assert compacted_key("2025-03-14") == "logs/2025-03-14.ndjson"


class TestShape:
    def test_turn_body(self, store, fixed_now):
        writer = LogWriter(store, clock=lambda: fixed_now)
        key = writer.write({
            "type": "turn", "id": "t1",
            "user_text": "hi", "user_ts": "2025-03-14T15:09:20.000Z",
            "assistant_text": "hello", "assistant_ts": "2025-03-14T15:09:25.000Z",
            "meta": {"path": "/", "source": "dom"},
        }, user_agent="Mozilla/5.0")

        assert key == "logs/2025-03-14/15-09-26-535.turn.json"
        record = _load(store, key)
        assert record["type"] == "turn"
        assert record["ts"] == "2025-03-14T15:09:26.535Z"
        assert record["user_text"] == "hi"
        assert record["assistant_text"] == "hello"
        assert record["meta"] == {"path": "/", "source": "dom"}
        assert record["user_agent"] == "Mozilla/5.0"

    def test_legacy_body(self, store, fixed_now):
        writer = LogWriter(store, clock=lambda: fixed_now)
        key = writer.write({"role": "assistant", "text": "yo", "sessionId": "s", "threadId": "th"})
        assert key.endswith("15-09-26-535.json")
        assert not key.endswith(".turn.json")
        record = _load(store, key)
        assert record == {
            "role": "assistant", "text": "yo", "len": 2,
            "sessionId": "s", "threadId": "th", "meta": {},
            "user_agent": "", "ts": "2025-03-14T15:09:26.535Z",
        }

    def test_legacy_role_defaults_to_user(self, fixed_now):
        record, suffix = LogWriter.shape({"text": "x"}, "", fixed_now)
        assert record["role"] == "user"
        assert suffix == ".json"

    def test_key_ignores_client_timestamp(self, store, fixed_now):
        writer = LogWriter(store, clock=lambda: fixed_now)
        key = writer.write({"type": "turn", "user_ts": "1999-01-01T00:00:00Z", "assistant_text": "a"})
        assert key.startswith("logs/2025-03-14/")

    @pytest.mark.parametrize("body", [[1, 2], "text", 42, None])
    def test_non_object_body_rejected(self, store, body):
        with pytest.raises(MalformedEventError):
            LogWriter(store).write(body)
        assert store.list("logs/") == []


class TestFieldCaps:
    def test_text_and_role_capped(self, fixed_now):
        record, _ = LogWriter.shape({"role": "r" * 50, "text": "x" * 10_000}, "", fixed_now)
        assert len(record["role"]) == 20
        assert len(record["text"]) == 4000
        assert record["len"] == 10_000

    def test_turn_fields_capped(self, fixed_now):
        record, _ = LogWriter.shape({
            "type": "turn",
            "id": "i" * 500,
            "user_text": "u" * 10_000,
            "assistant_text": "a" * 10_000,
            "user_ts": "t" * 100,
        }, "U" * 1000, fixed_now)
        assert len(record["id"]) == 200
        assert len(record["user_text"]) == 4000
        assert len(record["assistant_text"]) == 4000
        assert len(record["user_ts"]) == 64
        assert len(record["user_agent"]) == 400

    def test_meta_capped_and_stringified(self, fixed_now):
        meta = {f"k{i}": i for i in range(50)}
        meta["k0"] = "v" * 1000
        record, _ = LogWriter.shape({"text": "x", "meta": meta}, "", fixed_now)
        assert len(record["meta"]) == 32
        assert len(record["meta"]["k0"]) == 400
        assert record["meta"]["k1"] == "1"

    def test_non_mapping_meta_dropped(self, fixed_now):
        record, _ = LogWriter.shape({"text": "x", "meta": ["a"]}, "", fixed_now)
        assert record["meta"] == {}


class TestCollisions:
    def test_same_millisecond_writes_get_distinct_keys(self, store, fixed_now):
        writer = LogWriter(store, clock=lambda: fixed_now)
        keys = [writer.write({"text": str(i)}) for i in range(3)]
        assert keys == [
            "logs/2025-03-14/15-09-26-535.json",
            "logs/2025-03-14/15-09-26-536.json",
            "logs/2025-03-14/15-09-26-537.json",
        ]
        assert len(store.list("logs/2025-03-14/")) == 3

    def test_write_turn(self, store, fixed_now):
        writer = LogWriter(store, clock=lambda: fixed_now)
        record = TurnRecord(
            id="t9", user_text="q", user_ts="", assistant_text="a",
            assistant_ts="", meta={"path": "/"}, user_agent="bot/1.0",
        )
        key = writer.write_turn(record)
        stored = _load(store, key)
        assert stored["id"] == "t9"
        assert stored["user_agent"] == "bot/1.0"
