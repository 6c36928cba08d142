"""Payload extraction rules shared by every capture path.

Request bodies carry the user utterance; response bodies (or event-stream
frames) carry the assistant reply. All helpers here are total: malformed or
unrecognized input yields ``""`` rather than raising.

Usage:

    user = extract_user_text(request_body)
    reply = extract_output_text(response_body)
    piece = extract_stream_fragment(event_payload)
"""

from __future__ import annotations

import json
from typing import Any


def _first_user_text(messages: Any) -> str:
    """Text of the first ``role == "user"`` entry in a message list.

    ``content`` is either a string or a list of parts; for lists the first
    part with ``type == "text"`` wins.
    """
    if not isinstance(messages, list):
        return ""
    for msg in messages:
        if not isinstance(msg, dict) or msg.get("role") != "user":
            continue
        content = msg.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            for part in content:
                if isinstance(part, dict) and part.get("type") == "text":
                    text = part.get("text")
                    return text if isinstance(text, str) else ""
        return ""
    return ""


def extract_user_text_from_payload(payload: Any) -> str:
    """Locate the user message in an already-parsed request body."""
    if not isinstance(payload, dict):
        return ""
    value = payload.get("input")
    if isinstance(value, str):
        return value
    text = _first_user_text(value)
    if text:
        return text
    return _first_user_text(payload.get("messages"))


def extract_user_text(raw: str | bytes | None) -> str:
    """Parse a JSON request body and return the user utterance, or ``""``."""
    if not raw:
        return ""
    try:
        payload = json.loads(raw)
    except (ValueError, TypeError):
        return ""
    return extract_user_text_from_payload(payload)


def _output_text(obj: dict) -> str | None:
    value = obj.get("output_text")
    if isinstance(value, str):
        return value
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return "".join(value)
    return None


def extract_output_text(raw: str | bytes | None) -> str:
    """Assistant text from a non-streamed response body.

    JSON bodies contribute their ``output_text`` field (string or list of
    strings). Bodies that are not JSON are taken verbatim.
    """
    if raw is None:
        return ""
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    try:
        obj = json.loads(text)
    except ValueError:
        return text
    if isinstance(obj, dict):
        return _output_text(obj) or ""
    return ""


def extract_stream_fragment(obj: Any) -> str:
    """Text carried by one event-stream frame (``output_text`` or ``delta.text``)."""
    if not isinstance(obj, dict):
        return ""
    text = _output_text(obj)
    if text is not None:
        return text
    delta = obj.get("delta")
    if isinstance(delta, dict) and isinstance(delta.get("text"), str):
        return delta["text"]
    return ""


def fragment_from_data_line(line: str) -> str:
    """Parse the JSON object inside a ``data:`` line and extract its fragment."""
    idx = line.find("{")
    if idx < 0:
        return ""
    try:
        obj = json.loads(line[idx:])
    except ValueError:
        return ""
    return extract_stream_fragment(obj)
