"""Incremental event-stream decoder.

Assembles the assistant reply from a ``text/event-stream`` body that arrives
in arbitrary chunks. Only ``data:`` lines are inspected; each one may carry a
JSON object whose text fragment is appended to the running result.
"""

from __future__ import annotations

import codecs
import re

from .formats import fragment_from_data_line

_LINE_SPLIT_RE = re.compile(r"\r?\n")
_DATA_PREFIX = "data:"


class StreamDecoder:
    """Feed chunks with :meth:`feed`, then call :meth:`finish` once."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._parts: list[str] = []
        self._finished = False

    @property
    def text(self) -> str:
        """Text assembled so far."""
        return "".join(self._parts)

    @property
    def finished(self) -> bool:
        return self._finished

    def feed(self, chunk: bytes | str) -> None:
        if self._finished:
            raise RuntimeError("StreamDecoder.feed() called after finish()")
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._consume(chunk)

    def _consume(self, text: str) -> None:
        self._buffer += text
        lines = _LINE_SPLIT_RE.split(self._buffer)
        # Last element is the (possibly incomplete) line carried into the next chunk
        self._buffer = lines.pop()
        for line in lines:
            self._process_line(line.strip())

    def _process_line(self, line: str) -> None:
        if not line.startswith(_DATA_PREFIX):
            return
        piece = fragment_from_data_line(line)
        if piece:
            self._parts.append(piece)

    def finish(self) -> str:
        """Flush any trailing ``data:`` line and return the assembled text."""
        if not self._finished:
            tail = self._decoder.decode(b"", final=True)
            if tail:
                self._consume(tail)
            if self._buffer.startswith(_DATA_PREFIX):
                self._process_line(self._buffer.strip())
            self._buffer = ""
            self._finished = True
        return self.text


def decode_event_stream(payload: bytes | str) -> str:
    """One-shot decode of a complete event-stream body."""
    decoder = StreamDecoder()
    decoder.feed(payload)
    return decoder.finish()
