"""Incremental decoder for ``text/event-stream`` completion bodies.

The response body arrives in fragments that are not aligned to line
boundaries. :class:`StreamDecoder` buffers the unterminated tail between
calls and only ever yields complete lines; a tail left over when the stream
ends is discarded, matching the partial-record policy of the wire format.
"""

from __future__ import annotations

import codecs
import json
from typing import Any, Iterator

from memochat.logging import get_logger

logger = get_logger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


def parse_data_line(line: str) -> dict[str, Any] | None:
    """Return the JSON object carried by one event line, or None.

    Blank lines, lines without the ``data: `` prefix, the ``[DONE]`` sentinel
    and malformed JSON all yield None. A corrupt chunk never aborts the stream.
    """
    stripped = line.strip()
    if not stripped.startswith(DATA_PREFIX):
        return None
    payload = stripped[len(DATA_PREFIX):]
    if payload == DONE_SENTINEL:
        return None
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("sse_payload_dropped", payload_chars=len(payload))
        return None
    return parsed if isinstance(parsed, dict) else None


class StreamDecoder:
    """Turn arbitrarily split fragments into complete lines and event payloads.

    One instance decodes one response body.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._closed = False

    @property
    def pending(self) -> str:
        """Unterminated text held back for the next fragment."""
        return self._buffer

    def feed(self, fragment: bytes | str) -> Iterator[str]:
        """Yield every line completed by *fragment* (without the newline).

        The fragment is buffered immediately, even if the returned iterator is
        never consumed.
        """
        if self._closed:
            raise RuntimeError("decoder is closed")
        text = self._utf8.decode(fragment) if isinstance(fragment, bytes) else fragment
        if not text:
            return iter(())
        lines = (self._buffer + text).split("\n")
        self._buffer = lines.pop()
        return iter(lines)

    def iter_payloads(self, fragment: bytes | str) -> Iterator[dict[str, Any]]:
        """Yield the JSON payload of each complete ``data:`` line in *fragment*."""
        for line in self.feed(fragment):
            payload = parse_data_line(line)
            if payload is not None:
                yield payload

    def close(self) -> None:
        """End of stream: the unterminated tail is discarded, never emitted."""
        tail = self._buffer + self._utf8.decode(b"", final=True)
        if tail:
            logger.debug("sse_tail_discarded", tail_chars=len(tail))
        self._buffer = ""
        self._closed = True


def decode_lines(fragments: list[bytes] | list[str]) -> list[str]:
    """Decode a complete, already received stream into its lines."""
    decoder = StreamDecoder()
    lines: list[str] = []
    for fragment in fragments:
        lines.extend(decoder.feed(fragment))
    decoder.close()
    return lines
