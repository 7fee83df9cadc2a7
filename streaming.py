"""Incremental reader for streamed LLM output.

Model servers stream generations either as NDJSON (one JSON object per
line, Ollama style: ``{"response": "...", "done": false}``) or as
server-sent events (``data: {"choices": [{"delta": {"content": "..."}}]}``
terminated by ``data: [DONE]``). :class:`TokenStreamReader` accepts raw
byte chunks exactly as they come off the socket, so a JSON object, or
even a multi-byte UTF-8 character, may be split across two reads.

Callbacks:

* ``on_token(accumulated)`` receives the full text generated so far after
  every line that contributed text.
* ``on_delta(delta)`` receives only the newly appended piece. Relays that
  forward text to another client should prefer it; re-sending the whole
  buffer on every token moves O(n^2) bytes over a long answer.
"""

from __future__ import annotations

import codecs
import json
from typing import Any, Callable, Iterable, Optional

TokenCallback = Callable[[str], None]

SSE_DATA_PREFIX = "data:"
SSE_DONE_SENTINEL = "[DONE]"
_SSE_IGNORED_PREFIXES = ("event:", "id:", "retry:", ":")


def extract_delta(data: Any) -> Optional[str]:
    """Return the text carried by one parsed stream object, if any."""
    if not isinstance(data, dict):
        return None
    response = data.get("response")
    if isinstance(response, str):
        return response
    message = data.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        choice = choices[0]
        delta = choice.get("delta")
        if isinstance(delta, dict) and isinstance(delta.get("content"), str):
            return delta["content"]
        if isinstance(choice.get("text"), str):
            return choice["text"]
    return None


class TokenStreamReader:
    """Accumulates text from NDJSON or SSE byte chunks."""

    def __init__(
        self,
        on_token: Optional[TokenCallback] = None,
        on_delta: Optional[TokenCallback] = None,
    ) -> None:
        self._on_token = on_token
        self._on_delta = on_delta
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self.text = ""
        self.done = False

    def feed(self, chunk: bytes | str) -> None:
        """Consume one network read. Complete lines are processed now; a
        trailing partial line waits for the next read."""
        if self.done:
            return
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        for line in lines:
            if self.done:
                break
            self._handle_line(line)

    def close(self) -> str:
        """Flush the decoder and parse any held partial line as a final object."""
        tail = self._decoder.decode(b"", final=True)
        remaining = self._pending + tail
        self._pending = ""
        if not self.done and remaining.strip():
            self._handle_line(remaining)
        self.done = True
        return self.text

    def _append(self, piece: str) -> None:
        if not piece:
            return
        self.text += piece
        if self._on_delta is not None:
            self._on_delta(piece)
        if self._on_token is not None:
            self._on_token(self.text)

    def _handle_line(self, raw_line: str) -> None:
        line = raw_line.rstrip("\r")
        stripped = line.strip()
        if not stripped:
            return

        payload = stripped
        if stripped.startswith(SSE_DATA_PREFIX):
            payload = stripped[len(SSE_DATA_PREFIX):].strip()
            if payload == SSE_DONE_SENTINEL:
                self.done = True
                return
        elif stripped.startswith(_SSE_IGNORED_PREFIXES):
            return

        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            # not JSON: keep the raw text rather than dropping it
            self._append(line)
            return

        delta = extract_delta(data)
        if delta:
            self._append(delta)
        if isinstance(data, dict) and data.get("done") is True:
            self.done = True


def accumulate_stream(
    chunks: Iterable[bytes | str],
    on_token: Optional[TokenCallback] = None,
    *,
    on_delta: Optional[TokenCallback] = None,
) -> str:
    """Drive a :class:`TokenStreamReader` over ``chunks`` and return the full text."""
    reader = TokenStreamReader(on_token=on_token, on_delta=on_delta)
    for chunk in chunks:
        if not chunk:
            continue
        reader.feed(chunk)
        if reader.done:
            break
    return reader.close()
