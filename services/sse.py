"""Server-sent event framing helpers."""
import codecs
import json
from typing import List, Optional

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
DONE_EVENT = f"data: {DONE_SENTINEL}\n\n"


class SSELineFramer:
    """
    Incremental line splitter for an upstream SSE byte stream.

    Holds the trailing partial line between ``feed`` calls. Bytes are decoded
    incrementally, so a multi-byte character split across chunks is kept
    intact.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[str]:
        """Add bytes and return every line completed by them."""
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> List[str]:
        """Return whatever is left once the upstream stream has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        return [rest.rstrip("\r")] if rest.strip() else []


def extract_data(line: str) -> Optional[str]:
    """
    Return the payload of a ``data:`` line.

    Blank lines, comments, other SSE fields and the ``[DONE]`` sentinel give None.
    """
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):].strip()
    if not payload or payload == DONE_SENTINEL:
        return None
    return payload


def format_event(payload: dict) -> str:
    """Frame a JSON object as one SSE event."""
    return f"data: {json.dumps(payload)}\n\n"
