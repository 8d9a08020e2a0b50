"""Server-sent-event framing: incremental upstream decoding and downstream frames.

Upstream bodies are read in arbitrary chunks. A chunk boundary may fall inside
a line or inside a multi-byte UTF-8 sequence, so the decoder keeps both the
undecoded bytes and the incomplete trailing line between feeds.
"""

import codecs
import json
import logging

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class SSEDecoder:
    """Turns raw upstream bytes into trimmed ``data:`` payload strings."""

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> list[str]:
        text = self._pending + self._utf8.decode(chunk)
        lines = text.split("\n")
        self._pending = lines.pop()
        return self._payloads(lines)

    def flush(self) -> list[str]:
        """Decode whatever is left once the upstream body has ended."""
        text = self._pending + self._utf8.decode(b"", final=True)
        self._pending = ""
        return self._payloads([text]) if text else []

    @staticmethod
    def _payloads(lines: list[str]) -> list[str]:
        payloads = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue
            payload = line[len(DATA_PREFIX):].strip()
            if payload:
                payloads.append(payload)
        return payloads


def extract_delta(payload: str) -> str | None:
    """Pull ``choices[0].delta.content`` out of a completion chunk, if any."""
    try:
        parsed = json.loads(payload)
        content = parsed["choices"][0]["delta"]["content"]
    except json.JSONDecodeError:
        logger.debug(f"Skipping invalid JSON: {payload[:100]}")
        return None
    except (KeyError, IndexError, TypeError):
        return None
    if isinstance(content, str) and content:
        return content
    return None


def _frame(payload: str) -> bytes:
    return f"data: {payload}\n\n".encode("utf-8")


def encode_content(text: str) -> bytes:
    return _frame(json.dumps({"content": text}, ensure_ascii=False, separators=(",", ":")))


def encode_error(message: str) -> bytes:
    return _frame(json.dumps({"error": message}, ensure_ascii=False, separators=(",", ":")))


def encode_done() -> bytes:
    return _frame(DONE_SENTINEL)
