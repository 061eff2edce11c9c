"""
Server-sent frame encoding and tolerant decoding

Wire format, one frame per event:

    data: {"type": "chunk", "content": "..."}\n\n
    ...
    data: [DONE]\n\n

Decoding policy: a `data:` line whose payload is not valid JSON is skipped
and counted in `malformed_frames`; it never ends the stream. Lines that are
not `data:` lines (blank lines, SSE comments such as ": keep-alive") are
ignored without counting. Everything after `[DONE]` is dropped.
"""

import json
import logging
from typing import Any, Dict, List, Union

from pydantic import BaseModel

from utils.errors import ProtocolDecodeError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_MARKER = "[DONE]"
DONE_FRAME = f"{DATA_PREFIX}{DONE_MARKER}\n\n"


def encode_frame(payload: Union[BaseModel, Dict[str, Any]]) -> str:
    """Encodes one event as a `data: <json>` frame"""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    return f"{DATA_PREFIX}{json.dumps(payload, ensure_ascii=False)}\n\n"


class FrameDecoder:
    """
    Incremental decoder for `data:` frames

    Text may arrive split at arbitrary points; an incomplete trailing line is
    kept until the next `feed`.
    """

    def __init__(self):
        self.buffer = ""
        self.done = False
        self.malformed_frames = 0

    def feed(self, text: str) -> List[Dict[str, Any]]:
        """Adds text and returns the JSON payloads of every complete frame"""
        self.buffer += text
        lines = self.buffer.split("\n")
        self.buffer = lines.pop()
        payloads = []
        for line in lines:
            if self.done:
                # nothing after [DONE] belongs to this stream
                break
            payload = self._decode_line(line)
            if payload is not None:
                payloads.append(payload)
        if self.done:
            self.buffer = ""
        return payloads

    def feed_line(self, line: str) -> List[Dict[str, Any]]:
        """Same as `feed` for input that is already split into lines"""
        return self.feed(line + "\n")

    def flush(self) -> List[Dict[str, Any]]:
        """Decodes whatever is left in the buffer"""
        line, self.buffer = self.buffer, ""
        if self.done:
            return []
        payload = self._decode_line(line)
        return [payload] if payload is not None else []

    def _decode_line(self, line: str):
        line = line.strip()
        if not line.startswith(DATA_PREFIX.strip()):
            return None
        data = line[len(DATA_PREFIX.strip()):].strip()
        if data == DONE_MARKER:
            self.done = True
            return None
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            self._skip(ProtocolDecodeError(data, str(e)))
            return None
        if not isinstance(payload, dict):
            self._skip(ProtocolDecodeError(data, "payload is not an object"))
            return None
        return payload

    def _skip(self, error: ProtocolDecodeError):
        self.malformed_frames += 1
        logger.debug("%s - skipping frame %r", error, error.frame[:200])
