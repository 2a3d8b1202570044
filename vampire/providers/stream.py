"""
Decoder for the agent CLI's `--output-format stream-json` stdout.

One JSON record per line. Only two record kinds matter to us:

  {"type": "assistant", "message": {"content": [<block>, ...]}}
  {"type": "result", "result": "<final text>"}

Content blocks are either {"type": "tool_use", "name", "input"} or
{"type": "text", "text"}. Anything else (system/user records, thinking
blocks, non-JSON noise) is skipped: a stray line must never kill a run.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union

from loguru import logger
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from vampire.providers.base import StreamCallbacks


# ---------------------------------------------------------------------------
# Wire records
# ---------------------------------------------------------------------------

class ContentBlock(BaseModel):
    type: str
    name: str = "unknown"
    input: dict[str, Any] | None = None
    text: str | None = None


class AssistantMessage(BaseModel):
    content: list[ContentBlock] = Field(default_factory=list)


class AssistantRecord(BaseModel):
    type: Literal["assistant"]
    message: AssistantMessage = Field(default_factory=AssistantMessage)


class ResultRecord(BaseModel):
    type: Literal["result"]
    subtype: str | None = None
    result: str | None = None


StreamRecord = Annotated[Union[AssistantRecord, ResultRecord], Field(discriminator="type")]

_RECORD_ADAPTER = TypeAdapter(StreamRecord)
_KNOWN_KINDS = {"assistant", "result"}


# ---------------------------------------------------------------------------
# Decoded events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ToolUseEvent:
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TextEvent:
    text: str


@dataclass(frozen=True)
class ResultEvent:
    result: str | None


StreamEvent = Union[ToolUseEvent, TextEvent, ResultEvent]


def decode_line(line: str) -> list[StreamEvent]:
    """Decode one stdout line. Malformed or irrelevant lines yield nothing."""
    line = line.strip()
    if not line:
        return []

    try:
        raw = json.loads(line)
    except ValueError:
        logger.debug(f"[PROVIDER] Skipping non-JSON line: {line[:80]}")
        return []
    if not isinstance(raw, dict) or raw.get("type") not in _KNOWN_KINDS:
        return []

    try:
        record = _RECORD_ADAPTER.validate_python(raw)
    except ValidationError as e:
        logger.debug(f"[PROVIDER] Skipping malformed {raw.get('type')} record: {e.error_count()} errors")
        return []

    if isinstance(record, ResultRecord):
        return [ResultEvent(record.result)]

    events: list[StreamEvent] = []
    for block in record.message.content:
        if block.type == "tool_use":
            events.append(ToolUseEvent(block.name, block.input or {}))
        elif block.type == "text" and block.text:
            events.append(TextEvent(block.text))
    return events


# ---------------------------------------------------------------------------
# Chunk -> line framing
# ---------------------------------------------------------------------------

class LineBuffer:
    """Reassembles newline-delimited lines from arbitrary byte chunks."""

    def __init__(self) -> None:
        self._buffer = b""

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += chunk
        lines = []
        while b"\n" in self._buffer:
            line, self._buffer = self._buffer.split(b"\n", 1)
            lines.append(line.decode(errors="replace"))
        return lines

    def flush(self) -> str | None:
        """Whatever is left after EOF, as a final line."""
        if not self._buffer.strip():
            self._buffer = b""
            return None
        line = self._buffer.decode(errors="replace")
        self._buffer = b""
        return line


class StreamAccumulator:
    """
    Feeds decoded events to the callbacks and keeps the running result:
    text blocks append to it, a result record replaces it.
    """

    def __init__(self, callbacks: StreamCallbacks):
        self.callbacks = callbacks
        self.result = ""
        self._lines = LineBuffer()

    def feed(self, chunk: bytes) -> None:
        for line in self._lines.feed(chunk):
            self.handle_line(line)

    def close(self) -> None:
        leftover = self._lines.flush()
        if leftover is not None:
            self.handle_line(leftover)

    def handle_line(self, line: str) -> None:
        for event in decode_line(line):
            if isinstance(event, ToolUseEvent):
                self.callbacks.on_tool_use(event.name, event.input)
            elif isinstance(event, TextEvent):
                self.result += event.text
                self.callbacks.on_text(event.text)
            elif event.result:
                self.result = event.result
