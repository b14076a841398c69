"""
Letta CLI stream-json output handling.

The CLI writes one JSON event per line on stdout. Line buffering is kept
separate from JSON interpretation:

- LineBuffer turns arbitrary byte/str chunks into complete lines
- parse_stream_line turns one line into a StreamEvent
- StreamIdentity remembers the agent/conversation/model seen so far
"""

import json
from typing import Any, Dict, Iterator, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class StreamEvent(BaseModel):
    """One line of CLI output, parsed if it was a JSON object."""

    model_config = ConfigDict(frozen=True)

    raw: str
    data: Optional[Dict[str, Any]] = None

    @property
    def is_json(self) -> bool:
        return self.data is not None

    @property
    def type(self) -> Optional[str]:
        return self.data.get("type") if self.data else None

    @property
    def subtype(self) -> Optional[str]:
        return self.data.get("subtype") if self.data else None

    def get(self, key: str) -> Any:
        return self.data.get(key) if self.data else None


class LineBuffer:
    """Accumulates chunks and yields whole lines (without the newline)."""

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, chunk: Union[bytes, str]) -> Iterator[str]:
        if isinstance(chunk, bytes):
            chunk = chunk.decode("utf-8", errors="replace")
        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        for line in lines:
            yield line.rstrip("\r")

    def flush(self) -> Iterator[str]:
        """Yield the trailing partial line, if any, once the stream has ended."""
        if self._pending:
            line, self._pending = self._pending, ""
            yield line.rstrip("\r")


def parse_stream_line(line: str) -> Optional[StreamEvent]:
    """Parse one output line. Blank lines give None; non-JSON keeps only `raw`."""
    if not line.strip():
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return StreamEvent(raw=line)
    if not isinstance(data, dict):
        return StreamEvent(raw=line)
    return StreamEvent(raw=line, data=data)


def is_init_event(event: StreamEvent) -> bool:
    """The CLI's init event: type=system, subtype=init, with an agent_id."""
    return event.type == "system" and event.subtype == "init" and bool(event.get("agent_id"))


class StreamIdentity(BaseModel):
    """Last-seen identity fields from the stream."""

    agent_id: Optional[str] = Field(default=None)
    conversation_id: Optional[str] = Field(default=None)
    model: Optional[str] = Field(default=None)

    def observe(self, event: StreamEvent) -> None:
        """Update from any event that carries an identity field."""
        if not event.is_json:
            return
        if event.get("agent_id"):
            self.agent_id = str(event.get("agent_id"))
        if event.get("conversation_id"):
            self.conversation_id = str(event.get("conversation_id"))
        if event.get("model"):
            self.model = str(event.get("model"))


def sanitize_event(event: StreamEvent, show_full_output: bool) -> Optional[str]:
    """
    Decide what of an event is safe to print to the workflow log.

    Full output shows everything. Otherwise only a summary of init and
    result events is shown; None means suppress.
    """
    if not event.is_json:
        return event.raw if show_full_output else None

    if show_full_output:
        return json.dumps(event.data, indent=2)

    if is_init_event(event) or event.type == "init":
        return json.dumps(
            {
                "type": "init",
                "message": "Letta Code initialized",
                "agent_id": event.get("agent_id"),
                "model": event.get("model") or "unknown",
            },
            indent=2,
        )

    if event.type == "result":
        return json.dumps(
            {
                "type": "result",
                "subtype": event.get("subtype"),
                "is_error": event.get("is_error"),
                "duration_ms": event.get("duration_ms"),
                "num_turns": event.get("num_turns"),
                "agent_id": event.get("agent_id"),
                "usage": event.get("usage"),
            },
            indent=2,
        )

    return None
