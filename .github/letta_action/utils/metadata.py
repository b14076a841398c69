"""
Resumption metadata for Letta agents.

Every finished tracking comment carries a hidden HTML block so the next run
on the same issue/PR can pick up the same agent and conversation:

    <!-- letta-metadata
    agent_id: agent-abc123
    conversation_id: conv-xyz789
    model: opus
    created: 2024-01-15T10:30:00+00:00
    -->

The GitHub comment is the only store shared between workflow runs.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

METADATA_START = "<!-- letta-metadata"
METADATA_END = "-->"


class ResumptionRecord(BaseModel):
    """Agent/conversation identity persisted in a tracking comment."""

    model_config = ConfigDict(strict=True, frozen=True)

    agent_id: str = Field(min_length=1, description="Persistent Letta agent ID")
    conversation_id: Optional[str] = Field(default=None, description="Conversation on the agent")
    model: Optional[str] = Field(default=None, description="Model handle last used")
    created: Optional[str] = Field(default=None, description="ISO-8601 creation time")


def format_metadata(record: ResumptionRecord) -> str:
    """Format a record as the hidden HTML comment block."""
    lines = [f"agent_id: {record.agent_id}"]

    if record.conversation_id:
        lines.append(f"conversation_id: {record.conversation_id}")
    if record.model:
        lines.append(f"model: {record.model}")

    created = record.created or datetime.now(timezone.utc).isoformat()
    lines.append(f"created: {created}")

    return f"{METADATA_START}\n" + "\n".join(lines) + f"\n{METADATA_END}"


def _find_marker(body: str, start: int = 0) -> Optional[tuple[int, int]]:
    """Return the (start, end) span of the next complete marker, end exclusive."""
    begin = body.find(METADATA_START, start)
    if begin == -1:
        return None
    end = body.find(METADATA_END, begin + len(METADATA_START))
    if end == -1:
        return None
    return begin, end + len(METADATA_END)


def parse_metadata(body: Optional[str]) -> Optional[ResumptionRecord]:
    """
    Parse the resumption record from a comment body.

    Returns None when there is no complete marker or it has no agent_id.
    """
    if not body:
        return None

    span = _find_marker(body)
    if span is None:
        return None

    inner = body[span[0] + len(METADATA_START) : span[1] - len(METADATA_END)]
    fields: dict[str, str] = {}
    for line in inner.strip().splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        if key in ("agent_id", "conversation_id", "model", "created"):
            fields[key] = value.strip()

    if not fields.get("agent_id"):
        return None

    return ResumptionRecord(
        agent_id=fields["agent_id"],
        conversation_id=fields.get("conversation_id") or None,
        model=fields.get("model") or None,
        created=fields.get("created") or None,
    )


def has_metadata(body: Optional[str]) -> bool:
    """Check if a comment body contains a metadata marker."""
    return bool(body) and METADATA_START in body


def strip_metadata(body: str) -> str:
    """Remove every complete metadata marker from a body."""
    span = _find_marker(body)
    while span is not None:
        body = body[: span[0]] + body[span[1] :]
        span = _find_marker(body, span[0])
    return body


def upsert_metadata(body: str, record: ResumptionRecord) -> str:
    """
    Replace the marker in place, or append it after a blank line.

    Any additional markers are removed so exactly one remains. A record
    without `created` keeps the existing marker's timestamp when it names the
    same agent and conversation, so repeated upserts give the same body.
    """
    span = _find_marker(body)

    if span is not None and record.created is None:
        existing = parse_metadata(body)
        if existing and (existing.agent_id, existing.conversation_id) == (
            record.agent_id,
            record.conversation_id,
        ):
            record = record.model_copy(update={"created": existing.created})

    formatted = format_metadata(record)

    if span is None:
        return f"{body}\n\n{formatted}"

    head = body[: span[0]]
    tail = strip_metadata(body[span[1] :])
    return head + formatted + tail
