"""Tests for stream-json line handling."""

import json

from letta_action.utils.stream import (
    LineBuffer,
    StreamEvent,
    StreamIdentity,
    is_init_event,
    parse_stream_line,
    sanitize_event,
)

INIT = {"type": "system", "subtype": "init", "agent_id": "agent-1", "conversation_id": "conv-1", "model": "opus"}


class TestLineBuffer:
    """Tests for LineBuffer."""

    def test_lines_split_across_chunks(self):
        buffer = LineBuffer()
        assert list(buffer.feed(b'{"a": 1}\n{"b"')) == ['{"a": 1}']
        assert list(buffer.feed(b": 2}\n")) == ['{"b": 2}']
        assert list(buffer.flush()) == []

    def test_flush_trailing_partial_line(self):
        """Output without a final newline is not lost."""
        buffer = LineBuffer()
        assert list(buffer.feed("partial")) == []
        assert list(buffer.flush()) == ["partial"]

    def test_crlf(self):
        buffer = LineBuffer()
        assert list(buffer.feed("one\r\ntwo\r\n")) == ["one", "two"]


class TestParseStreamLine:
    """Tests for parse_stream_line and is_init_event."""

    def test_blank_line(self):
        assert parse_stream_line("   ") is None

    def test_json_object(self):
        event = parse_stream_line(json.dumps(INIT))
        assert event.is_json
        assert event.type == "system"
        assert is_init_event(event)

    def test_non_json(self):
        event = parse_stream_line("Loading agent...")
        assert not event.is_json
        assert event.raw == "Loading agent..."
        assert event.type is None

    def test_json_array_is_not_an_event(self):
        assert not parse_stream_line("[1, 2]").is_json

    def test_init_requires_agent_id(self):
        event = StreamEvent(raw="", data={"type": "system", "subtype": "init"})
        assert not is_init_event(event)


class TestStreamIdentity:
    """Tests for StreamIdentity."""

    def test_tracks_last_seen_fields(self):
        identity = StreamIdentity()
        identity.observe(parse_stream_line(json.dumps(INIT)))
        identity.observe(parse_stream_line('{"type": "message", "conversation_id": "conv-2"}'))
        identity.observe(parse_stream_line("not json"))

        assert identity.agent_id == "agent-1"
        assert identity.conversation_id == "conv-2"
        assert identity.model == "opus"


class TestSanitizeEvent:
    """Tests for sanitize_event."""

    def test_hides_messages_by_default(self):
        event = parse_stream_line('{"type": "message", "content": "secret"}')
        assert sanitize_event(event, show_full_output=False) is None

    def test_hides_raw_text_by_default(self):
        assert sanitize_event(parse_stream_line("token=abc"), show_full_output=False) is None

    def test_init_summary(self):
        output = json.loads(sanitize_event(parse_stream_line(json.dumps(INIT)), show_full_output=False))
        assert output == {"type": "init", "message": "Letta Code initialized", "agent_id": "agent-1", "model": "opus"}

    def test_result_summary(self):
        event = parse_stream_line(
            '{"type": "result", "subtype": "success", "duration_ms": 1200, "result": "long text"}'
        )
        output = json.loads(sanitize_event(event, show_full_output=False))
        assert output["duration_ms"] == 1200
        assert "result" not in output

    def test_full_output(self):
        event = parse_stream_line('{"type": "message", "content": "hello"}')
        assert json.loads(sanitize_event(event, show_full_output=True))["content"] == "hello"
        assert sanitize_event(parse_stream_line("plain"), show_full_output=True) == "plain"
