"""Shared pytest fixtures for Letta Code Action tests."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

BASE_TIME = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


class FakeCommentLister:
    """In-memory comment store keyed by issue/PR number."""

    def __init__(self):
        self.comments = {}
        self.errors = {}
        self.calls = []

    def add(self, issue_number, comment):
        self.comments.setdefault(issue_number, []).append(comment)

    def fail(self, issue_number, error=None):
        self.errors[issue_number] = error or RuntimeError(f"API error on #{issue_number}")

    def list_comments(self, issue_number):
        self.calls.append(issue_number)
        if issue_number in self.errors:
            raise self.errors[issue_number]
        return list(self.comments.get(issue_number, []))


@pytest.fixture
def make_comment():
    """Factory for ThreadComment records; `minutes` orders them in time."""
    from letta_action.utils.agent_resolver import ThreadComment

    counter = {"id": 1000}

    def _make(body, author_login="github-actions[bot]", author_type="Bot", author_id=None, minutes=0):
        counter["id"] += 1
        return ThreadComment(
            id=counter["id"],
            body=body,
            author_login=author_login,
            author_id=author_id,
            author_type=author_type,
            created_at=BASE_TIME + timedelta(minutes=minutes),
        )

    return _make


@pytest.fixture
def metadata_body():
    """Factory for a finished tracking comment body carrying a resumption record."""
    from letta_action.utils.metadata import ResumptionRecord, format_metadata

    def _body(agent_id, conversation_id=None, model=None, text="Done."):
        record = ResumptionRecord(
            agent_id=agent_id,
            conversation_id=conversation_id,
            model=model,
            created="2024-01-15T10:30:00+00:00",
        )
        return f"{text}\n\n{format_metadata(record)}"

    return _body


@pytest.fixture
def fake_lister():
    """Empty in-memory comment lister."""
    return FakeCommentLister()


@pytest.fixture
def settings_factory(tmp_path):
    """Build ActionSettings rooted in a temp directory."""
    from letta_action.utils.config import ActionSettings

    def _settings(**overrides):
        values = {
            "github_token": "test-token",
            "repository": "letta-ai/example",
            "run_id": "4242",
            "runner_temp": str(tmp_path),
            "github_output": str(tmp_path / "github_output"),
        }
        values.update(overrides)
        return ActionSettings(**values)

    return _settings


@pytest.fixture
def read_outputs(tmp_path):
    """Read back single-line step outputs written to the GITHUB_OUTPUT file."""

    def _read():
        path = tmp_path / "github_output"
        if not path.exists():
            return {}
        outputs = {}
        for line in path.read_text().splitlines():
            name, sep, value = line.partition("=")
            if sep:
                outputs[name] = value
        return outputs

    return _read


@pytest.fixture
def mock_repo():
    """Mock GitHub repository object."""
    repo = MagicMock()
    repo.name = "example"
    repo.full_name = "letta-ai/example"
    repo.default_branch = "main"
    return repo
