"""Tests for settings loading and validation."""

import pytest
from pydantic import ValidationError

from letta_action.utils.config import (
    DEFAULT_TRIGGER_PHRASE,
    ActionSettings,
    load_settings,
    validate_letta_environment,
)
from letta_action.utils.outputs import set_output


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults(self):
        settings = load_settings({})
        assert settings.trigger_phrase == DEFAULT_TRIGGER_PHRASE
        assert settings.path_to_letta_executable == "letta"
        assert settings.server_url == "https://github.com"
        assert settings.comment_id is None
        assert settings.api_base_url == "https://api.letta.com"

    def test_reads_environment(self):
        settings = load_settings(
            {
                "GITHUB_REPOSITORY": "o/r",
                "GITHUB_RUN_ID": "99",
                "INPUT_AGENT_ID": "agent-1",
                "LETTA_COMMENT_ID": "123",
                "GITHUB_PR_NUMBER": "12",
                "CREATE_NEW_CONVERSATION": "true",
                "IS_REVIEW_COMMENT": "false",
            }
        )
        assert settings.agent_id == "agent-1"
        assert settings.comment_id == 123
        assert settings.thread_number == 12
        assert settings.is_pr is True
        assert settings.create_new_conversation is True
        assert settings.is_review_comment is False
        assert settings.job_url == "https://github.com/o/r/actions/runs/99"

    def test_input_takes_precedence(self):
        settings = load_settings({"INPUT_MODEL": "opus", "LETTA_MODEL": "haiku"})
        assert settings.model == "opus"

    def test_issue_number(self):
        settings = load_settings({"GITHUB_ISSUE_NUMBER": "7", "GITHUB_PR_NUMBER": ""})
        assert settings.thread_number == 7
        assert settings.is_pr is False

    def test_settings_are_frozen(self):
        with pytest.raises(ValidationError):
            load_settings({}).model = "x"


class TestFullOutput:
    """Tests for full_output_enabled."""

    @pytest.mark.parametrize(
        "show,debug,expected",
        [
            (None, False, False),
            ("true", False, True),
            (None, True, True),
            ("false", True, False),
        ],
    )
    def test_combinations(self, show, debug, expected):
        settings = ActionSettings(show_full_output=show, step_debug=debug)
        assert settings.full_output_enabled is expected


class TestValidateLettaEnvironment:
    """Tests for validate_letta_environment."""

    def test_missing_key_and_url(self):
        with pytest.raises(ValueError, match="LETTA_API_KEY is required"):
            validate_letta_environment(ActionSettings())

    def test_api_key(self, capsys):
        validate_letta_environment(ActionSettings(letta_api_key="k"))
        assert "Using Letta Cloud" in capsys.readouterr().out

    def test_self_hosted_without_key(self, capsys):
        validate_letta_environment(ActionSettings(letta_base_url="http://localhost:8283"))
        assert "no API key provided" in capsys.readouterr().out


class TestSetOutput:
    """Tests for set_output."""

    def test_single_line(self, tmp_path):
        path = tmp_path / "out"
        set_output(str(path), "conclusion", "success")
        assert path.read_text() == "conclusion=success\n"

    def test_multi_line_uses_delimiter(self, tmp_path):
        path = tmp_path / "out"
        set_output(str(path), "notes", "a\nb")
        lines = path.read_text().splitlines()
        assert lines[0].startswith("notes<<")
        assert lines[1:3] == ["a", "b"]
        assert lines[3] == lines[0].split("<<", 1)[1]

    def test_no_file(self):
        set_output(None, "x", "y")
