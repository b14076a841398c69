"""Tests for the Letta process supervisor, using a Python child as a fake CLI."""

import asyncio
import json
import os
import sys
from unittest.mock import MagicMock

import pytest

from letta_action.utils.comment_logic import render_working_body
from letta_action.utils.run_config import RunConfig
from letta_action.utils.runner import (
    BackgroundTasks,
    RunResult,
    build_init_handler,
    prepare_prompt,
    run_letta,
    save_execution_file,
    write_run_outputs,
)
from letta_action.utils.stream import StreamEvent, StreamIdentity

INIT = {"type": "system", "subtype": "init", "agent_id": "agent-1", "conversation_id": "conv-1", "model": "opus"}

HAPPY_CLI = f"""
import json, sys
prompt = sys.stdin.read()
print(json.dumps({INIT!r}), flush=True)
print(json.dumps({{"type": "echo", "text": prompt}}), flush=True)
print("not json")
sys.stdout.write(json.dumps({{"type": "result", "subtype": "success", "duration_ms": 1500}}))
"""

CRASHING_CLI = f"""
import json, sys
sys.stdin.read()
print(json.dumps({INIT!r}), flush=True)
sys.exit(3)
"""


@pytest.fixture
def prompt_file(tmp_path):
    path = tmp_path / "prompt.txt"
    path.write_text("Please fix issue #7\n")
    return str(path)


@pytest.fixture
def cli_settings(settings_factory):
    return settings_factory(path_to_letta_executable=sys.executable)


def run(script, prompt_path, settings, on_init=None):
    """Run a fake CLI script to completion, draining background tasks."""

    async def _run():
        background = BackgroundTasks()
        try:
            return await run_letta(
                RunConfig(letta_args=["-c", script]),
                prompt_path,
                settings,
                on_init=on_init,
                background=background,
                base_env=dict(os.environ),
            )
        finally:
            await background.drain(timeout=5)

    return asyncio.run(_run())


class TestRunLetta:
    """Tests for run_letta."""

    def test_happy_path(self, cli_settings, prompt_file):
        seen = []

        async def on_init(event):
            seen.append(event)

        result = run(HAPPY_CLI, prompt_file, cli_settings, on_init)

        assert result.success
        assert result.identity.agent_id == "agent-1"
        assert result.identity.conversation_id == "conv-1"
        assert result.identity.model == "opus"
        assert [e["type"] for e in result.events] == ["system", "echo", "result"]
        assert len(seen) == 1
        assert seen[0].get("agent_id") == "agent-1"

    def test_prompt_streamed_to_stdin(self, cli_settings, prompt_file):
        result = run(HAPPY_CLI, prompt_file, cli_settings)
        assert result.events[1]["text"] == "Please fix issue #7\n"

    def test_trailing_line_without_newline(self, cli_settings, prompt_file):
        """The final event is parsed even without a trailing newline."""
        result = run(HAPPY_CLI, prompt_file, cli_settings)
        assert result.events[-1]["duration_ms"] == 1500
        assert "not json" in result.raw_output

    def test_nonzero_exit_keeps_identity(self, cli_settings, prompt_file):
        result = run(CRASHING_CLI, prompt_file, cli_settings)
        assert result.exit_code == 3
        assert not result.success
        assert result.identity.agent_id == "agent-1"

    def test_failing_init_handler_does_not_fail_run(self, cli_settings, prompt_file, capsys):
        async def on_init(event):
            raise RuntimeError("GitHub is down")

        result = run(HAPPY_CLI, prompt_file, cli_settings, on_init)

        assert result.success
        assert "Warning: agent info update failed: GitHub is down" in capsys.readouterr().out

    def test_spawn_failure(self, settings_factory, prompt_file):
        settings = settings_factory(path_to_letta_executable="/nonexistent/letta")
        result = run("", prompt_file, settings)
        assert result.exit_code == 1
        assert result.events == []


class TestBackgroundTasks:
    """Tests for BackgroundTasks."""

    def test_failures_are_logged(self, capsys):
        async def boom():
            raise ValueError("bad")

        async def main():
            tasks = BackgroundTasks()
            tasks.spawn(boom(), "labelling")
            await tasks.drain()

        asyncio.run(main())
        assert "Warning: labelling failed: bad" in capsys.readouterr().out

    def test_stragglers_cancelled(self):
        async def main():
            tasks = BackgroundTasks()
            task = tasks.spawn(asyncio.sleep(30), "slow")
            await tasks.drain(timeout=0.01)
            return task

        assert asyncio.run(main()).cancelled()


class TestPreparePrompt:
    """Tests for prepare_prompt."""

    def test_inline_prompt_written(self, settings_factory, tmp_path):
        path = prepare_prompt(settings_factory(prompt="Do the thing"))
        assert path == str(tmp_path / "letta-prompts" / "letta-prompt.txt")
        assert open(path).read() == "Do the thing"

    def test_prompt_file(self, settings_factory, prompt_file):
        assert prepare_prompt(settings_factory(prompt_file=prompt_file)) == prompt_file

    def test_missing_prompt_file(self, settings_factory, tmp_path):
        with pytest.raises(ValueError, match="does not exist"):
            prepare_prompt(settings_factory(prompt_file=str(tmp_path / "missing.txt")))

    def test_no_prompt(self, settings_factory):
        with pytest.raises(ValueError, match="Neither"):
            prepare_prompt(settings_factory())


class TestInitHandler:
    """Tests for build_init_handler."""

    def test_updates_comment_and_labels_conversation(self, settings_factory, mock_repo, tmp_path):
        settings = settings_factory(comment_id=123, thread_number=7, entity_title="Crash on start")
        comment = mock_repo.get_issue.return_value.get_comment.return_value
        comment.body = render_working_body()
        letta = MagicMock()
        letta.get_agent_info.return_value = {"id": "agent-1", "name": "Reviewer"}

        async def main():
            background = BackgroundTasks()
            handler = build_init_handler(settings, background, repo=mock_repo, letta_client=letta)
            await handler(StreamEvent(raw="", data=INIT))
            await background.drain()

        asyncio.run(main())

        body = comment.edit.call_args.args[0]
        assert "[Reviewer](https://app.letta.com/agents/agent-1?conversation=conv-1)" in body
        letta.update_conversation_summary.assert_called_once_with(
            "conv-1", "letta-ai/example Issue #7: Crash on start"
        )
        info = json.loads((tmp_path / "letta-agent-info.json").read_text())
        assert info["agent_id"] == "agent-1"
        assert info["ade_url"] == "https://app.letta.com/agents/agent-1"

    def test_without_repo_only_writes_info(self, settings_factory, tmp_path):
        async def main():
            handler = build_init_handler(settings_factory(), BackgroundTasks())
            await handler(StreamEvent(raw="", data=INIT))

        asyncio.run(main())
        assert (tmp_path / "letta-agent-info.json").exists()


class TestRunOutputs:
    """Tests for write_run_outputs and save_execution_file."""

    def test_success_outputs(self, settings_factory, read_outputs, tmp_path):
        settings = settings_factory()
        result = RunResult(
            exit_code=0,
            identity=StreamIdentity(agent_id="agent-1", conversation_id="conv-1", model="opus"),
            events=[INIT],
        )

        write_run_outputs(result, settings)

        outputs = read_outputs()
        assert outputs["conclusion"] == "success"
        assert outputs["agent_id"] == "agent-1"
        assert outputs["conversation_id"] == "conv-1"
        assert outputs["model"] == "opus"
        assert json.loads((tmp_path / "letta-execution-output.json").read_text()) == [INIT]

    def test_failure_still_reports_agent(self, settings_factory, read_outputs):
        result = RunResult(exit_code=2, identity=StreamIdentity(agent_id="agent-1"))
        letta = MagicMock()
        letta.get_latest_conversation.return_value = "conv-9"

        write_run_outputs(result, settings_factory(), letta)

        outputs = read_outputs()
        assert outputs["conclusion"] == "failure"
        assert outputs["agent_id"] == "agent-1"
        assert outputs["conversation_id"] == "conv-9"
        assert "execution_file" not in outputs

    def test_save_execution_file_error(self, tmp_path):
        assert not save_execution_file(RunResult(exit_code=0), str(tmp_path / "missing" / "out.json"))
