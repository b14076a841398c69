#!/usr/bin/env python3
"""
Run the Letta Code CLI for a prepared request.

Reads the identity chosen by prepare.py, builds the CLI arguments, streams
the prompt into the CLI and follows its output.

OUTPUTS:
- conclusion: 'success' or 'failure'
- execution_file: JSON transcript of the run
- agent_id / conversation_id / model: identity reported by the CLI
"""

import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from letta_action.utils.agent_resolver import resolution_from_outputs  # noqa: E402
from letta_action.utils.config import (  # noqa: E402
    ActionSettings,
    load_settings,
    validate_letta_environment,
)
from letta_action.utils.github_client import get_github_client, get_repo  # noqa: E402
from letta_action.utils.letta_client import LettaClient  # noqa: E402
from letta_action.utils.outputs import set_output  # noqa: E402
from letta_action.utils.run_config import RunConfig, prepare_run_config  # noqa: E402
from letta_action.utils.runner import (  # noqa: E402
    BackgroundTasks,
    RunResult,
    build_init_handler,
    prepare_prompt,
    run_letta,
    write_run_outputs,
)


def build_run_config(settings: ActionSettings) -> RunConfig:
    """Turn the prepare step's outputs into CLI arguments."""
    resolved = resolution_from_outputs(
        settings.resolved_agent_id or settings.agent_id,
        settings.resolved_conversation_id,
        settings.create_new_conversation,
        settings.is_followup,
    )
    if settings.letta_args.strip():
        print(f"Custom Letta arguments: {settings.letta_args}")
    return prepare_run_config(
        resolved,
        model=settings.model,
        user_args=settings.letta_args,
        action_inputs_present=settings.action_inputs_present,
    )


def connect_repo(settings: ActionSettings):
    """Repository for comment updates, or None if GitHub is unavailable."""
    if not settings.github_token or not settings.repository:
        return None
    try:
        return get_repo(get_github_client(settings), settings.repository)
    except Exception as e:
        print(f"Warning: GitHub unavailable, tracking comment will not be updated mid-run: {e}")
        return None


async def supervise(
    settings: ActionSettings, config: RunConfig, prompt_path: str, repo, letta_client: LettaClient
) -> RunResult:
    background = BackgroundTasks()
    on_init = build_init_handler(settings, background, repo=repo, letta_client=letta_client)
    try:
        return await run_letta(config, prompt_path, settings, on_init=on_init, background=background)
    finally:
        await background.drain()


def main():
    settings = load_settings()

    try:
        validate_letta_environment(settings)
        prompt_path = prepare_prompt(settings)
    except ValueError as e:
        print(f"ERROR: Action failed with error: {e}")
        set_output(settings.github_output, "conclusion", "failure")
        sys.exit(1)

    config = build_run_config(settings)
    letta_client = LettaClient.from_settings(settings)
    repo = connect_repo(settings)

    result = asyncio.run(supervise(settings, config, prompt_path, repo, letta_client))
    write_run_outputs(result, settings, letta_client)

    if not result.success:
        print(f"ERROR: Letta exited with code {result.exit_code}")
        sys.exit(result.exit_code if result.exit_code > 0 else 1)


if __name__ == "__main__":
    main()
