#!/usr/bin/env python3
"""
Finalize the tracking comment after the Letta run.

Runs even when earlier steps failed, so the comment always ends up as either
a completion report or an error report, with resumption metadata whenever
an agent is known.
"""

import json
import os
import sys
from pathlib import Path
from typing import Optional

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from letta_action.utils.comment_logic import (  # noqa: E402
    CommentUpdateInput,
    update_comment_body,
)
from letta_action.utils.config import ActionSettings, load_settings  # noqa: E402
from letta_action.utils.github_client import (  # noqa: E402
    check_agent_branch,
    get_github_client,
    get_repo,
    get_tracking_comment_body,
    update_tracking_comment,
)
from letta_action.utils.run_config import requests_new_conversation  # noqa: E402


def read_execution_details(path: Optional[str]) -> dict:
    """Pull duration and error flag from the last result event of a transcript."""
    if not path or not Path(path).is_file():
        return {}
    try:
        events = json.loads(Path(path).read_text())
    except (OSError, ValueError) as e:
        print(f"Warning: Could not read execution file {path}: {e}")
        return {}

    for event in reversed(events if isinstance(events, list) else []):
        if isinstance(event, dict) and event.get("type") == "result":
            return {
                "duration_ms": event.get("duration_ms"),
                "is_error": bool(event.get("is_error")),
                "result": event.get("result"),
            }
    return {}


def build_update_input(settings: ActionSettings, current_body: str, branch_url: Optional[str]) -> CommentUpdateInput:
    """Collect what the run step reported into a Terminal render input."""
    details = read_execution_details(settings.run_execution_file or settings.execution_file)
    action_failed = settings.run_conclusion != "success" or details.get("is_error", False)

    error_details = settings.prepare_error
    if action_failed and not error_details and details.get("is_error") and details.get("result"):
        error_details = str(details["result"])

    # Fall back to the resolved identity if the CLI died before reporting one.
    # A run that asked for a new conversation never inherits the old one.
    agent_id = settings.run_agent_id or settings.resolved_agent_id or None
    conversation_id = settings.run_conversation_id
    if (
        not conversation_id
        and agent_id
        and agent_id == settings.resolved_agent_id
        and not settings.create_new_conversation
        and not requests_new_conversation(settings.letta_args)
    ):
        conversation_id = settings.resolved_conversation_id

    duration = details.get("duration_ms")
    return CommentUpdateInput(
        current_body=current_body,
        action_failed=action_failed,
        job_url=settings.job_url,
        duration_ms=float(duration) if isinstance(duration, (int, float)) else None,
        branch_name=settings.branch_name if branch_url else None,
        branch_url=branch_url,
        trigger_username=settings.trigger_username or settings.actor,
        error_details=error_details,
        agent_id=agent_id,
        conversation_id=conversation_id,
        model=settings.run_model or settings.model,
    )


def main():
    settings = load_settings()

    if not settings.comment_id or not settings.thread_number:
        print("No tracking comment to update")
        return

    repo = get_repo(get_github_client(settings), settings.repository)

    current_body = get_tracking_comment_body(
        repo, settings.thread_number, settings.comment_id, settings.is_review_comment
    )
    branch_url = check_agent_branch(
        repo, settings.branch_name, settings.base_branch, settings.server_url
    )

    data = build_update_input(settings, current_body, branch_url)
    body = update_comment_body(data)

    # Failures here propagate: a stale tracking comment must fail the step
    update_tracking_comment(
        repo, settings.thread_number, settings.comment_id, body, settings.is_review_comment
    )
    print(f"Updated tracking comment {settings.comment_id} ({'failure' if data.action_failed else 'success'})")


if __name__ == "__main__":
    main()
