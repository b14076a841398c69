#!/usr/bin/env python3
"""
Prepare a Letta Code run for an @letta-code mention.

Steps:
1. Normalize the triggering GitHub event
2. Stop unless it mentions the trigger phrase
3. Find the agent/conversation that belongs to this issue/PR
4. Post the tracking comment (Pending)
5. Parse [--flag value] trigger syntax
6. Write the prompt file for the run step

OUTPUTS:
- contains_trigger: 'false' when the event does not mention the trigger (nothing else is written)
- agent_id / conversation_id: identity to resume (may be empty)
- is_followup: 'true' if an earlier agent was found
- create_new_conversation: 'true' unless resuming a conversation
- linked_from_issue: issue number the conversation came from (PRs only)
- comment_id / is_review_comment / thread_number / is_pr: tracking comment
- letta_args: trigger args + workflow args
- trigger_warnings / trigger_parse_error
- prompt_file: path of the prompt for the run step
"""

import json
import os
import shlex
import sys
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from letta_action.utils.agent_resolver import (  # noqa: E402
    ResolvedIdentity,
    ResumeConversation,
    resolution_outputs,
    resolve_identity,
)
from letta_action.utils.comment_logic import render_working_body  # noqa: E402
from letta_action.utils.config import ActionSettings, load_settings  # noqa: E402
from letta_action.utils.github_client import (  # noqa: E402
    IssueCommentLister,
    create_tracking_comment,
    get_github_client,
    get_repo,
)
from letta_action.utils.github_context import (  # noqa: E402
    GitHubEvent,
    parse_github_event,
    thread_identity,
)
from letta_action.utils.outputs import set_output  # noqa: E402
from letta_action.utils.run_config import split_user_args  # noqa: E402
from letta_action.utils.trigger_parser import (  # noqa: E402
    ParsedTrigger,
    contains_trigger,
    parse_trigger,
)


def load_event(settings: ActionSettings) -> GitHubEvent:
    """Read and normalize the webhook payload for this run."""
    if not settings.event_path:
        raise ValueError("GITHUB_EVENT_PATH not set")
    payload = json.loads(Path(settings.event_path).read_text())
    return parse_github_event(settings.event_name, payload)


def is_triggered(settings: ActionSettings, event: GitHubEvent) -> bool:
    """Whether the event mentions the trigger phrase (body, or title for opened issues/PRs)."""
    if contains_trigger(settings.trigger_phrase, event.trigger_text):
        return True
    if event.event_name in ("issues", "pull_request", "pull_request_target"):
        return contains_trigger(settings.trigger_phrase, event.entity_title)
    return False


def build_prompt(
    settings: ActionSettings,
    event: GitHubEvent,
    parsed: ParsedTrigger,
    comment_id: int,
    resolved: ResolvedIdentity,
) -> str:
    """Assemble the prompt handed to the agent on stdin."""
    kind = "pull request" if event.is_pr else "issue"
    lines = [
        "<github_context>",
        f"Repository: {settings.repository}",
        f"Event: {event.event_name}" + (f" ({event.event_action})" if event.event_action else ""),
        f"Thread: {kind} #{event.thread_number}" + (f" - {event.entity_title}" if event.entity_title else ""),
        f"Triggered by: @{event.actor or settings.actor or 'unknown'}",
        f"Tracking comment ID: {comment_id}",
    ]
    if isinstance(resolved, ResumeConversation):
        lines.append("This continues an earlier conversation about this thread.")
        if resolved.linked_from_issue:
            lines.append(f"The conversation started on linked issue #{resolved.linked_from_issue}.")
    lines.append("</github_context>")

    lines += ["", "<request>", parsed.prompt or event.trigger_text, "</request>"]

    if settings.prompt:
        lines += ["", "<custom_instructions>", settings.prompt, "</custom_instructions>"]

    return "\n".join(lines) + "\n"


def main():
    settings = load_settings()
    out = settings.github_output

    try:
        event = load_event(settings)
    except (OSError, ValueError) as e:
        print(f"ERROR: Could not read the GitHub event: {e}")
        set_output(out, "prepare_error", str(e))
        sys.exit(1)

    if not is_triggered(settings, event):
        print(f"No trigger found: '{settings.trigger_phrase}' is not mentioned, skipping")
        set_output(out, "contains_trigger", "false")
        return
    set_output(out, "contains_trigger", "true")

    gh = get_github_client(settings)
    repo = get_repo(gh, settings.repository)

    # Agent discovery; PRs also search issues linked from the body
    thread = thread_identity(event)
    if thread.linked_issue_numbers:
        print(f"Linked issues: {', '.join(f'#{n}' for n in thread.linked_issue_numbers)}")

    if settings.agent_id:
        print(f"Using configured agent: {settings.agent_id}")
    resolved = resolve_identity(thread, IssueCommentLister(repo), settings.agent_id)
    for name, value in resolution_outputs(resolved).items():
        set_output(out, name, value)

    # Trigger syntax: @letta-code [--model haiku] do something
    parsed = parse_trigger(settings.trigger_phrase, event.trigger_text)
    if parsed.warnings:
        print(f"Trigger warnings: {'; '.join(parsed.warnings)}")
        set_output(out, "trigger_warnings", "; ".join(parsed.warnings))
    if parsed.parse_error:
        print(f"Trigger parse error: {parsed.parse_error}")
        set_output(out, "trigger_parse_error", parsed.parse_error)

    comment_id = create_tracking_comment(
        repo, event, render_working_body(parsed.warnings, parsed.parse_error)
    )
    set_output(out, "comment_id", str(comment_id))
    set_output(out, "is_review_comment", "true" if event.is_review_comment else "false")
    set_output(out, "thread_number", str(event.thread_number))
    set_output(out, "is_pr", "true" if event.is_pr else "false")
    set_output(out, "trigger_username", event.actor or settings.actor or "")

    all_args = parsed.letta_args + split_user_args(settings.letta_args)
    set_output(out, "letta_args", shlex.join(all_args))

    prompt_dir = Path(settings.runner_temp) / "letta-prompts"
    prompt_dir.mkdir(parents=True, exist_ok=True)
    prompt_path = prompt_dir / "letta-prompt.txt"
    prompt_path.write_text(build_prompt(settings, event, parsed, comment_id, resolved))
    set_output(out, "prompt_file", str(prompt_path))

    print(f"Prepared run for #{event.thread_number} (tracking comment {comment_id})")


if __name__ == "__main__":
    main()
