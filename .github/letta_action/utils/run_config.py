"""
Build the Letta CLI invocation for a run.

Argument order:
1. Agent/conversation selection
2. Model
3. --yolo (no human is around to approve tool calls in CI)
4. -p (prompt is read from stdin)
5. The user's custom args
6. --output-format stream-json, always last so nothing can override it
"""

import shlex
from typing import Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from .agent_resolver import (
    ResolvedIdentity,
    ResumeAgentNewConversation,
    ResumeConversation,
    UseConfiguredAgentNewConversation,
)
from .trigger_parser import filter_blocked_flags

AGENT_FLAGS = ("--agent", "-a")
CONVERSATION_FLAG = "--conversation"
NEW_CONVERSATION_FLAG = "--new"
MODEL_FLAG = "-m"
AUTO_APPROVE_FLAG = "--yolo"
PROMPT_FLAG = "-p"
BASE_ARGS = ("--output-format", "stream-json")


class RunConfig(BaseModel):
    """Arguments and extra environment for the Letta process."""

    model_config = ConfigDict(strict=True)

    letta_args: List[str] = Field(description="CLI arguments, in order")
    env: Dict[str, str] = Field(default_factory=dict, description="Extra environment variables")


def split_user_args(user_args: Union[str, Sequence[str], None]) -> List[str]:
    """Split a user argument string the way a shell would."""
    if not user_args:
        return []
    if not isinstance(user_args, str):
        return [a for a in user_args if a]
    try:
        return shlex.split(user_args)
    except ValueError as e:
        print(f"Warning: Could not parse custom Letta arguments ({e}), splitting on whitespace")
        return user_args.split()


def extract_agent_override(args: List[str]) -> tuple[Optional[str], List[str]]:
    """
    Pull an explicit --agent/-a selection out of user args.

    Returns (agent_id or None, remaining args). The last selection wins.
    """
    agent_id = None
    remaining: List[str] = []

    i = 0
    while i < len(args):
        arg = args[i]
        if arg in AGENT_FLAGS and i + 1 < len(args):
            agent_id = args[i + 1]
            i += 2
            continue
        if arg.startswith("--agent="):
            agent_id = arg.split("=", 1)[1]
            i += 1
            continue
        remaining.append(arg)
        i += 1

    return agent_id, remaining


def requests_new_conversation(user_args: Union[str, Sequence[str], None]) -> bool:
    """Whether user args start a fresh conversation (--new, or an explicit agent)."""
    custom, _ = filter_blocked_flags(split_user_args(user_args))
    override_agent, custom = extract_agent_override(custom)
    return bool(override_agent) or NEW_CONVERSATION_FLAG in custom


def _identity_args(resolved: ResolvedIdentity, user_new: bool) -> List[str]:
    if isinstance(resolved, ResumeConversation):
        if user_new:
            # User asked for a fresh start: keep the agent, drop the conversation
            return ["--agent", resolved.agent_id]
        return [CONVERSATION_FLAG, resolved.conversation_id]

    if isinstance(resolved, (ResumeAgentNewConversation, UseConfiguredAgentNewConversation)):
        args = ["--agent", resolved.agent_id]
        if not user_new:
            args.append(NEW_CONVERSATION_FLAG)
        return args

    return []


def prepare_run_config(
    resolved: ResolvedIdentity,
    model: Optional[str] = None,
    user_args: Union[str, Sequence[str], None] = None,
    action_inputs_present: Optional[str] = None,
) -> RunConfig:
    """Translate a resolved identity plus user args into the Letta CLI arguments."""
    custom, blocked = filter_blocked_flags(split_user_args(user_args))
    if blocked:
        print(f"Warning: Ignoring flags controlled by the action: {', '.join(blocked)}")

    override_agent, custom = extract_agent_override(custom)
    user_new = NEW_CONVERSATION_FLAG in custom

    letta_args: List[str] = []

    if override_agent:
        # A stored conversation belongs to the resolved agent, not this one
        print(f"Using agent from custom args: {override_agent}")
        letta_args += ["--agent", override_agent]
        if not user_new:
            letta_args.append(NEW_CONVERSATION_FLAG)
    else:
        letta_args += _identity_args(resolved, user_new)

    if model:
        letta_args += [MODEL_FLAG, model]

    letta_args.append(AUTO_APPROVE_FLAG)
    letta_args.append(PROMPT_FLAG)
    letta_args += custom
    letta_args += list(BASE_ARGS)

    env: Dict[str, str] = {}
    if action_inputs_present:
        env["GITHUB_ACTION_INPUTS"] = action_inputs_present

    return RunConfig(letta_args=letta_args, env=env)
