"""
Find the Letta agent/conversation that belongs to an issue or PR.

Each workflow run is a fresh process, so the only memory of earlier runs is
the resumption metadata the action left in its own tracking comments. This
module walks the comment history (newest first), and for PRs the history of
linked issues, and decides what the next run should do:

- CreateNew                          nothing found, nothing configured
- UseConfiguredAgentNewConversation  nothing usable found, agent configured
- ResumeConversation                 found agent + conversation
- ResumeAgentNewConversation         found agent only
"""

from datetime import datetime
from typing import List, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field

from .github_context import ThreadIdentity
from .metadata import ResumptionRecord, parse_metadata

# https://github.com/letta-code
LETTA_APP_BOT_ID = 248085862
LETTA_BOT_LOGIN = "letta-code"
LETTA_BOT_SLUG = "letta"
ACTIONS_BOT_LOGIN = "github-actions[bot]"


class ThreadComment(BaseModel):
    """A comment on an issue/PR, reduced to what discovery needs."""

    model_config = ConfigDict(frozen=True)

    id: int
    body: str = ""
    author_login: str = ""
    author_id: Optional[int] = None
    author_type: Optional[str] = None
    created_at: datetime


class CommentLister(Protocol):
    """Anything that can list the comments of an issue or PR."""

    def list_comments(self, issue_number: int) -> List[ThreadComment]: ...


# =============================================================================
# RESOLUTION RESULTS
# =============================================================================


class CreateNew(BaseModel):
    """No prior agent: the CLI creates a new agent and conversation."""

    model_config = ConfigDict(frozen=True)


class UseConfiguredAgentNewConversation(BaseModel):
    """Run the configured agent in a fresh conversation."""

    model_config = ConfigDict(frozen=True)

    agent_id: str


class ResumeConversation(BaseModel):
    """Continue a specific conversation found in the comment history."""

    model_config = ConfigDict(frozen=True)

    agent_id: str
    conversation_id: str
    linked_from_issue: Optional[int] = Field(default=None, description="Issue the record came from")


class ResumeAgentNewConversation(BaseModel):
    """Reuse a discovered agent, but start a new conversation on it."""

    model_config = ConfigDict(frozen=True)

    agent_id: str


ResolvedIdentity = Union[
    CreateNew, UseConfiguredAgentNewConversation, ResumeConversation, ResumeAgentNewConversation
]


class DiscoveredRecord(BaseModel):
    """A resumption record and where it was found."""

    model_config = ConfigDict(frozen=True)

    record: ResumptionRecord
    comment_id: int
    linked_from_issue: Optional[int] = None


# =============================================================================
# DISCOVERY
# =============================================================================


def is_letta_bot_comment(comment: ThreadComment) -> bool:
    """Check whether a comment was written by the Letta app or the Actions bot."""
    if comment.author_id == LETTA_APP_BOT_ID:
        return True
    if comment.author_type == "Bot" and LETTA_BOT_SLUG in comment.author_login.lower():
        return True
    return comment.author_login == ACTIONS_BOT_LOGIN


def find_record_in_thread(lister: CommentLister, issue_number: int) -> Optional[DiscoveredRecord]:
    """
    Return the newest bot-written resumption record on one issue/PR.

    Listing errors propagate to the caller.
    """
    comments = sorted(
        lister.list_comments(issue_number), key=lambda c: c.created_at, reverse=True
    )

    for comment in comments:
        if not comment.body or not is_letta_bot_comment(comment):
            continue
        record = parse_metadata(comment.body)
        if record:
            print(f"Found existing agent: {record.agent_id} in comment {comment.id}")
            return DiscoveredRecord(record=record, comment_id=comment.id)

    return None


def discover_record(thread: ThreadIdentity, lister: CommentLister) -> Optional[DiscoveredRecord]:
    """
    Search the thread, then (for PRs) each linked issue in order.

    A failure on the thread itself ends the search; a failure on one linked
    issue only skips that issue.
    """
    try:
        found = find_record_in_thread(lister, thread.number)
    except Exception as e:
        print(f"Warning: Error searching #{thread.number} for an existing agent: {e}")
        # No history: resolve_identity falls back to CreateNew, or to the
        # configured agent with a new conversation when one is set
        return None

    if found:
        return found

    if not thread.is_pr:
        print("No existing Letta agent found in comments")
        return None

    for issue_number in thread.linked_issue_numbers:
        try:
            linked = find_record_in_thread(lister, issue_number)
        except Exception as e:
            print(f"Warning: Error searching linked issue #{issue_number}: {e}")
            continue
        if linked:
            print(f"Using agent from linked issue #{issue_number}")
            return DiscoveredRecord(
                record=linked.record,
                comment_id=linked.comment_id,
                linked_from_issue=issue_number,
            )

    print("No existing Letta agent found in comments or linked issues")
    return None


def resolve_identity(
    thread: ThreadIdentity,
    lister: CommentLister,
    configured_agent_id: Optional[str] = None,
) -> ResolvedIdentity:
    """Decide which agent/conversation this run should use."""
    found = discover_record(thread, lister)

    if found is None:
        if configured_agent_id:
            print(f"Using configured agent {configured_agent_id} with a new conversation")
            return UseConfiguredAgentNewConversation(agent_id=configured_agent_id)
        print("Will create new agent and conversation")
        return CreateNew()

    record = found.record
    agent_id = record.agent_id

    if configured_agent_id and configured_agent_id != agent_id:
        # A conversation belongs to exactly one agent; never attach it to another.
        print(
            f"Configured agent {configured_agent_id} differs from discovered agent "
            f"{agent_id}; starting a new conversation on the configured agent"
        )
        return UseConfiguredAgentNewConversation(agent_id=configured_agent_id)

    if record.conversation_id:
        linked_msg = (
            f" (linked from issue #{found.linked_from_issue})" if found.linked_from_issue else ""
        )
        print(
            f"Resuming existing conversation: {record.conversation_id} "
            f"(agent: {agent_id}){linked_msg}"
        )
        return ResumeConversation(
            agent_id=agent_id,
            conversation_id=record.conversation_id,
            linked_from_issue=found.linked_from_issue,
        )

    print(f"Found existing agent: {agent_id}, will create new conversation")
    return ResumeAgentNewConversation(agent_id=agent_id)


# =============================================================================
# STEP OUTPUTS
# =============================================================================


def resolution_outputs(resolved: ResolvedIdentity) -> dict[str, str]:
    """Step outputs describing a resolution, read back by the run step."""
    outputs = {
        "agent_id": getattr(resolved, "agent_id", "") or "",
        "conversation_id": getattr(resolved, "conversation_id", "") or "",
        "is_followup": "true"
        if isinstance(resolved, (ResumeConversation, ResumeAgentNewConversation))
        else "false",
        "create_new_conversation": "false" if isinstance(resolved, ResumeConversation) else "true",
    }
    linked = getattr(resolved, "linked_from_issue", None)
    if linked:
        outputs["linked_from_issue"] = str(linked)
    return outputs


def resolution_from_outputs(
    agent_id: Optional[str],
    conversation_id: Optional[str],
    create_new_conversation: bool,
    is_followup: bool = False,
) -> ResolvedIdentity:
    """Rebuild a resolution from the prepare step's outputs."""
    if agent_id and conversation_id and not create_new_conversation:
        return ResumeConversation(agent_id=agent_id, conversation_id=conversation_id)
    if agent_id and is_followup:
        return ResumeAgentNewConversation(agent_id=agent_id)
    if agent_id:
        return UseConfiguredAgentNewConversation(agent_id=agent_id)
    return CreateNew()
