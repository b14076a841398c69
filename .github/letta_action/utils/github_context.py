"""
Normalize GitHub webhook payloads into the fields the action needs.

Also derives the thread identity used for agent discovery: the issue or PR
the conversation lives on, plus (for PRs) the issues its body links to.
"""

import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# "Fixes #12", "closes: #3", "Resolved #7"
CLOSING_KEYWORD_PATTERN = re.compile(
    r"\b(?:close[sd]?|fix(?:e[sd])?|resolve[sd]?)\b:?\s*#(\d+)\b", re.IGNORECASE
)
ISSUE_MENTION_PATTERN = re.compile(r"(?<![\w&/])#(\d+)\b")

COMMENT_EVENTS = ("issue_comment", "pull_request_review_comment")
PULL_REQUEST_EVENTS = ("pull_request", "pull_request_target")


class ThreadKind(str, Enum):
    """Which kind of GitHub object holds the conversation."""

    ISSUE = "issue"
    PULL_REQUEST = "pull_request"


class ThreadIdentity(BaseModel):
    """The issue/PR a run belongs to. Recomputed every run."""

    model_config = ConfigDict(frozen=True)

    kind: ThreadKind
    number: int = Field(gt=0)
    linked_issue_numbers: List[int] = Field(default_factory=list)

    @property
    def is_pr(self) -> bool:
        return self.kind == ThreadKind.PULL_REQUEST


class GitHubEvent(BaseModel):
    """The subset of a webhook payload the action uses."""

    model_config = ConfigDict(frozen=True)

    event_name: str
    event_action: Optional[str] = None
    thread_number: int
    is_pr: bool = False
    trigger_text: str = ""
    pr_body: Optional[str] = None
    actor: Optional[str] = None
    entity_title: Optional[str] = None
    comment_id: Optional[int] = None
    is_review_comment: bool = False


def extract_linked_issues(body: Optional[str]) -> List[int]:
    """
    Extract issue numbers referenced from a PR body.

    Closing-keyword references come first, then plain #N mentions, each
    number kept once at its highest-ranked position.
    """
    if not body:
        return []

    ordered: List[int] = []
    seen = set()

    for pattern in (CLOSING_KEYWORD_PATTERN, ISSUE_MENTION_PATTERN):
        for match in pattern.finditer(body):
            number = int(match.group(1))
            if number not in seen:
                seen.add(number)
                ordered.append(number)

    return ordered


def get_trigger_text(event_name: str, payload: Dict[str, Any]) -> str:
    """Pick the text that carries the trigger phrase for this event."""
    if event_name in COMMENT_EVENTS:
        return (payload.get("comment") or {}).get("body") or ""
    if event_name == "pull_request_review":
        return (payload.get("review") or {}).get("body") or ""
    if event_name == "issues":
        return (payload.get("issue") or {}).get("body") or ""
    if event_name in PULL_REQUEST_EVENTS:
        return (payload.get("pull_request") or {}).get("body") or ""
    return ""


def parse_github_event(event_name: str, payload: Dict[str, Any]) -> GitHubEvent:
    """
    Build a GitHubEvent from a raw webhook payload.

    Raises ValueError for events that are not tied to an issue or PR.
    """
    issue = payload.get("issue") or {}
    pull_request = payload.get("pull_request") or {}

    if pull_request:
        number = pull_request.get("number")
        is_pr = True
        pr_body = pull_request.get("body") or ""
        title = pull_request.get("title")
    elif issue:
        number = issue.get("number")
        # issue_comment events on PRs carry the PR as an issue with a pull_request key
        is_pr = "pull_request" in issue
        pr_body = (issue.get("body") or "") if is_pr else None
        title = issue.get("title")
    else:
        raise ValueError(f"Unsupported event '{event_name}': no issue or pull request in payload")

    if not number:
        raise ValueError(f"Event '{event_name}' payload has no issue/PR number")

    comment = payload.get("comment") or {}
    sender = payload.get("sender") or {}

    return GitHubEvent(
        event_name=event_name,
        event_action=payload.get("action"),
        thread_number=int(number),
        is_pr=is_pr,
        trigger_text=get_trigger_text(event_name, payload),
        pr_body=pr_body,
        actor=sender.get("login"),
        entity_title=title,
        comment_id=comment.get("id"),
        is_review_comment=event_name == "pull_request_review_comment",
    )


def thread_identity(event: GitHubEvent) -> ThreadIdentity:
    """Derive the thread identity, including linked issues for PRs."""
    if not event.is_pr:
        return ThreadIdentity(kind=ThreadKind.ISSUE, number=event.thread_number)

    linked = [n for n in extract_linked_issues(event.pr_body) if n != event.thread_number]
    return ThreadIdentity(
        kind=ThreadKind.PULL_REQUEST,
        number=event.thread_number,
        linked_issue_numbers=linked,
    )
