"""
Rendering for the tracking comment.

One comment per run moves through three states:
- Pending: "working" placeholder, posted before the agent starts
- Running: placeholder plus an agent footer, once the CLI reports the agent
- Terminal: header, links, whatever the agent wrote, footer and metadata
"""

import ipaddress
import math
import re
from typing import Optional
from urllib.parse import quote, unquote, urlsplit

from pydantic import BaseModel, ConfigDict, Field

from .config import ADE_BASE_URL
from .metadata import ResumptionRecord, strip_metadata, upsert_metadata
from .trigger_parser import format_warnings

SPINNER_IMG = (
    '<img src="https://github.com/user-attachments/assets/05be199b-c834-407f-8371-6f4b91435b71"'
    ' width="14px" height="14px" style="vertical-align: middle; margin-left: 4px;" />'
)
WORKING_TEXT = "Letta Code is working…"
PLACEHOLDER_TEXT = "I'll analyze this and get back to you."
LETTA_CODE_URL = "https://github.com/letta-ai/letta-code"

DEFAULT_FAILURE_TEXT = "The agent encountered an issue before updating the comment."
DEFAULT_SUCCESS_TEXT = "Task completed."

WORKING_PATTERN = re.compile(r"Letta Code is working[….]{1,3}(?:\s*<img[^>]*>)?", re.IGNORECASE)
PLACEHOLDER_PATTERN = re.compile(r"I'll analyze this and get back to you\.?\s*", re.IGNORECASE)
NOTE_BANNER_PATTERN = re.compile(r"^> \*\*Note:\*\*.*(?:\n|$)", re.MULTILINE)
PR_LINK_PATTERN = re.compile(r"\[Create .* PR\]\((.*)\)$", re.MULTILINE)
AGENT_FOOTER_PATTERN = re.compile(
    r"\n*---\n+🤖 \*\*Agent:\*\*.*(?:\n.*View in ADE.*)?(?:\n.*Chat with this agent.*)?"
)
VIEW_JOB_RUN_PATTERN = re.compile(r"\n?\[View job run\]\([^)]+\)")
VIEW_BRANCH_PATTERN = re.compile(r"\n?\[View branch\]\([^)]+\)")
DURATION_PATTERN = re.compile(r"\n*---\n*Duration: [0-9]+m? [0-9]+s")
USERNAME_PATTERN = re.compile(r"@([a-zA-Z0-9-]+)")
SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*$")
UNENCODED_COLON_PATTERN = re.compile(r"([^%]|^):(?!%2F%2F)")


class CommentUpdateInput(BaseModel):
    """Everything the Terminal render needs."""

    model_config = ConfigDict(frozen=True)

    current_body: str = Field(description="Tracking comment body as the agent left it")
    action_failed: bool
    job_url: str
    duration_ms: Optional[float] = None
    branch_name: Optional[str] = None
    branch_url: Optional[str] = None
    pr_url: Optional[str] = None
    trigger_username: Optional[str] = None
    error_details: Optional[str] = None
    agent_id: Optional[str] = None
    conversation_id: Optional[str] = None
    model: Optional[str] = None


# =============================================================================
# URL REPAIR
# =============================================================================


def _is_valid_url(url: str) -> bool:
    """Rough WHATWG-style validity: scheme, and a sane host for network URLs."""
    try:
        parts = urlsplit(url)
        parts.port
    except ValueError:
        return False

    if not parts.scheme or not SCHEME_PATTERN.match(parts.scheme):
        return False
    if parts.scheme.lower() not in ("http", "https", "ftp", "ws", "wss"):
        return True

    host = parts.hostname
    if not host or any(c in host for c in " <>[]\\^|"):
        return False
    if ":" in host:
        try:
            ipaddress.IPv6Address(host)
        except ValueError:
            return False
    return True


def ensure_properly_encoded_url(url: str) -> Optional[str]:
    """
    Repair a link the agent wrote, or return None if it is beyond repair.

    Query values are decoded then encoded so partially encoded text is not
    double-encoded. The base URL is left alone.
    """
    if _is_valid_url(url):
        if " " not in url:
            return url

        base, sep, query = url.partition("?")
        if not sep or not query:
            return url.replace(" ", "%20")

        params: dict[str, str] = {}
        for pair in query.split("&"):
            key, _, value = pair.partition("=")
            if key:
                params[key] = quote(unquote(value), safe="")
        encoded = "&".join(f"{k}={v}" for k, v in params.items())
        return f"{base}?{encoded}"

    fixed = url.replace(" ", "%20")
    base, sep, query = fixed.partition("?")
    if sep and query:
        fixed_query = UNENCODED_COLON_PATTERN.sub(r"\1%3A", query)
        fixed = f"{base}?{fixed_query}"

    return fixed if _is_valid_url(fixed) else None


# =============================================================================
# PENDING / RUNNING
# =============================================================================


def format_duration(duration_ms: Optional[float]) -> str:
    """Format milliseconds as '2m 5s' or '42s'. Empty if unknown."""
    if duration_ms is None:
        return ""
    total_seconds = int(math.floor(duration_ms / 1000 + 0.5))
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}m {seconds}s" if minutes > 0 else f"{seconds}s"


def render_working_body(warnings: Optional[list] = None, parse_error: Optional[str] = None) -> str:
    """Initial tracking comment body. Never carries metadata."""
    banner = format_warnings(warnings or [], parse_error)
    return f"{banner}{WORKING_TEXT} {SPINNER_IMG}\n\n{PLACEHOLDER_TEXT}"


def resume_command(agent_id: str, conversation_id: Optional[str] = None) -> str:
    """CLI command that continues this conversation (or agent) locally."""
    return f"letta --conv {conversation_id}" if conversation_id else f"letta --agent {agent_id}"


def ade_url(agent_id: str, conversation_id: Optional[str] = None) -> str:
    base = f"{ADE_BASE_URL}/{agent_id}"
    return f"{base}?conversation={conversation_id}" if conversation_id else base


def render_running_footer(
    agent_id: str,
    job_url: str,
    display_name: Optional[str] = None,
    conversation_id: Optional[str] = None,
) -> str:
    """Provisional footer shown while the agent works."""
    return (
        f"\n\n---\n🤖 **Agent:** [{display_name or agent_id}]({ade_url(agent_id, conversation_id)})"
        f" • [View job run]({job_url})\n"
        f"💻 Chat with this agent in your terminal using [Letta Code]({LETTA_CODE_URL}):"
        f" `{resume_command(agent_id, conversation_id)}`"
    )


def render_running_body(
    current_body: str,
    agent_id: str,
    job_url: str,
    display_name: Optional[str] = None,
    conversation_id: Optional[str] = None,
) -> str:
    """Add (or replace) the provisional agent footer, keeping everything else."""
    body = AGENT_FOOTER_PATTERN.sub("", strip_metadata(current_body or "")).rstrip()
    if not body:
        body = f"{WORKING_TEXT} {SPINNER_IMG}"
    return body + render_running_footer(agent_id, job_url, display_name, conversation_id)


# =============================================================================
# TERMINAL
# =============================================================================


def _extract_agent_content(body: str) -> str:
    """Strip placeholders, provisional footer/metadata and stale links."""
    content = WORKING_PATTERN.sub("", body)
    content = PLACEHOLDER_PATTERN.sub("", content)
    content = strip_metadata(content)
    content = AGENT_FOOTER_PATTERN.sub("", content)
    content = VIEW_JOB_RUN_PATTERN.sub("", content)
    content = VIEW_BRANCH_PATTERN.sub("", content)
    content = DURATION_PATTERN.sub("", content)
    return content.strip()


def _build_header(data: CommentUpdateInput, content: str) -> str:
    duration = format_duration(data.duration_ms)

    if data.action_failed:
        header = "**Letta Code encountered an error"
        if duration:
            header += f" after {duration}"
        return header + "**"

    username = data.trigger_username
    if not username:
        mention = USERNAME_PATTERN.search(content)
        username = mention.group(1) if mention else "user"

    header = f"**Letta Code finished @{username}'s task"
    if duration:
        header += f" in {duration}"
    return header + "**"


def _build_links(data: CommentUpdateInput, pr_url: Optional[str]) -> str:
    links = f" —— [View job]({data.job_url})"

    if data.branch_name and data.branch_url:
        links += f" • [`{data.branch_name}`]({data.branch_url})"
    elif data.branch_name:
        links += f" • `{data.branch_name}`"

    if pr_url:
        links += f" • [Create PR ➔]({pr_url})"

    return links


def _build_agent_footer(data: CommentUpdateInput) -> str:
    url = f"{ADE_BASE_URL}/{data.agent_id}"
    footer = f"\n\n---\n🤖 **Agent:** [`{data.agent_id}`]({url})"
    if data.conversation_id:
        footer += f" • **Conversation:** `{data.conversation_id}`"
    if data.model:
        footer += f" • **Model:** {data.model}"
    footer += f"\n[View in ADE]({url}) • [View job run]({data.job_url})"
    footer += (
        f"\n💻 Chat with this agent in your terminal using [Letta Code]({LETTA_CODE_URL}):"
        f" `{resume_command(data.agent_id, data.conversation_id)}`"
    )
    return footer


def update_comment_body(data: CommentUpdateInput) -> str:
    """Render the final tracking comment body."""
    content = _extract_agent_content(data.current_body)

    banners = "".join(NOTE_BANNER_PATTERN.findall(content))
    content = NOTE_BANNER_PATTERN.sub("", content).strip()

    pr_url = None
    pr_match = PR_LINK_PATTERN.search(content)
    if pr_match:
        pr_url = ensure_properly_encoded_url(pr_match.group(1))
        if pr_url is None:
            print(f"Warning: Dropping invalid PR link: {pr_match.group(1)}")
        content = content.replace(pr_match.group(0), "").strip()
    if not pr_url and data.pr_url:
        pr_url = ensure_properly_encoded_url(data.pr_url)

    body = _build_header(data, content) + _build_links(data, pr_url)

    if data.action_failed and data.error_details:
        body += f"\n\n```\n{data.error_details}\n```"

    body += "\n\n---\n"

    if not content:
        content = DEFAULT_FAILURE_TEXT if data.action_failed else DEFAULT_SUCCESS_TEXT

    if banners:
        body += banners.rstrip("\n") + "\n\n"
    body += content

    if not data.agent_id:
        return body.strip()

    body = body.strip() + _build_agent_footer(data)
    record = ResumptionRecord(
        agent_id=data.agent_id,
        conversation_id=data.conversation_id,
        model=data.model,
    )
    return upsert_metadata(body, record).strip()
