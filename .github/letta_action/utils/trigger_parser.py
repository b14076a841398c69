"""
Parse @letta-code trigger text for CLI arguments.

Syntax: @letta-code [--flag value --other-flag] the actual prompt

Examples:
    @letta-code [--model haiku] fix this bug
    @letta-code [--agent agent-xxx] continue working
    @letta-code [--new --model opus-4.1] start fresh
"""

import re
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Flags the action controls itself - stripped with a warning
BLOCKED_FLAGS = frozenset({"-p", "--prompt", "--output-format", "--yolo", "-y"})

# Flags followed by a value token
FLAGS_WITH_VALUES = frozenset({"-p", "--prompt", "-m", "--model", "--agent", "-a", "--output-format"})

_BRACKET_OPEN = re.compile(r"^\s*\[")


class ParsedTrigger(BaseModel):
    """Result of parsing the triggering comment/issue/PR text."""

    model_config = ConfigDict(strict=True)

    letta_args: List[str] = Field(default_factory=list, description="Args for the Letta CLI")
    prompt: str = Field(default="", description="The request text after the bracket segment")
    warnings: List[str] = Field(default_factory=list, description="Blocked/ignored flag notes")
    parse_error: Optional[str] = Field(default=None, description="Why bracket parsing failed")


def split_args(text: str) -> List[str]:
    """Split on spaces/tabs, grouping quoted text. No escape characters."""
    args: List[str] = []
    current = ""
    quote: Optional[str] = None
    has_token = False

    for char in text:
        if quote:
            if char == quote:
                quote = None
            else:
                current += char
        elif char in ("'", '"'):
            quote = char
            has_token = True
        elif char in (" ", "\t", "\n", "\r"):
            if current or has_token:
                args.append(current)
                current = ""
                has_token = False
        else:
            current += char

    if current or has_token:
        args.append(current)

    return args


def filter_blocked_flags(args: List[str]) -> tuple[List[str], List[str]]:
    """Drop blocked flags (and their values). Returns (kept, blocked_names)."""
    kept: List[str] = []
    blocked: List[str] = []

    i = 0
    while i < len(args):
        arg = args[i]
        name, has_inline_value, _ = arg.partition("=")
        if name in BLOCKED_FLAGS:
            blocked.append(name)
            # --flag=value carries its own value
            consumes_next = not has_inline_value and name in FLAGS_WITH_VALUES
            i += 2 if consumes_next and i + 1 < len(args) else 1
            continue
        kept.append(arg)
        i += 1

    return kept, blocked


def contains_trigger(trigger_phrase: str, text: Optional[str]) -> bool:
    """
    Check for the trigger phrase as a standalone mention.

    Case-insensitive. The phrase must start the text or follow whitespace, and
    end the text or be followed by whitespace, punctuation or a `[`.
    """
    if not trigger_phrase or not text:
        return False
    pattern = re.compile(
        rf"(?:^|\s){re.escape(trigger_phrase)}(?=$|[\s.,!?;:\[])", re.IGNORECASE
    )
    return pattern.search(text) is not None


def parse_trigger(trigger_phrase: str, text: Optional[str]) -> ParsedTrigger:
    """Parse `text` for the trigger phrase and an optional [...] argument segment."""
    text = text or ""
    result = ParsedTrigger()

    index = text.lower().find(trigger_phrase.lower()) if trigger_phrase else -1
    if index == -1:
        result.prompt = text
        return result

    after = text[index + len(trigger_phrase) :]

    opening = _BRACKET_OPEN.match(after)
    if not opening:
        result.prompt = after.strip()
        return result

    close = after.find("]", opening.end())
    if close == -1:
        result.parse_error = "Unclosed bracket in trigger syntax"
        result.prompt = after.strip()
        return result

    inner = after[opening.end() : close]
    rest = after[close + 1 :].strip()

    if not inner.strip():
        result.prompt = rest
        return result

    kept, blocked = filter_blocked_flags(split_args(inner))
    if blocked:
        result.warnings.append(f"Ignored flags: {', '.join(blocked)}")

    result.letta_args = kept
    result.prompt = rest
    return result


def format_warnings(warnings: List[str], parse_error: Optional[str] = None) -> str:
    """Format warnings as a note banner for a comment. Empty if nothing to say."""
    notes = list(warnings)
    if parse_error:
        notes.append(f"{parse_error}; the whole message was used as the prompt")
    if not notes:
        return ""
    return f"> **Note:** {'. '.join(notes)}\n\n"
