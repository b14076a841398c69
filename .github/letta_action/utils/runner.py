"""
Run the Letta CLI and follow its stream-json output.

The prompt is streamed into the CLI's stdin while its stdout is read line by
line. Identity fields (agent, conversation, model) are captured as soon as
they appear, because the process may crash or hang before it exits. The init
event kicks off the Running comment update as a detached task so the stream
is never blocked by GitHub or Letta API calls.
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from .comment_logic import ade_url, render_running_body
from .config import ActionSettings
from .github_client import get_tracking_comment_body, update_tracking_comment
from .letta_client import LettaClient, build_conversation_summary
from .outputs import set_output
from .run_config import RunConfig
from .stream import LineBuffer, StreamEvent, StreamIdentity, is_init_event, parse_stream_line, sanitize_event

CHUNK_SIZE = 64 * 1024
BACKGROUND_GRACE_SECONDS = 10.0

InitHandler = Callable[[StreamEvent], Awaitable[None]]


class RunResult(BaseModel):
    """Outcome of one Letta CLI run."""

    exit_code: int
    identity: StreamIdentity = Field(default_factory=StreamIdentity)
    events: List[Dict[str, Any]] = Field(default_factory=list)
    raw_output: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class BackgroundTasks:
    """Detached tasks whose failures are logged, never raised."""

    def __init__(self) -> None:
        self._tasks: set = set()

    def spawn(self, coro: Awaitable[Any], description: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, description))
        return task

    def _finished(self, task: asyncio.Task, description: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            print(f"Warning: {description} was cancelled")
            return
        error = task.exception()
        if error is not None:
            print(f"Warning: {description} failed: {error}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = BACKGROUND_GRACE_SECONDS) -> None:
        """Give pending tasks a short grace period, then cancel the rest."""
        if not self._tasks:
            return
        _, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)


# =============================================================================
# PROMPT
# =============================================================================


def prepare_prompt(settings: ActionSettings) -> str:
    """Return the prompt file path, writing an inline prompt to disk if needed."""
    if settings.prompt:
        prompt_dir = Path(settings.runner_temp) / "letta-prompts"
        prompt_dir.mkdir(parents=True, exist_ok=True)
        path = prompt_dir / "letta-prompt.txt"
        path.write_text(settings.prompt)
        return str(path)

    if settings.prompt_file:
        if not Path(settings.prompt_file).is_file():
            raise ValueError(f"Prompt file '{settings.prompt_file}' does not exist")
        return settings.prompt_file

    raise ValueError("Neither 'prompt' nor 'prompt_file' was provided")


async def feed_prompt(prompt_path: str, process: asyncio.subprocess.Process) -> None:
    """Stream the prompt file into the process's stdin, then close it."""
    stdin = process.stdin
    try:
        with open(prompt_path, "rb") as f:
            while True:
                chunk = f.read(CHUNK_SIZE)
                if not chunk:
                    break
                stdin.write(chunk)
                await stdin.drain()
    except (BrokenPipeError, ConnectionResetError) as e:
        print(f"Warning: Letta closed its input early: {e}")
    except OSError as e:
        print(f"ERROR: Error reading prompt file: {e}")
        if process.returncode is None:
            process.terminate()
    finally:
        if not stdin.is_closing():
            stdin.close()


# =============================================================================
# SUPERVISOR
# =============================================================================


async def run_letta(
    config: RunConfig,
    prompt_path: str,
    settings: ActionSettings,
    on_init: Optional[InitHandler] = None,
    background: Optional[BackgroundTasks] = None,
    base_env: Optional[Mapping[str, str]] = None,
) -> RunResult:
    """Launch the Letta CLI, feed the prompt, and consume its output until EOF."""
    background = background or BackgroundTasks()
    show_full_output = settings.full_output_enabled
    command = [settings.path_to_letta_executable, *config.letta_args]

    try:
        print(f"Prompt file size: {os.path.getsize(prompt_path)} bytes")
    except OSError:
        print("Prompt file size: unknown bytes")

    if show_full_output:
        print("Showing full Letta output")
    else:
        print("Running Letta Code (full output hidden for security)...")
        print(
            "Rerun in debug mode or enable `show_full_output: true` in your workflow file for full output."
        )
    print(f"Full command: {' '.join(command)}")

    env = {**(os.environ if base_env is None else base_env), **config.env}
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            env=env,
        )
    except OSError as e:
        print(f"ERROR: Error spawning Letta process: {e}")
        return RunResult(exit_code=1)

    feeder = asyncio.ensure_future(feed_prompt(prompt_path, process))

    result = RunResult(exit_code=1)
    raw_lines: List[str] = []
    init_seen = False

    def handle(line: str) -> None:
        nonlocal init_seen
        raw_lines.append(line)
        event = parse_stream_line(line)
        if event is None:
            return

        result.identity.observe(event)
        if event.is_json:
            result.events.append(event.data)

        if not init_seen and is_init_event(event):
            init_seen = True
            if on_init is not None:
                background.spawn(on_init(event), "agent info update")

        output = sanitize_event(event, show_full_output)
        if output:
            print(output, flush=True)

    buffer = LineBuffer()
    try:
        while True:
            chunk = await process.stdout.read(CHUNK_SIZE)
            if not chunk:
                break
            for line in buffer.feed(chunk):
                handle(line)
    except OSError as e:
        print(f"ERROR: Error reading Letta stdout: {e}")
    for line in buffer.flush():
        handle(line)

    # EOF ends the run even if no result event was ever emitted
    exit_code = await process.wait()

    if not feeder.done():
        feeder.cancel()
    await asyncio.gather(feeder, return_exceptions=True)

    result.exit_code = exit_code
    result.raw_output = "\n".join(raw_lines)
    return result


def build_init_handler(
    settings: ActionSettings,
    background: BackgroundTasks,
    repo=None,
    letta_client: Optional[LettaClient] = None,
) -> InitHandler:
    """
    Handler for the CLI's init event.

    Writes the agent info file, labels the conversation, and moves the
    tracking comment to its Running state. Runs detached.
    """

    async def on_init(event: StreamEvent) -> None:
        agent_id = str(event.get("agent_id"))
        conversation_id = event.get("conversation_id")
        model = event.get("model") or "unknown"

        write_agent_info_file(settings, agent_id, conversation_id, model)

        if conversation_id and letta_client and settings.thread_number:
            summary = build_conversation_summary(
                "PR" if settings.is_pr else "Issue",
                settings.thread_number,
                settings.repository,
                settings.entity_title,
            )
            background.spawn(
                asyncio.to_thread(letta_client.update_conversation_summary, conversation_id, summary),
                "conversation labelling",
            )

        if repo is None or not settings.comment_id or not settings.thread_number:
            print("Skipping comment update - missing tracking comment or repository")
            return

        display_name = agent_id
        if letta_client:
            try:
                info = await asyncio.to_thread(letta_client.get_agent_info, agent_id)
                if info and info.get("name"):
                    display_name = info["name"]
            except Exception as e:
                print(f"Warning: Failed to fetch agent name, using ID: {e}")

        current = await asyncio.to_thread(
            get_tracking_comment_body,
            repo,
            settings.thread_number,
            settings.comment_id,
            settings.is_review_comment,
        )
        body = render_running_body(current, agent_id, settings.job_url, display_name, conversation_id)
        await asyncio.to_thread(
            update_tracking_comment,
            repo,
            settings.thread_number,
            settings.comment_id,
            body,
            settings.is_review_comment,
        )
        conv_msg = f", conversation: {conversation_id}" if conversation_id else ""
        print(f"Updated comment with agent info: {display_name} ({agent_id}){conv_msg}")

    return on_init


def write_agent_info_file(
    settings: ActionSettings, agent_id: str, conversation_id: Optional[str], model: str
) -> None:
    """Write agent info where the agent itself can read it."""
    info = {
        "agent_id": agent_id,
        "conversation_id": conversation_id,
        "model": model,
        "ade_url": ade_url(agent_id),
    }
    try:
        Path(settings.agent_info_file).write_text(json.dumps(info, indent=2))
    except OSError as e:
        print(f"Warning: Failed to write agent info file: {e}")


# =============================================================================
# OUTPUTS
# =============================================================================


def save_execution_file(result: RunResult, path: str) -> bool:
    """Write all parsed events as one JSON array."""
    try:
        Path(path).write_text(json.dumps(result.events, indent=2))
    except OSError as e:
        print(f"Warning: Failed to save execution log: {e}")
        return False
    print(f"Log saved to {path}")
    return True


def write_run_outputs(
    result: RunResult,
    settings: ActionSettings,
    letta_client: Optional[LettaClient] = None,
) -> None:
    """
    Publish conclusion, transcript and identity as step outputs.

    Identity is published on failure too, so an agent created by a failed
    run is not lost.
    """
    out = settings.github_output
    identity = result.identity

    if result.success:
        set_output(out, "conclusion", "success")
        if save_execution_file(result, settings.execution_file):
            set_output(out, "execution_file", settings.execution_file)
    else:
        set_output(out, "conclusion", "failure")
        if result.raw_output and save_execution_file(result, settings.execution_file):
            set_output(out, "execution_file", settings.execution_file)

    if identity.agent_id and not identity.conversation_id and letta_client:
        print("Conversation ID not in CLI output, fetching from API...")
        try:
            identity.conversation_id = letta_client.get_latest_conversation(identity.agent_id)
        except Exception as e:
            print(f"Warning: Failed to fetch conversation ID from API: {e}")

    if identity.agent_id:
        print(f"Agent ID: {identity.agent_id}")
        set_output(out, "agent_id", identity.agent_id)
    if identity.conversation_id:
        print(f"Conversation ID: {identity.conversation_id}")
        set_output(out, "conversation_id", identity.conversation_id)
    if identity.model:
        print(f"Model: {identity.model}")
        set_output(out, "model", identity.model)
