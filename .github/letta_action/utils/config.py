"""
Action settings, read once from the environment at process start.

Every component receives an ActionSettings instance instead of looking at
os.environ itself, so tests can build settings directly.
"""

import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TRIGGER_PHRASE = "@letta-code"
DEFAULT_LETTA_BASE_URL = "https://api.letta.com"
ADE_BASE_URL = "https://app.letta.com/agents"


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


def _int_or_none(value: Optional[str]) -> Optional[int]:
    value = (value or "").strip()
    return int(value) if value.isdigit() else None


class ActionSettings(BaseModel):
    """Configuration shared by the prepare, run and update steps."""

    model_config = ConfigDict(frozen=True)

    # GitHub
    github_token: Optional[str] = None
    repository: str = ""
    server_url: str = "https://github.com"
    run_id: str = ""
    runner_temp: str = Field(default="/tmp")
    github_output: Optional[str] = Field(default=None, description="Path of the step output file")
    event_name: str = ""
    event_path: Optional[str] = None
    actor: Optional[str] = None

    # Action inputs
    trigger_phrase: str = DEFAULT_TRIGGER_PHRASE
    agent_id: Optional[str] = Field(default=None, description="Configured agent to run")
    model: Optional[str] = None
    letta_args: str = ""
    path_to_letta_executable: str = "letta"
    show_full_output: Optional[str] = Field(default=None, description="'true', 'false' or unset")
    step_debug: bool = False
    prompt: str = ""
    prompt_file: str = ""
    action_inputs_present: Optional[str] = None

    # Letta API
    letta_api_key: Optional[str] = None
    letta_base_url: Optional[str] = None

    # Values handed from one step to the next
    comment_id: Optional[int] = None
    is_review_comment: bool = False
    thread_number: Optional[int] = None
    is_pr: bool = False
    entity_title: Optional[str] = None
    resolved_agent_id: Optional[str] = None
    resolved_conversation_id: Optional[str] = None
    create_new_conversation: bool = False
    is_followup: bool = False
    branch_name: Optional[str] = None
    base_branch: Optional[str] = None
    trigger_username: Optional[str] = None
    prepare_error: Optional[str] = None
    run_conclusion: Optional[str] = None
    run_agent_id: Optional[str] = None
    run_conversation_id: Optional[str] = None
    run_model: Optional[str] = None
    run_execution_file: Optional[str] = None

    @property
    def api_base_url(self) -> str:
        return (self.letta_base_url or DEFAULT_LETTA_BASE_URL).rstrip("/")

    @property
    def job_url(self) -> str:
        return f"{self.server_url}/{self.repository}/actions/runs/{self.run_id}"

    @property
    def full_output_enabled(self) -> bool:
        """Show the raw agent stream: explicit opt-in, or step debug unless opted out."""
        if self.show_full_output == "false":
            return False
        return self.show_full_output == "true" or self.step_debug

    @property
    def execution_file(self) -> str:
        return os.path.join(self.runner_temp, "letta-execution-output.json")

    @property
    def agent_info_file(self) -> str:
        return os.path.join(self.runner_temp, "letta-agent-info.json")


def load_settings(environ: Optional[Mapping[str, str]] = None) -> ActionSettings:
    """Build settings from an environment mapping (defaults to os.environ)."""
    env = os.environ if environ is None else environ

    def get(*names: str) -> Optional[str]:
        for name in names:
            value = env.get(name)
            if value:
                return value
        return None

    return ActionSettings(
        github_token=get("GITHUB_TOKEN", "OVERRIDE_GITHUB_TOKEN"),
        repository=get("GITHUB_REPOSITORY") or "",
        server_url=get("GITHUB_SERVER_URL") or "https://github.com",
        run_id=get("GITHUB_RUN_ID") or "",
        runner_temp=get("RUNNER_TEMP") or "/tmp",
        github_output=get("GITHUB_OUTPUT"),
        event_name=get("GITHUB_EVENT_NAME") or "",
        event_path=get("GITHUB_EVENT_PATH"),
        actor=get("GITHUB_ACTOR"),
        trigger_phrase=get("TRIGGER_PHRASE", "INPUT_TRIGGER_PHRASE") or DEFAULT_TRIGGER_PHRASE,
        agent_id=get("INPUT_AGENT_ID", "LETTA_AGENT_ID"),
        model=get("INPUT_MODEL", "LETTA_MODEL"),
        letta_args=get("INPUT_LETTA_ARGS", "LETTA_ARGS") or "",
        path_to_letta_executable=get("INPUT_PATH_TO_LETTA_EXECUTABLE") or "letta",
        show_full_output=get("INPUT_SHOW_FULL_OUTPUT"),
        step_debug=_flag(env.get("ACTIONS_STEP_DEBUG")),
        prompt=get("INPUT_PROMPT") or "",
        prompt_file=get("INPUT_PROMPT_FILE") or "",
        action_inputs_present=get("INPUT_ACTION_INPUTS_PRESENT"),
        letta_api_key=get("LETTA_API_KEY"),
        letta_base_url=get("LETTA_BASE_URL"),
        comment_id=_int_or_none(env.get("LETTA_COMMENT_ID")),
        is_review_comment=_flag(env.get("IS_REVIEW_COMMENT")),
        thread_number=_int_or_none(get("GITHUB_PR_NUMBER", "GITHUB_ISSUE_NUMBER")),
        is_pr=bool(get("GITHUB_PR_NUMBER")),
        entity_title=get("GITHUB_ENTITY_TITLE"),
        resolved_agent_id=get("RESOLVED_AGENT_ID"),
        resolved_conversation_id=get("RESOLVED_CONVERSATION_ID"),
        create_new_conversation=_flag(env.get("CREATE_NEW_CONVERSATION")),
        is_followup=_flag(env.get("IS_FOLLOWUP")),
        branch_name=get("LETTA_BRANCH"),
        base_branch=get("BASE_BRANCH"),
        trigger_username=get("TRIGGER_USERNAME"),
        prepare_error=get("PREPARE_ERROR"),
        run_conclusion=get("LETTA_CONCLUSION"),
        run_agent_id=get("LETTA_AGENT_ID_OUTPUT"),
        run_conversation_id=get("LETTA_CONVERSATION_ID_OUTPUT"),
        run_model=get("LETTA_MODEL_OUTPUT"),
        run_execution_file=get("LETTA_EXECUTION_FILE"),
    )


def validate_letta_environment(settings: ActionSettings) -> None:
    """Raise ValueError if the Letta endpoint cannot be used."""
    errors = []

    if not settings.letta_api_key and not settings.letta_base_url:
        errors.append("LETTA_API_KEY is required. Get one at https://app.letta.com/")

    if errors:
        details = "\n".join(f"  - {e}" for e in errors)
        raise ValueError(f"Environment variable validation failed:\n{details}")

    if settings.letta_base_url:
        suffix = "" if settings.letta_api_key else " (no API key provided)"
        print(f"Letta Base URL: {settings.letta_base_url}{suffix}")
    else:
        print(f"Using Letta Cloud ({DEFAULT_LETTA_BASE_URL})")
