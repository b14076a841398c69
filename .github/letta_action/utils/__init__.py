# Letta Code Action Utilities
# Re-exports for convenient imports from utils package
from .agent_resolver import ResolvedIdentity, resolve_identity  # noqa: F401
from .comment_logic import CommentUpdateInput, update_comment_body  # noqa: F401
from .config import ActionSettings, load_settings  # noqa: F401
from .metadata import ResumptionRecord, format_metadata, parse_metadata  # noqa: F401
from .metadata import upsert_metadata  # noqa: F401
from .run_config import RunConfig, prepare_run_config  # noqa: F401
from .trigger_parser import ParsedTrigger, parse_trigger  # noqa: F401
