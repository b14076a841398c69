"""Pytest configuration for Letta Code Action tests."""

import sys
from pathlib import Path

# Add .github directory to path so tests can import from letta_action.utils
github_dir = Path(__file__).parent / ".github"
sys.path.insert(0, str(github_dir))
