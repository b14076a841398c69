"""
Letta REST API client.

Only used for best-effort extras: the agent's display name, labelling a
conversation with its GitHub context, and finding the latest conversation
when the CLI did not report one. Failures print a warning and return None.
"""

from typing import Any, Dict, Literal, Optional

import requests

from .config import ActionSettings

MAX_SUMMARY_TITLE_LENGTH = 150


class LettaClient:
    """Thin wrapper around requests for the Letta API."""

    # (connect, read) seconds
    TIMEOUT = (10, 30)

    def __init__(self, base_url: str, api_key: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    @classmethod
    def from_settings(cls, settings: ActionSettings) -> "LettaClient":
        return cls(settings.api_base_url, settings.letta_api_key)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _request(self, method: str, path: str, **kwargs) -> Optional[Any]:
        if not self.api_key:
            print(f"Warning: LETTA_API_KEY not set, skipping {method} {path}")
            return None

        url = f"{self.base_url}{path}"
        try:
            response = requests.request(
                method, url, headers=self._headers(), timeout=self.TIMEOUT, **kwargs
            )
        except requests.RequestException as e:
            print(f"Warning: Letta API request failed ({method} {path}): {e}")
            return None

        if not response.ok:
            print(f"Warning: Letta API {method} {path} returned {response.status_code}: {response.text}")
            return None

        try:
            return response.json()
        except ValueError:
            print(f"Warning: Letta API {method} {path} returned invalid JSON")
            return None

    def get_agent_info(self, agent_id: str) -> Optional[Dict[str, Any]]:
        """Get agent details (id, name)."""
        return self._request("GET", f"/v1/agents/{agent_id}")

    def get_latest_conversation(self, agent_id: str) -> Optional[str]:
        """Return the agent's most recent conversation ID."""
        data = self._request(
            "GET",
            "/v1/conversations/",
            params={"agent_id": agent_id, "limit": 1, "order": "desc"},
        )
        if isinstance(data, list) and data and data[0].get("id"):
            conversation_id = data[0]["id"]
            print(f"Found latest conversation for agent: {conversation_id}")
            return conversation_id
        return None

    def update_conversation_summary(self, conversation_id: str, summary: str) -> Optional[Dict[str, Any]]:
        """Set a conversation's summary/label."""
        data = self._request(
            "PATCH", f"/v1/conversations/{conversation_id}", json={"summary": summary}
        )
        if data is not None:
            print(f"Updated conversation {conversation_id} with summary: {summary}")
        return data


def build_conversation_summary(
    entity_type: Literal["PR", "Issue"],
    entity_number: int,
    repository: str,
    title: Optional[str] = None,
) -> str:
    """Label for a conversation, e.g. 'owner/repo PR #12: Fix the thing'."""
    prefix = f"{repository} {entity_type} #{entity_number}"
    if not title:
        return prefix
    if len(title) > MAX_SUMMARY_TITLE_LENGTH:
        title = title[: MAX_SUMMARY_TITLE_LENGTH - 3] + "..."
    return f"{prefix}: {title}"
