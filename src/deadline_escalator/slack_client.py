"""Minimal Slack Web API client used by the ``slack`` action.

Stdlib-only (urllib). Configured from SLACK_BOT_TOKEN and
SLACK_DEFAULT_CHANNEL; ``from_env_optional`` returns None when the token
is missing so the action can skip quietly.
"""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

SLACK_API_BASE = "https://slack.com/api"


class SlackAPIError(Exception):
    """Error communicating with the Slack Web API."""

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.error_code = error_code


@dataclass
class SlackClient:
    """Client for posting escalation messages.

    Args:
        bot_token: Bot User OAuth Token (xoxb-...).
        default_channel: Channel ID used when a call names none.
        timeout: Seconds before an HTTP request is abandoned.
    """

    bot_token: str
    default_channel: str = ""
    timeout: float = 10.0

    @classmethod
    def from_env(cls) -> SlackClient:
        """Create a client from the environment.

        Raises:
            SlackAPIError: If SLACK_BOT_TOKEN is not set.
        """
        client = cls.from_env_optional()
        if client is None:
            raise SlackAPIError("SLACK_BOT_TOKEN not set in environment")
        return client

    @classmethod
    def from_env_optional(cls) -> SlackClient | None:
        """Create a client from the environment, or None when unconfigured."""
        token = os.environ.get("SLACK_BOT_TOKEN", "")
        if not token:
            return None
        return cls(
            bot_token=token,
            default_channel=os.environ.get("SLACK_DEFAULT_CHANNEL", ""),
        )

    def _request(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """POST *params* as JSON to a Slack API method.

        Raises:
            SlackAPIError: On HTTP errors or Slack API errors (ok=false).
        """
        url = f"{SLACK_API_BASE}/{method}"
        headers = {
            "Authorization": f"Bearer {self.bot_token}",
            "Content-Type": "application/json; charset=utf-8",
        }
        body = json.dumps(params).encode("utf-8")
        req = urllib.request.Request(url, data=body, headers=headers, method="POST")

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                data = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            raw = exc.read().decode("utf-8", errors="replace")
            raise SlackAPIError(f"{method} -> HTTP {exc.code}: {raw}") from exc
        except urllib.error.URLError as exc:
            raise SlackAPIError(f"{method} -> Connection failed: {exc.reason}") from exc

        if not data.get("ok"):
            error = data.get("error", "unknown_error")
            raise SlackAPIError(f"{method} -> Slack error: {error}", error_code=error)
        return data

    def post_message(self, text: str, channel: str = "") -> dict[str, Any]:
        """Post *text* to *channel* (or the default channel).

        Raises:
            SlackAPIError: If no channel is available or the call fails.
        """
        ch = channel or self.default_channel
        if not ch:
            raise SlackAPIError(
                "No channel specified and no default_channel configured"
            )
        return self._request("chat.postMessage", {"channel": ch, "text": text})
