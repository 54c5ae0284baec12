from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from meterbar.credentials import SourceCredentials
from meterbar.errors import ErrorKind, FetchError, classify_error
from meterbar.models import MetricsSnapshot, Source, UsageWindow
from meterbar.provider.base import body_excerpt, new_http_client

logger = structlog.get_logger()

# the OAuth usage endpoint has moved between conventions, each
# pattern is tried in order until one answers with usage data
USAGE_ENDPOINTS: "list[str]" = [
    "https://api.anthropic.com/v1/oauth/usage",
    "https://api.anthropic.com/api/v1/oauth/usage",
    "https://api.anthropic.com/api/oauth/usage",
    "https://api.anthropic.com/oauth/v1/usage",
]

OAUTH_BETA_HEADER = "oauth-2025-04-20"

# utilization is reported as a percentage
_PERCENT_BASE = 100.0

# (response key, window name, required)
_WINDOWS: "list[tuple[str, str, bool]]" = [
    ("five_hour", "session", True),
    ("seven_day", "weekly", True),
    ("seven_day_sonnet", "weekly_sonnet", False),
]


def _parse_reset(value: "Any") -> "datetime | None":
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_usage(data: "Any") -> "dict[str, UsageWindow]":
    """
    maps the OAuth usage payload onto named windows. Raises
    ValueError when a required window is missing.
    """
    if not isinstance(data, dict):
        raise ValueError("usage payload is not an object")

    windows: "dict[str, UsageWindow]" = {}
    for key, name, required in _WINDOWS:
        entry = data.get(key)
        if not isinstance(entry, dict):
            if required:
                raise ValueError(f"missing window {key!r}")
            continue

        windows[name] = UsageWindow(
            used=float(entry.get("utilization") or 0.0),
            total=_PERCENT_BASE,
            reset_time=_parse_reset(entry.get("resets_at")),
        )

    return windows


class ClaudeCodeClient:
    """
    ClaudeCodeClient reads the 5-hour session and 7-day limits of a
    Claude Code subscription from Anthropic's OAuth usage endpoint,
    authenticating with the token Claude Code itself stored locally.
    """

    def __init__(self, client: "httpx.AsyncClient | None" = None) -> "None":
        self._client: "httpx.AsyncClient" = client or new_http_client()

    @property
    def source(self) -> "Source":
        return Source.CLAUDE_CODE

    async def close(self) -> "None":
        await self._client.aclose()

    async def fetch(self, credentials: "SourceCredentials") -> "MetricsSnapshot":
        headers = {
            "Authorization": f"Bearer {credentials.secret}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "anthropic-beta": OAUTH_BETA_HEADER,
        }
        last_error: "FetchError | None" = None

        for endpoint in USAGE_ENDPOINTS:
            logger.debug("claude_code_try_endpoint", endpoint=endpoint)
            try:
                resp = await self._client.get(endpoint, headers=headers)
            except httpx.HTTPError as e:
                last_error = classify_error(e, self.source)
                logger.debug(
                    "claude_code_endpoint_unreachable",
                    endpoint=endpoint,
                    error=last_error.message,
                )
                continue

            if resp.status_code == 401:
                # a rejected token fails on every endpoint alike
                raise FetchError(
                    ErrorKind.NOT_AUTHENTICATED,
                    "OAuth token rejected (401)",
                    self.source,
                )

            if not resp.is_success:
                logger.debug(
                    "claude_code_endpoint_failed",
                    endpoint=endpoint,
                    status=resp.status_code,
                    body=body_excerpt(resp),
                )
                last_error = FetchError(
                    ErrorKind.REMOTE_REJECTED,
                    f"HTTP {resp.status_code} from {endpoint}",
                    self.source,
                )
                continue

            try:
                windows = parse_usage(resp.json())
            except (ValueError, TypeError) as e:
                # a 2xx that does not decode likely means the wrong endpoint
                logger.warning(
                    "claude_code_decode_failed",
                    endpoint=endpoint,
                    error=str(e),
                    body=body_excerpt(resp),
                )
                last_error = FetchError(
                    ErrorKind.DECODE_FAILED,
                    f"unexpected usage payload from {endpoint}",
                    self.source,
                )
                continue

            logger.debug("claude_code_usage_fetched", endpoint=endpoint)
            return MetricsSnapshot(source=self.source, windows=windows)

        logger.warning(
            "claude_code_all_endpoints_failed",
            tried=len(USAGE_ENDPOINTS),
        )
        if last_error is None:
            last_error = FetchError(
                ErrorKind.REMOTE_REJECTED, "no usage endpoint answered", self.source
            )
        raise last_error
