from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import structlog

from meterbar.credentials import SourceCredentials
from meterbar.errors import ErrorKind, FetchError
from meterbar.models import MetricsSnapshot, Source
from meterbar.provider.base import (
    check_response,
    decode_json,
    new_http_client,
    token_budget_windows,
)

logger = structlog.get_logger()

USAGE_REPORT_URL = "https://api.anthropic.com/v1/organizations/usage_report/messages"
ANTHROPIC_VERSION = "2023-06-01"

_LOOKBACK = timedelta(days=7)

# token fields of a usage report result, summed into one total
_TOKEN_FIELDS: "tuple[str, ...]" = (
    "input_tokens",
    "uncached_input_tokens",
    "cache_read_input_tokens",
    "output_tokens",
)


def _bucket_tokens(bucket: "dict[str, Any]") -> "float":
    # results are nested per group when grouping is requested,
    # otherwise the bucket carries the counters itself
    results = bucket.get("results")
    if results is None:
        results = [bucket]

    total = 0.0
    for result in results:
        for name in _TOKEN_FIELDS:
            total += float(result.get(name) or 0)
    return total


def _parse_time(value: "Any") -> "datetime":
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ClaudeClient:
    """
    ClaudeClient reads organization token usage from the Anthropic
    Admin usage report API and measures it against a configured
    weekly token budget.
    """

    def __init__(
        self,
        weekly_token_budget: "float" = 0.0,
        client: "httpx.AsyncClient | None" = None,
    ) -> "None":
        self._weekly_budget = weekly_token_budget
        self._client: "httpx.AsyncClient" = client or new_http_client()

    @property
    def source(self) -> "Source":
        return Source.CLAUDE

    async def close(self) -> "None":
        await self._client.aclose()

    async def fetch(self, credentials: "SourceCredentials") -> "MetricsSnapshot":
        ending_at = datetime.now(timezone.utc).replace(microsecond=0)
        starting_at = ending_at - _LOOKBACK
        headers = {
            "x-api-key": credentials.secret,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

        daily: "list[tuple[datetime, float]]" = []
        next_page = ""

        while True:
            params: "dict[str, str]" = {
                "starting_at": starting_at.isoformat().replace("+00:00", "Z"),
                "ending_at": ending_at.isoformat().replace("+00:00", "Z"),
                "bucket_width": "1d",
            }
            if next_page:
                params["page"] = next_page

            resp = await self._client.get(USAGE_REPORT_URL, params=params, headers=headers)
            check_response(resp, self.source)
            data = decode_json(resp, self.source)

            try:
                for bucket in data.get("data", []):
                    bucket_end = _parse_time(bucket.get("ending_at") or ending_at)
                    daily.append((bucket_end, _bucket_tokens(bucket)))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning("claude_unexpected_payload", error=str(e))
                raise FetchError(
                    ErrorKind.DECODE_FAILED,
                    f"unexpected usage report payload: {e}",
                    self.source,
                ) from e

            next_page = data.get("next_page") or ""
            if not data.get("has_more") or not next_page:
                break

        daily.sort(key=lambda item: item[0])
        logger.debug("claude_usage_done", buckets=len(daily))
        return MetricsSnapshot(
            source=self.source,
            windows=token_budget_windows(daily, self._weekly_budget),
        )
