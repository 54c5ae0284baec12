from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from meterbar.credentials import SourceCredentials
from meterbar.errors import ErrorKind, FetchError
from meterbar.models import MetricsSnapshot, Source, UsageWindow
from meterbar.provider.base import check_response, decode_json, new_http_client

logger = structlog.get_logger()

CURSOR_USAGE_URL = "https://cursor.com/api/usage"

# premium requests are accounted under this model key
PREMIUM_MODEL_KEY = "gpt-4"


def add_month(value: "datetime") -> "datetime":
    """
    returns the same instant one calendar month later, clamping the
    day to the length of the target month.
    """
    year = value.year + value.month // 12
    month = value.month % 12 + 1
    # first day of the month after the target month, minus one day
    next_year = year + month // 12
    next_month = month % 12 + 1
    last_day = (datetime(next_year, next_month, 1) - datetime(year, month, 1)).days
    return value.replace(year=year, month=month, day=min(value.day, last_day))


def parse_usage(data: "Any") -> "dict[str, UsageWindow]":
    """
    maps the Cursor usage payload onto the "monthly" premium request
    window. Raises ValueError when the premium model entry is missing.
    """
    if not isinstance(data, dict):
        raise ValueError("usage payload is not an object")

    premium = data.get(PREMIUM_MODEL_KEY)
    if not isinstance(premium, dict):
        raise ValueError(f"missing model entry {PREMIUM_MODEL_KEY!r}")

    reset_time = None
    start_of_month = data.get("startOfMonth")
    if start_of_month:
        start = datetime.fromisoformat(str(start_of_month).replace("Z", "+00:00"))
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        reset_time = add_month(start)

    return {
        "monthly": UsageWindow(
            used=float(premium.get("numRequests") or 0),
            # no cap reported means usage-based pricing, shown as 0%
            total=float(premium.get("maxRequestUsage") or 0),
            reset_time=reset_time,
        )
    }


class CursorClient:
    """
    CursorClient reads monthly premium request usage from Cursor's
    web API, authenticating with the session token found in Cursor's
    local state database.
    """

    def __init__(self, client: "httpx.AsyncClient | None" = None) -> "None":
        self._client: "httpx.AsyncClient" = client or new_http_client()

    @property
    def source(self) -> "Source":
        return Source.CURSOR

    async def close(self) -> "None":
        await self._client.aclose()

    async def fetch(self, credentials: "SourceCredentials") -> "MetricsSnapshot":
        if not credentials.account:
            raise FetchError(
                ErrorKind.NOT_AUTHENTICATED, "no Cursor user id", self.source
            )

        cookie = f"{credentials.account}%3A%3A{credentials.secret}"
        resp = await self._client.get(
            CURSOR_USAGE_URL,
            params={"user": credentials.account},
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Cookie": f"WorkosCursorSessionToken={cookie}",
            },
        )
        check_response(resp, self.source)
        data = decode_json(resp, self.source)

        try:
            windows = parse_usage(data)
        except (TypeError, ValueError) as e:
            logger.warning("cursor_unexpected_payload", error=str(e))
            raise FetchError(ErrorKind.DECODE_FAILED, str(e), self.source) from e

        return MetricsSnapshot(source=self.source, windows=windows)
