from datetime import datetime
from typing import Any, Protocol

import httpx
import structlog

from meterbar.credentials import SourceCredentials
from meterbar.errors import ErrorKind, FetchError, classify_status
from meterbar.models import MetricsSnapshot, Source, UsageWindow

logger = structlog.get_logger()

# per request bound, the orchestrator applies its own overall timeout
REQUEST_TIMEOUT_SECONDS = 30.0

# how much of an unexpected response body to keep in logs
_BODY_EXCERPT_CHARS = 500


class SourceClient(Protocol):
    """
    SourceClient stands as the common protocol all source clients
    must satisfy.

    A client turns the credentials of one source into a
    MetricsSnapshot, or raises FetchError. It keeps no state between
    calls apart from its HTTP connection pool.
    """

    @property
    def source(self) -> "Source": ...

    async def fetch(self, credentials: "SourceCredentials") -> "MetricsSnapshot": ...

    async def close(self) -> "None": ...


def new_http_client() -> "httpx.AsyncClient":
    return httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS)


def body_excerpt(resp: "httpx.Response") -> "str":
    return resp.text[:_BODY_EXCERPT_CHARS]


def check_response(resp: "httpx.Response", source: "Source") -> "None":
    """
    raises a classified FetchError for any non-2xx response.
    """
    if resp.is_success:
        return

    logger.debug(
        "source_http_error",
        source=source.value,
        status=resp.status_code,
        body=body_excerpt(resp),
    )
    raise FetchError(
        classify_status(resp.status_code),
        f"HTTP {resp.status_code} from {resp.request.url.host}",
        source,
    )


def decode_json(resp: "httpx.Response", source: "Source") -> "Any":
    """
    parses the body as JSON. The raw body is logged on failure to
    make shape changes upstream diagnosable.
    """
    try:
        return resp.json()
    except ValueError as e:
        logger.warning(
            "source_decode_failed",
            source=source.value,
            error=str(e),
            body=body_excerpt(resp),
        )
        raise FetchError(ErrorKind.DECODE_FAILED, "response is not JSON", source) from e


def token_budget_windows(
    daily_tokens: "list[tuple[datetime, float]]",
    weekly_budget: "float",
) -> "dict[str, UsageWindow]":
    """
    builds the "session" (latest day) and "weekly" (all days) windows
    from daily token totals, given as (bucket end, tokens) in time
    order. A zero budget yields windows that report 0%.
    """
    weekly_used = float(sum(tokens for _, tokens in daily_tokens))
    windows: "dict[str, UsageWindow]" = {
        "weekly": UsageWindow(used=weekly_used, total=weekly_budget),
    }

    if daily_tokens:
        day_end, day_used = daily_tokens[-1]
        windows["session"] = UsageWindow(
            used=day_used,
            total=weekly_budget / 7,
            reset_time=day_end,
        )

    return windows
