import time
from datetime import datetime, timezone

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

OPENAI_BASE_URL = "https://api.openai.com/v1/organization"

# usage is reported in daily buckets over a rolling week
_LOOKBACK_SECONDS = 7 * 24 * 3600


class OpenAIClient:
    """
    OpenAIClient implements the SourceClient protocol for OpenAI's
    organization usage API. Completion token usage over the last
    7 days is measured against a configured weekly token budget,
    with today's usage reported as the session window.
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
        return Source.OPENAI

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    async def fetch(self, credentials: "SourceCredentials") -> "MetricsSnapshot":
        end_time = int(time.time())
        start_time = end_time - _LOOKBACK_SECONDS
        daily = await self._fetch_daily_tokens(credentials, start_time, end_time)
        return MetricsSnapshot(
            source=self.source,
            windows=token_budget_windows(daily, self._weekly_budget),
        )

    async def _fetch_daily_tokens(
        self,
        credentials: "SourceCredentials",
        start_time: "int",
        end_time: "int",
    ) -> "list[tuple[datetime, float]]":
        """
        fetches completion usage in daily buckets, handling pagination.
        """
        headers: "dict[str, str]" = {"Authorization": f"Bearer {credentials.secret}"}
        if credentials.account:
            headers["OpenAI-Organization"] = credentials.account

        daily: "list[tuple[datetime, float]]" = []
        next_page = ""

        # while structure to handle pagination until no more
        # pages are available
        while True:
            url = (
                f"{OPENAI_BASE_URL}/usage/completions"
                f"?start_time={start_time}&end_time={end_time}"
                f"&bucket_width=1d&limit=7"
            )
            if next_page:
                url += f"&page={next_page}"

            logger.debug("openai_fetch_usage", url=url)
            resp = await self._client.get(url, headers=headers)
            check_response(resp, self.source)
            data = decode_json(resp, self.source)

            try:
                for bucket in data.get("data", []):
                    tokens = sum(
                        (result.get("input_tokens") or 0)
                        + (result.get("output_tokens") or 0)
                        for result in bucket.get("results", [])
                    )
                    bucket_end = datetime.fromtimestamp(
                        bucket["end_time"], tz=timezone.utc
                    )
                    daily.append((bucket_end, float(tokens)))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning("openai_unexpected_payload", error=str(e))
                raise FetchError(
                    ErrorKind.DECODE_FAILED,
                    f"unexpected usage payload: {e}",
                    self.source,
                ) from e

            next_page = data.get("next_page") or ""
            # break if there are no more pages to fetch
            if not data.get("has_more") or not next_page:
                break

        daily.sort(key=lambda item: item[0])
        logger.debug("openai_usage_done", buckets=len(daily))
        return daily
