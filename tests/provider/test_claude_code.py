import httpx
import pytest
import respx

from meterbar.credentials import SourceCredentials
from meterbar.errors import ErrorKind, FetchError
from meterbar.models import Source, WindowStatus
from meterbar.provider.claude_code import (
    OAUTH_BETA_HEADER,
    USAGE_ENDPOINTS,
    ClaudeCodeClient,
    parse_usage,
)

CREDENTIALS = SourceCredentials(secret="oauth-token")

USAGE = {
    "five_hour": {"utilization": 42.0, "resets_at": "2026-03-01T17:00:00Z"},
    "seven_day": {"utilization": 85.0, "resets_at": "2026-03-05T09:00:00Z"},
    "seven_day_sonnet": {"utilization": 12.5, "resets_at": None},
}


class TestParseUsage:
    def test_maps_windows(self) -> "None":
        windows = parse_usage(USAGE)
        assert windows["session"].percentage == 42.0
        assert windows["session"].reset_time.hour == 17
        assert windows["weekly"].status is WindowStatus.WARNING
        assert windows["weekly_sonnet"].reset_time is None

    def test_optional_window_may_be_missing(self) -> "None":
        windows = parse_usage(
            {"five_hour": {"utilization": None}, "seven_day": {"utilization": 1}}
        )
        assert windows["session"].used == 0.0
        assert "weekly_sonnet" not in windows

    def test_required_window_missing(self) -> "None":
        with pytest.raises(ValueError):
            parse_usage({"five_hour": {"utilization": 1}})


class TestClaudeCodeClientFetch:
    @pytest.mark.asyncio
    @respx.mock
    async def test_first_endpoint_answers(self) -> "None":
        route = respx.get(USAGE_ENDPOINTS[0]).mock(
            return_value=httpx.Response(200, json=USAGE)
        )

        client = ClaudeCodeClient()
        snapshot = await client.fetch(CREDENTIALS)
        await client.close()

        assert snapshot.source is Source.CLAUDE_CODE
        assert snapshot.session_limit.percentage == 42.0
        assert snapshot.weekly_limit.percentage == 85.0

        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer oauth-token"
        assert request.headers["anthropic-beta"] == OAUTH_BETA_HEADER

    @pytest.mark.asyncio
    @respx.mock
    async def test_falls_through_to_next_endpoint(self) -> "None":
        respx.get(USAGE_ENDPOINTS[0]).mock(return_value=httpx.Response(404))
        respx.get(USAGE_ENDPOINTS[1]).mock(
            return_value=httpx.Response(200, text="not json")
        )
        respx.get(USAGE_ENDPOINTS[2]).mock(
            side_effect=httpx.ConnectError("connection refused")
        )
        respx.get(USAGE_ENDPOINTS[3]).mock(
            return_value=httpx.Response(200, json=USAGE)
        )

        snapshot = await ClaudeCodeClient().fetch(CREDENTIALS)
        assert snapshot.session_limit.percentage == 42.0

    @pytest.mark.asyncio
    @respx.mock
    async def test_unauthorized_stops_immediately(self) -> "None":
        first = respx.get(USAGE_ENDPOINTS[0]).mock(return_value=httpx.Response(401))

        with pytest.raises(FetchError) as exc_info:
            await ClaudeCodeClient().fetch(CREDENTIALS)

        assert exc_info.value.kind is ErrorKind.NOT_AUTHENTICATED
        assert first.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_all_endpoints_failing_raises_last_error(self) -> "None":
        for endpoint in USAGE_ENDPOINTS[:-1]:
            respx.get(endpoint).mock(return_value=httpx.Response(404))
        respx.get(USAGE_ENDPOINTS[-1]).mock(
            side_effect=httpx.ConnectTimeout("timed out")
        )

        with pytest.raises(FetchError) as exc_info:
            await ClaudeCodeClient().fetch(CREDENTIALS)
        assert exc_info.value.kind is ErrorKind.TRANSIENT_NETWORK
        assert exc_info.value.source is Source.CLAUDE_CODE
