import httpx
import pytest
import respx

from meterbar.credentials import SourceCredentials
from meterbar.errors import ErrorKind, FetchError
from meterbar.models import Source
from meterbar.provider.openai import OPENAI_BASE_URL, OpenAIClient

CREDENTIALS = SourceCredentials(secret="sk-admin", account="org-1")


def _bucket(end_time: "int", input_tokens: "int", output_tokens: "int") -> "dict":
    return {
        "start_time": end_time - 86400,
        "end_time": end_time,
        "results": [
            {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "num_model_requests": 1,
            }
        ],
    }


class TestOpenAIClientFetch:
    @pytest.mark.asyncio
    @respx.mock
    async def test_fetches_and_measures_against_budget(self) -> "None":
        route = respx.get(f"{OPENAI_BASE_URL}/usage/completions").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": [
                        _bucket(1_700_086_400, 60, 40),
                        _bucket(1_700_172_800, 50, 20),
                    ],
                    "has_more": False,
                },
            )
        )

        client = OpenAIClient(weekly_token_budget=700)
        snapshot = await client.fetch(CREDENTIALS)
        await client.close()

        assert snapshot.source is Source.OPENAI
        assert snapshot.weekly_limit.used == 170.0
        assert snapshot.session_limit.used == 70.0
        assert snapshot.session_limit.percentage == 70.0
        assert snapshot.session_limit.reset_time.timestamp() == 1_700_172_800

        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer sk-admin"
        assert request.headers["OpenAI-Organization"] == "org-1"
        assert request.url.params["bucket_width"] == "1d"

    @pytest.mark.asyncio
    @respx.mock
    async def test_handles_pagination(self) -> "None":
        route = respx.get(f"{OPENAI_BASE_URL}/usage/completions").mock(
            side_effect=[
                httpx.Response(
                    200,
                    json={
                        "data": [_bucket(1_700_086_400, 10, 5)],
                        "has_more": True,
                        "next_page": "page2",
                    },
                ),
                httpx.Response(
                    200,
                    json={
                        "data": [_bucket(1_700_172_800, 20, 10)],
                        "has_more": False,
                    },
                ),
            ]
        )

        client = OpenAIClient(weekly_token_budget=1000)
        snapshot = await client.fetch(CREDENTIALS)

        assert route.call_count == 2
        assert route.calls.last.request.url.params["page"] == "page2"
        assert snapshot.weekly_limit.used == 45.0
        assert snapshot.session_limit.used == 30.0

    @pytest.mark.asyncio
    @respx.mock
    async def test_has_more_without_cursor_stops(self) -> "None":
        route = respx.get(f"{OPENAI_BASE_URL}/usage/completions").mock(
            return_value=httpx.Response(200, json={"data": [], "has_more": True})
        )

        client = OpenAIClient()
        snapshot = await client.fetch(CREDENTIALS)

        assert route.call_count == 1
        assert "session" not in snapshot.windows
        assert snapshot.weekly_limit.percentage == 0.0

    @pytest.mark.asyncio
    @respx.mock
    async def test_unauthorized_is_not_authenticated(self) -> "None":
        respx.get(f"{OPENAI_BASE_URL}/usage/completions").mock(
            return_value=httpx.Response(401, json={"error": "invalid key"})
        )

        with pytest.raises(FetchError) as exc_info:
            await OpenAIClient().fetch(CREDENTIALS)
        assert exc_info.value.kind is ErrorKind.NOT_AUTHENTICATED

    @pytest.mark.asyncio
    @respx.mock
    async def test_unexpected_shape_is_decode_failed(self) -> "None":
        respx.get(f"{OPENAI_BASE_URL}/usage/completions").mock(
            return_value=httpx.Response(
                200, json={"data": [{"results": []}], "has_more": False}
            )
        )

        with pytest.raises(FetchError) as exc_info:
            await OpenAIClient().fetch(CREDENTIALS)
        assert exc_info.value.kind is ErrorKind.DECODE_FAILED
