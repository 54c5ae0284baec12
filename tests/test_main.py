from datetime import datetime, timezone

from meterbar.__main__ import (
    _parse_listen_address,
    build_clients,
    build_credential_store,
    format_aggregate,
)
from meterbar.config import Config
from meterbar.models import MetricsSnapshot, Source, UsageWindow


class TestParseListenAddress:
    def test_port_only(self) -> "None":
        assert _parse_listen_address(":9186") == ("0.0.0.0", 9186)

    def test_host_and_port(self) -> "None":
        assert _parse_listen_address("127.0.0.1:9100") == ("127.0.0.1", 9100)


class TestBuildRegistry:
    def test_every_source_has_a_client(self) -> "None":
        clients = build_clients(Config())
        assert set(clients) == set(Source)
        for source, client in clients.items():
            assert client.source is source

    def test_cursor_db_override(self, tmp_path: "object") -> "None":
        store = build_credential_store(
            Config(cursor_db_path=str(tmp_path / "state.vscdb"))
        )
        assert store.cursor_db_path() is None
        assert store.is_eligible(Source.CURSOR) is False


class TestFormatAggregate:
    def test_lists_every_source(self) -> "None":
        lines = format_aggregate(
            {
                Source.OPENAI: MetricsSnapshot(
                    source=Source.OPENAI,
                    windows={
                        "session": UsageWindow(
                            85, 100, datetime(2026, 3, 2, tzinfo=timezone.utc)
                        )
                    },
                )
            }
        )

        assert len(lines) == len(Source)
        openai_line = next(line for line in lines if line.startswith("OpenAI"))
        assert "85.0%" in openai_line
        assert "warning" in openai_line
        assert "2026-03-02T00:00:00+00:00" in openai_line
        assert any(
            line.startswith("Cursor") and "no data" in line for line in lines
        )
