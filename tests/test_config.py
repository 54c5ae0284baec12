import pytest

from meterbar.cli import parse_args
from meterbar.config import Config
from meterbar.publication import DEFAULT_NAMESPACE
from meterbar.scheduler import DEFAULT_REFRESH_INTERVAL_SECONDS

ENV_VARS = [
    "METERBAR_CACHE_PATH",
    "METERBAR_SHARED_DIR",
    "METERBAR_NAMESPACE",
    "ANTHROPIC_ADMIN_KEY",
    "CLAUDE_WEEKLY_TOKEN_BUDGET",
    "OPENAI_ADMIN_KEY",
    "OPENAI_ORG_ID",
    "OPENAI_WEEKLY_TOKEN_BUDGET",
    "CLAUDE_CODE_CREDENTIALS_PATH",
    "CURSOR_STATE_DB",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: "pytest.MonkeyPatch") -> "None":
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestConfigFromEnv:
    def test_defaults(self) -> "None":
        config = Config.from_env()
        assert config.claude_admin_key == ""
        assert config.openai_admin_key == ""
        assert config.openai_weekly_token_budget == 0.0
        assert config.publication_namespace == DEFAULT_NAMESPACE
        assert config.refresh_interval == DEFAULT_REFRESH_INTERVAL_SECONDS

    def test_reads_env_vars(self, monkeypatch: "pytest.MonkeyPatch") -> "None":
        monkeypatch.setenv("ANTHROPIC_ADMIN_KEY", "sk-ant-admin")
        monkeypatch.setenv("OPENAI_ADMIN_KEY", "sk-admin")
        monkeypatch.setenv("OPENAI_ORG_ID", "org-abc")
        monkeypatch.setenv("OPENAI_WEEKLY_TOKEN_BUDGET", "2500000")
        monkeypatch.setenv("METERBAR_NAMESPACE", "group.test")
        monkeypatch.setenv("CURSOR_STATE_DB", "/tmp/state.vscdb")
        config = Config.from_env()
        assert config.claude_admin_key == "sk-ant-admin"
        assert config.openai_admin_key == "sk-admin"
        assert config.openai_org_id == "org-abc"
        assert config.openai_weekly_token_budget == 2500000.0
        assert config.publication_namespace == "group.test"
        assert config.cursor_db_path == "/tmp/state.vscdb"

    def test_invalid_budget_exits(self, monkeypatch: "pytest.MonkeyPatch") -> "None":
        monkeypatch.setenv("CLAUDE_WEEKLY_TOKEN_BUDGET", "lots")
        with pytest.raises(SystemExit):
            Config.from_env()

    def test_paths_expand_home(self, monkeypatch: "pytest.MonkeyPatch") -> "None":
        monkeypatch.setenv("HOME", "/home/tester")
        config = Config(cache_path="~/cache.json", shared_dir="~/shared")
        assert config.resolved_cache_path == "/home/tester/cache.json"
        assert config.resolved_shared_dir == "/home/tester/shared"


class TestParseArgs:
    def test_defaults(self) -> "None":
        config = parse_args([])
        assert config.listen_address == ""
        assert config.log_level == "info"
        assert config.log_format == "console"
        assert config.once is False
        assert config.read_published is False

    def test_flags(self) -> "None":
        config = parse_args(
            [
                "--web.listen-address",
                ":9186",
                "--refresh.interval",
                "60",
                "--fetch.timeout",
                "5",
                "--log.format",
                "json",
                "--once",
            ]
        )
        assert config.listen_address == ":9186"
        assert config.refresh_interval == 60
        assert config.fetch_timeout == 5.0
        assert config.log_format == "json"
        assert config.once is True

    def test_non_positive_interval_is_rejected(self) -> "None":
        with pytest.raises(SystemExit):
            parse_args(["--refresh.interval", "0"])

    def test_once_and_read_published_are_exclusive(self) -> "None":
        with pytest.raises(SystemExit):
            parse_args(["--once", "--read-published"])
