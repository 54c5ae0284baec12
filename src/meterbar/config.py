import os
from dataclasses import dataclass

from meterbar.credentials import DEFAULT_CLAUDE_CODE_CREDENTIALS_PATH
from meterbar.orchestrator import DEFAULT_FETCH_TIMEOUT_SECONDS
from meterbar.publication import DEFAULT_NAMESPACE
from meterbar.scheduler import DEFAULT_REFRESH_INTERVAL_SECONDS


def _env_float(name: "str", default: "float") -> "float":
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise SystemExit(f"{name} must be a number, got {raw!r}") from None


@dataclass
class Config:
    # listen_address: format ":9186" or "0.0.0.0:9186",
    # empty disables the metrics endpoint
    listen_address: "str" = ""
    # refresh interval in seconds
    refresh_interval: "int" = DEFAULT_REFRESH_INTERVAL_SECONDS
    fetch_timeout: "float" = DEFAULT_FETCH_TIMEOUT_SECONDS
    log_level: "str" = "info"
    log_format: "str" = "console"
    # run a single refresh cycle and exit
    once: "bool" = False
    # act as the out-of-process reader and print the published record
    read_published: "bool" = False

    cache_path: "str" = "~/.cache/meterbar/metrics.json"
    shared_dir: "str" = "~/.local/share/meterbar"
    publication_namespace: "str" = DEFAULT_NAMESPACE

    claude_admin_key: "str" = ""
    claude_weekly_token_budget: "float" = 0.0
    openai_admin_key: "str" = ""
    openai_org_id: "str" = ""
    openai_weekly_token_budget: "float" = 0.0
    claude_code_credentials_path: "str" = DEFAULT_CLAUDE_CODE_CREDENTIALS_PATH
    # overrides the known Cursor state database locations
    cursor_db_path: "str" = ""

    @classmethod
    def from_env(cls) -> "Config":
        defaults = cls()
        return cls(
            cache_path=os.environ.get("METERBAR_CACHE_PATH", defaults.cache_path),
            shared_dir=os.environ.get("METERBAR_SHARED_DIR", defaults.shared_dir),
            publication_namespace=os.environ.get(
                "METERBAR_NAMESPACE", defaults.publication_namespace
            ),
            claude_admin_key=os.environ.get("ANTHROPIC_ADMIN_KEY", ""),
            claude_weekly_token_budget=_env_float("CLAUDE_WEEKLY_TOKEN_BUDGET", 0.0),
            openai_admin_key=os.environ.get("OPENAI_ADMIN_KEY", ""),
            openai_org_id=os.environ.get("OPENAI_ORG_ID", ""),
            openai_weekly_token_budget=_env_float("OPENAI_WEEKLY_TOKEN_BUDGET", 0.0),
            claude_code_credentials_path=os.environ.get(
                "CLAUDE_CODE_CREDENTIALS_PATH",
                defaults.claude_code_credentials_path,
            ),
            cursor_db_path=os.environ.get("CURSOR_STATE_DB", ""),
        )

    @property
    def resolved_cache_path(self) -> "str":
        return os.path.expanduser(self.cache_path)

    @property
    def resolved_shared_dir(self) -> "str":
        return os.path.expanduser(self.shared_dir)
