import base64
import json
import os
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, Sequence

import structlog

from meterbar.models import Source

logger = structlog.get_logger()

DEFAULT_CLAUDE_CODE_CREDENTIALS_PATH = "~/.claude/.credentials.json"

# checked in order, the first existing database wins
DEFAULT_CURSOR_DB_PATHS: "tuple[str, ...]" = (
    "~/Library/Application Support/Cursor/User/globalStorage/state.vscdb",
    "~/Library/Application Support/Cursor/state.vscdb",
    "~/.config/Cursor/User/globalStorage/state.vscdb",
)

CURSOR_TOKEN_KEY = "cursorAuth/accessToken"


@dataclass(frozen=True)
class SourceCredentials:
    """
    SourceCredentials carries what a source client needs to
    authenticate. The secret is never logged.
    """

    secret: "str" = field(repr=False)
    # account identifier, e.g. the Cursor user id
    account: "str" = ""
    metadata: "dict[str, str]" = field(default_factory=dict)


class CredentialStore(Protocol):
    """
    CredentialStore reports which sources currently have usable
    credentials. Both calls must be side-effect-free.
    """

    def is_eligible(self, source: "Source") -> "bool": ...

    def credentials_for(self, source: "Source") -> "SourceCredentials | None": ...


def user_id_from_jwt(token: "str") -> "str | None":
    """
    extracts the user id from a JWT's `sub` claim. Auth0 style subjects
    ("auth0|user_123") are reduced to the part after the last '|'.
    """
    parts = token.split(".")
    if len(parts) < 2:
        return None

    payload = parts[1]
    payload += "=" * (-len(payload) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except ValueError:
        return None

    sub = claims.get("sub") if isinstance(claims, dict) else None
    if not isinstance(sub, str) or not sub:
        return None
    return sub.rsplit("|", 1)[-1]


class LocalCredentialStore:
    """
    LocalCredentialStore resolves credentials from configuration
    (admin API keys) and from the local state other applications
    leave behind (Claude Code's credentials file, Cursor's state
    database).
    """

    def __init__(
        self,
        claude_admin_key: "str" = "",
        openai_admin_key: "str" = "",
        openai_org_id: "str" = "",
        claude_code_credentials_path: "str" = DEFAULT_CLAUDE_CODE_CREDENTIALS_PATH,
        cursor_db_paths: "Sequence[str]" = DEFAULT_CURSOR_DB_PATHS,
    ) -> "None":
        self._claude_admin_key = claude_admin_key
        self._openai_admin_key = openai_admin_key
        self._openai_org_id = openai_org_id
        self._claude_code_path = os.path.expanduser(claude_code_credentials_path)
        self._cursor_db_paths = [os.path.expanduser(p) for p in cursor_db_paths]

    def is_eligible(self, source: "Source") -> "bool":
        return self.credentials_for(source) is not None

    def credentials_for(self, source: "Source") -> "SourceCredentials | None":
        if source is Source.CLAUDE:
            if not self._claude_admin_key:
                return None
            return SourceCredentials(secret=self._claude_admin_key)

        if source is Source.OPENAI:
            if not self._openai_admin_key:
                return None
            return SourceCredentials(
                secret=self._openai_admin_key,
                account=self._openai_org_id,
            )

        if source is Source.CLAUDE_CODE:
            return self._claude_code_credentials()

        if source is Source.CURSOR:
            return self._cursor_credentials()

        return None

    def _claude_code_credentials(self) -> "SourceCredentials | None":
        try:
            with open(self._claude_code_path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.debug(
                "claude_code_credentials_unreadable",
                path=self._claude_code_path,
                error=str(e),
            )
            return None

        oauth = data.get("claudeAiOauth") if isinstance(data, dict) else None
        if not isinstance(oauth, dict) or not oauth.get("accessToken"):
            return None

        metadata = {
            key: str(oauth[key])
            for key in ("subscriptionType", "rateLimitTier")
            if oauth.get(key)
        }
        return SourceCredentials(secret=str(oauth["accessToken"]), metadata=metadata)

    def cursor_db_path(self) -> "str | None":
        for path in self._cursor_db_paths:
            if os.path.exists(path):
                return path
        return None

    def _cursor_credentials(self) -> "SourceCredentials | None":
        db_path = self.cursor_db_path()
        if db_path is None:
            return None

        try:
            # read-only so a running Cursor instance is never disturbed
            uri = f"{Path(db_path).resolve().as_uri()}?mode=ro"
            conn = sqlite3.connect(uri, uri=True)
            try:
                row = conn.execute(
                    "SELECT value FROM ItemTable WHERE key = ?",
                    (CURSOR_TOKEN_KEY,),
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.debug("cursor_db_unreadable", path=db_path, error=str(e))
            return None

        if not row or not row[0]:
            return None

        token = str(row[0])
        user_id = user_id_from_jwt(token)
        if user_id is None:
            logger.debug("cursor_token_without_user", path=db_path)
            return None

        return SourceCredentials(secret=token, account=user_id)
