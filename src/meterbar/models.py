from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

# percentage at which a window is reported as close to its limit
NEAR_LIMIT_PERCENTAGE = 80.0


class Source(str, Enum):
    """
    Source enumerates the tracked upstream quota providers. The raw
    values are persisted in the cache and the publication record, so
    they must never be renamed once shipped.
    """

    CLAUDE = "Claude"
    CLAUDE_CODE = "Claude Code"
    OPENAI = "OpenAI"
    CURSOR = "Cursor"

    @property
    def display_name(self) -> "str":
        return _DISPLAY_NAMES[self]

    @classmethod
    def parse(cls, value: "str") -> "Source | None":
        """
        returns the source for a persisted identifier, or None when
        the identifier is unknown to this build.
        """
        try:
            return cls(value)
        except ValueError:
            return None


_DISPLAY_NAMES: "dict[Source, str]" = {
    Source.CLAUDE: "Claude API",
    Source.CLAUDE_CODE: "Claude Code",
    Source.OPENAI: "OpenAI",
    Source.CURSOR: "Cursor",
}


class WindowStatus(str, Enum):
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True, slots=True)
class UsageWindow:
    """
    UsageWindow represents one bounded quota window for a source,
    e.g. a 5-hour session or a 7-day allowance.
    """

    used: "float"
    # may be a percentage base (100) when the upstream only
    # reports utilization
    total: "float"
    reset_time: "datetime | None" = None

    @property
    def percentage(self) -> "float":
        if self.total <= 0:
            return 0.0
        return min(max(self.used / self.total * 100.0, 0.0), 100.0)

    @property
    def remaining(self) -> "float":
        return max(0.0, min(self.total - self.used, self.total))

    @property
    def is_near_limit(self) -> "bool":
        return NEAR_LIMIT_PERCENTAGE <= self.percentage < 100.0

    @property
    def is_at_limit(self) -> "bool":
        return self.percentage >= 100.0

    @property
    def status(self) -> "WindowStatus":
        if self.is_at_limit:
            return WindowStatus.CRITICAL
        if self.is_near_limit:
            return WindowStatus.WARNING
        return WindowStatus.GOOD


def _utcnow() -> "datetime":
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MetricsSnapshot:
    """
    MetricsSnapshot is one source's set of usage windows at a point
    in time. Window names are source-specific ("session", "weekly",
    "weekly_sonnet", "monthly").
    """

    source: "Source"
    windows: "dict[str, UsageWindow]" = field(default_factory=dict)
    fetched_at: "datetime" = field(default_factory=_utcnow)

    def window(self, name: "str") -> "UsageWindow | None":
        return self.windows.get(name)

    @property
    def session_limit(self) -> "UsageWindow | None":
        return self.windows.get("session")

    @property
    def weekly_limit(self) -> "UsageWindow | None":
        return self.windows.get("weekly")

    def earliest_reset(self) -> "datetime | None":
        times = [w.reset_time for w in self.windows.values() if w.reset_time]
        return min(times) if times else None


# the full mapping of every source's latest known-good snapshot
Aggregate = dict[Source, MetricsSnapshot]
