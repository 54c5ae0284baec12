from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from meterbar.errors import FetchError
from meterbar.models import Aggregate


class RefreshMetrics:
    """
    exposes refresh cycle health and the latest per-window
    utilization as Prometheus metrics.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._fetch_duration: "Histogram" = Histogram(
            "meterbar_fetch_duration_seconds",
            "Duration of source fetches",
            ["source"],
            registry=registry,
        )
        self._fetch_errors: "Counter" = Counter(
            "meterbar_fetch_errors_total",
            "Total number of failed source fetches by source and error kind",
            ["source", "kind"],
            registry=registry,
        )
        self._last_fetch_success: "Gauge" = Gauge(
            "meterbar_last_fetch_success_timestamp_seconds",
            "Unix timestamp of the last successful fetch per source",
            ["source"],
            registry=registry,
        )
        self._window_utilization: "Gauge" = Gauge(
            "meterbar_window_utilization_percent",
            "Latest known utilization of each usage window",
            ["source", "window"],
            registry=registry,
        )
        # (source, window) label pairs currently exported
        self._utilization_labels: "set[tuple[str, str]]" = set()
        self._refresh_cycles: "Counter" = Counter(
            "meterbar_refresh_cycles_total",
            "Total number of completed refresh cycles",
            ["scope"],
            registry=registry,
        )

    def observe_fetch_duration(self, source: "str", duration_seconds: "float") -> "None":
        self._fetch_duration.labels(source=source).observe(duration_seconds)

    def inc_fetch_error(self, error: "FetchError") -> "None":
        source = error.source.value if error.source else "unknown"
        self._fetch_errors.labels(source=source, kind=error.kind.value).inc()

    def set_last_fetch_success(self, source: "str", timestamp: "float") -> "None":
        self._last_fetch_success.labels(source=source).set(timestamp)

    def inc_refresh_cycle(self, scope: "str") -> "None":
        self._refresh_cycles.labels(scope=scope).inc()

    def update_utilization(self, aggregate: "Aggregate") -> "None":
        """
        sets the utilization gauges from the aggregate. Cached windows
        keep reporting their last known value, windows no longer in the
        aggregate stop being exported.
        """
        labels: "set[tuple[str, str]]" = set()
        for source, snapshot in aggregate.items():
            for name, window in snapshot.windows.items():
                labels.add((source.value, name))
                self._window_utilization.labels(
                    source=source.value, window=name
                ).set(window.percentage)

        for source_value, name in self._utilization_labels - labels:
            self._window_utilization.remove(source_value, name)
        self._utilization_labels = labels
