import pytest
from prometheus_client import CollectorRegistry

from meterbar.cache import MetricsCache
from meterbar.publication import SharedPublicationStore


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def cache(tmp_path: "object") -> "MetricsCache":
    return MetricsCache(str(tmp_path / "cache" / "metrics.json"))


@pytest.fixture()
def publication(tmp_path: "object") -> "SharedPublicationStore":
    return SharedPublicationStore(str(tmp_path / "shared"))
