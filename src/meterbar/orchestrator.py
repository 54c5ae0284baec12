import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Mapping

import structlog

from meterbar.cache import MetricsCache
from meterbar.credentials import CredentialStore
from meterbar.errors import ErrorKind, FetchError, classify_error
from meterbar.metrics import RefreshMetrics
from meterbar.models import Aggregate, MetricsSnapshot, Source
from meterbar.provider.base import SourceClient
from meterbar.publication import SharedPublicationStore
from meterbar.scheduler import Scheduler

logger = structlog.get_logger()

# overall bound on a single source fetch, on top of the
# per request timeout of the clients
DEFAULT_FETCH_TIMEOUT_SECONDS = 60.0

Subscriber = Callable[[Aggregate], None]


class SourceStatus(str, Enum):
    # fresh data from the last attempt
    OK = "ok"
    # cached data is shown but the last attempt failed
    STALE = "stale"
    # credentials exist but no data has been fetched yet
    UNAVAILABLE = "unavailable"
    # no credentials and nothing cached
    NOT_CONFIGURED = "not_configured"


@dataclass(frozen=True)
class _Outcome:
    source: "Source"
    snapshot: "MetricsSnapshot | None" = None
    error: "FetchError | None" = None


class RefreshOrchestrator:
    """
    RefreshOrchestrator keeps the Aggregate of all sources current.

    Each cycle checks eligibility, fetches every eligible source
    concurrently, and merges the results: a success replaces the
    source's entry, a failure keeps whatever was cached before and
    only records the error. Once all sources resolved, the aggregate
    is saved to the cache, published for out-of-process readers and
    handed to subscribers, all in one step guarded by a lock so
    overlapping cycles never interleave.
    """

    def __init__(
        self,
        clients: "Mapping[Source, SourceClient]",
        credentials: "CredentialStore",
        cache: "MetricsCache",
        publication: "SharedPublicationStore",
        metrics: "RefreshMetrics | None" = None,
        fetch_timeout_seconds: "float" = DEFAULT_FETCH_TIMEOUT_SECONDS,
    ) -> "None":
        self._clients: "dict[Source, SourceClient]" = dict(clients)
        self._credentials = credentials
        self._cache = cache
        self._publication = publication
        self._metrics = metrics
        self._fetch_timeout = fetch_timeout_seconds

        self._aggregate: "Aggregate" = cache.load()
        self._errors: "dict[Source, FetchError]" = {}
        self._last_error: "FetchError | None" = None
        self._lock: "asyncio.Lock" = asyncio.Lock()
        self._in_flight = 0
        self._subscribers: "list[Subscriber]" = []

        logger.info("orchestrator_ready", cached_sources=len(self._aggregate))

    # consumer-facing read API

    def current_aggregate(self) -> "Aggregate":
        return dict(self._aggregate)

    def last_error(self) -> "FetchError | None":
        """
        most recent fetch error, diagnostic only. The cached data per
        source stays authoritative for display.
        """
        return self._last_error

    def is_refreshing(self) -> "bool":
        return self._in_flight > 0

    def source_error(self, source: "Source") -> "FetchError | None":
        return self._errors.get(source)

    def source_status(self, source: "Source") -> "SourceStatus":
        if source in self._aggregate:
            if source in self._errors:
                return SourceStatus.STALE
            return SourceStatus.OK

        if source in self._clients and self._credentials.is_eligible(source):
            return SourceStatus.UNAVAILABLE
        return SourceStatus.NOT_CONFIGURED

    def next_reset_time(self) -> "datetime | None":
        """
        earliest reset across every cached window.
        """
        times = [
            reset
            for snapshot in self._aggregate.values()
            if (reset := snapshot.earliest_reset()) is not None
        ]
        return min(times) if times else None

    def subscribe(self, callback: "Subscriber") -> "Callable[[], None]":
        """
        registers a callback fired once per completed refresh cycle
        with the new aggregate. Returns a function that unsubscribes.
        """
        self._subscribers.append(callback)

        def _unsubscribe() -> "None":
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    # refresh cycles

    async def refresh_all(self) -> "Aggregate":
        """
        refreshes every registered source. Ineligible sources keep
        their cached entry and report no error.
        """
        self._in_flight += 1
        try:
            logger.info("refresh_cycle_start", sources=len(self._clients))
            outcomes = await asyncio.gather(
                *(
                    self._refresh_source(source, explicit=False)
                    for source in self._clients
                )
            )
            aggregate = await self._merge_and_publish(outcomes)
        finally:
            self._in_flight -= 1

        if self._metrics is not None:
            self._metrics.inc_refresh_cycle("all")
        logger.info(
            "refresh_cycle_end",
            sources=len(aggregate),
            failed=sum(1 for o in outcomes if o.error is not None),
        )
        self._notify_subscribers(aggregate)
        return aggregate

    async def refresh(self, source: "Source") -> "Aggregate":
        """
        refreshes a single source on explicit request. A failure
        keeps the cached entry visible and sets the error; an
        ineligible source is reported as not authenticated.
        """
        if source not in self._clients:
            raise KeyError(f"no client registered for {source.value}")

        self._in_flight += 1
        try:
            outcome = await self._refresh_source(source, explicit=True)
            aggregate = await self._merge_and_publish([outcome])
        finally:
            self._in_flight -= 1

        if self._metrics is not None:
            self._metrics.inc_refresh_cycle("single")
        self._notify_subscribers(aggregate)
        return aggregate

    async def clear(self, source: "Source") -> "Aggregate":
        """
        explicitly drops a source's cached entry.
        """
        async with self._lock:
            self._aggregate.pop(source, None)
            self._errors.pop(source, None)
            aggregate = await self._publish()

        logger.info("source_cleared", source=source.value)
        self._notify_subscribers(aggregate)
        return aggregate

    async def reset(self) -> "None":
        """
        explicit user reset: forgets all data and deletes both the
        cache and the publication record.
        """
        async with self._lock:
            self._aggregate.clear()
            self._errors.clear()
            self._last_error = None
            await asyncio.to_thread(self._cache.clear)
            await asyncio.to_thread(self._publication.clear)
            if self._metrics is not None:
                self._metrics.update_utilization({})

        logger.info("orchestrator_reset")
        self._notify_subscribers({})

    async def run(self, scheduler: "Scheduler") -> "None":
        """
        runs refresh_all() on every scheduler tick until the scheduler
        stops.
        """
        async for _ in scheduler.ticks():
            await self.refresh_all()

    async def close(self) -> "None":
        """
        closes all source clients.
        """
        for client in self._clients.values():
            await client.close()

    # internals

    async def _refresh_source(self, source: "Source", explicit: "bool") -> "_Outcome":
        """
        resolves one source to a snapshot or a classified error. Never
        raises, so one source can not abort the others.
        """
        # credential stores read local files, keep them off the loop
        try:
            credentials = await asyncio.to_thread(
                self._credentials.credentials_for, source
            )
        except Exception as e:
            error = classify_error(e, source)
            logger.warning(
                "credentials_lookup_failed",
                source=source.value,
                kind=error.kind.value,
                error=error.message,
            )
            if self._metrics is not None:
                self._metrics.inc_fetch_error(error)
            return _Outcome(source, error=error)

        if credentials is None:
            if not explicit:
                logger.debug("source_not_configured", source=source.value)
                return _Outcome(source)
            return _Outcome(
                source,
                error=FetchError(
                    ErrorKind.NOT_AUTHENTICATED, "no credentials configured", source
                ),
            )

        client = self._clients[source]
        fetch_start = time.monotonic()
        try:
            snapshot = await asyncio.wait_for(
                client.fetch(credentials), timeout=self._fetch_timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = classify_error(e, source)
            logger.warning(
                "source_fetch_failed",
                source=source.value,
                kind=error.kind.value,
                error=error.message,
            )
            if self._metrics is not None:
                self._metrics.inc_fetch_error(error)
            return _Outcome(source, error=error)
        finally:
            if self._metrics is not None:
                self._metrics.observe_fetch_duration(
                    source.value, time.monotonic() - fetch_start
                )

        if self._metrics is not None:
            self._metrics.set_last_fetch_success(source.value, time.time())
        logger.debug("source_fetched", source=source.value, windows=len(snapshot.windows))
        return _Outcome(source, snapshot=snapshot)

    def _merge(self, outcome: "_Outcome") -> "None":
        source = outcome.source
        if outcome.snapshot is not None:
            self._aggregate[source] = outcome.snapshot
            self._errors.pop(source, None)
            return

        if outcome.error is None:
            # not configured, cached data stays until explicitly cleared
            self._errors.pop(source, None)
            return

        self._errors[source] = outcome.error
        self._last_error = outcome.error
        if source in self._aggregate:
            logger.info("using_cached_metrics", source=source.value)

    async def _merge_and_publish(self, outcomes: "list[_Outcome]") -> "Aggregate":
        async with self._lock:
            self._last_error = None
            for outcome in outcomes:
                self._merge(outcome)
            return await self._publish()

    async def _publish(self) -> "Aggregate":
        """
        persists the aggregate to the cache and the publication store
        and signals readers. Must be called with the lock held. Write
        failures are logged, the in-memory aggregate stays
        authoritative.
        """
        aggregate = dict(self._aggregate)

        try:
            await asyncio.to_thread(self._cache.save, aggregate)
        except Exception:
            logger.exception("cache_save_failed", path=self._cache.path)

        try:
            await asyncio.to_thread(self._publication.publish, aggregate)
        except Exception:
            logger.exception("publish_failed", path=self._publication.record_path)
        else:
            await asyncio.to_thread(self._publication.notify)

        if self._metrics is not None:
            self._metrics.update_utilization(aggregate)
        return aggregate

    def _notify_subscribers(self, aggregate: "Aggregate") -> "None":
        for callback in list(self._subscribers):
            try:
                callback(dict(aggregate))
            except Exception:
                logger.exception("subscriber_failed")
