"""
Data Orchestrator.

Coordinates every dataset kind through the fallback chain
cache → live adapter → stale cache → fallback source, stamps results
with source/confidence/freshness metadata and schedules auto-refresh.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Union

from netatlas.clients.cloudflare_radar import CloudflareRadarAdapter
from netatlas.clients.fallback_source import FALLBACK_CONFIDENCE, FallbackDataSource
from netatlas.clients.peeringdb import PeeringDBAdapter
from netatlas.clients.telegeography import TeleGeographyAdapter
from netatlas.config import CacheConfig, OrchestratorConfig
from netatlas.normalizer.schemas import (
    AttemptStage,
    DataResult,
    DatasetKind,
    Freshness,
    InfrastructureSnapshot,
    QueryParams,
    ResultSource,
    SourceAttempt,
)
from netatlas.orchestrator.cache_manager import CacheEntry, MemoryCache, PersistentCache, TieredCache
from netatlas.orchestrator.deduplicator import RequestDeduplicator
from netatlas.orchestrator.events import EventChannel
from netatlas.orchestrator.invalidation import InvalidationStrategy, build_cache_key
from netatlas.orchestrator.scheduler import RefreshScheduler
from netatlas.utils.exceptions import CacheError, FallbackExhaustedError
from netatlas.utils.logger import get_fallback_logger

logger = logging.getLogger(__name__)
fallback_logger = get_fallback_logger()

STALE_CONFIDENCE_PENALTY = 0.2
STALE_CONFIDENCE_FLOOR = 0.4

Options = Optional[Union[Mapping[str, Any], QueryParams]]

# Live adapter attribute and method, fallback method, per dataset kind
SOURCES = {
    DatasetKind.CABLES: ("telegeography", "get_cables", "get_cables"),
    DatasetKind.EXCHANGE_POINTS: ("peeringdb", "get_exchange_points", "get_exchange_points"),
    DatasetKind.DATA_CENTERS: ("peeringdb", "get_facilities", "get_data_centers"),
    DatasetKind.ATTACKS: ("cloudflare_radar", "get_attack_data", "get_attack_data"),
}


def _error_message(error: BaseException) -> str:
    return getattr(error, "message", None) or str(error) or type(error).__name__


@dataclass
class OrchestratorSettings:
    """Behavior switches of a DataOrchestrator.

    Attributes:
        enable_cache: Read and write the tiered cache
        enable_auto_refresh: Start auto-refresh on construction
        refresh_interval_seconds: Auto-refresh interval per dataset kind
        fallback_cache_ttl_seconds: How long fallback results are cached
        auto_refresh_kinds: Dataset kinds refreshed automatically
    """

    enable_cache: bool = True
    enable_auto_refresh: bool = True
    refresh_interval_seconds: float = 300.0
    fallback_cache_ttl_seconds: float = 3600.0
    auto_refresh_kinds: tuple[DatasetKind, ...] = field(default_factory=lambda: tuple(DatasetKind))

    @classmethod
    def from_env(cls) -> "OrchestratorSettings":
        """Create settings from environment variables."""
        return cls(
            enable_cache=OrchestratorConfig.ENABLE_CACHE,
            enable_auto_refresh=OrchestratorConfig.AUTO_REFRESH_ENABLED,
            refresh_interval_seconds=OrchestratorConfig.REFRESH_INTERVAL_SECONDS,
            fallback_cache_ttl_seconds=CacheConfig.FALLBACK_TTL_SECONDS,
        )


class DataOrchestrator:
    """
    Fallback-chain coordinator for all dataset kinds.

    Retrieval Chain:
        1. Cache (fresh per the invalidation rule of the dataset kind)
        2. Live adapter (circuit breaker + retry protected)
        3. Stale cache (confidence reduced by 0.2, floored at 0.4)
        4. Fallback source (confidence 0.5, cached for one hour)

    Public getters only raise when the fallback source itself fails.
    Concurrent identical calls share one live fetch.

    Example:
        >>> orchestrator = DataOrchestrator()
        >>> cables = await orchestrator.get_cables({"region": "Atlantic"})
        >>> print(cables.metadata.source, cables.metadata.confidence)
        >>> stats = orchestrator.get_statistics()
        >>> print(f"Cache hit rate: {stats['cache_hit_rate_pct']}%")
        >>> await orchestrator.cleanup()
    """

    def __init__(
        self,
        settings: Optional[OrchestratorSettings] = None,
        cache: Optional[TieredCache] = None,
        telegeography: Optional[TeleGeographyAdapter] = None,
        peeringdb: Optional[PeeringDBAdapter] = None,
        cloudflare_radar: Optional[CloudflareRadarAdapter] = None,
        fallback: Optional[FallbackDataSource] = None,
        events: Optional[EventChannel] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the orchestrator and, when enabled and a loop is
        running, start auto-refresh.

        Args:
            settings: Behavior switches (default: from environment)
            cache: Tiered cache (default: memory + SQLite tiers)
            telegeography: Cable catalog adapter
            peeringdb: Exchange point and facility adapter
            cloudflare_radar: Attack telemetry adapter
            fallback: Fallback data source
            events: Event channel for cache notifications (created if omitted)
            clock: Time source in epoch seconds
        """
        self.settings = settings or OrchestratorSettings.from_env()
        self._clock = clock

        self._owns_events = events is None
        self.events = events or EventChannel()

        self._owns_cache = cache is None
        self.cache = cache or TieredCache(
            memory=MemoryCache(clock=clock),
            persistent=PersistentCache(clock=clock),
            invalidation=InvalidationStrategy(),
            events=self.events,
            clock=clock,
        )
        if self.cache.events is None:
            self.cache.events = self.events

        self.telegeography = telegeography or TeleGeographyAdapter(clock=clock)
        self.peeringdb = peeringdb or PeeringDBAdapter(clock=clock)
        self.cloudflare_radar = cloudflare_radar or CloudflareRadarAdapter(clock=clock)
        self.fallback = fallback or FallbackDataSource(clock=clock)

        self._deduplicator = RequestDeduplicator("orchestrator")
        self._freshness: dict[str, float] = {}
        self._source_attempts: dict[DatasetKind, list[SourceAttempt]] = {kind: [] for kind in DatasetKind}
        self._scheduler: Optional[RefreshScheduler] = None

        self._stats = self._empty_stats()

        logger.info(
            "DataOrchestrator initialized",
            extra={
                "cache_enabled": self.settings.enable_cache,
                "auto_refresh": self.settings.enable_auto_refresh,
                "refresh_interval_seconds": self.settings.refresh_interval_seconds,
            },
        )

        if self.settings.enable_auto_refresh:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(
                    "No running event loop; call start_auto_refresh() from async code to enable auto-refresh"
                )
            else:
                self.start_auto_refresh()

    @staticmethod
    def _empty_stats() -> dict[str, int]:
        return {
            "requests": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "api_calls": 0,
            "fallbacks": 0,
            "errors": 0,
        }

    # ========== Public getters ==========

    async def get_cables(self, options: Options = None) -> DataResult:
        """Submarine cables (TeleGeography, 30 day TTL)."""
        return await self._get(DatasetKind.CABLES, options)

    async def get_exchange_points(self, options: Options = None) -> DataResult:
        """Internet exchange points (PeeringDB, 7 day TTL)."""
        return await self._get(DatasetKind.EXCHANGE_POINTS, options)

    async def get_data_centers(self, options: Options = None) -> DataResult:
        """Colocation facilities (PeeringDB, 7 day TTL)."""
        return await self._get(DatasetKind.DATA_CENTERS, options)

    async def get_attack_data(self, options: Options = None) -> DataResult:
        """Layer 3 attack telemetry (Cloudflare Radar, 1 minute TTL)."""
        return await self._get(DatasetKind.ATTACKS, options)

    async def get(self, kind: Union[DatasetKind, str], options: Options = None) -> DataResult:
        """
        Fetch any dataset kind by name.

        Raises:
            ValueError: Unknown dataset kind
        """
        return await self._get(DatasetKind(kind), options)

    async def get_all_infrastructure(
        self, options: Optional[Mapping[str, Any]] = None
    ) -> InfrastructureSnapshot:
        """
        Fetch every dataset kind concurrently.

        A kind that fails outright is replaced by a zero-confidence empty
        result; it never aborts the others.

        Args:
            options: Per-kind options keyed by dataset kind value
                ("cables", "ixps", "datacenters", "attacks")
        """
        options = options or {}
        kinds = list(DatasetKind)

        results = await asyncio.gather(
            *(self._get(kind, options.get(kind.value)) for kind in kinds),
            return_exceptions=True,
        )

        now_ms = self._now_ms()
        by_kind: dict[DatasetKind, DataResult] = {}
        for kind, result in zip(kinds, results):
            if isinstance(result, Exception):
                logger.error(
                    f"{kind.value} fetch failed: {result}",
                    extra={"kind": kind.value, "error": str(result)},
                )
                result = DataResult.empty(now_ms, error=_error_message(result))
            elif isinstance(result, BaseException):
                raise result
            by_kind[kind] = result

        confidences = [r.metadata.confidence for r in by_kind.values() if r.metadata.confidence > 0]
        average_confidence = round(sum(confidences) / len(confidences), 4) if confidences else 0.0
        total_items = sum(
            by_kind[kind].metadata.count
            for kind in (DatasetKind.CABLES, DatasetKind.EXCHANGE_POINTS, DatasetKind.DATA_CENTERS)
        )

        snapshot = InfrastructureSnapshot(
            cables=by_kind[DatasetKind.CABLES],
            exchange_points=by_kind[DatasetKind.EXCHANGE_POINTS],
            data_centers=by_kind[DatasetKind.DATA_CENTERS],
            attacks=by_kind[DatasetKind.ATTACKS],
            timestamp_ms=now_ms,
            total_items=total_items,
            average_confidence=average_confidence,
        )

        logger.info(
            "Fetched all infrastructure",
            extra={
                **{kind.value: result.metadata.count for kind, result in by_kind.items()},
                "average_confidence": average_confidence,
            },
        )
        return snapshot

    async def get_cached_first(self, kind: Union[DatasetKind, str], options: Options = None) -> DataResult:
        """
        Stale-while-revalidate read for a quick first paint.

        Any cached entry is returned immediately (stamped cached or stale
        by its age) while entries older than their TTL are refreshed in
        the background. Without a cached entry the live source is awaited,
        degrading to the fallback source on failure.
        """
        kind = DatasetKind(kind)
        if not self.settings.enable_cache:
            return await self._get(kind, options)

        query = QueryParams.from_options(options)
        key = build_cache_key(kind, query)
        attempts = self._begin(kind)

        async def fetcher() -> DataResult:
            return await self._deduplicator.deduplicate(
                key, lambda: self._fetch_live(kind, key, query, write_cache=False)
            )

        try:
            entry = await self._read_cache(key)
            if entry is not None:
                self._stats["cache_hits"] += 1
                self.cache.revalidate_entry(entry, fetcher)
                age = self._clock() - entry.created_at
                if entry.value.metadata.source == ResultSource.FALLBACK:
                    result = entry.value
                elif age <= self.cache.invalidation.get_ttl(key):
                    result = self._as_cached(entry)
                else:
                    result = self._as_stale(key, entry)
                attempts.append(SourceAttempt(source=AttemptStage.CACHE, success=True))
                return result

            self._stats["cache_misses"] += 1
            try:
                result = await self._deduplicator.deduplicate(
                    key, lambda: self._fetch_live(kind, key, query)
                )
            except Exception as live_error:
                attempts.append(SourceAttempt(
                    source=AttemptStage.LIVE_API, success=False, error=_error_message(live_error)
                ))
                return await self._use_fallback(kind, key, query, live_error, attempts)

            attempts.append(SourceAttempt(source=AttemptStage.LIVE_API, success=True))
            return result

        except Exception:
            self._stats["errors"] += 1
            raise

    # ========== Fallback chain ==========

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _begin(self, kind: DatasetKind) -> list[SourceAttempt]:
        self._stats["requests"] += 1
        attempts: list[SourceAttempt] = []
        self._source_attempts[kind] = attempts
        return attempts

    async def _get(self, kind: DatasetKind, options: Options) -> DataResult:
        query = QueryParams.from_options(options)
        key = build_cache_key(kind, query)
        attempts = self._begin(kind)

        try:
            if self.settings.enable_cache:
                entry = await self._read_cache(key)
                if entry is not None and not self.is_stale(key):
                    self._stats["cache_hits"] += 1
                    attempts.append(SourceAttempt(source=AttemptStage.CACHE, success=True))
                    logger.debug(
                        f"{kind.value} from cache",
                        extra={"key": key, "count": entry.value.metadata.count},
                    )
                    return self._as_cached(entry)
                self._stats["cache_misses"] += 1

            try:
                result = await self._deduplicator.deduplicate(
                    key, lambda: self._fetch_live(kind, key, query)
                )
                attempts.append(SourceAttempt(source=AttemptStage.LIVE_API, success=True))
                return result

            except Exception as live_error:
                attempts.append(SourceAttempt(
                    source=AttemptStage.LIVE_API, success=False, error=_error_message(live_error)
                ))
                fallback_logger.warning(
                    f"Live source failed for {kind.value}: {_error_message(live_error)}",
                    extra={"kind": kind.value, "error_type": type(live_error).__name__},
                )

                if self.settings.enable_cache:
                    entry = await self._read_cache(key)
                    if entry is not None:
                        attempts.append(SourceAttempt(source=AttemptStage.STALE_CACHE, success=True))
                        return self._as_stale(key, entry)
                    attempts.append(SourceAttempt(
                        source=AttemptStage.STALE_CACHE, success=False, error="no cached entry"
                    ))

                return await self._use_fallback(kind, key, query, live_error, attempts)

        except Exception as e:
            self._stats["errors"] += 1
            logger.error(
                f"Failed to get {kind.value} from all sources: {e}",
                extra={"kind": kind.value, "key": key},
            )
            raise

    async def _fetch_live(
        self,
        kind: DatasetKind,
        key: str,
        query: QueryParams,
        write_cache: bool = True,
    ) -> DataResult:
        adapter_name, method_name, _ = SOURCES[kind]
        live = getattr(getattr(self, adapter_name), method_name)

        self._stats["api_calls"] += 1
        logger.debug(f"Fetching {kind.value} from {adapter_name}", extra={"key": key})
        result = await live(query)

        if write_cache and self.settings.enable_cache:
            await self._write_cache(key, result)
        self._freshness[key] = self._clock()

        logger.info(
            f"{kind.value} from live source",
            extra={"count": result.metadata.count, "confidence": result.metadata.confidence},
        )
        return result

    async def _use_fallback(
        self,
        kind: DatasetKind,
        key: str,
        query: QueryParams,
        live_error: BaseException,
        attempts: list[SourceAttempt],
    ) -> DataResult:
        # Concurrent degraded calls for one key share a single generation and cache write
        try:
            result = await self._deduplicator.deduplicate(
                f"fallback|{key}", lambda: self._generate_fallback(kind, key, query, live_error)
            )
        except FallbackExhaustedError as e:
            attempts.append(SourceAttempt(
                source=AttemptStage.FALLBACK, success=False, error=_error_message(e.__cause__ or e)
            ))
            raise

        attempts.append(SourceAttempt(source=AttemptStage.FALLBACK, success=True))
        return result

    async def _generate_fallback(
        self,
        kind: DatasetKind,
        key: str,
        query: QueryParams,
        live_error: BaseException,
    ) -> DataResult:
        _, _, method_name = SOURCES[kind]
        self._stats["fallbacks"] += 1

        try:
            generated = getattr(self.fallback, method_name)(query)
        except Exception as e:
            fallback_logger.critical(
                f"Fallback source failed for {kind.value}: {e}",
                extra={"kind": kind.value, "live_error": _error_message(live_error)},
                exc_info=True,
            )
            raise FallbackExhaustedError(
                f"Fallback source failed for {kind.value}: {e}",
                dataset_kind=kind.value,
            ) from e

        result = generated.with_metadata(
            source=ResultSource.FALLBACK,
            confidence=FALLBACK_CONFIDENCE,
            freshness=Freshness.STATIC,
            timestamp_ms=self._now_ms(),
            fallback_reason=_error_message(live_error),
        )
        fallback_logger.warning(
            f"Serving fallback data for {kind.value}",
            extra={"count": result.metadata.count, "reason": result.metadata.fallback_reason},
        )

        if self.settings.enable_cache:
            await self._write_cache(key, result, ttl_seconds=self.settings.fallback_cache_ttl_seconds)
        return result

    def _as_cached(self, entry: CacheEntry) -> DataResult:
        value: DataResult = entry.value
        if value.metadata.source == ResultSource.FALLBACK:
            return value
        return value.with_metadata(
            source=ResultSource.CACHE,
            freshness=Freshness.CACHED,
            origin=value.metadata.origin or value.metadata.source,
            cached_at_ms=int(entry.created_at * 1000),
        )

    def _as_stale(self, key: str, entry: CacheEntry) -> DataResult:
        value: DataResult = entry.value
        # Cached fallback data is already degraded
        if value.metadata.source == ResultSource.FALLBACK:
            return value

        confidence = value.metadata.confidence
        degraded = min(confidence, max(confidence - STALE_CONFIDENCE_PENALTY, STALE_CONFIDENCE_FLOOR))
        stale_since = self._freshness.get(key, entry.created_at)

        fallback_logger.warning(
            f"Serving stale cache for {key}",
            extra={"confidence": round(degraded, 4), "stale_since": stale_since},
        )
        return value.with_metadata(
            source=ResultSource.STALE_CACHE,
            freshness=Freshness.STALE,
            confidence=round(degraded, 4),
            origin=value.metadata.origin or value.metadata.source,
            stale_since_ms=int(stale_since * 1000),
        )

    async def _read_cache(self, key: str) -> Optional[CacheEntry]:
        try:
            return await self.cache.get_entry(key)
        except CacheError as e:
            logger.warning(f"Cache read failed, treating as miss: {e}", extra={"key": key})
            return None

    async def _write_cache(self, key: str, result: DataResult, ttl_seconds: Optional[float] = None) -> None:
        try:
            await self.cache.set(key, result, ttl_seconds=ttl_seconds)
        except CacheError as e:
            logger.warning(f"Cache write failed: {e}", extra={"key": key})

    def is_stale(self, key: str) -> bool:
        """True when the key has no live fetch recorded within its rule TTL."""
        fetched_at = self._freshness.get(key)
        if fetched_at is None:
            return True
        return self._clock() - fetched_at > self.cache.invalidation.get_ttl(key)

    # ========== Invalidation and refresh ==========

    async def invalidate_cache(
        self, kind: Optional[Union[DatasetKind, str]] = None, purge: bool = False
    ) -> int:
        """
        Force the next read of a dataset kind (or all kinds) to go live.

        Args:
            kind: Dataset kind to invalidate; None for all kinds
            purge: Also delete the cached entries from both tiers, which
                removes the stale copy the degraded path relies on

        Returns:
            Number of freshness marks dropped, or entries deleted when purging
        """
        kinds = [DatasetKind(kind)] if kind is not None else list(DatasetKind)
        values = {k.value for k in kinds}

        dropped = [key for key in self._freshness if key.split(":", 1)[0] in values]
        for key in dropped:
            del self._freshness[key]
        count = len(dropped)

        if purge:
            count = 0
            for k in kinds:
                try:
                    count += await self.cache.invalidate_kind(k.value)
                except CacheError as e:
                    logger.warning(f"Cache purge failed for {k.value}: {e}")

        logger.info(
            f"Invalidated cache for {', '.join(sorted(values))}",
            extra={"purge": purge, "count": count},
        )
        return count

    async def refresh_data(self, kind: Union[DatasetKind, str], options: Options = None) -> DataResult:
        """
        Invalidate then re-fetch one dataset kind.

        Raises:
            ValueError: Unknown dataset kind
        """
        kind = DatasetKind(kind)
        await self.invalidate_cache(kind)
        return await self._get(kind, options)

    # ========== Auto-refresh ==========

    def start_auto_refresh(self) -> None:
        """Start one recurring refresh job per configured kind (requires a running loop)."""
        if self._scheduler is not None and self._scheduler.is_running():
            logger.debug("Auto-refresh already running")
            return

        self._scheduler = RefreshScheduler(
            refresh=self.refresh_data,
            kinds=self.settings.auto_refresh_kinds,
            interval_seconds=self.settings.refresh_interval_seconds,
            cleanup=self.cache.clean_expired,
        )
        self._scheduler.start()

    def stop_auto_refresh(self) -> None:
        if self._scheduler is not None:
            self._scheduler.stop()

    def cancel_auto_refresh(self, kind: Union[DatasetKind, str]) -> bool:
        """Cancel the auto-refresh job of one dataset kind."""
        if self._scheduler is None:
            return False
        return self._scheduler.cancel(DatasetKind(kind))

    @property
    def auto_refresh_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.is_running()

    # ========== Diagnostics ==========

    def get_source_attempts(
        self, kind: Optional[Union[DatasetKind, str]] = None
    ) -> Union[list[SourceAttempt], dict[str, list[SourceAttempt]]]:
        """Attempt log of the latest call for one kind, or for every kind."""
        if kind is not None:
            return list(self._source_attempts[DatasetKind(kind)])
        return {k.value: list(v) for k, v in self._source_attempts.items()}

    def get_statistics(self) -> dict[str, Any]:
        """
        Running counters with computed rates.

        Returns:
            Counters plus cache_hit_rate_pct and fallback_rate_pct
        """
        requests = self._stats["requests"]
        return {
            **self._stats,
            "cache_hit_rate_pct": round(self._stats["cache_hits"] / requests * 100, 2) if requests else 0.0,
            "fallback_rate_pct": round(self._stats["fallbacks"] / requests * 100, 2) if requests else 0.0,
        }

    def reset_statistics(self) -> dict[str, Any]:
        """
        Zero all counters; cache contents and breaker state are untouched.

        Returns:
            Dictionary with pre-reset statistics
        """
        pre_reset_stats = self.get_statistics()
        self._stats = self._empty_stats()
        logger.info("DataOrchestrator statistics reset")
        return pre_reset_stats

    def get_health(self) -> dict[str, Any]:
        try:
            cache_stats = self.cache.get_statistics()
        except CacheError as e:
            cache_stats = {"error": str(e)}

        return {
            "orchestrator": {
                "cache_enabled": self.settings.enable_cache,
                "auto_refresh": self.settings.enable_auto_refresh,
                "auto_refresh_running": self.auto_refresh_running,
                "refresh_interval_seconds": self.settings.refresh_interval_seconds,
                "tracked_keys": len(self._freshness),
            },
            "services": {
                "telegeography": self.telegeography.get_health(),
                "peeringdb": self.peeringdb.get_health(),
                "cloudflare_radar": self.cloudflare_radar.get_health(),
                "fallback": self.fallback.get_health(),
            },
            "cache": cache_stats,
            "scheduler": self._scheduler.get_statistics() if self._scheduler else None,
            "statistics": self.get_statistics(),
            "recent_attempts": {
                kind: [attempt.model_dump(mode="json") for attempt in attempts]
                for kind, attempts in self.get_source_attempts().items()
            },
        }

    # ========== Lifecycle ==========

    def destroy(self) -> None:
        """
        Stop all timers and background revalidation and forget freshness
        tracking. Cache contents are kept.
        """
        self.stop_auto_refresh()
        self.cache.cancel_revalidations()
        self._freshness.clear()
        if self._owns_events:
            self.events.close()
        logger.info("DataOrchestrator destroyed")

    async def cleanup(self) -> None:
        """destroy() plus closing adapter sessions and an owned cache."""
        self.destroy()
        for adapter in (self.telegeography, self.peeringdb, self.cloudflare_radar):
            await adapter.close()
        if self._owns_cache:
            self.cache.close()
        logger.info("DataOrchestrator cleanup complete")

    def __repr__(self) -> str:
        return (
            f"DataOrchestrator(requests={self._stats['requests']}, "
            f"cache_hits={self._stats['cache_hits']}, "
            f"api_calls={self._stats['api_calls']}, "
            f"fallbacks={self._stats['fallbacks']})"
        )
