"""
Orchestrator Module

Fallback-chain coordination, caching and resilience primitives.

Components:
    - DataOrchestrator: Cache → live → stale → fallback retrieval per dataset kind
    - OrchestratorSettings: Orchestrator behavior switches
    - TieredCache: Memory LRU tier in front of a SQLite persistent tier
    - MemoryCache: Byte-budgeted in-memory LRU cache
    - PersistentCache: SQLite-based cache with TTL and statistics
    - InvalidationStrategy: Per-dataset-kind TTL and revalidation rules
    - CircuitBreaker: Fault tolerance and resilience pattern
    - RetryPolicy: Exponential backoff with jitter
    - RequestDeduplicator: Shares one in-flight request among identical callers
    - RequestBatcher: Windowed request coalescing
    - RefreshScheduler: APScheduler-based periodic refresh
    - EventChannel: In-process publish/subscribe for cache events
"""

__all__ = [
    "DataOrchestrator",
    "OrchestratorSettings",
    "TieredCache",
    "MemoryCache",
    "PersistentCache",
    "InvalidationStrategy",
    "CircuitBreaker",
    "RetryPolicy",
    "RequestDeduplicator",
    "RequestBatcher",
    "RefreshScheduler",
    "EventChannel",
]

# Lazy imports to avoid circular dependencies
def __getattr__(name):
    if name in ("DataOrchestrator", "OrchestratorSettings"):
        from . import data_orchestrator
        return getattr(data_orchestrator, name)
    elif name in ("TieredCache", "MemoryCache", "PersistentCache"):
        from . import cache_manager
        return getattr(cache_manager, name)
    elif name == "InvalidationStrategy":
        from .invalidation import InvalidationStrategy
        return InvalidationStrategy
    elif name == "CircuitBreaker":
        from .circuit_breaker import CircuitBreaker
        return CircuitBreaker
    elif name == "RetryPolicy":
        from .retry_policy import RetryPolicy
        return RetryPolicy
    elif name == "RequestDeduplicator":
        from .deduplicator import RequestDeduplicator
        return RequestDeduplicator
    elif name == "RequestBatcher":
        from .batcher import RequestBatcher
        return RequestBatcher
    elif name == "RefreshScheduler":
        from .scheduler import RefreshScheduler
        return RefreshScheduler
    elif name == "EventChannel":
        from .events import EventChannel
        return EventChannel
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
