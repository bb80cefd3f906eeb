"""
NetAtlas - Main Package

Global internet infrastructure data (submarine cables, exchange points,
data centers and attack telemetry) aggregated from public sources with a
resilient cache → live → stale → fallback retrieval chain.

Modules:
    clients: Resilient HTTP client and upstream source adapters
    normalizer: Unified record schemas and upstream payload transformers
    orchestrator: Fallback chain, tiered cache, resilience and scheduling
    utils: Shared utilities and helpers
"""

__version__ = "0.1.0"
__author__ = "NetAtlas Team"

__all__ = [
    "__version__",
    "__author__",
]
