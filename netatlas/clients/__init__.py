"""
Source Clients Module

Provides the resilient HTTP client and the upstream source adapters.

Components:
    - APIClient: Async client wiring breaker, retry, deduplication and batching
    - APIClientConfig: Per-upstream client configuration
    - RateLimitWindow: Rolling request quota bookkeeping
    - TeleGeographyAdapter: Submarine cable catalog
    - PeeringDBAdapter: Exchange point, facility and network directory
    - CloudflareRadarAdapter: Attack, traffic and BGP telemetry
    - FallbackDataSource: Deterministic static/synthetic data and estimators
"""

from .api_client import APIClient, APIClientConfig, RateLimitWindow
from .cloudflare_radar import CloudflareRadarAdapter
from .fallback_source import FallbackDataSource
from .peeringdb import PeeringDBAdapter
from .telegeography import TeleGeographyAdapter

__all__ = [
    "APIClient",
    "APIClientConfig",
    "RateLimitWindow",
    "TeleGeographyAdapter",
    "PeeringDBAdapter",
    "CloudflareRadarAdapter",
    "FallbackDataSource",
]
