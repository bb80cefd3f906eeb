"""
Cloudflare Radar telemetry adapter.

Real-time layer 3 attack timeseries, attack vector rankings, HTTP
traffic and BGP routes. Every call requires an API token.
"""

import logging
import time
from typing import Any, Callable, Mapping, Optional, Union

from ..config import CloudflareRadarConfig
from ..normalizer.schemas import DataResult, QueryParams
from ..normalizer.transformer import (
    AttackTransformer,
    AttackVectorTransformer,
    BGPTransformer,
    TrafficTransformer,
    TransformerKind,
)
from ..utils.exceptions import ConfigurationError
from .api_client import APIClient, APIClientConfig, RateLimitWindow

logger = logging.getLogger(__name__)

Options = Optional[Union[Mapping[str, Any], QueryParams]]


class CloudflareRadarAdapter:
    """Attack and traffic telemetry source.

    Example:
        ```python
        radar = CloudflareRadarAdapter()
        attacks = await radar.get_attack_data({"dateRange": "1h", "location": "US"})
        ```
    """

    service_id = "cloudflare-radar"

    def __init__(
        self,
        client: Optional[APIClient] = None,
        clock: Callable[[], float] = time.time,
        rate_limit: Optional[RateLimitWindow] = None,
        api_token: Optional[str] = None,
    ):
        self._clock = clock
        self.api_token = api_token if api_token is not None else CloudflareRadarConfig.API_TOKEN
        self.client = client or APIClient(
            self.service_id, APIClientConfig.from_env(self.service_id), clock=clock
        )
        if self.api_token and "Authorization" not in self.client.config.headers:
            self.client.config.headers["Authorization"] = f"Bearer {self.api_token}"

        self.client.register_transformer(AttackTransformer(clock=clock))
        self.client.register_transformer(AttackVectorTransformer(clock=clock))
        self.client.register_transformer(TrafficTransformer(clock=clock))
        self.client.register_transformer(BGPTransformer(clock=clock))
        self.rate_limit = rate_limit or RateLimitWindow(
            CloudflareRadarConfig.RATE_LIMIT, CloudflareRadarConfig.RATE_WINDOW_SECONDS, clock=clock
        )
        self._latest: dict[str, Optional[int]] = {"attacks": None, "traffic": None, "bgp": None}

        if not self.api_token:
            logger.warning("No Cloudflare Radar API token provided; telemetry will be unavailable")

    @property
    def is_authenticated(self) -> bool:
        return bool(self.api_token)

    def _require_token(self, dataset: str) -> None:
        if not self.api_token:
            raise ConfigurationError(
                f"Cloudflare Radar API token required for {dataset} data",
                setting="CLOUDFLARE_API_TOKEN",
            )

    @staticmethod
    def _location_params(query: QueryParams) -> dict[str, str]:
        location = query.get("location")
        return {"location": location} if location else {}

    async def _fetch(self, endpoint: str, params: dict[str, Any], kind: TransformerKind) -> DataResult:
        result = await self.client.request("GET", endpoint, params=params, transformer=kind)
        self.rate_limit.consume()
        return result

    async def get_attack_data(self, options: Options = None) -> DataResult:
        """
        Layer 3/4 DDoS attack timeseries grouped by protocol.

        Args:
            options: dateRange (default "1h"), location (ISO alpha-2),
                protocol (comma separated or a list)

        Raises:
            ConfigurationError: No API token configured
        """
        self._require_token("attack")
        query = QueryParams.from_options(options)
        params = {
            "dateRange": query.get("dateRange", "1h"),
            "format": "json",
            **self._location_params(query),
        }
        protocol = query.get("protocol") or query.get("protocols")
        if protocol:
            params["protocol"] = protocol

        result = await self._fetch("/attacks/layer3/timeseries_groups", params, TransformerKind.ATTACKS)
        self._latest["attacks"] = result.metadata.timestamp_ms
        return result

    async def get_traffic_data(self, options: Options = None) -> DataResult:
        self._require_token("traffic")
        query = QueryParams.from_options(options)
        params = {
            "dateRange": query.get("dateRange", "24h"),
            "format": "json",
            **self._location_params(query),
        }
        result = await self._fetch("/http/timeseries_groups", params, TransformerKind.TRAFFIC)
        self._latest["traffic"] = result.metadata.timestamp_ms
        return result

    async def get_bgp_data(self, options: Options = None) -> DataResult:
        self._require_token("BGP")
        query = QueryParams.from_options(options)
        params = {"format": "json"}
        for name in ("asn", "prefix"):
            if query.get(name):
                params[name] = query.get(name)
        result = await self._fetch("/bgp/routes", params, TransformerKind.BGP)
        self._latest["bgp"] = result.metadata.timestamp_ms
        return result

    async def get_attack_vectors(self, options: Options = None) -> DataResult:
        self._require_token("attack vector")
        query = QueryParams.from_options(options)
        params = {
            "dateRange": query.get("dateRange", "24h"),
            "format": "json",
            **self._location_params(query),
        }
        return await self._fetch("/attacks/layer3/top/attacks", params, TransformerKind.ATTACK_VECTORS)

    def get_health(self) -> dict[str, Any]:
        now_ms = int(self._clock() * 1000)
        return {
            "service": self.service_id,
            "authenticated": self.is_authenticated,
            "rate_limit": self.rate_limit.snapshot(),
            "rate_limit_low": self.rate_limit.is_low(),
            "circuit_state": self.client.get_circuit_state(),
            "latest_data_age_ms": {
                kind: now_ms - ts if ts is not None else None
                for kind, ts in self._latest.items()
            },
        }

    async def close(self) -> None:
        await self.client.close()
