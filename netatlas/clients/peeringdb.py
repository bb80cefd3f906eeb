"""
PeeringDB exchange point, facility and network directory adapter.
"""

import logging
import time
from typing import Any, Callable, Mapping, Optional, Union

from ..config import PeeringDBConfig
from ..normalizer.schemas import DataResult, ExchangePointRecord, FacilityRecord, QueryParams
from ..normalizer.transformer import (
    ExchangePointTransformer,
    FacilityTransformer,
    NetworkTransformer,
    TransformerKind,
)
from .api_client import APIClient, APIClientConfig, RateLimitWindow

logger = logging.getLogger(__name__)

# Options forwarded to the directory API, keyed by option name
FILTER_FIELDS = {
    "country": "country",
    "city": "city",
    "asn": "asn",
    "name": "name__contains",
}

Options = Optional[Union[Mapping[str, Any], QueryParams]]


class PeeringDBAdapter:
    """Exchange point and facility directory source.

    The public API works without a key; an API key only raises quotas.
    """

    service_id = "peeringdb"

    def __init__(
        self,
        client: Optional[APIClient] = None,
        clock: Callable[[], float] = time.time,
        rate_limit: Optional[RateLimitWindow] = None,
    ):
        self._clock = clock
        self.client = client or APIClient(
            self.service_id, APIClientConfig.from_env(self.service_id), clock=clock
        )
        self.client.register_transformer(ExchangePointTransformer(clock=clock))
        self.client.register_transformer(FacilityTransformer(clock=clock))
        self.client.register_transformer(NetworkTransformer(clock=clock))
        self.rate_limit = rate_limit or RateLimitWindow(
            PeeringDBConfig.RATE_LIMIT, PeeringDBConfig.RATE_WINDOW_SECONDS, clock=clock
        )

    @staticmethod
    def build_filters(options: Options = None) -> dict[str, str]:
        """Translate caller options into directory query parameters."""
        query = QueryParams.from_options(options)
        return {
            param: query.get(option)
            for option, param in FILTER_FIELDS.items()
            if query.get(option)
        }

    async def _fetch(self, endpoint: str, params: dict[str, Any], kind: TransformerKind) -> DataResult:
        result = await self.client.request("GET", endpoint, params=params, transformer=kind)
        self.rate_limit.consume()
        logger.debug(
            f"Fetched {result.metadata.count} records from {endpoint}",
            extra={"params": params},
        )
        return result

    async def get_exchange_points(self, options: Options = None) -> DataResult:
        params = {"depth": 2, **self.build_filters(options)}
        return await self._fetch("/ix", params, TransformerKind.EXCHANGE_POINTS)

    async def get_exchange_point(self, ix_id: Union[int, str]) -> Optional[ExchangePointRecord]:
        result = await self._fetch(f"/ix/{ix_id}", {"depth": 2}, TransformerKind.EXCHANGE_POINTS)
        return result.data[0] if result.data else None

    async def get_facilities(self, options: Options = None) -> DataResult:
        params = {"depth": 2, **self.build_filters(options)}
        return await self._fetch("/fac", params, TransformerKind.FACILITIES)

    async def get_facility(self, fac_id: Union[int, str]) -> Optional[FacilityRecord]:
        result = await self._fetch(f"/fac/{fac_id}", {"depth": 2}, TransformerKind.FACILITIES)
        return result.data[0] if result.data else None

    async def get_networks(self, options: Options = None) -> DataResult:
        return await self._fetch("/net", self.build_filters(options), TransformerKind.NETWORKS)

    async def get_exchange_point_networks(self, ix_id: Union[int, str]) -> list[dict[str, Any]]:
        """Raw network-to-exchange connections (netixlan rows) of one exchange."""
        raw = await self.client.request("GET", "/netixlan", params={"ix_id": ix_id})
        self.rate_limit.consume()
        return raw.get("data", []) if isinstance(raw, dict) else []

    def get_health(self) -> dict[str, Any]:
        return {
            "service": self.service_id,
            "authenticated": "Authorization" in self.client.config.headers,
            "rate_limit": self.rate_limit.snapshot(),
            "circuit_state": self.client.get_circuit_state(),
        }

    async def close(self) -> None:
        await self.client.close()
