"""
TeleGeography submarine cable catalog adapter.

Fetches the public cable.json data file and converts it into
CableRecord results with landing points, paths and derived specs.
"""

import logging
import time
from typing import Any, Callable, Mapping, Optional, Union

from ..normalizer.schemas import CableRecord, DataResult, QueryParams
from ..normalizer.transformer import CableTransformer, TransformerKind
from .api_client import APIClient, APIClientConfig

logger = logging.getLogger(__name__)

# Catalog changes rarely; refresh monthly
UPDATE_FREQUENCY_SECONDS = 30 * 24 * 3600


class TeleGeographyAdapter:
    """Submarine cable catalog source.

    Example:
        ```python
        adapter = TeleGeographyAdapter()
        result = await adapter.get_cables({"region": "Atlantic"})
        print(result.metadata.count, result.metadata.confidence)
        ```
    """

    service_id = "telegeography"

    def __init__(
        self,
        client: Optional[APIClient] = None,
        clock: Callable[[], float] = time.time,
        update_frequency: float = UPDATE_FREQUENCY_SECONDS,
    ):
        self._clock = clock
        self.client = client or APIClient(
            self.service_id, APIClientConfig.from_env(self.service_id), clock=clock
        )
        self.client.register_transformer(CableTransformer(clock=clock))
        self.update_frequency = update_frequency
        self.last_update: Optional[float] = None

    async def get_cables(
        self, options: Optional[Union[Mapping[str, Any], QueryParams]] = None
    ) -> DataResult:
        """
        Fetch all submarine cables.

        Args:
            options: Optional filters; "region" keeps cables whose name or
                a landing point name/country contains the region text

        Returns:
            DataResult of CableRecord
        """
        query = QueryParams.from_options(options)
        result = await self.client.request("GET", "", transformer=TransformerKind.CABLES)
        self.last_update = self._clock()

        region = query.get("region")
        if region:
            cables = [cable for cable in result.data if self.matches_region(cable, region)]
            result = DataResult.build(
                cables,
                source=result.metadata.source,
                confidence=result.metadata.confidence,
                freshness=result.metadata.freshness,
                timestamp_ms=result.metadata.timestamp_ms,
            )

        logger.info(f"Fetched {result.metadata.count} cables", extra={"region": region})
        return result

    async def get_cable(self, cable_id: str) -> Optional[CableRecord]:
        """Find one cable by id ("cable-<id>" or the bare upstream id)."""
        result = await self.get_cables()
        wanted = {cable_id, f"cable-{cable_id}"}
        return next((cable for cable in result.data if cable.id in wanted), None)

    @staticmethod
    def matches_region(cable: CableRecord, region: str) -> bool:
        needle = region.lower()
        if needle in cable.name.lower():
            return True
        return any(
            needle in point.name.lower() or needle in (point.country or "").lower()
            for point in cable.landing_points
        )

    def needs_update(self, max_age_seconds: Optional[float] = None) -> bool:
        if self.last_update is None:
            return True
        max_age = self.update_frequency if max_age_seconds is None else max_age_seconds
        return self._clock() - self.last_update > max_age

    def get_health(self) -> dict[str, Any]:
        return {
            "service": self.service_id,
            "last_update": self.last_update,
            "next_update": self.last_update + self.update_frequency if self.last_update else None,
            "needs_update": self.needs_update(),
            "circuit_state": self.client.get_circuit_state(),
        }

    async def close(self) -> None:
        await self.client.close()
