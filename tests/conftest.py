"""
Pytest configuration and shared fixtures for NetAtlas tests.

Provides:
    - Controllable clock
    - Temporary cache databases
    - Sample upstream payloads
    - Stub source adapters and a small fallback source
"""

import tempfile
from pathlib import Path
from typing import Any, Dict, List
from unittest.mock import AsyncMock, MagicMock

import pytest

from netatlas.clients.fallback_source import FallbackDataSource
from netatlas.normalizer.schemas import (
    CableRecord,
    DataResult,
    ExchangePointRecord,
    FacilityRecord,
    Freshness,
    RecordMetadata,
    ResultSource,
    SiteLocation,
)
from netatlas.orchestrator.cache_manager import MemoryCache, PersistentCache, TieredCache
from netatlas.orchestrator.data_orchestrator import DataOrchestrator, OrchestratorSettings
from netatlas.orchestrator.invalidation import InvalidationStrategy

# 2025-10-09T08:53:20Z
START_TIME = 1_760_000_000.0


class FakeClock:
    """Manually advanced time source (epoch seconds)."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ========== Clock and Path Fixtures ==========


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def temp_cache_dir():
    """
    Create temporary directory for cache database.

    Yields:
        Path to temporary directory

    Cleanup:
        Removes directory and all contents after test
    """
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def cache_db_path(temp_cache_dir: Path) -> Path:
    return temp_cache_dir / "test_cache.db"


# ========== Upstream Payload Fixtures ==========


@pytest.fixture
def sample_cable_catalog() -> List[Dict[str, Any]]:
    """
    Sample TeleGeography cable.json entries.

    Returns:
        One cable with an explicit route, one with landing points only
    """
    return [
        {
            "cable_id": "marea",
            "name": "MAREA",
            "length": "6,605 km",
            "owners": "Meta, Microsoft, Telxius",
            "ready_for_service": "2018",
            "design_capacity": "200 Tbps",
            "url": "https://example.net/marea",
            "landing_points": [
                {"id": 1, "name": "Virginia Beach", "country": "US", "latitude": 36.85, "longitude": -75.98},
                {"id": 2, "name": "Bilbao", "country": "ES", "latitude": 43.26, "longitude": -2.93},
            ],
            "coordinates": [[-75.98, 36.85], [-40.0, 40.0], [-2.93, 43.26]],
        },
        {
            "cable_id": "sacs",
            "name": "SACS",
            "ready_for_service": 2018,
            "landing_points": [
                {"name": "Sangano", "country": "AO", "latitude": -9.48, "longitude": 13.32},
                {"name": "Fortaleza", "country": "BR", "latitude": -3.73, "longitude": -38.53},
            ],
        },
    ]


@pytest.fixture
def sample_peeringdb_ix() -> Dict[str, Any]:
    """Sample PeeringDB /ix response."""
    return {
        "data": [
            {
                "id": 31,
                "name": "DE-CIX Frankfurt",
                "name_long": "Deutscher Commercial Internet Exchange",
                "city": "Frankfurt",
                "country": "DE",
                "latitude": 50.11,
                "longitude": 8.68,
                "net_count": 1100,
                "fac_count": 40,
                "website": "https://www.de-cix.net",
                "tech_email": "noc@example.net",
                "updated": "2024-05-01T12:00:00Z",
            },
            {
                "id": 26,
                "name": "AMS-IX",
                "city": "Amsterdam",
                "country": "NL",
                "net_count": 900,
            },
        ]
    }


@pytest.fixture
def sample_peeringdb_fac() -> Dict[str, Any]:
    """Sample PeeringDB /fac response."""
    return {
        "data": [
            {
                "id": 1,
                "name": "Equinix DC1-DC15",
                "org_name": "Equinix",
                "address1": "21715 Filigree Ct",
                "city": "Ashburn",
                "state": "VA",
                "country": "US",
                "zipcode": "20147",
                "latitude": 39.0158,
                "longitude": -77.4590,
                "net_count": 400,
                "website": "https://www.equinix.com",
                "clli": "ASBNVA",
            }
        ]
    }


@pytest.fixture
def sample_radar_attacks() -> Dict[str, Any]:
    """Sample Cloudflare Radar layer 3 timeseries_groups response."""
    return {
        "success": True,
        "result": {
            "serie_0": {
                "timestamps": ["2025-10-09T08:00:00Z", "2025-10-09T08:15:00Z"],
                "UDP": ["0.6", "0.5"],
                "TCP": ["0.3", "0.4"],
                "ICMP": ["0.1", "0.1"],
            }
        },
    }


# ========== Result Builders ==========


def make_metadata(source: str = "peeringdb", confidence: float = 0.98) -> RecordMetadata:
    return RecordMetadata(source=source, confidence=confidence, freshness=Freshness.LIVE)


def make_result(
    source: ResultSource,
    confidence: float,
    timestamp_ms: int,
    count: int = 2,
) -> DataResult:
    """
    Build a live-looking DataResult with simple records matching the source.

    Args:
        source: Live source to stamp
        confidence: Result confidence
        timestamp_ms: Production time
        count: Number of records
    """
    if source == ResultSource.TELEGEOGRAPHY:
        records = [
            CableRecord(id=f"cable-{i}", name=f"Cable {i}", metadata=make_metadata("telegeography", 0.9))
            for i in range(count)
        ]
    elif source == ResultSource.CLOUDFLARE_RADAR:
        records = []
    else:
        records = [
            ExchangePointRecord(
                id=f"ixp-{i}",
                name=f"IX {i}",
                location=SiteLocation(city="Frankfurt", country="DE"),
                metadata=make_metadata(),
            )
            for i in range(count)
        ]
    return DataResult.build(
        records,
        source=source,
        confidence=confidence,
        freshness=Freshness.LIVE,
        timestamp_ms=timestamp_ms,
    )


def make_facility_result(timestamp_ms: int) -> DataResult:
    return DataResult.build(
        [FacilityRecord(id="facility-1", name="Equinix DC1", metadata=make_metadata(confidence=0.95))],
        source=ResultSource.PEERINGDB,
        confidence=0.95,
        freshness=Freshness.LIVE,
        timestamp_ms=timestamp_ms,
    )


# ========== Stub Adapters ==========


@pytest.fixture
def live_results(clock: FakeClock) -> Dict[str, DataResult]:
    """Results returned by the stub adapters."""
    now_ms = int(clock() * 1000)
    return {
        "cables": make_result(ResultSource.TELEGEOGRAPHY, 0.85, now_ms, count=3),
        "ixps": make_result(ResultSource.PEERINGDB, 0.98, now_ms, count=2),
        "datacenters": make_facility_result(now_ms),
        "attacks": make_result(ResultSource.CLOUDFLARE_RADAR, 0.95, now_ms, count=0),
    }


@pytest.fixture
def telegeography_stub(live_results):
    adapter = MagicMock()
    adapter.get_cables = AsyncMock(return_value=live_results["cables"])
    adapter.get_health = MagicMock(return_value={"service": "telegeography"})
    adapter.close = AsyncMock()
    return adapter


@pytest.fixture
def peeringdb_stub(live_results):
    adapter = MagicMock()
    adapter.get_exchange_points = AsyncMock(return_value=live_results["ixps"])
    adapter.get_facilities = AsyncMock(return_value=live_results["datacenters"])
    adapter.get_health = MagicMock(return_value={"service": "peeringdb"})
    adapter.close = AsyncMock()
    return adapter


@pytest.fixture
def radar_stub(live_results):
    adapter = MagicMock()
    adapter.get_attack_data = AsyncMock(return_value=live_results["attacks"])
    adapter.get_health = MagicMock(return_value={"service": "cloudflare-radar"})
    adapter.close = AsyncMock()
    return adapter


@pytest.fixture
def small_fallback(clock: FakeClock) -> FallbackDataSource:
    """Fallback source with a handful of synthetic records per dataset."""
    return FallbackDataSource(
        seed=7,
        synthetic_cables=5,
        synthetic_ixps=5,
        synthetic_datacenters=5,
        clock=clock,
    )


# ========== Cache and Orchestrator Fixtures ==========


@pytest.fixture
def tiered_cache(clock: FakeClock, cache_db_path: Path):
    cache = TieredCache(
        memory=MemoryCache(max_bytes=10 * 1024 * 1024, clock=clock),
        persistent=PersistentCache(db_path=cache_db_path, clock=clock),
        invalidation=InvalidationStrategy(),
        clock=clock,
    )
    yield cache
    cache.cancel_revalidations()
    cache.close()


@pytest.fixture
def orchestrator(
    clock: FakeClock,
    tiered_cache: TieredCache,
    telegeography_stub,
    peeringdb_stub,
    radar_stub,
    small_fallback: FallbackDataSource,
):
    """Orchestrator over stub adapters with auto-refresh disabled."""
    instance = DataOrchestrator(
        settings=OrchestratorSettings(enable_auto_refresh=False),
        cache=tiered_cache,
        telegeography=telegeography_stub,
        peeringdb=peeringdb_stub,
        cloudflare_radar=radar_stub,
        fallback=small_fallback,
        clock=clock,
    )
    yield instance
    instance.destroy()
