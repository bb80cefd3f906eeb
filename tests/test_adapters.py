"""
Tests for the TeleGeography, PeeringDB and Cloudflare Radar adapters.

Each adapter runs over a real APIClient whose request executor is
patched to return sample upstream payloads.
"""

from unittest.mock import AsyncMock, patch

import pytest

from netatlas.clients.api_client import APIClient, APIClientConfig, RateLimitWindow
from netatlas.clients.cloudflare_radar import CloudflareRadarAdapter
from netatlas.clients.peeringdb import PeeringDBAdapter
from netatlas.clients.telegeography import UPDATE_FREQUENCY_SECONDS, TeleGeographyAdapter
from netatlas.normalizer.schemas import CableStatus, ResultSource
from netatlas.utils.exceptions import ConfigurationError


def make_client(service_id, clock):
    config = APIClientConfig(base_url=f"https://{service_id}.example.net/api")
    return APIClient(service_id, config, clock=clock)


class TestTeleGeographyAdapter:
    """Test cable catalog adapter."""

    @pytest.fixture
    def adapter(self, clock):
        return TeleGeographyAdapter(client=make_client("telegeography", clock), clock=clock)

    @pytest.mark.asyncio
    async def test_get_cables(self, adapter, sample_cable_catalog):
        with patch.object(adapter.client, "_execute_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = sample_cable_catalog

            result = await adapter.get_cables()

        assert mock_request.call_args[0][:2] == ("GET", "")
        assert result.metadata.source == ResultSource.TELEGEOGRAPHY
        assert result.metadata.confidence == 0.85
        assert [cable.id for cable in result.data] == ["cable-marea", "cable-sacs"]

        marea = result.data[0]
        assert marea.owners == ("Meta", "Microsoft", "Telxius")
        assert marea.specs.length_km == 6605
        assert marea.derived.status == CableStatus.OPERATIONAL
        assert len(marea.path) == 3

    @pytest.mark.asyncio
    async def test_landing_points_backfill_path(self, adapter, sample_cable_catalog):
        with patch.object(adapter.client, "_execute_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = sample_cable_catalog

            result = await adapter.get_cables()

        sacs = result.data[1]
        assert len(sacs.path) >= 2
        assert sacs.specs.length_km is not None
        assert sacs.metadata.confidence == 0.6

    @pytest.mark.asyncio
    async def test_region_filter(self, adapter, sample_cable_catalog):
        with patch.object(adapter.client, "_execute_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = sample_cable_catalog

            result = await adapter.get_cables({"region": "fortaleza"})

        assert [cable.name for cable in result.data] == ["SACS"]
        assert result.metadata.count == 1
        assert result.metadata.confidence == 0.85

    @pytest.mark.asyncio
    async def test_get_cable(self, adapter, sample_cable_catalog):
        with patch.object(adapter.client, "_execute_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = sample_cable_catalog

            assert (await adapter.get_cable("marea")).name == "MAREA"
            assert await adapter.get_cable("unknown") is None

    @pytest.mark.asyncio
    async def test_needs_update(self, adapter, clock, sample_cable_catalog):
        assert adapter.needs_update() is True

        with patch.object(adapter.client, "_execute_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = sample_cable_catalog
            await adapter.get_cables()

        assert adapter.needs_update() is False
        assert adapter.needs_update(max_age_seconds=60) is False

        clock.advance(120)
        assert adapter.needs_update(max_age_seconds=60) is True
        assert adapter.needs_update() is False

        clock.advance(UPDATE_FREQUENCY_SECONDS)
        assert adapter.needs_update() is True

    def test_health_before_first_fetch(self, adapter):
        health = adapter.get_health()

        assert health["service"] == "telegeography"
        assert health["last_update"] is None
        assert health["next_update"] is None
        assert health["needs_update"] is True
        assert health["circuit_state"]["state"] == "closed"


class TestPeeringDBAdapter:
    """Test peering directory adapter."""

    @pytest.fixture
    def adapter(self, clock):
        return PeeringDBAdapter(
            client=make_client("peeringdb", clock),
            clock=clock,
            rate_limit=RateLimitWindow(limit=100, window_seconds=60, clock=clock),
        )

    def test_build_filters(self):
        filters = PeeringDBAdapter.build_filters({"country": "DE", "name": "CIX", "region": "Europe"})

        assert filters == {"country": "DE", "name__contains": "CIX"}
        assert PeeringDBAdapter.build_filters() == {}

    @pytest.mark.asyncio
    async def test_get_exchange_points(self, adapter, sample_peeringdb_ix):
        with patch.object(adapter.client, "_execute_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = sample_peeringdb_ix

            result = await adapter.get_exchange_points({"country": "DE"})

        method, endpoint, query = mock_request.call_args[0][:3]
        assert (method, endpoint) == ("GET", "/ix")
        assert query.as_dict() == {"country": "DE", "depth": "2"}

        assert result.metadata.source == ResultSource.PEERINGDB
        assert result.metadata.confidence == 0.98
        decix, amsix = result.data
        assert decix.id == "ixp-31"
        assert decix.location.point is not None
        assert decix.metadata.data_quality == 1.0
        assert amsix.location.point is None
        assert amsix.media == "Ethernet"
        assert adapter.rate_limit.remaining == 99

    @pytest.mark.asyncio
    async def test_get_facilities(self, adapter, sample_peeringdb_fac):
        with patch.object(adapter.client, "_execute_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = sample_peeringdb_fac

            result = await adapter.get_facilities({"city": "Ashburn"})

        assert mock_request.call_args[0][1] == "/fac"
        facility = result.data[0]
        assert facility.id == "facility-1"
        assert facility.operator == "Equinix"
        assert facility.location.state == "VA"
        assert facility.clli == "ASBNVA"
        assert result.metadata.confidence == 0.95

    @pytest.mark.asyncio
    async def test_get_exchange_point(self, adapter, sample_peeringdb_ix):
        with patch.object(adapter.client, "_execute_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = {"data": sample_peeringdb_ix["data"][:1]}

            record = await adapter.get_exchange_point(31)

        assert mock_request.call_args[0][1] == "/ix/31"
        assert record.name == "DE-CIX Frankfurt"

    @pytest.mark.asyncio
    async def test_get_exchange_point_networks(self, adapter):
        rows = [{"net_id": 1, "ix_id": 31, "speed": 100000}]
        with patch.object(adapter.client, "_execute_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = {"data": rows}

            assert await adapter.get_exchange_point_networks(31) == rows

        assert mock_request.call_args[0][2].as_dict() == {"ix_id": "31"}

    @pytest.mark.asyncio
    async def test_get_networks(self, adapter):
        payload = {"data": [{"id": 20, "name": "Example Net", "asn": 64500, "info_type": "NSP"}]}
        with patch.object(adapter.client, "_execute_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = payload

            result = await adapter.get_networks({"asn": 64500})

        assert mock_request.call_args[0][2].as_dict() == {"asn": "64500"}
        assert result.data[0].asn == 64500

    def test_get_health(self, adapter):
        health = adapter.get_health()

        assert health["authenticated"] is False
        assert health["rate_limit"]["remaining"] == 100


class TestCloudflareRadarAdapter:
    """Test telemetry adapter."""

    @pytest.fixture
    def adapter(self, clock):
        return CloudflareRadarAdapter(
            client=make_client("cloudflare-radar", clock),
            clock=clock,
            rate_limit=RateLimitWindow(limit=1200, window_seconds=300, clock=clock),
            api_token="test-token",
        )

    def test_token_sets_authorization_header(self, adapter):
        assert adapter.is_authenticated is True
        assert adapter.client.config.headers["Authorization"] == "Bearer test-token"

    @pytest.mark.asyncio
    async def test_missing_token(self, clock):
        adapter = CloudflareRadarAdapter(client=make_client("cloudflare-radar", clock), clock=clock, api_token="")

        with patch.object(adapter.client, "_execute_request", new_callable=AsyncMock) as mock_request:
            with pytest.raises(ConfigurationError) as exc_info:
                await adapter.get_attack_data()

        assert exc_info.value.setting == "CLOUDFLARE_API_TOKEN"
        mock_request.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_attack_data(self, adapter, sample_radar_attacks):
        with patch.object(adapter.client, "_execute_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = sample_radar_attacks

            result = await adapter.get_attack_data({"location": "US", "protocol": "UDP"})

        endpoint, query = mock_request.call_args[0][1:3]
        assert endpoint == "/attacks/layer3/timeseries_groups"
        assert query.as_dict() == {
            "dateRange": "1h",
            "format": "json",
            "location": "US",
            "protocol": "UDP",
        }

        assert result.metadata.source == ResultSource.CLOUDFLARE_RADAR
        assert result.metadata.count == 2
        first = result.data[0]
        assert first.by_protocol == {"udp": 0.6, "tcp": 0.3, "icmp": 0.1}
        assert first.total == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_health_tracks_latest_data_age(self, adapter, clock, sample_radar_attacks):
        with patch.object(adapter.client, "_execute_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = sample_radar_attacks
            await adapter.get_attack_data()

        clock.advance(30)
        health = adapter.get_health()

        assert health["latest_data_age_ms"]["attacks"] == 30_000
        assert health["latest_data_age_ms"]["traffic"] is None
        assert health["rate_limit"]["remaining"] == 1199
        assert health["rate_limit_low"] is False
