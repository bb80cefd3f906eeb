"""
Unit tests for upstream response transformers and geo helpers.
"""

import pytest

from netatlas.normalizer import geo
from netatlas.normalizer.schemas import CableStatus, ResultSource
from netatlas.normalizer.transformer import (
    AttackTransformer,
    AttackVectorTransformer,
    BGPTransformer,
    CableTransformer,
    ExchangePointTransformer,
    FacilityTransformer,
    NetworkTransformer,
    ResponseTransformer,
    TrafficTransformer,
    TransformerKind,
)
from netatlas.utils.exceptions import TransformationError


class TestCableTransformer:
    """Test cable catalog conversion."""

    def test_transform_catalog(self, clock, sample_cable_catalog):
        result = CableTransformer(clock=clock).transform(sample_cable_catalog)

        assert result.metadata.source == ResultSource.TELEGEOGRAPHY
        assert result.metadata.confidence == 0.85
        assert result.metadata.count == 2
        assert result.metadata.timestamp_ms == int(clock() * 1000)

        marea = result.data[0]
        assert marea.id == "cable-marea"
        assert marea.owners == ("Meta", "Microsoft", "Telxius")
        assert marea.specs.length_km == 6605.0
        assert marea.specs.capacity_gbps == 200000.0
        assert marea.specs.ready_for_service_year == 2018
        assert marea.derived.status == CableStatus.OPERATIONAL
        assert marea.derived.estimated_latency_ms == geo.fiber_latency_ms(6605.0)
        assert len(marea.path) == 3
        assert marea.metadata.confidence == 0.9
        assert marea.metadata.data_quality == 1.0

    def test_missing_path_is_backfilled(self, clock, sample_cable_catalog):
        sacs = CableTransformer(clock=clock).transform(sample_cable_catalog).data[1]

        assert len(sacs.path) == CableTransformer.BACKFILL_SEGMENTS + 1
        assert sacs.path[0].lat == -9.48
        assert sacs.specs.length_km > 0
        assert sacs.metadata.confidence == 0.6

    def test_geojson_features(self, clock):
        payload = {
            "features": [
                {
                    "properties": {"id": "2africa", "name": "2Africa"},
                    "geometry": {"coordinates": [[[8.9, 44.4], [18.4, -33.9]]]},
                }
            ]
        }

        cable = CableTransformer(clock=clock).transform(payload).data[0]

        assert cable.id == "cable-2africa"
        assert [(p.lat, p.lng) for p in cable.path] == [(44.4, 8.9), (-33.9, 18.4)]

    @pytest.mark.parametrize("rfs, status", [
        (None, CableStatus.UNKNOWN),
        (2030, CableStatus.PLANNED),
        (2025, CableStatus.LAUNCHING),
        (2015, CableStatus.OPERATIONAL),
        (2000, CableStatus.AGING),
    ])
    def test_determine_status(self, rfs, status):
        assert CableTransformer.determine_status(rfs, 2025) == status

    def test_malformed_payload(self, clock):
        with pytest.raises(TransformationError):
            CableTransformer(clock=clock).transform("not a catalog")

    def test_cable_without_identity(self, clock):
        with pytest.raises(TransformationError):
            CableTransformer(clock=clock).transform([{"length": "100 km"}])


class TestPeeringDBTransformers:
    """Test directory row conversion."""

    def test_exchange_points(self, clock, sample_peeringdb_ix):
        result = ExchangePointTransformer(clock=clock).transform(sample_peeringdb_ix)

        assert result.metadata.source == ResultSource.PEERINGDB
        assert result.metadata.confidence == 0.98

        decix, amsix = result.data
        assert decix.id == "ixp-31"
        assert decix.location.point.lat == 50.11
        assert decix.network_count == 1100
        assert decix.media == "Ethernet"
        assert decix.metadata.data_quality == 1.0
        assert decix.metadata.last_updated_ms == 1714564800000
        assert amsix.location.point is None
        assert amsix.metadata.data_quality == 0.25

    def test_facilities(self, clock, sample_peeringdb_fac):
        result = FacilityTransformer(clock=clock).transform(sample_peeringdb_fac)
        facility = result.data[0]

        assert result.metadata.confidence == 0.95
        assert facility.id == "facility-1"
        assert facility.operator == "Equinix"
        assert facility.location.state == "VA"
        assert facility.location.postcode == "20147"
        assert facility.clli == "ASBNVA"

    def test_networks(self, clock):
        payload = {"data": [{"id": 5, "name": "Example Net", "asn": 64500, "policy_general": "Open"}]}

        network = NetworkTransformer(clock=clock).transform(payload).data[0]

        assert network.id == "network-5"
        assert network.asn == 64500

    def test_missing_required_field(self, clock):
        with pytest.raises(TransformationError) as exc_info:
            ExchangePointTransformer(clock=clock).transform({"data": [{"name": "no id"}]})
        assert exc_info.value.transformer == TransformerKind.EXCHANGE_POINTS.value

    def test_non_list_data(self, clock):
        with pytest.raises(TransformationError):
            FacilityTransformer(clock=clock).transform({"data": {"id": 1}})


class TestRadarTransformers:
    """Test telemetry conversion."""

    def test_attack_columnar_series(self, clock, sample_radar_attacks):
        result = AttackTransformer(clock=clock).transform(sample_radar_attacks)

        assert result.metadata.source == ResultSource.CLOUDFLARE_RADAR
        assert result.metadata.count == 2
        first = result.data[0]
        assert first.by_protocol == {"udp": 0.6, "tcp": 0.3, "icmp": 0.1}
        assert first.total == pytest.approx(1.0)
        assert first.timestamp_ms == 1759996800000

    def test_attack_row_series(self, clock):
        payload = {"result": {"timeseries": [{"timestamp": 1760000000, "values": {"UDP": 2}}]}}

        sample = AttackTransformer(clock=clock).transform(payload).data[0]

        assert sample.timestamp_ms == 1760000000000
        assert sample.by_protocol == {"udp": 2.0}

    def test_attack_vectors(self, clock):
        payload = {"result": {"top_0": [{"name": "SYN flood", "percentage": "45.5"}]}}

        vector = AttackVectorTransformer(clock=clock).transform(payload).data[0]

        assert vector.type == "attack-vector"
        assert vector.vector == "SYN flood"
        assert vector.share_pct == 45.5

    def test_traffic(self, clock):
        payload = {"result": {"serie_0": {"timestamps": ["2025-10-09T08:00:00Z"], "requests": [120], "bytes": [4096]}}}

        sample = TrafficTransformer(clock=clock).transform(payload).data[0]

        assert sample.requests == 120.0
        assert sample.byte_count == 4096.0

    def test_bgp_routes(self, clock):
        payload = {"result": {"routes": [{"prefix": "192.0.2.0/24", "origin_asn": 64500, "as_path": ["64501", 64500]}]}}

        route = BGPTransformer(clock=clock).transform(payload).data[0]

        assert route.prefix == "192.0.2.0/24"
        assert route.as_path == (64501, 64500)

    def test_empty_result(self, clock):
        assert AttackTransformer(clock=clock).transform({"result": {}}).metadata.count == 0

    def test_unparseable_timestamp(self, clock):
        payload = {"result": {"timeseries": [{"timestamp": "yesterday", "values": {}}]}}

        with pytest.raises(TransformationError):
            AttackTransformer(clock=clock).transform(payload)


class TestHelpers:
    """Test shared normalization helpers."""

    @pytest.mark.parametrize("value, expected", [
        ("6,600 km", 6600.0),
        (12, 12.0),
        ("n/a", None),
        (None, None),
        (True, None),
    ])
    def test_normalize_number(self, value, expected):
        assert ResponseTransformer.normalize_number(value) == expected

    def test_normalize_timestamp_seconds_and_ms(self):
        assert ResponseTransformer.normalize_timestamp_ms(1_700_000_000) == 1_700_000_000_000
        assert ResponseTransformer.normalize_timestamp_ms(1_700_000_000_000) == 1_700_000_000_000

    def test_optional_timestamp(self):
        assert ResponseTransformer.normalize_timestamp_ms(None, required=False) is None
        with pytest.raises(TransformationError):
            ResponseTransformer.normalize_timestamp_ms(None)

    def test_completeness(self):
        assert ResponseTransformer.completeness([True, False, True, True]) == 0.75
        assert ResponseTransformer.completeness([]) == 0.0


class TestGeo:
    """Test geographic estimation helpers."""

    def test_haversine_known_distance(self):
        # London to Paris
        assert geo.haversine_km(51.5074, -0.1278, 48.8566, 2.3522) == pytest.approx(343.5, abs=1.0)

    def test_interpolate_path_endpoints(self):
        path = geo.interpolate_path((0, 0), (10, 20), segments=4)

        assert len(path) == 5
        assert path[0] == (0, 0)
        assert path[-1] == (10, 20)

    def test_fiber_latency(self):
        assert geo.fiber_latency_ms(0) == 0.0
        assert geo.fiber_latency_ms(1000) == pytest.approx(1000 / (299.792458 * 0.67) + 1.0, abs=0.01)

    def test_routed_latency(self):
        assert geo.routed_latency_ms(2000) == 15.0

    @pytest.mark.parametrize("distance, capacity", [(6000, 60000.0), (3000, 40000.0), (500, 20000.0)])
    def test_capacity_for_distance(self, distance, capacity):
        assert geo.capacity_for_distance(distance) == capacity

    @pytest.mark.parametrize("text, gbps", [
        ("250 Tbps", 250000.0),
        ("40Gbps", 40.0),
        ("500 Mbps", 0.5),
        ("unknown", 0.0),
        (None, 0.0),
    ])
    def test_parse_capacity(self, text, gbps):
        assert geo.parse_capacity_gbps(text) == gbps
