"""
Response transformers for upstream infrastructure data.

Each upstream payload shape has one ResponseTransformer implementation
that converts the provider's raw JSON into canonical records, stamps a
per-record confidence and completeness score, and wraps the records in
a DataResult. Transformers are selected by TransformerKind.
"""

import re
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from ..utils.exceptions import TransformationError
from . import geo
from .schemas import (
    AttackSample,
    AttackVector,
    BGPRoute,
    CableDerived,
    CableRecord,
    CableSpecs,
    CableStatus,
    DataResult,
    ExchangePointRecord,
    FacilityRecord,
    Freshness,
    GeoPoint,
    LandingPoint,
    NetworkRecord,
    RecordMetadata,
    ResultSource,
    SiteLocation,
    TrafficSample,
)


class TransformerKind(str, Enum):
    """Upstream payload shapes understood by the transformers."""

    CABLES = "telegeography-cables"
    EXCHANGE_POINTS = "peeringdb-ix"
    FACILITIES = "peeringdb-fac"
    NETWORKS = "peeringdb-net"
    ATTACKS = "radar-attacks"
    ATTACK_VECTORS = "radar-attack-vectors"
    TRAFFIC = "radar-traffic"
    BGP = "radar-bgp"


class ResponseTransformer(ABC):
    """
    Convert one raw upstream payload into a DataResult.

    Subclasses implement transform_records(); the base class handles
    result metadata and turns malformed payloads into TransformationError.
    """

    kind: TransformerKind
    source: ResultSource
    confidence: float

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock

    def transform(self, raw: Any) -> DataResult:
        """
        Transform a raw payload.

        Raises:
            TransformationError: If the payload does not have the expected shape
        """
        try:
            records = self.transform_records(raw)
        except TransformationError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise TransformationError(
                f"Malformed {self.source.value} payload: {e}",
                transformer=self.kind.value,
            ) from e

        return DataResult.build(
            records,
            source=self.source,
            confidence=self.confidence,
            freshness=Freshness.LIVE,
            timestamp_ms=int(self.clock() * 1000),
        )

    @abstractmethod
    def transform_records(self, raw: Any) -> list[Any]:
        """Return canonical records for a raw payload."""

    def _record_metadata(self, confidence: float, quality: Optional[float] = None,
                         last_updated: Any = None) -> RecordMetadata:
        return RecordMetadata(
            source=self.source.value,
            confidence=confidence,
            freshness=Freshness.LIVE,
            last_updated_ms=self.normalize_timestamp_ms(last_updated, required=False),
            data_quality=quality,
        )

    # ========== Shared Helpers ==========

    @staticmethod
    def completeness(checks: Iterable[bool]) -> float:
        """Fraction of expected fields that are present, in [0, 1]."""
        checks = list(checks)
        if not checks:
            return 0.0
        return round(sum(1 for present in checks if present) / len(checks), 4)

    @staticmethod
    def _extract_field(data: dict[str, Any], field_names: list[str]) -> Optional[Any]:
        """
        Extract field from data dictionary trying multiple field names.

        Args:
            data: Source data dictionary
            field_names: List of possible field names to try

        Returns:
            Optional[Any]: Field value or None if not found
        """
        for field_name in field_names:
            if field_name in data and data[field_name] not in (None, ""):
                return data[field_name]
        return None

    @staticmethod
    def normalize_number(value: Any) -> Optional[float]:
        """
        Normalize numeric formats ("6,600 km", "12", 12) to float.

        Returns:
            Optional[float]: Parsed value or None
        """
        if value is None or value == "" or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            match = re.search(r"-?\d+(?:\.\d+)?", value.replace(",", ""))
            if match:
                return float(match.group(0))
        return None

    @staticmethod
    def normalize_timestamp_ms(ts: Any, required: bool = True) -> Optional[int]:
        """
        Normalize epoch seconds, epoch ms, datetimes and ISO strings to epoch ms.

        Raises:
            TransformationError: If a required timestamp cannot be parsed
        """
        if ts is None or ts == "":
            if required:
                raise TransformationError("Missing timestamp", field="timestamp")
            return None

        if isinstance(ts, datetime):
            if ts.tzinfo is None:
                ts = ts.replace(tzinfo=timezone.utc)
            return int(ts.timestamp() * 1000)

        if isinstance(ts, (int, float)) and not isinstance(ts, bool):
            # Values below 1e11 are seconds
            return int(ts * 1000) if ts < 1e11 else int(ts)

        if isinstance(ts, str):
            try:
                parsed = datetime.fromisoformat(ts.strip().replace("Z", "+00:00"))
            except ValueError:
                parsed = None
            if parsed is not None:
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                return int(parsed.timestamp() * 1000)

        if required:
            raise TransformationError(f"Unable to parse timestamp: {ts}", field="timestamp", value=ts)
        return None

    @staticmethod
    def _geo_point(lat: Any, lng: Any) -> Optional[GeoPoint]:
        """GeoPoint from loose values; missing or (0, 0) coordinates give None."""
        lat_f = ResponseTransformer.normalize_number(lat)
        lng_f = ResponseTransformer.normalize_number(lng)
        if lat_f is None or lng_f is None or (lat_f == 0 and lng_f == 0):
            return None
        if not -90 <= lat_f <= 90:
            return None
        return GeoPoint(lat=lat_f, lng=lng_f)

    @staticmethod
    def _peeringdb_rows(raw: Any) -> list[dict[str, Any]]:
        rows = raw.get("data", []) if isinstance(raw, dict) else raw
        if not isinstance(rows, list):
            raise TransformationError("Expected a list under 'data'", field="data")
        return rows

    @staticmethod
    def _radar_result(raw: Any) -> dict[str, Any]:
        result = raw.get("result", {}) if isinstance(raw, dict) else {}
        if not isinstance(result, dict):
            raise TransformationError("Expected an object under 'result'", field="result")
        return result

    @staticmethod
    def _radar_series(result: dict[str, Any]) -> list[tuple[Any, dict[str, Any]]]:
        """
        Flatten Radar timeseries into (timestamp, values) pairs.

        Accepts both the row form ({"timeseries": [{"timestamp", "values"}]})
        and the columnar form ({"serie_0": {"timestamps": [...], "<name>": [...]}}).
        """
        if "timeseries" in result:
            return [(entry.get("timestamp"), entry.get("values") or {}) for entry in result["timeseries"]]

        serie = result.get("serie_0")
        if not serie:
            return []
        timestamps = serie.get("timestamps", [])
        columns = {name: values for name, values in serie.items() if name != "timestamps"}
        return [
            (ts, {name: values[i] for name, values in columns.items() if i < len(values)})
            for i, ts in enumerate(timestamps)
        ]


# ========== Cable Catalog ==========

class CableTransformer(ResponseTransformer):
    """Submarine cable catalog (plain list, {"cables": [...]} or GeoJSON features)."""

    kind = TransformerKind.CABLES
    source = ResultSource.TELEGEOGRAPHY
    confidence = 0.85

    BACKFILL_SEGMENTS = 20

    def transform_records(self, raw: Any) -> list[CableRecord]:
        if isinstance(raw, list):
            items = raw
        elif isinstance(raw, dict):
            items = raw.get("features") or raw.get("cables") or []
        else:
            raise TransformationError("Unexpected cable catalog payload", transformer=self.kind.value)

        return [self.transform_cable(item) for item in items]

    def transform_cable(self, item: dict[str, Any]) -> CableRecord:
        cable = dict(item.get("properties") or item)
        geometry = item.get("geometry") or {}
        if geometry.get("coordinates") and not cable.get("coordinates"):
            cable["coordinates"] = geometry["coordinates"]

        cable_id = self._extract_field(cable, ["cable_id", "id", "slug"])
        name = self._extract_field(cable, ["name"])
        if cable_id is None and name is None:
            raise TransformationError("Cable without id or name", transformer=self.kind.value, field="id")

        landing_points = self._landing_points(cable.get("landing_points") or [])
        upstream_path = self._path(cable.get("coordinates"))
        path = upstream_path or self._backfill_path(landing_points)

        length_km = self.normalize_number(cable.get("length"))
        if length_km is None and len(path) >= 2:
            length_km = round(geo.path_length_km([(p.lat, p.lng) for p in path]), 1)

        rfs_year = self._year(self._extract_field(cable, ["ready_for_service", "rfs", "rfs_year"]))
        current_year = datetime.fromtimestamp(self.clock(), tz=timezone.utc).year
        design_capacity = cable.get("design_capacity")

        quality = self.completeness([
            bool(upstream_path),
            len(landing_points) >= 2,
            bool(design_capacity),
            bool(cable.get("owners") or cable.get("owner")),
            rfs_year is not None,
        ])

        return CableRecord(
            id=f"cable-{cable_id or name}",
            name=name or str(cable_id),
            owners=self._owners(cable.get("owners") or cable.get("owner")),
            landing_points=landing_points,
            path=path,
            specs=CableSpecs(
                length_km=length_km,
                capacity_gbps=geo.parse_capacity_gbps(design_capacity),
                ready_for_service_year=rfs_year,
                fiber_pairs=int(self.normalize_number(cable.get("fiber_pairs")) or 0) or None,
                url=cable.get("url"),
            ),
            derived=CableDerived(
                estimated_latency_ms=geo.fiber_latency_ms(length_km) if length_km else None,
                status=self.determine_status(rfs_year, current_year),
                age_years=(current_year - rfs_year) if rfs_year else None,
            ),
            metadata=self._record_metadata(
                confidence=0.9 if upstream_path else 0.6,
                quality=quality,
                last_updated=cable.get("updated_at"),
            ),
        )

    @staticmethod
    def determine_status(rfs_year: Optional[int], current_year: int) -> CableStatus:
        if rfs_year is None:
            return CableStatus.UNKNOWN
        if rfs_year > current_year:
            return CableStatus.PLANNED
        if rfs_year == current_year:
            return CableStatus.LAUNCHING
        if current_year - rfs_year > 20:
            return CableStatus.AGING
        return CableStatus.OPERATIONAL

    def _landing_points(self, raw_points: list[dict[str, Any]]) -> list[LandingPoint]:
        points = []
        for lp in raw_points:
            name = self._extract_field(lp, ["name", "city"])
            if not name:
                continue
            points.append(LandingPoint(
                id=str(lp["id"]) if lp.get("id") is not None else None,
                name=name,
                country=lp.get("country"),
                location=self._geo_point(
                    self._extract_field(lp, ["latitude", "lat"]),
                    self._extract_field(lp, ["longitude", "lng", "lon"]),
                ),
            ))
        return points

    @staticmethod
    def _path(coordinates: Any) -> list[GeoPoint]:
        """[lng, lat] pairs, LineString or MultiLineString, into GeoPoints."""
        if not coordinates:
            return []
        if isinstance(coordinates[0][0], (int, float)):
            lines = [coordinates]
        else:
            lines = coordinates
        return [GeoPoint(lat=pair[1], lng=pair[0]) for line in lines for pair in line]

    def _backfill_path(self, landing_points: list[LandingPoint]) -> list[GeoPoint]:
        located = [lp.location for lp in landing_points if lp.location is not None]
        if len(located) < 2:
            return []
        start, end = located[0], located[-1]
        return [
            GeoPoint(lat=lat, lng=lng)
            for lat, lng in geo.interpolate_path((start.lat, start.lng), (end.lat, end.lng), self.BACKFILL_SEGMENTS)
        ]

    @staticmethod
    def _owners(value: Any) -> list[str]:
        if not value:
            return []
        if isinstance(value, str):
            return [owner.strip() for owner in value.split(",") if owner.strip()]
        return [str(owner) for owner in value]

    @staticmethod
    def _year(value: Any) -> Optional[int]:
        if value is None:
            return None
        match = re.search(r"\d{4}", str(value))
        return int(match.group(0)) if match else None


# ========== Peering Directory ==========

class ExchangePointTransformer(ResponseTransformer):
    """PeeringDB /ix rows."""

    kind = TransformerKind.EXCHANGE_POINTS
    source = ResultSource.PEERINGDB
    confidence = 0.98

    def transform_records(self, raw: Any) -> list[ExchangePointRecord]:
        records = []
        for ixp in self._peeringdb_rows(raw):
            point = self._geo_point(ixp.get("latitude"), ixp.get("longitude"))
            quality = self.completeness([
                point is not None,
                bool(ixp.get("website")),
                bool(ixp.get("tech_email")),
                (ixp.get("net_count") or 0) > 0,
            ])
            records.append(ExchangePointRecord(
                id=f"ixp-{ixp['id']}",
                name=ixp["name"],
                name_long=ixp.get("name_long") or None,
                location=SiteLocation(city=ixp.get("city"), country=ixp.get("country"), point=point),
                network_count=ixp.get("net_count") or 0,
                facility_count=ixp.get("fac_count") or 0,
                website=ixp.get("website") or None,
                media=ixp.get("media") or "Ethernet",
                metadata=self._record_metadata(self.confidence, quality, ixp.get("updated")),
            ))
        return records


class FacilityTransformer(ResponseTransformer):
    """PeeringDB /fac rows."""

    kind = TransformerKind.FACILITIES
    source = ResultSource.PEERINGDB
    confidence = 0.95

    def transform_records(self, raw: Any) -> list[FacilityRecord]:
        records = []
        for fac in self._peeringdb_rows(raw):
            point = self._geo_point(fac.get("latitude"), fac.get("longitude"))
            org = fac.get("org") if isinstance(fac.get("org"), dict) else {}
            quality = self.completeness([
                point is not None,
                bool(fac.get("address1")),
                bool(fac.get("website")),
                bool(fac.get("sales_email") or fac.get("tech_email")),
            ])
            records.append(FacilityRecord(
                id=f"facility-{fac['id']}",
                name=fac["name"],
                operator=fac.get("org_name") or org.get("name"),
                location=SiteLocation(
                    address=fac.get("address1") or None,
                    city=fac.get("city"),
                    state=fac.get("state") or None,
                    country=fac.get("country"),
                    postcode=fac.get("zipcode") or None,
                    point=point,
                ),
                network_count=fac.get("net_count") or 0,
                website=fac.get("website") or None,
                clli=fac.get("clli") or None,
                metadata=self._record_metadata(self.confidence, quality, fac.get("updated")),
            ))
        return records


class NetworkTransformer(ResponseTransformer):
    """PeeringDB /net rows."""

    kind = TransformerKind.NETWORKS
    source = ResultSource.PEERINGDB
    confidence = 0.95

    def transform_records(self, raw: Any) -> list[NetworkRecord]:
        return [
            NetworkRecord(
                id=f"network-{net['id']}",
                name=net["name"],
                asn=net["asn"],
                website=net.get("website") or None,
                info_type=net.get("info_type") or None,
                policy_general=net.get("policy_general") or None,
                metadata=self._record_metadata(
                    self.confidence,
                    self.completeness([bool(net.get("website")), bool(net.get("policy_general")), bool(net.get("info_type"))]),
                    net.get("updated"),
                ),
            )
            for net in self._peeringdb_rows(raw)
        ]


# ========== Telemetry ==========

class AttackTransformer(ResponseTransformer):
    """Radar layer 3 attack timeseries grouped by protocol."""

    kind = TransformerKind.ATTACKS
    source = ResultSource.CLOUDFLARE_RADAR
    confidence = 0.95

    def transform_records(self, raw: Any) -> list[AttackSample]:
        samples = []
        for timestamp, values in self._radar_series(self._radar_result(raw)):
            by_protocol = {
                protocol.lower(): float(self.normalize_number(value) or 0.0)
                for protocol, value in values.items()
            }
            samples.append(AttackSample(
                timestamp_ms=self.normalize_timestamp_ms(timestamp),
                total=round(sum(by_protocol.values()), 6),
                by_protocol=by_protocol,
                metadata=self._record_metadata(self.confidence),
            ))
        return samples


class AttackVectorTransformer(ResponseTransformer):
    """Radar top attack vectors."""

    kind = TransformerKind.ATTACK_VECTORS
    source = ResultSource.CLOUDFLARE_RADAR
    confidence = 0.93

    def transform_records(self, raw: Any) -> list[AttackVector]:
        result = self._radar_result(raw)
        rows = result.get("top") or result.get("top_0") or []
        return [
            AttackVector(
                vector=row.get("name") or row.get("attackVector") or "unknown",
                share_pct=float(self.normalize_number(row.get("percentage", row.get("value"))) or 0.0),
                metadata=self._record_metadata(self.confidence),
            )
            for row in rows
        ]


class TrafficTransformer(ResponseTransformer):
    """Radar HTTP traffic timeseries."""

    kind = TransformerKind.TRAFFIC
    source = ResultSource.CLOUDFLARE_RADAR
    confidence = 0.92

    def transform_records(self, raw: Any) -> list[TrafficSample]:
        return [
            TrafficSample(
                timestamp_ms=self.normalize_timestamp_ms(timestamp),
                requests=self.normalize_number(values.get("requests", values.get("values"))) or 0.0,
                byte_count=self.normalize_number(values.get("bytes")) or 0.0,
                bandwidth=self.normalize_number(values.get("bandwidth")) or 0.0,
                metadata=self._record_metadata(self.confidence),
            )
            for timestamp, values in self._radar_series(self._radar_result(raw))
        ]


class BGPTransformer(ResponseTransformer):
    """Radar BGP route listings."""

    kind = TransformerKind.BGP
    source = ResultSource.CLOUDFLARE_RADAR
    confidence = 0.90

    def transform_records(self, raw: Any) -> list[BGPRoute]:
        return [
            BGPRoute(
                prefix=route["prefix"],
                asn=route.get("origin_asn"),
                as_path=[int(asn) for asn in route.get("as_path") or []],
                seen_at_ms=self.normalize_timestamp_ms(route.get("seen_at"), required=False),
                metadata=self._record_metadata(self.confidence),
            )
            for route in self._radar_result(raw).get("routes", [])
        ]
