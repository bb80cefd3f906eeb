"""
Data schemas for normalized infrastructure data.

Pydantic models providing type safety, validation, and serialization
for the records returned by every source (live adapters, cache tiers,
fallback generator) and for the result envelope that carries source,
confidence and freshness metadata.
"""

import json
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Literal, Mapping, Optional, Sequence, Union
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator


class DatasetKind(str, Enum):
    """Logical dataset categories served by the orchestrator."""

    CABLES = "cables"
    EXCHANGE_POINTS = "ixps"
    DATA_CENTERS = "datacenters"
    ATTACKS = "attacks"


class ResultSource(str, Enum):
    """Where a DataResult came from."""

    TELEGEOGRAPHY = "telegeography"
    PEERINGDB = "peeringdb"
    CLOUDFLARE_RADAR = "cloudflare-radar"
    CACHE = "cache"
    STALE_CACHE = "stale-cache"
    FALLBACK = "fallback"
    UNAVAILABLE = "unavailable"

    @property
    def is_live(self) -> bool:
        return self in (ResultSource.TELEGEOGRAPHY, ResultSource.PEERINGDB, ResultSource.CLOUDFLARE_RADAR)


class Freshness(str, Enum):
    """Display-only staleness indicator, ordered freshest first."""

    LIVE = "live"
    CACHED = "cached"
    STALE = "stale"
    STATIC = "static"
    ESTIMATED = "estimated"
    NONE = "none"

    @property
    def rank(self) -> int:
        return list(Freshness).index(self)


class CableStatus(str, Enum):
    """Lifecycle status derived from a cable's ready-for-service year."""

    PLANNED = "planned"
    LAUNCHING = "launching"
    OPERATIONAL = "operational"
    AGING = "aging"
    UNKNOWN = "unknown"


class AttemptStage(str, Enum):
    """Stages of the orchestrator's fallback chain."""

    CACHE = "cache"
    LIVE_API = "live-api"
    STALE_CACHE = "stale-cache"
    FALLBACK = "fallback"


# ========== Record Building Blocks ==========

class GeoPoint(BaseModel):
    """A WGS84 coordinate."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., description="Latitude in degrees", ge=-90, le=90)
    lng: float = Field(..., description="Longitude in degrees")

    @field_validator("lng")
    @classmethod
    def wrap_longitude(cls, v: float) -> float:
        """Wrap longitudes past the antimeridian into [-180, 180]."""
        if -180 <= v <= 180:
            return v
        return ((v + 180) % 360) - 180


class RecordMetadata(BaseModel):
    """Per-record provenance and quality."""

    model_config = ConfigDict(frozen=True)

    source: str = Field(..., description="Provider or generator that produced the record")
    confidence: float = Field(..., description="Trust in the record's accuracy", ge=0, le=1)
    freshness: Freshness = Field(Freshness.LIVE, description="Staleness indicator")
    last_updated_ms: Optional[int] = Field(None, description="Epoch ms of the upstream update")
    data_quality: Optional[float] = Field(None, description="Field completeness score", ge=0, le=1)
    estimated: bool = Field(False, description="True when values were synthesized")
    estimation_method: Optional[str] = Field(None, description="Estimation model name")


class LandingPoint(BaseModel):
    """Shore end of a submarine cable."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    name: str
    country: Optional[str] = None
    location: Optional[GeoPoint] = None


class CableSpecs(BaseModel):
    model_config = ConfigDict(frozen=True)

    length_km: Optional[float] = Field(None, ge=0)
    capacity_gbps: float = Field(0.0, description="Design capacity in Gbps", ge=0)
    ready_for_service_year: Optional[int] = None
    fiber_pairs: Optional[int] = Field(None, ge=0)
    url: Optional[str] = None


class CableDerived(BaseModel):
    model_config = ConfigDict(frozen=True)

    estimated_latency_ms: Optional[float] = Field(None, ge=0)
    status: CableStatus = CableStatus.UNKNOWN
    age_years: Optional[int] = None


class SiteLocation(BaseModel):
    """Postal and geographic location of an exchange or facility."""

    model_config = ConfigDict(frozen=True)

    city: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    address: Optional[str] = None
    postcode: Optional[str] = None
    point: Optional[GeoPoint] = None


# ========== Records ==========

class CableRecord(BaseModel):
    """Normalized submarine cable."""

    model_config = ConfigDict(frozen=True)

    type: Literal["submarine-cable"] = "submarine-cable"
    id: str
    name: str
    owners: tuple[str, ...] = ()
    landing_points: tuple[LandingPoint, ...] = ()
    path: tuple[GeoPoint, ...] = Field((), description="Ordered route coordinates")
    specs: CableSpecs = Field(default_factory=CableSpecs)
    derived: CableDerived = Field(default_factory=CableDerived)
    metadata: RecordMetadata


class ExchangePointRecord(BaseModel):
    """Normalized internet exchange point."""

    model_config = ConfigDict(frozen=True)

    type: Literal["ixp"] = "ixp"
    id: str
    name: str
    name_long: Optional[str] = None
    location: SiteLocation = Field(default_factory=SiteLocation)
    network_count: int = Field(0, ge=0)
    facility_count: int = Field(0, ge=0)
    website: Optional[str] = None
    media: Optional[str] = None
    metadata: RecordMetadata


class FacilityRecord(BaseModel):
    """Normalized colocation facility / data center."""

    model_config = ConfigDict(frozen=True)

    type: Literal["datacenter"] = "datacenter"
    id: str
    name: str
    operator: Optional[str] = None
    location: SiteLocation = Field(default_factory=SiteLocation)
    network_count: int = Field(0, ge=0)
    website: Optional[str] = None
    clli: Optional[str] = None
    metadata: RecordMetadata


class NetworkRecord(BaseModel):
    """Normalized autonomous system from the peering directory."""

    model_config = ConfigDict(frozen=True)

    type: Literal["network"] = "network"
    id: str
    name: str
    asn: int = Field(..., ge=0)
    website: Optional[str] = None
    info_type: Optional[str] = None
    policy_general: Optional[str] = None
    metadata: RecordMetadata


class AttackSample(BaseModel):
    """Layer 3 attack volume for one time bucket."""

    model_config = ConfigDict(frozen=True)

    type: Literal["attack-sample"] = "attack-sample"
    timestamp_ms: int
    total: float = Field(0.0, ge=0)
    by_protocol: Mapping[str, float] = Field(default_factory=dict, validate_default=True)
    location: Optional[str] = None
    metadata: RecordMetadata

    @field_validator("by_protocol")
    @classmethod
    def freeze_protocols(cls, v: Mapping[str, float]) -> Mapping[str, float]:
        return MappingProxyType(dict(v))

    @field_serializer("by_protocol")
    def serialize_protocols(self, v: Mapping[str, float]) -> dict[str, float]:
        return dict(v)


class AttackVector(BaseModel):
    """Share of attack traffic attributed to one vector."""

    model_config = ConfigDict(frozen=True)

    type: Literal["attack-vector"] = "attack-vector"
    vector: str
    share_pct: float = Field(..., ge=0)
    metadata: RecordMetadata


class TrafficSample(BaseModel):
    """HTTP traffic volume for one time bucket."""

    model_config = ConfigDict(frozen=True)

    type: Literal["traffic-sample"] = "traffic-sample"
    timestamp_ms: int
    requests: float = Field(0.0, ge=0)
    byte_count: float = Field(0.0, ge=0)
    bandwidth: float = Field(0.0, ge=0)
    location: Optional[str] = None
    metadata: RecordMetadata


class BGPRoute(BaseModel):
    """A BGP route announcement as seen by the telemetry provider."""

    model_config = ConfigDict(frozen=True)

    type: Literal["bgp-route"] = "bgp-route"
    prefix: str
    asn: Optional[int] = None
    as_path: tuple[int, ...] = ()
    seen_at_ms: Optional[int] = None
    metadata: RecordMetadata


Record = Annotated[
    Union[
        CableRecord,
        ExchangePointRecord,
        FacilityRecord,
        NetworkRecord,
        AttackSample,
        AttackVector,
        TrafficSample,
        BGPRoute,
    ],
    Field(discriminator="type"),
]


# ========== Result Envelope ==========

class ResultMetadata(BaseModel):
    """Source, confidence and freshness of a DataResult."""

    model_config = ConfigDict(frozen=True)

    source: ResultSource
    confidence: float = Field(..., ge=0, le=1)
    freshness: Freshness
    timestamp_ms: int = Field(..., description="Epoch ms when the result was produced")
    count: int = Field(0, ge=0)
    fallback_reason: Optional[str] = None
    origin: Optional[ResultSource] = Field(None, description="Live source behind a cached result")
    stale_since_ms: Optional[int] = None
    cached_at_ms: Optional[int] = None
    error: Optional[str] = None


class DataResult(BaseModel):
    """
    Envelope returned by every layer: records plus metadata.

    Immutable once produced; derive degraded variants with with_metadata().
    """

    model_config = ConfigDict(frozen=True)

    data: tuple[Record, ...] = ()
    metadata: ResultMetadata

    @model_validator(mode="after")
    def check_count(self) -> "DataResult":
        if self.metadata.count != len(self.data):
            raise ValueError(
                f"metadata.count ({self.metadata.count}) does not match {len(self.data)} records"
            )
        return self

    @classmethod
    def build(
        cls,
        records: Sequence[Any],
        source: ResultSource,
        confidence: float,
        freshness: Freshness,
        timestamp_ms: int,
        **extra: Any,
    ) -> "DataResult":
        """Create a result whose count matches its records."""
        metadata = ResultMetadata(
            source=source,
            confidence=confidence,
            freshness=freshness,
            timestamp_ms=timestamp_ms,
            count=len(records),
            **extra,
        )
        return cls(data=tuple(records), metadata=metadata)

    @classmethod
    def empty(cls, timestamp_ms: int, error: Optional[str] = None) -> "DataResult":
        """Zero-confidence placeholder used when a dataset kind is unavailable."""
        return cls.build(
            [],
            source=ResultSource.UNAVAILABLE,
            confidence=0.0,
            freshness=Freshness.NONE,
            timestamp_ms=timestamp_ms,
            error=error,
        )

    def with_metadata(self, **updates: Any) -> "DataResult":
        """Return a copy carrying updated metadata; records are shared."""
        return self.model_copy(update={"metadata": self.metadata.model_copy(update=updates)})

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DataResult":
        return cls.model_validate(data)

    def __repr__(self) -> str:
        return (
            f"DataResult(count={self.metadata.count}, source={self.metadata.source.value}, "
            f"confidence={self.metadata.confidence}, freshness={self.metadata.freshness.value})"
        )


# ========== Query Parameters ==========

class QueryParams(BaseModel):
    """
    Typed, ordered query parameters.

    Built from arbitrary option mappings and serialized with sorted keys,
    so two option bags that differ only in insertion order produce the
    same cache and deduplication key.
    """

    model_config = ConfigDict(frozen=True)

    items: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_options(cls, options: Optional[Union[Mapping[str, Any], "QueryParams"]] = None) -> "QueryParams":
        if isinstance(options, QueryParams):
            return options
        normalized: dict[str, str] = {}
        for key, value in (options or {}).items():
            if value is None:
                continue
            normalized[str(key)] = cls._normalize_value(value)
        return cls(items=tuple(sorted(normalized.items())))

    @staticmethod
    def _normalize_value(value: Any) -> str:
        if isinstance(value, Enum):
            value = value.value
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (set, frozenset)):
            return ",".join(sorted(str(v) for v in value))
        if isinstance(value, (list, tuple)):
            return ",".join(str(v) for v in value)
        if isinstance(value, Mapping):
            return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
        return str(value)

    def serialize(self) -> str:
        """URL-encoded, key-sorted representation (never contains ':')."""
        return urlencode(self.items)

    def as_dict(self) -> dict[str, str]:
        return dict(self.items)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.as_dict().get(key, default)

    def __bool__(self) -> bool:
        return bool(self.items)


# ========== Diagnostics and Aggregates ==========

class SourceAttempt(BaseModel):
    """One step of the fallback chain for a single orchestrator call."""

    model_config = ConfigDict(frozen=True)

    source: AttemptStage
    success: bool
    error: Optional[str] = None


class InfrastructureSnapshot(BaseModel):
    """All dataset kinds fetched together."""

    model_config = ConfigDict(frozen=True)

    cables: DataResult
    exchange_points: DataResult
    data_centers: DataResult
    attacks: DataResult
    timestamp_ms: int
    total_items: int = Field(0, ge=0)
    average_confidence: float = Field(0.0, ge=0, le=1)

    def results(self) -> dict[DatasetKind, DataResult]:
        return {
            DatasetKind.CABLES: self.cables,
            DatasetKind.EXCHANGE_POINTS: self.exchange_points,
            DatasetKind.DATA_CENTERS: self.data_centers,
            DatasetKind.ATTACKS: self.attacks,
        }


# ========== Estimates ==========

class RouteEstimate(BaseModel):
    """Estimated path characteristics between two points."""

    model_config = ConfigDict(frozen=True)

    source: GeoPoint
    destination: GeoPoint
    distance_km: float = Field(..., ge=0)
    latency_ms: float = Field(..., ge=0)
    hops: int = Field(..., ge=1)
    metadata: RecordMetadata


class MetricEstimate(BaseModel):
    """Estimated network metric drawn from a baseline model."""

    model_config = ConfigDict(frozen=True)

    metric_type: str
    value: float
    unit: str
    metadata: RecordMetadata
