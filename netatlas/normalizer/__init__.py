"""
Normalizer Module

Canonical data model and upstream response transformation.

Components:
    - DataResult / ResultMetadata: Result envelope with source, confidence and freshness
    - Record types: cables, exchange points, facilities, networks, telemetry samples
    - QueryParams: Deterministically serialized query options
    - ResponseTransformer: Per-upstream payload transformers selected by TransformerKind
    - geo: Distance, latency and capacity estimation helpers
"""

from .schemas import (
    AttemptStage,
    AttackSample,
    AttackVector,
    BGPRoute,
    CableRecord,
    CableStatus,
    DataResult,
    DatasetKind,
    ExchangePointRecord,
    FacilityRecord,
    Freshness,
    GeoPoint,
    InfrastructureSnapshot,
    LandingPoint,
    MetricEstimate,
    NetworkRecord,
    QueryParams,
    RecordMetadata,
    ResultMetadata,
    ResultSource,
    RouteEstimate,
    SiteLocation,
    SourceAttempt,
    TrafficSample,
)
from .transformer import (
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

__all__ = [
    "AttemptStage",
    "AttackSample",
    "AttackVector",
    "BGPRoute",
    "CableRecord",
    "CableStatus",
    "DataResult",
    "DatasetKind",
    "ExchangePointRecord",
    "FacilityRecord",
    "Freshness",
    "GeoPoint",
    "InfrastructureSnapshot",
    "LandingPoint",
    "MetricEstimate",
    "NetworkRecord",
    "QueryParams",
    "RecordMetadata",
    "ResultMetadata",
    "ResultSource",
    "RouteEstimate",
    "SiteLocation",
    "SourceAttempt",
    "TrafficSample",
    "ResponseTransformer",
    "TransformerKind",
    "CableTransformer",
    "ExchangePointTransformer",
    "FacilityTransformer",
    "NetworkTransformer",
    "AttackTransformer",
    "AttackVectorTransformer",
    "TrafficTransformer",
    "BGPTransformer",
]
