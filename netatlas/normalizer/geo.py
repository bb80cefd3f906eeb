"""
Geographic estimation helpers.

Pure functions shared by the transformers (to backfill missing cable
paths and latencies) and by the fallback source's estimation API.
"""

import math
from typing import Optional

EARTH_RADIUS_KM = 6371.0

# Light in vacuum, km per millisecond
SPEED_OF_LIGHT_KM_MS = 299.792458

# Light in single-mode fibre travels at roughly 0.67c
FIBER_VELOCITY_FACTOR = 0.67

# Terrestrial/routed paths: ~200,000 km/s effective plus fixed equipment overhead
ROUTED_SPEED_KM_S = 200_000.0
ROUTED_OVERHEAD_MS = 5.0

# Capacity heuristic by great-circle distance (km threshold, Gbps)
CAPACITY_BUCKETS: tuple[tuple[float, float], ...] = (
    (5000.0, 60000.0),
    (2000.0, 40000.0),
)
DEFAULT_CAPACITY_GBPS = 20000.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two coordinates in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def path_length_km(points: list[tuple[float, float]]) -> float:
    """Sum of great-circle legs along (lat, lng) points."""
    return sum(
        haversine_km(a[0], a[1], b[0], b[1])
        for a, b in zip(points, points[1:])
    )


def interpolate_path(
    start: tuple[float, float],
    end: tuple[float, float],
    segments: int = 10,
) -> list[tuple[float, float]]:
    """
    Straight interpolation between two (lat, lng) points.

    Used to backfill a drawable path when an upstream only gives landing
    points. Returns segments + 1 points including both ends.
    """
    segments = max(1, segments)
    return [
        (
            start[0] + (end[0] - start[0]) * i / segments,
            start[1] + (end[1] - start[1]) * i / segments,
        )
        for i in range(segments + 1)
    ]


def fiber_latency_ms(length_km: float) -> float:
    """
    One-way latency over submarine fibre.

    Propagation at 0.67c plus 0.1 ms of repeater/regeneration delay per
    100 km of cable.
    """
    if length_km <= 0:
        return 0.0
    propagation = length_km / (SPEED_OF_LIGHT_KM_MS * FIBER_VELOCITY_FACTOR)
    repeaters = (length_km / 100.0) * 0.1
    return round(propagation + repeaters, 2)


def routed_latency_ms(distance_km: float) -> float:
    """Latency estimate for a routed path: propagation plus fixed overhead."""
    return round(distance_km / ROUTED_SPEED_KM_S * 1000 + ROUTED_OVERHEAD_MS, 2)


def capacity_for_distance(distance_km: float) -> float:
    """Typical design capacity (Gbps) of a system spanning distance_km."""
    for threshold, capacity in CAPACITY_BUCKETS:
        if distance_km > threshold:
            return capacity
    return DEFAULT_CAPACITY_GBPS


def parse_capacity_gbps(value: Optional[object]) -> float:
    """
    Parse a capacity string such as "250 Tbps" or "40Gbps" into Gbps.

    Bare numbers are taken to be Gbps. Unparseable input yields 0.0.
    """
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip().lower().replace(",", "")
    multiplier = 1.0
    if "tbps" in text or "tb/s" in text:
        multiplier = 1000.0
    elif "mbps" in text or "mb/s" in text:
        multiplier = 0.001

    digits = ""
    for char in text:
        if char.isdigit() or char == ".":
            digits += char
        elif digits:
            break
    try:
        return float(digits) * multiplier
    except ValueError:
        return 0.0
