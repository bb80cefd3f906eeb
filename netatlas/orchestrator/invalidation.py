"""
Cache invalidation rules per dataset kind.

Rules are static configuration looked up by the dataset kind encoded in
a cache key ("<kind>:<serialized options>").
"""

from dataclasses import dataclass, field
from typing import Mapping, Optional, Union

from netatlas.normalizer.schemas import DatasetKind, QueryParams

MINUTE = 60
DAY = 24 * 60 * MINUTE

# Stale-while-revalidate kinds keep entries this many TTLs so a stale
# copy is still available to the degraded read path.
STALE_RETENTION_FACTOR = 2


@dataclass(frozen=True)
class InvalidationRule:
    """TTL and revalidation policy for one dataset kind."""

    ttl_seconds: float
    stale_while_revalidate: bool
    revalidate_triggers: frozenset[str] = field(default_factory=frozenset)

    @property
    def retention_seconds(self) -> float:
        """How long entries are physically kept in the cache tiers."""
        if self.stale_while_revalidate:
            return self.ttl_seconds * STALE_RETENTION_FACTOR
        return self.ttl_seconds


DEFAULT_RULES: dict[str, InvalidationRule] = {
    DatasetKind.CABLES.value: InvalidationRule(
        ttl_seconds=30 * DAY,
        stale_while_revalidate=True,
        revalidate_triggers=frozenset({"manual"}),
    ),
    DatasetKind.EXCHANGE_POINTS.value: InvalidationRule(
        ttl_seconds=7 * DAY,
        stale_while_revalidate=True,
        revalidate_triggers=frozenset({"manual", "daily"}),
    ),
    DatasetKind.DATA_CENTERS.value: InvalidationRule(
        ttl_seconds=7 * DAY,
        stale_while_revalidate=True,
        revalidate_triggers=frozenset({"manual", "daily"}),
    ),
    DatasetKind.ATTACKS.value: InvalidationRule(
        ttl_seconds=1 * MINUTE,
        stale_while_revalidate=False,
        revalidate_triggers=frozenset({"interval"}),
    ),
    "metrics": InvalidationRule(
        ttl_seconds=1 * MINUTE,
        stale_while_revalidate=False,
        revalidate_triggers=frozenset({"interval"}),
    ),
    "bgp-routes": InvalidationRule(
        ttl_seconds=5 * MINUTE,
        stale_while_revalidate=True,
        revalidate_triggers=frozenset({"interval"}),
    ),
    "default": InvalidationRule(
        ttl_seconds=5 * MINUTE,
        stale_while_revalidate=True,
    ),
}


def build_cache_key(
    kind: Union[DatasetKind, str],
    options: Optional[Union[Mapping, QueryParams]] = None,
) -> str:
    """Deterministic cache key: dataset kind plus sorted, URL-encoded options."""
    kind_value = kind.value if isinstance(kind, DatasetKind) else str(kind)
    return f"{kind_value}:{QueryParams.from_options(options).serialize()}"


class InvalidationStrategy:
    """Lookup of invalidation rules by cache key."""

    def __init__(self, rules: Optional[Mapping[str, InvalidationRule]] = None):
        self.rules = dict(DEFAULT_RULES)
        if rules:
            self.rules.update(rules)

    @staticmethod
    def extract_dataset_kind(key: str) -> str:
        """
        Dataset kind encoded in a cache key.

        The second-to-last colon-delimited segment, falling back to the
        first: "cables:region=Atlantic" → "cables",
        "api:bgp-routes:456" → "bgp-routes", "metrics" → "metrics".
        """
        parts = key.split(":")
        if len(parts) >= 2:
            return parts[-2]
        return parts[0]

    def get_rule(self, key_or_kind: Union[str, DatasetKind]) -> InvalidationRule:
        """Rule for a cache key or a bare dataset kind; unknown kinds get the default rule."""
        if isinstance(key_or_kind, DatasetKind):
            kind = key_or_kind.value
        elif ":" in key_or_kind:
            kind = self.extract_dataset_kind(key_or_kind)
        else:
            kind = key_or_kind
        return self.rules.get(kind, self.rules["default"])

    def get_ttl(self, key: str) -> float:
        return self.get_rule(key).ttl_seconds

    def get_retention(self, key: str) -> float:
        return self.get_rule(key).retention_seconds

    def should_revalidate(self, key: str, age_seconds: float) -> bool:
        """True when a stale-while-revalidate entry is older than its TTL."""
        rule = self.get_rule(key)
        return rule.stale_while_revalidate and age_seconds > rule.ttl_seconds
