"""Per-entity freshness policies."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from venuesync.duration import format_duration, parse_duration
from venuesync.types import Duration


@dataclass(frozen=True, slots=True, repr=False)
class FreshnessPolicy:
    """How long a value may be served without refetch, and kept once unused.

    Durations are stored in milliseconds.
    """

    stale_after: int
    retain_for: int

    @classmethod
    def of(cls, stale_after: Duration, retain_for: Duration) -> FreshnessPolicy:
        stale_ms = parse_duration(stale_after)
        retain_ms = parse_duration(retain_for)
        if retain_ms < stale_ms:
            raise ValueError("retain_for must not be shorter than stale_after")
        return cls(stale_after=stale_ms, retain_for=retain_ms)

    def __repr__(self) -> str:
        return (
            f"FreshnessPolicy(stale_after={format_duration(self.stale_after)}, "
            f"retain_for={format_duration(self.retain_for)})"
        )


# Tiers used across the venue dashboards
VOLATILE = FreshnessPolicy.of("10s", "2m")
SHORT = FreshnessPolicy.of("1m", "2m")
MEDIUM = FreshnessPolicy.of("3m", "5m")
REFERENCE = FreshnessPolicy.of("5m", "15m")
REPORT = FreshnessPolicy.of("15m", "30m")

DEFAULT_POLICIES: dict[str, FreshnessPolicy] = {
    "dashboard_metrics": VOLATILE,
    "events": MEDIUM,
    "financial_transactions": MEDIUM,
    "financial_reports": REPORT,
    "inventory_items": MEDIUM,
    "inventory_categories": REFERENCE,
    "inventory_transactions": SHORT,
    "low_stock_items": SHORT,
    "customers": MEDIUM,
}


class PolicyRegistry:
    """Resolves the freshness policy for an entity type."""

    def __init__(
        self,
        policies: Mapping[str, FreshnessPolicy] | None = None,
        *,
        default: FreshnessPolicy = MEDIUM,
    ) -> None:
        self._policies = dict(DEFAULT_POLICIES)
        if policies:
            self._policies.update(policies)
        self._default = default

    def __getitem__(self, entity_type: str) -> FreshnessPolicy:
        return self._policies.get(entity_type, self._default)

    def register(self, entity_type: str, policy: FreshnessPolicy) -> None:
        self._policies[entity_type] = policy

    @property
    def default(self) -> FreshnessPolicy:
        return self._default


__all__ = [
    "DEFAULT_POLICIES",
    "FreshnessPolicy",
    "MEDIUM",
    "PolicyRegistry",
    "REFERENCE",
    "REPORT",
    "SHORT",
    "VOLATILE",
]
