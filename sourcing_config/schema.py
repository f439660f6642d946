"""
Shop sourcing configuration schema.

Defines the structure and defaults for per-shop sourcing settings: scoring
weights, selection tolerances, aggregation limits, PO totals policy, the
vendor directory and the vendor routing rule table.  YAML files are parsed
into these types by ``sourcing_config.loader``; services receive a
``ShopConfig`` and never read files themselves.

Defaults are the documented starting point; shops are expected to confirm
their own tie-break epsilon and override tolerance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping

from sourcing_kernel.exceptions import ConfigurationError
from sourcing_kernel.logging_config import get_logger

logger = get_logger("config.schema")

_WEIGHT_TOLERANCE = 1e-6

VALUE_TIERS = ("high_value", "standard", "bulk")


# ---------------------------------------------------------------------------
# Scoring and selection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScoringWeights:
    """Weights of the four sub-scores; must be non-negative and sum to 1."""

    price: float = 0.40
    availability: float = 0.20
    lead_time: float = 0.20
    quality: float = 0.20

    def __post_init__(self) -> None:
        values = (self.price, self.availability, self.lead_time, self.quality)
        if any(v < 0 for v in values):
            raise ConfigurationError("scoring.weights", "weights must be non-negative")
        if abs(sum(values) - 1.0) > _WEIGHT_TOLERANCE:
            raise ConfigurationError(
                "scoring.weights", f"weights must sum to 1.0, got {sum(values):.6f}",
            )


@dataclass(frozen=True)
class SelectionPolicy:
    """Tie-break and preferred-vendor override tolerances."""

    tie_epsilon: float = 0.5
    price_premium_tolerance: Decimal = Decimal("0.10")

    def __post_init__(self) -> None:
        if self.tie_epsilon < 0:
            raise ConfigurationError("selection.tie_epsilon", "must be >= 0")
        if self.price_premium_tolerance < 0:
            raise ConfigurationError("selection.price_premium_tolerance", "must be >= 0")


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AggregationPolicy:
    """Vendor fan-out limits."""

    max_concurrent_vendor_requests: int = 8
    vendor_timeout_seconds: float = 2.0
    default_deadline_seconds: float = 300.0
    max_vendors_per_requirement: int = 5

    def __post_init__(self) -> None:
        if self.max_concurrent_vendor_requests < 1:
            raise ConfigurationError("aggregation.max_concurrent_vendor_requests", "must be >= 1")
        if self.vendor_timeout_seconds <= 0:
            raise ConfigurationError("aggregation.vendor_timeout_seconds", "must be > 0")
        if self.max_vendors_per_requirement < 1:
            raise ConfigurationError("aggregation.max_vendors_per_requirement", "must be >= 1")


# ---------------------------------------------------------------------------
# Purchase orders
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class POTotalsPolicy:
    """
    How a PO total is built from its subtotal.

    Quote shipping is already inside each line's landed cost, so the
    default adds no PO-level shipping, no tax and no discount.
    """

    po_shipping: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")
    discount_rate: Decimal = Decimal("0")
    approval_threshold: Decimal = Decimal("1000")

    def __post_init__(self) -> None:
        for name in ("po_shipping", "tax_rate", "discount_rate", "approval_threshold"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"purchase_orders.{name}", "must be >= 0")
        if self.discount_rate > 1:
            raise ConfigurationError("purchase_orders.discount_rate", "must be <= 1")


# ---------------------------------------------------------------------------
# Vendors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VendorProfile:
    """A vendor known to the shop."""

    vendor_id: str
    name: str = ""
    vendor_code: str | None = None

    def __post_init__(self) -> None:
        if self.vendor_code is not None and len(self.vendor_code) != 4:
            raise ConfigurationError(
                f"vendors.{self.vendor_id}.vendor_code",
                f"must be exactly 4 characters, got {self.vendor_code!r}",
            )


@dataclass(frozen=True)
class VendorRule:
    """
    One row of the vendor routing table.

    ``part_type_pattern`` is a glob matched against the requirement
    category; ``source_code`` (when set) must equal the requirement's
    source code.  First matching row wins.
    """

    part_type_pattern: str
    vendor_ids: tuple[str, ...]
    source_code: str | None = None

    def __post_init__(self) -> None:
        if not self.vendor_ids:
            raise ConfigurationError(
                f"vendor_rules[{self.part_type_pattern}]", "vendor_ids must not be empty",
            )


@dataclass(frozen=True)
class CacheSettings:
    """Bounded outcome cache."""

    capacity: int = 256
    ttl_seconds: float = 900.0

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ConfigurationError("cache.capacity", "must be >= 1")
        if self.ttl_seconds <= 0:
            raise ConfigurationError("cache.ttl_seconds", "must be > 0")


# ---------------------------------------------------------------------------
# Shop configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ShopConfig:
    """
    Per-shop sourcing configuration.

    Override at instantiation with shop-specific values:

        config = ShopConfig(
            weights=ScoringWeights(price=0.3, availability=0.2,
                                   lead_time=0.2, quality=0.3),
            vendor_rules=(VendorRule("glass*", ("SAFE-GLASS",)),),
        )
    """

    shop_id: str = "default"
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    selection: SelectionPolicy = field(default_factory=SelectionPolicy)
    aggregation: AggregationPolicy = field(default_factory=AggregationPolicy)
    purchase_orders: POTotalsPolicy = field(default_factory=POTotalsPolicy)
    vendors: tuple[VendorProfile, ...] = ()
    vendor_rules: tuple[VendorRule, ...] = ()
    tier_vendors: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    cache: CacheSettings = field(default_factory=CacheSettings)

    def __post_init__(self) -> None:
        unknown = set(self.tier_vendors) - set(VALUE_TIERS)
        if unknown:
            raise ConfigurationError("tier_vendors", f"unknown tiers {sorted(unknown)}")
        logger.debug(
            "shop_config_initialized",
            extra={
                "shop_id": self.shop_id,
                "vendor_count": len(self.vendors),
                "vendor_rule_count": len(self.vendor_rules),
                "tie_epsilon": self.selection.tie_epsilon,
            },
        )

    def vendor(self, vendor_id: str) -> VendorProfile | None:
        for profile in self.vendors:
            if profile.vendor_id == vendor_id:
                return profile
        return None

    @classmethod
    def with_defaults(cls) -> ShopConfig:
        """Create config with the documented defaults."""
        return cls()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ShopConfig:
        """Create config from a dictionary (e.g. a parsed YAML file)."""
        logger.info(
            "shop_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        try:
            scoring = data.get("scoring", {}) or {}
            selection = data.get("selection", {}) or {}
            return cls(
                shop_id=str(data.get("shop_id", "default")),
                weights=ScoringWeights(**{
                    k: float(v) for k, v in (scoring.get("weights", {}) or {}).items()
                }),
                selection=SelectionPolicy(
                    tie_epsilon=float(selection.get("tie_epsilon", 0.5)),
                    price_premium_tolerance=Decimal(
                        str(selection.get("price_premium_tolerance", "0.10"))
                    ),
                ),
                aggregation=AggregationPolicy(**(data.get("aggregation", {}) or {})),
                purchase_orders=POTotalsPolicy(**{
                    k: Decimal(str(v))
                    for k, v in (data.get("purchase_orders", {}) or {}).items()
                }),
                vendors=tuple(
                    VendorProfile(
                        vendor_id=str(v["vendor_id"]),
                        name=v.get("name", ""),
                        vendor_code=v.get("vendor_code"),
                    )
                    for v in data.get("vendors", []) or []
                ),
                vendor_rules=tuple(
                    VendorRule(
                        part_type_pattern=r.get("part_type_pattern", "*"),
                        vendor_ids=tuple(str(v) for v in r.get("vendor_ids", [])),
                        source_code=r.get("source_code"),
                    )
                    for r in data.get("vendor_rules", []) or []
                ),
                tier_vendors={
                    tier: tuple(str(v) for v in vendors)
                    for tier, vendors in (data.get("tier_vendors", {}) or {}).items()
                },
                cache=CacheSettings(**(data.get("cache", {}) or {})),
            )
        except TypeError as exc:
            raise ConfigurationError("shop_config", str(exc)) from exc
