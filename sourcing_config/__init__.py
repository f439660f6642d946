"""
sourcing_config -- per-shop sourcing configuration.

Responsibility:
    Frozen configuration types (``schema``) and the YAML loader
    (``loader``).  Depends only on the kernel's exceptions and logging;
    kernel services receive a parsed ``ShopConfig``.
"""

from sourcing_config.loader import compute_checksum, load_shop_config, parse_shop_config
from sourcing_config.schema import (
    AggregationPolicy,
    CacheSettings,
    POTotalsPolicy,
    ScoringWeights,
    SelectionPolicy,
    ShopConfig,
    VendorProfile,
    VendorRule,
)

__all__ = [
    "AggregationPolicy",
    "CacheSettings",
    "POTotalsPolicy",
    "ScoringWeights",
    "SelectionPolicy",
    "ShopConfig",
    "VendorProfile",
    "VendorRule",
    "compute_checksum",
    "load_shop_config",
    "parse_shop_config",
]
