"""
Vendor routing (``sourcing_kernel.domain.vendor_routing``).

Responsibility:
    Decides which vendors are asked to quote a requirement, and derives the
    4-character vendor codes used in PO numbers.

    Routing is a declarative, ordered rule table evaluated first-match-wins:
    ``{part_type_pattern, source_code} -> vendor_ids``.  When no rule
    matches, the requirement's value tier (from its target price) picks a
    tier vendor list; when no tier list is configured every registered
    vendor is eligible.  A pinned preferred vendor is always asked first.
    The result is capped at ``max_vendors_per_requirement``.

Architecture position:
    Kernel > Domain -- pure lookups over ``ShopConfig``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from decimal import Decimal
from fnmatch import fnmatchcase

from sourcing_config.schema import ShopConfig, VendorRule
from sourcing_kernel.domain.values import PartRequirement
from sourcing_kernel.logging_config import get_logger

logger = get_logger("domain.vendor_routing")

HIGH_VALUE_THRESHOLD = Decimal("1000")
STANDARD_THRESHOLD = Decimal("100")
VENDOR_CODE_LENGTH = 4


def normalize_part_number(part_number: str | None) -> str:
    """Strip spaces and hyphens and upper-case a part number."""
    if not part_number:
        return ""
    return re.sub(r"[-\s]", "", str(part_number)).upper().strip()


def derive_vendor_code(vendor_name: str) -> str:
    """First four letters of the upper-cased name, padded with ``X``."""
    letters = re.sub(r"[^A-Z]", "", (vendor_name or "").upper())
    return letters[:VENDOR_CODE_LENGTH].ljust(VENDOR_CODE_LENGTH, "X")


def value_tier(requirement: PartRequirement) -> str:
    price = requirement.target_price
    if price is None:
        return "standard"
    if price >= HIGH_VALUE_THRESHOLD:
        return "high_value"
    if price >= STANDARD_THRESHOLD:
        return "standard"
    return "bulk"


def rule_matches(rule: VendorRule, requirement: PartRequirement) -> bool:
    if not fnmatchcase((requirement.category or "").lower(), rule.part_type_pattern.lower()):
        return False
    if rule.source_code is None:
        return True
    return (requirement.source_code or "").upper() == rule.source_code.upper()


class VendorRouter:
    """Applies a shop's routing table and vendor directory."""

    def __init__(self, config: ShopConfig):
        self._config = config

    def match_rule(self, requirement: PartRequirement) -> VendorRule | None:
        for rule in self._config.vendor_rules:
            if rule_matches(rule, requirement):
                return rule
        return None

    def route(
        self,
        requirement: PartRequirement,
        registered_vendor_ids: Iterable[str],
        preferred_vendor_id: str | None = None,
    ) -> tuple[str, ...]:
        """Ordered vendor ids to ask for quotes on ``requirement``."""
        registered = list(dict.fromkeys(registered_vendor_ids))
        rule = self.match_rule(requirement)
        tier = value_tier(requirement)
        if rule is not None:
            candidates = list(rule.vendor_ids)
            source = "rule"
        elif self._config.tier_vendors.get(tier):
            candidates = list(self._config.tier_vendors[tier])
            source = "tier"
        else:
            candidates = sorted(registered)
            source = "all"

        if preferred_vendor_id is not None:
            candidates.insert(0, preferred_vendor_id)

        known = set(registered)
        routed = tuple(
            v for v in dict.fromkeys(candidates) if v in known
        )[: self._config.aggregation.max_vendors_per_requirement]

        logger.debug(
            "requirement_routed",
            extra={
                "requirement_id": requirement.requirement_id,
                "part_number": normalize_part_number(requirement.oem_part_number),
                "routing_source": source,
                "value_tier": tier,
                "vendor_ids": list(routed),
            },
        )
        return routed

    def vendor_code(self, vendor_id: str, vendor_name: str | None = None) -> str:
        """Configured vendor code, else one derived from the vendor name or id."""
        profile = self._config.vendor(vendor_id)
        if profile is not None and profile.vendor_code:
            return profile.vendor_code.upper()
        name = (profile.name if profile is not None and profile.name else None) or vendor_name
        return derive_vendor_code(name or vendor_id)
