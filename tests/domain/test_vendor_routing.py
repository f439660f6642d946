"""
Tests for vendor routing: rule table, value tiers, preferred vendors,
vendor-count cap and vendor code derivation.
"""

from decimal import Decimal

import pytest

from sourcing_config.schema import AggregationPolicy, ShopConfig, VendorProfile, VendorRule
from sourcing_kernel.domain.vendor_routing import (
    VendorRouter,
    derive_vendor_code,
    normalize_part_number,
    value_tier,
)

REGISTERED = ("ACME", "GLASSCO", "LKQ", "OEMDIRECT", "PARTSPLUS", "RECYCLER", "ZED")


class TestHelpers:

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Acme Auto Parts", "ACME"),
            ("LKQ", "LKQX"),
            ("3M", "MXXX"),
            ("o'reilly", "OREI"),
            ("", "XXXX"),
        ],
    )
    def test_derive_vendor_code(self, name, expected):
        assert derive_vendor_code(name) == expected

    def test_normalize_part_number(self):
        assert normalize_part_number(" 52119-0e903 ") == "521190E903"
        assert normalize_part_number(None) == ""

    @pytest.mark.parametrize(
        "price,tier",
        [
            (None, "standard"),
            (Decimal("1000"), "high_value"),
            (Decimal("999.99"), "standard"),
            (Decimal("100"), "standard"),
            (Decimal("99.99"), "bulk"),
        ],
    )
    def test_value_tier(self, requirement_factory, price, tier):
        assert value_tier(requirement_factory(target_price=price)) == tier


class TestRouting:

    def test_no_rules_routes_to_every_registered_vendor_sorted(self, requirement_factory):
        router = VendorRouter(ShopConfig(
            aggregation=AggregationPolicy(max_vendors_per_requirement=10),
        ))
        assert router.route(requirement_factory(), reversed(REGISTERED)) == REGISTERED

    def test_default_cap_is_five(self, requirement_factory):
        router = VendorRouter(ShopConfig())
        assert len(router.route(requirement_factory(), REGISTERED)) == 5

    def test_first_matching_rule_wins(self, requirement_factory):
        config = ShopConfig(vendor_rules=(
            VendorRule("glass*", ("GLASSCO",)),
            VendorRule("*", ("ACME", "PARTSPLUS")),
        ))
        router = VendorRouter(config)

        assert router.route(requirement_factory(category="Glass-Windshield"), REGISTERED) == (
            "GLASSCO",
        )
        assert router.route(requirement_factory(category="body"), REGISTERED) == (
            "ACME", "PARTSPLUS",
        )

    def test_source_code_narrows_a_rule(self, requirement_factory):
        config = ShopConfig(vendor_rules=(
            VendorRule("*", ("RECYCLER", "LKQ"), source_code="lkq"),
            VendorRule("*", ("OEMDIRECT",)),
        ))
        router = VendorRouter(config)

        used = requirement_factory(source_code="LKQ")
        new = requirement_factory(source_code="OEM")
        assert router.route(used, REGISTERED) == ("RECYCLER", "LKQ")
        assert router.route(new, REGISTERED) == ("OEMDIRECT",)

    def test_tier_lists_apply_when_no_rule_matches(self, requirement_factory):
        config = ShopConfig(tier_vendors={
            "high_value": ("OEMDIRECT", "ACME"),
            "bulk": ("PARTSPLUS",),
        })
        router = VendorRouter(config)

        expensive = requirement_factory(target_price=Decimal("2500"))
        cheap = requirement_factory(target_price=Decimal("12"))
        assert router.route(expensive, REGISTERED) == ("OEMDIRECT", "ACME")
        assert router.route(cheap, REGISTERED) == ("PARTSPLUS",)

    def test_preferred_vendor_goes_first_and_is_not_duplicated(self, requirement_factory):
        config = ShopConfig(vendor_rules=(VendorRule("*", ("ACME", "LKQ")),))
        routed = VendorRouter(config).route(requirement_factory(), REGISTERED, "LKQ")
        assert routed == ("LKQ", "ACME")

    def test_unregistered_vendors_are_dropped(self, requirement_factory):
        config = ShopConfig(vendor_rules=(VendorRule("*", ("GONE", "ACME")),))
        routed = VendorRouter(config).route(requirement_factory(), REGISTERED, "ALSO-GONE")
        assert routed == ("ACME",)


class TestVendorCodes:

    def test_configured_code_wins(self):
        config = ShopConfig(vendors=(VendorProfile("v-1", "Acme", vendor_code="acm1"),))
        assert VendorRouter(config).vendor_code("v-1") == "ACM1"

    def test_code_derived_from_profile_name(self):
        config = ShopConfig(vendors=(VendorProfile("v-1", "Keystone Automotive"),))
        assert VendorRouter(config).vendor_code("v-1", "ignored") == "KEYS"

    def test_code_derived_from_quote_vendor_name(self):
        assert VendorRouter(ShopConfig()).vendor_code("v-9", "Parts Plus") == "PART"

    def test_code_falls_back_to_vendor_id(self):
        assert VendorRouter(ShopConfig()).vendor_code("lkq") == "LKQX"
