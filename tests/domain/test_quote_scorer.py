"""
Tests for the quote scorer.

These tests verify:
- Each sub-score against hand-computed values
- Degenerate ranges (single quote, equal costs) score 100
- Quotes without lead time score 0 and do not stretch the range
- Ranking order and rank numbering
- Shop weights change the outcome
"""

from decimal import Decimal

import pytest

from sourcing_config.schema import ScoringWeights
from sourcing_kernel.domain.quote_scorer import (
    QuoteScorer,
    normalized_inverse,
    quality_score,
)
from sourcing_kernel.domain.values import AvailabilityStatus, BrandType


@pytest.fixture
def scorer():
    return QuoteScorer()


class TestSubScores:

    def test_normalized_inverse_endpoints(self):
        assert normalized_inverse(Decimal("10"), Decimal("10"), Decimal("20")) == 100.0
        assert normalized_inverse(Decimal("20"), Decimal("10"), Decimal("20")) == 0.0
        assert normalized_inverse(Decimal("15"), Decimal("10"), Decimal("20")) == 50.0

    def test_normalized_inverse_degenerate_range(self):
        assert normalized_inverse(Decimal("7"), Decimal("7"), Decimal("7")) == 100.0

    @pytest.mark.parametrize(
        "brand,warranty,expected",
        [
            (BrandType.OEM, 0, 100.0),
            (BrandType.OEM, 12, 100.0),
            (BrandType.OEM_EQUIVALENT, 24, 95.0),
            (BrandType.OEM_EQUIVALENT, 36, 95.0),
            (BrandType.REMANUFACTURED, 12, 75.0),
            (BrandType.AFTERMARKET, 0, 60.0),
            (BrandType.RECYCLED, 6, 52.5),
        ],
    )
    def test_quality_score(self, brand, warranty, expected):
        assert quality_score(brand, warranty) == pytest.approx(expected)


class TestScoring:

    def test_two_quote_example(self, scorer, quote_factory, requirement_factory):
        a = quote_factory(
            vendor_id="A", unit_price="500", lead_time_days_min=2, lead_time_days_max=2,
            brand_type=BrandType.OEM, warranty_months=12,
        )
        b = quote_factory(
            vendor_id="B", unit_price="420",
            availability_status=AvailabilityStatus.LIMITED,
            lead_time_days_min=5, lead_time_days_max=5,
            brand_type=BrandType.AFTERMARKET, warranty_months=0,
        )

        ranked = {s.vendor_id: s for s in scorer.score(requirement_factory(), [a, b])}

        assert ranked["A"].price_score == 0.0
        assert ranked["B"].price_score == 100.0
        assert ranked["A"].availability_score == 100.0
        assert ranked["B"].availability_score == 75.0
        assert ranked["A"].lead_time_score == 100.0
        assert ranked["B"].lead_time_score == 0.0
        assert ranked["A"].quality_score == 100.0
        assert ranked["B"].quality_score == 60.0
        assert ranked["A"].overall_score == pytest.approx(60.0)
        assert ranked["B"].overall_score == pytest.approx(67.0)

    def test_single_quote_scores_full_marks_on_relative_axes(
        self, scorer, quote_factory, requirement_factory,
    ):
        [only] = scorer.score(requirement_factory(), [quote_factory()])
        assert only.price_score == 100.0
        assert only.lead_time_score == 100.0
        assert only.rank == 1

    def test_landed_cost_includes_quantity_shipping_and_core(
        self, scorer, quote_factory, requirement_factory,
    ):
        quote = quote_factory(unit_price="10.005", shipping_cost="4.50", core_charge="20")
        [scored] = scorer.score(requirement_factory(quantity=3), [quote])
        assert scored.landed_cost == Decimal("54.52")

    def test_missing_lead_time_scores_zero_and_is_excluded_from_range(
        self, scorer, quote_factory, requirement_factory,
    ):
        fast = quote_factory(vendor_id="A", lead_time_days_min=1, lead_time_days_max=1)
        slow = quote_factory(vendor_id="B", lead_time_days_min=3, lead_time_days_max=5)
        unknown = quote_factory(vendor_id="C", lead_time_days_min=None, lead_time_days_max=None)

        by_vendor = {
            s.vendor_id: s for s in scorer.score(requirement_factory(), [fast, slow, unknown])
        }

        assert by_vendor["A"].lead_time_score == 100.0
        assert by_vendor["B"].lead_time_score == 0.0
        assert by_vendor["C"].lead_time_score == 0.0
        assert by_vendor["C"].avg_lead_time_days is None

    def test_average_of_single_bound(self, scorer, quote_factory, requirement_factory):
        quote = quote_factory(lead_time_days_min=None, lead_time_days_max=4)
        [scored] = scorer.score(requirement_factory(), [quote])
        assert scored.avg_lead_time_days == Decimal("4")

    def test_ranks_are_dense_and_ordered(self, scorer, quote_factory, requirement_factory):
        quotes = [
            quote_factory(vendor_id=v, unit_price=p)
            for v, p in (("A", "300"), ("B", "100"), ("C", "200"))
        ]
        ranked = scorer.score(requirement_factory(), quotes)

        assert [s.rank for s in ranked] == [1, 2, 3]
        assert [s.vendor_id for s in ranked] == ["B", "C", "A"]
        scores = [s.overall_score for s in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_equal_scores_rank_by_vendor_id(self, scorer, quote_factory, requirement_factory):
        quotes = [quote_factory(vendor_id=v) for v in ("Z", "M", "B")]
        ranked = scorer.score(requirement_factory(), quotes)
        assert [s.vendor_id for s in ranked] == ["B", "M", "Z"]

    def test_empty_set(self, scorer, requirement_factory):
        assert scorer.score(requirement_factory(), []) == []

    def test_weights_shift_the_winner(self, quote_factory, requirement_factory):
        cheap = quote_factory(
            vendor_id="CHEAP", unit_price="50", brand_type=BrandType.RECYCLED,
            warranty_months=0,
        )
        premium = quote_factory(vendor_id="OEM", unit_price="80", brand_type=BrandType.OEM)
        quality_first = QuoteScorer(
            ScoringWeights(price=0.1, availability=0.1, lead_time=0.1, quality=0.7),
        )
        price_first = QuoteScorer(
            ScoringWeights(price=0.7, availability=0.1, lead_time=0.1, quality=0.1),
        )

        assert quality_first.score(requirement_factory(), [cheap, premium])[0].vendor_id == "OEM"
        assert price_first.score(requirement_factory(), [cheap, premium])[0].vendor_id == "CHEAP"

    def test_scores_are_not_cached_between_sets(
        self, scorer, quote_factory, requirement_factory,
    ):
        a = quote_factory(vendor_id="A", unit_price="100")
        b = quote_factory(vendor_id="B", unit_price="200")
        c = quote_factory(vendor_id="C", unit_price="50")

        first = {s.vendor_id: s for s in scorer.score(requirement_factory(), [a, b])}
        second = {s.vendor_id: s for s in scorer.score(requirement_factory(), [a, b, c])}

        assert first["A"].price_score == 100.0
        assert second["A"].price_score == pytest.approx(100 * (1 - 50 / 150))
