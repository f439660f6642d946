"""
Quote Scorer (``sourcing_kernel.domain.quote_scorer``).

Responsibility:
    Computes a 0-100 composite score for every quote competing for one
    requirement.  Four sub-scores, each normalized against the competing
    set:

    price         100 * (1 - (cost - min) / (max - min)) over landed cost
    availability  fixed table by availability status
    lead time     same min/max normalization over average lead days
    quality       brand base + min(warranty, 24) / 24 * 10, capped at 100

    overall = wp*price + wa*availability + wl*lead_time + wq*quality

Architecture position:
    Kernel > Domain -- pure calculation, zero I/O, no clock.

Invariants enforced:
    - Degenerate range (max == min) scores every quote 100.
    - Price and lead-time scores are non-increasing in cost / lead time
      within a fixed competing set.
    - Nothing is cached: the competing set changes between passes, so every
      call recomputes from scratch.

Usage:
    scorer = QuoteScorer(ScoringWeights())
    ranked = scorer.score(requirement, quotes)
    ranked[0].overall_score
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from decimal import Decimal

from sourcing_config.schema import ScoringWeights
from sourcing_kernel.domain.values import (
    AvailabilityStatus,
    BrandType,
    PartRequirement,
    ScoredQuote,
    VendorQuote,
)
from sourcing_kernel.logging_config import get_logger

logger = get_logger("domain.quote_scorer")

AVAILABILITY_SCORES: dict[AvailabilityStatus, float] = {
    AvailabilityStatus.IN_STOCK: 100.0,
    AvailabilityStatus.LIMITED: 75.0,
    AvailabilityStatus.SPECIAL_ORDER: 50.0,
    AvailabilityStatus.BACKORDERED: 25.0,
    AvailabilityStatus.UNAVAILABLE: 0.0,
}

BRAND_BASE_SCORES: dict[BrandType, float] = {
    BrandType.OEM: 100.0,
    BrandType.OEM_EQUIVALENT: 85.0,
    BrandType.REMANUFACTURED: 70.0,
    BrandType.AFTERMARKET: 60.0,
    BrandType.RECYCLED: 50.0,
}

WARRANTY_CAP_MONTHS = 24
WARRANTY_MAX_BONUS = 10.0
MAX_SCORE = 100.0


def normalized_inverse(value: Decimal, low: Decimal, high: Decimal) -> float:
    """Map ``value`` in [low, high] to [100, 0]; lower is better."""
    if high == low:
        return MAX_SCORE
    return float(Decimal("100") * (1 - (value - low) / (high - low)))


def quality_score(brand_type: BrandType, warranty_months: int) -> float:
    warranty = max(0, min(warranty_months or 0, WARRANTY_CAP_MONTHS))
    bonus = warranty / WARRANTY_CAP_MONTHS * WARRANTY_MAX_BONUS
    return min(MAX_SCORE, BRAND_BASE_SCORES[brand_type] + bonus)


def ranking_key(scored: ScoredQuote) -> tuple:
    """Overall desc, then landed cost, average lead time and vendor id asc."""
    lead = scored.avg_lead_time_days
    return (
        -scored.overall_score,
        scored.landed_cost,
        lead is None,
        lead if lead is not None else Decimal("0"),
        scored.vendor_id,
    )


class QuoteScorer:
    """Scores one requirement's competing quotes with shop weights."""

    def __init__(self, weights: ScoringWeights | None = None):
        self._weights = weights or ScoringWeights()

    @property
    def weights(self) -> ScoringWeights:
        return self._weights

    def score(
        self,
        requirement: PartRequirement,
        quotes: Sequence[VendorQuote],
    ) -> list[ScoredQuote]:
        """
        Score and rank ``quotes`` for ``requirement``.

        Preconditions:
            Every quote passed validation (required fields present).
        Postconditions:
            Returned list is ordered by ``ranking_key`` with ``rank`` 1..n.
        """
        if not quotes:
            return []

        costs = [q.total_landed_cost(requirement.quantity) for q in quotes]
        leads = [q.avg_lead_time_days for q in quotes]
        known_leads = [lead for lead in leads if lead is not None]
        min_cost, max_cost = min(costs), max(costs)

        w = self._weights
        scored: list[ScoredQuote] = []
        for quote, cost, lead in zip(quotes, costs, leads):
            price = normalized_inverse(cost, min_cost, max_cost)
            if lead is None:
                lead_score = 0.0
            else:
                lead_score = normalized_inverse(lead, min(known_leads), max(known_leads))
            availability = AVAILABILITY_SCORES[quote.availability_status]
            quality = quality_score(quote.brand_type, quote.warranty_months)
            overall = (
                w.price * price
                + w.availability * availability
                + w.lead_time * lead_score
                + w.quality * quality
            )
            scored.append(
                ScoredQuote(
                    quote=quote,
                    price_score=price,
                    availability_score=availability,
                    lead_time_score=lead_score,
                    quality_score=quality,
                    overall_score=overall,
                    landed_cost=cost,
                    avg_lead_time_days=lead,
                )
            )

        ranked = sorted(scored, key=ranking_key)
        result = [replace(s, rank=i) for i, s in enumerate(ranked, start=1)]

        logger.debug(
            "quotes_scored",
            extra={
                "requirement_id": requirement.requirement_id,
                "quote_count": len(result),
                "top_quote_id": result[0].quote_id,
                "top_score": round(result[0].overall_score, 4),
            },
        )
        return result
