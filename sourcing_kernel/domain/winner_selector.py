"""
Winner Selector (``sourcing_kernel.domain.winner_selector``).

Responsibility
--------------
Picks one winning quote per requirement from its scored competing set.

* Expired quotes (as of selection time) are never eligible.
* The winner has the maximum ``overall_score``.  Quotes within
  ``tie_epsilon`` points of the top are tied and resolved, in order, by
  lower landed cost, shorter average lead time, then lexicographically
  smaller vendor id.  Never random.
* A shop-pinned preferred vendor wins over the score winner only when its
  quote is eligible and its landed-cost premium over the score winner is
  within ``price_premium_tolerance``.  A refused override is recorded with
  its reason.

Architecture position
---------------------
**Kernel domain layer** -- pure and side-effect free; safe to run
repeatedly without locks.

Failure modes
-------------
* ``InsufficientQuotesError`` when no eligible quote remains.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sourcing_config.schema import SelectionPolicy
from sourcing_kernel.domain.quote_scorer import ranking_key
from sourcing_kernel.domain.values import PartRequirement, ScoredQuote
from sourcing_kernel.exceptions import InsufficientQuotesError
from sourcing_kernel.logging_config import get_logger

logger = get_logger("domain.winner_selector")


class OverrideReason:
    """Reason codes recorded on preferred-vendor override decisions."""
    ACCEPTED = "within_price_premium_tolerance"
    ALREADY_TOP = "preferred_vendor_is_top_score"
    NO_ELIGIBLE_QUOTE = "no_eligible_quote"
    PRICE_PREMIUM_EXCEEDED = "price_premium_exceeded"


@dataclass(frozen=True)
class OverrideDecision:
    """Outcome of applying a preferred-vendor pin."""
    vendor_id: str
    accepted: bool
    reason: str
    price_premium: Decimal | None = None


@dataclass(frozen=True)
class Selection:
    """The winning quote for one requirement and how it was chosen."""
    requirement_id: str
    winner: ScoredQuote
    alternatives: tuple[ScoredQuote, ...] = ()
    tie_broken_by: str | None = None
    override: OverrideDecision | None = None
    exceeds_target_price: bool = False

    @property
    def vendor_id(self) -> str:
        return self.winner.vendor_id


def _tie_key(scored: ScoredQuote) -> tuple:
    lead = scored.avg_lead_time_days
    return (
        scored.landed_cost,
        lead is None,
        lead if lead is not None else Decimal("0"),
        scored.vendor_id,
    )


def _tie_break_criterion(first: ScoredQuote, second: ScoredQuote) -> str:
    if first.landed_cost != second.landed_cost:
        return "landed_cost"
    if first.avg_lead_time_days != second.avg_lead_time_days:
        return "lead_time"
    return "vendor_id"


def price_premium(candidate: Decimal, baseline: Decimal) -> Decimal | None:
    """Relative premium of ``candidate`` over ``baseline``; None if unbounded."""
    if baseline == 0:
        return Decimal("0") if candidate <= 0 else None
    return (candidate - baseline) / baseline


class WinnerSelector:
    """Deterministic per-requirement winner selection."""

    def __init__(self, policy: SelectionPolicy | None = None):
        self._policy = policy or SelectionPolicy()

    def select(
        self,
        requirement: PartRequirement,
        scored: Sequence[ScoredQuote],
        at: datetime,
        preferred_vendor_id: str | None = None,
    ) -> Selection:
        """
        Select the winner for ``requirement`` as of ``at``.

        Raises:
            InsufficientQuotesError: no scored quote is still eligible.
        """
        eligible = [s for s in scored if not s.quote.is_expired(at)]
        if not eligible:
            raise InsufficientQuotesError(requirement.requirement_id, considered=len(scored))

        top_score = max(s.overall_score for s in eligible)
        contenders = sorted(
            (s for s in eligible if top_score - s.overall_score <= self._policy.tie_epsilon),
            key=_tie_key,
        )
        winner = contenders[0]
        tie_broken_by = (
            _tie_break_criterion(contenders[0], contenders[1]) if len(contenders) > 1 else None
        )

        override = None
        if preferred_vendor_id is not None:
            winner, override = self._apply_override(winner, eligible, preferred_vendor_id)

        alternatives = tuple(
            s for s in sorted(eligible, key=ranking_key) if s.quote_id != winner.quote_id
        )[:2]
        exceeds_target = (
            requirement.target_price is not None
            and winner.quote.unit_price > requirement.target_price
        )

        logger.info(
            "winner_selected",
            extra={
                "requirement_id": requirement.requirement_id,
                "quote_id": winner.quote_id,
                "vendor_id": winner.vendor_id,
                "overall_score": round(winner.overall_score, 4),
                "eligible_count": len(eligible),
                "tie_broken_by": tie_broken_by,
                "override_accepted": override.accepted if override else None,
                "exceeds_target_price": exceeds_target,
            },
        )
        return Selection(
            requirement_id=requirement.requirement_id,
            winner=winner,
            alternatives=alternatives,
            tie_broken_by=tie_broken_by,
            override=override,
            exceeds_target_price=exceeds_target,
        )

    def _apply_override(
        self,
        score_winner: ScoredQuote,
        eligible: Sequence[ScoredQuote],
        vendor_id: str,
    ) -> tuple[ScoredQuote, OverrideDecision]:
        pinned = sorted((s for s in eligible if s.vendor_id == vendor_id), key=ranking_key)
        if not pinned:
            decision = OverrideDecision(vendor_id, False, OverrideReason.NO_ELIGIBLE_QUOTE)
        elif pinned[0].quote_id == score_winner.quote_id:
            decision = OverrideDecision(
                vendor_id, True, OverrideReason.ALREADY_TOP, Decimal("0"),
            )
        else:
            preferred = pinned[0]
            premium = price_premium(preferred.landed_cost, score_winner.landed_cost)
            if premium is not None and premium <= self._policy.price_premium_tolerance:
                decision = OverrideDecision(
                    vendor_id, True, OverrideReason.ACCEPTED, premium,
                )
                return preferred, decision
            decision = OverrideDecision(
                vendor_id, False, OverrideReason.PRICE_PREMIUM_EXCEEDED, premium,
            )

        if not decision.accepted:
            logger.warning(
                "vendor_override_rejected",
                extra={
                    "vendor_id": vendor_id,
                    "reason": decision.reason,
                    "price_premium": decision.price_premium,
                    "score_winner_vendor_id": score_winner.vendor_id,
                },
            )
        return score_winner, decision
