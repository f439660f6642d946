"""
Vendor Quote Validator (``sourcing_kernel.domain.quote_validator``).

Responsibility
--------------
Rejects structurally invalid, short-stocked or expired quotes before they
reach scoring.  Checks run in a fixed order and stop at the first failure
(fail-fast, one reason per rejection):

1. required fields present            -> ``MissingField``
2. prices not negative                -> ``NegativePrice``
3. lead-time bounds ordered           -> ``InvalidLeadTime``
4. enough stock for the requirement   -> ``InsufficientStock``
   (``backordered`` / ``special_order`` pass with zero stock;
   ``unavailable`` never passes)
5. ``expires_at`` absent or strictly after ingestion time -> ``Expired``

Payloads that never parse into a ``VendorQuote`` are rejected by the quote
book as ``Malformed``, with the offending field as detail.

Architecture position
---------------------
**Kernel domain layer** -- pure; the ingestion time is passed in.

Audit relevance
---------------
Every result records the requirement's status and the ingestion time it
was validated against.  Rejected quotes are kept by the quote book.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sourcing_kernel.domain.values import (
    AvailabilityStatus,
    PartRequirement,
    PartStatus,
    VendorQuote,
)
from sourcing_kernel.exceptions import QuoteValidationError
from sourcing_kernel.logging_config import get_logger

logger = get_logger("domain.quote_validator")


class RejectionReason(str, Enum):
    """Reason codes for rejected quotes."""
    MISSING_FIELD = "MissingField"
    NEGATIVE_PRICE = "NegativePrice"
    INVALID_LEAD_TIME = "InvalidLeadTime"
    INSUFFICIENT_STOCK = "InsufficientStock"
    EXPIRED = "Expired"
    MALFORMED = "Malformed"


REQUIRED_FIELDS = (
    "quote_id",
    "requirement_id",
    "vendor_id",
    "brand_type",
    "unit_price",
    "availability_status",
)

ZERO_STOCK_STATUSES = frozenset({
    AvailabilityStatus.BACKORDERED,
    AvailabilityStatus.SPECIAL_ORDER,
})


@dataclass(frozen=True)
class QuoteValidation:
    """Result of validating one quote, with provenance."""
    quote: VendorQuote
    ingested_at: datetime
    requirement_status: PartStatus | None
    reason: RejectionReason | None = None
    detail: str = ""

    @property
    def is_valid(self) -> bool:
        return self.reason is None

    def raise_for_rejection(self) -> None:
        if self.reason is not None:
            raise QuoteValidationError(self.quote.quote_id, self.reason.value, self.detail)


class QuoteValidator:
    """Stateless fail-fast quote validator."""

    def validate(
        self,
        quote: VendorQuote,
        requirement: PartRequirement,
        ingested_at: datetime,
    ) -> QuoteValidation:
        """
        Validate ``quote`` against ``requirement`` as of ``ingested_at``.

        Returns a ``QuoteValidation``; never raises for an invalid quote.
        """
        reason, detail = self._first_failure(quote, requirement, ingested_at)
        result = QuoteValidation(
            quote=quote,
            ingested_at=ingested_at,
            requirement_status=requirement.current_status,
            reason=reason,
            detail=detail,
        )
        if reason is not None:
            logger.info(
                "quote_rejected",
                extra={
                    "quote_id": quote.quote_id,
                    "vendor_id": quote.vendor_id,
                    "requirement_id": requirement.requirement_id,
                    "reason": reason.value,
                    "detail": detail,
                },
            )
        return result

    def _first_failure(
        self,
        quote: VendorQuote,
        requirement: PartRequirement,
        ingested_at: datetime,
    ) -> tuple[RejectionReason | None, str]:
        for name in REQUIRED_FIELDS:
            value = getattr(quote, name)
            if value is None or value == "":
                return RejectionReason.MISSING_FIELD, name

        zero = Decimal("0")
        if quote.unit_price < zero:
            return RejectionReason.NEGATIVE_PRICE, f"unit_price={quote.unit_price}"
        if quote.shipping_cost is not None and quote.shipping_cost < zero:
            return RejectionReason.NEGATIVE_PRICE, f"shipping_cost={quote.shipping_cost}"

        low, high = quote.lead_time_days_min, quote.lead_time_days_max
        if (low is not None and low < 0) or (high is not None and high < 0):
            return RejectionReason.INVALID_LEAD_TIME, f"min={low} max={high}"
        if low is not None and high is not None and low > high:
            return RejectionReason.INVALID_LEAD_TIME, f"min={low} > max={high}"

        status = quote.availability_status
        if status == AvailabilityStatus.UNAVAILABLE:
            return RejectionReason.INSUFFICIENT_STOCK, "vendor reports unavailable"
        if status not in ZERO_STOCK_STATUSES and quote.quantity_available < requirement.quantity:
            return (
                RejectionReason.INSUFFICIENT_STOCK,
                f"available={quote.quantity_available} requested={requirement.quantity}",
            )

        if quote.expires_at is not None and quote.expires_at <= ingested_at:
            return RejectionReason.EXPIRED, f"expires_at={quote.expires_at.isoformat()}"

        return None, ""
