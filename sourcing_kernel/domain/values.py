"""
Values -- the sourcing data model.

Responsibility:
    Immutable records shared by every component: part requirements, vendor
    quotes, scored quotes, sourcing requests, purchase orders and the
    per-request outcome summary, plus the lifecycle enums.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Money is ``Decimal``, quantized to cents where it leaves a quote
      (landed cost, line totals, PO totals).  NEVER float.
    - ``PartRequirement`` changes only through ``dataclasses.replace`` on
      ``current_status`` / ``selected_quote_id``.
    - ``PurchaseOrder`` line items are fixed once the PO leaves ``draft``.

Failure modes:
    - MalformedQuoteError from ``VendorQuote.from_dict`` on unparseable
      numbers, dates or enum values.
    - ValueError from ``PartRequirement.from_dict`` on the same, and from
      ``PartRequirement`` with a non-positive quantity.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping

from sourcing_kernel.exceptions import MalformedQuoteError

CENT = Decimal("0.01")


def quantize_money(amount: Decimal) -> Decimal:
    """Round a monetary amount to cents (half-up)."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PartStatus(str, Enum):
    """Part lifecycle states."""
    NEEDED = "needed"
    SOURCING = "sourcing"
    ORDERED = "ordered"
    SHIPPED = "shipped"
    BACKORDERED = "backordered"
    RECEIVED = "received"
    INSTALLED = "installed"
    RETURNED = "returned"
    CANCELLED = "cancelled"


class BrandType(str, Enum):
    """Part brand / provenance class."""
    OEM = "oem"
    OEM_EQUIVALENT = "oem_equivalent"
    AFTERMARKET = "aftermarket"
    RECYCLED = "recycled"
    REMANUFACTURED = "remanufactured"


class AvailabilityStatus(str, Enum):
    """Vendor-reported stock position."""
    IN_STOCK = "in_stock"
    LIMITED = "limited"
    BACKORDERED = "backordered"
    SPECIAL_ORDER = "special_order"
    UNAVAILABLE = "unavailable"

    @classmethod
    def _missing_(cls, value: object) -> AvailabilityStatus | None:
        if value == "limited_stock":
            return cls.LIMITED
        return None


class RequestState(str, Enum):
    """Sourcing request lifecycle states."""
    OPEN = "open"
    AGGREGATING = "aggregating"
    SELECTING = "selecting"
    ORDERED = "ordered"
    PARTIALLY_ORDERED = "partially_ordered"
    FAILED = "failed"
    CANCELLED = "cancelled"


class POStatus(str, Enum):
    """Purchase order lifecycle states."""
    DRAFT = "draft"
    SENT = "sent"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    PARTIALLY_RECEIVED = "partially_received"
    RECEIVED = "received"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a decimal amount: {value!r}") from exc


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def _to_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if not isinstance(value, datetime):
        value = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    # Naive vendor timestamps are taken as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _pick(data: Mapping[str, Any], snake: str, camel: str) -> Any:
    if snake in data:
        return data[snake]
    return data.get(camel)


def _enum_or_none(enum_cls: type[Enum], value: Any) -> Any:
    if value is None or value == "" or isinstance(value, enum_cls):
        return value or None
    return enum_cls(str(value).lower())


# ---------------------------------------------------------------------------
# Part requirements
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PartRequirement:
    """One part needed for one repair order."""
    requirement_id: str
    repair_order_id: str
    part_description: str
    quantity: int = 1
    category: str = "general"
    oem_part_number: str | None = None
    target_price: Decimal | None = None
    current_status: PartStatus = PartStatus.NEEDED
    selected_quote_id: str | None = None
    source_code: str | None = None

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError(
                f"Requirement {self.requirement_id}: quantity must be positive, "
                f"got {self.quantity}"
            )

    def with_status(self, status: PartStatus) -> PartRequirement:
        return replace(self, current_status=status)

    def with_selected_quote(self, quote_id: str | None) -> PartRequirement:
        return replace(self, selected_quote_id=quote_id)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PartRequirement:
        """Build from the estimate-normalization payload (camel or snake keys)."""
        status = _pick(data, "current_status", "currentStatus")
        return cls(
            requirement_id=str(_pick(data, "requirement_id", "requirementId")),
            repair_order_id=str(_pick(data, "repair_order_id", "repairOrderId")),
            part_description=_pick(data, "part_description", "partDescription") or "",
            quantity=_to_int(data.get("quantity")) or 1,
            category=data.get("category") or "general",
            oem_part_number=_pick(data, "oem_part_number", "oemPartNumber"),
            target_price=_to_decimal(_pick(data, "target_price", "targetPrice")),
            current_status=PartStatus(status) if status else PartStatus.NEEDED,
            selected_quote_id=_pick(data, "selected_quote_id", "selectedQuoteId"),
            source_code=_pick(data, "source_code", "sourceCode"),
        )


# ---------------------------------------------------------------------------
# Vendor quotes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VendorQuote:
    """
    One vendor's offer against one requirement.

    Every field but the identifiers is optional at ingestion so that the
    validator, not the constructor, decides what a missing value means.
    """
    quote_id: str | None
    requirement_id: str | None
    vendor_id: str | None
    brand_type: BrandType | None = None
    unit_price: Decimal | None = None
    availability_status: AvailabilityStatus | None = None
    shipping_cost: Decimal = Decimal("0")
    core_charge: Decimal | None = None
    quantity_available: int = 0
    lead_time_days_min: int | None = None
    lead_time_days_max: int | None = None
    warranty_months: int = 0
    condition: str | None = None
    vendor_name: str | None = None
    received_at: datetime | None = None
    expires_at: datetime | None = None

    def total_landed_cost(self, quantity: int) -> Decimal:
        """unit price x quantity + shipping + net core charge, in cents."""
        core = max(self.core_charge or Decimal("0"), Decimal("0"))
        unit = self.unit_price or Decimal("0")
        return quantize_money(unit * quantity + (self.shipping_cost or Decimal("0")) + core)

    @property
    def avg_lead_time_days(self) -> Decimal | None:
        bounds = [
            Decimal(b)
            for b in (self.lead_time_days_min, self.lead_time_days_max)
            if b is not None
        ]
        if not bounds:
            return None
        return sum(bounds, Decimal("0")) / len(bounds)

    def is_expired(self, at: datetime) -> bool:
        """A quote is expired once ``at`` reaches ``expires_at``."""
        return self.expires_at is not None and self.expires_at <= at

    def to_payload(self) -> dict[str, Any]:
        """Canonical dict form, used for payload hashing and audit output."""
        return {
            "quote_id": self.quote_id,
            "requirement_id": self.requirement_id,
            "vendor_id": self.vendor_id,
            "brand_type": self.brand_type.value if self.brand_type else None,
            "unit_price": self.unit_price,
            "availability_status": (
                self.availability_status.value if self.availability_status else None
            ),
            "shipping_cost": self.shipping_cost,
            "core_charge": self.core_charge,
            "quantity_available": self.quantity_available,
            "lead_time_days_min": self.lead_time_days_min,
            "lead_time_days_max": self.lead_time_days_max,
            "warranty_months": self.warranty_months,
            "condition": self.condition,
            "vendor_name": self.vendor_name,
            "received_at": self.received_at,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VendorQuote:
        """
        Parse the canonical quote ingestion payload.

        Raises:
            MalformedQuoteError: a field holds a value that cannot be parsed
                (unknown enum value, non-numeric amount, bad timestamp).
        """
        quote_id = _pick(data, "quote_id", "quoteId")

        def parse(snake: str, camel: str, convert: Any) -> Any:
            raw = _pick(data, snake, camel)
            try:
                return convert(raw)
            except (ValueError, TypeError) as exc:
                raise MalformedQuoteError(quote_id, snake, raw) from exc

        return cls(
            quote_id=quote_id,
            requirement_id=_pick(data, "requirement_id", "requirementId"),
            vendor_id=_pick(data, "vendor_id", "vendorId"),
            brand_type=parse(
                "brand_type", "brandType", lambda v: _enum_or_none(BrandType, v),
            ),
            unit_price=parse("unit_price", "unitPrice", _to_decimal),
            availability_status=parse(
                "availability_status", "availabilityStatus",
                lambda v: _enum_or_none(AvailabilityStatus, v),
            ),
            shipping_cost=parse("shipping_cost", "shippingCost", _to_decimal)
            or Decimal("0"),
            core_charge=parse("core_charge", "coreCharge", _to_decimal),
            quantity_available=parse("quantity_available", "quantityAvailable", _to_int) or 0,
            lead_time_days_min=parse("lead_time_days_min", "leadTimeDaysMin", _to_int),
            lead_time_days_max=parse("lead_time_days_max", "leadTimeDaysMax", _to_int),
            warranty_months=parse("warranty_months", "warrantyMonths", _to_int) or 0,
            condition=data.get("condition"),
            vendor_name=_pick(data, "vendor_name", "vendorName"),
            received_at=parse("received_at", "receivedAt", _to_datetime),
            expires_at=parse("expires_at", "expiresAt", _to_datetime),
        )


@dataclass(frozen=True)
class ScoredQuote:
    """A quote with its sub-scores against one competing set. Never persisted."""
    quote: VendorQuote
    price_score: float
    availability_score: float
    lead_time_score: float
    quality_score: float
    overall_score: float
    landed_cost: Decimal
    avg_lead_time_days: Decimal | None
    rank: int = 0

    @property
    def quote_id(self) -> str:
        return self.quote.quote_id

    @property
    def vendor_id(self) -> str:
        return self.quote.vendor_id


# ---------------------------------------------------------------------------
# Sourcing requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourcingRequest:
    """The unit of work: every requirement of one repair order being sourced."""
    request_id: str
    repair_order_id: str
    repair_order_number: str
    requirement_ids: frozenset[str]
    deadline: datetime
    created_at: datetime
    state: RequestState = RequestState.OPEN
    closed_at: datetime | None = None
    preferred_vendors: Mapping[str, str] = field(default_factory=dict)

    def with_state(self, state: RequestState, closed_at: datetime | None = None) -> SourcingRequest:
        return replace(self, state=state, closed_at=closed_at or self.closed_at)


# ---------------------------------------------------------------------------
# Purchase orders
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class POLineItem:
    """A purchase order line: one selected quote."""
    requirement_id: str
    quote_id: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class PurchaseOrder:
    """A vendor-addressed order grouping the winners of one sourcing request."""
    po_number: str
    vendor_id: str
    vendor_code: str
    request_id: str
    repair_order_id: str
    line_items: tuple[POLineItem, ...]
    subtotal: Decimal
    total_amount: Decimal
    shipping_total: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    status: POStatus = POStatus.DRAFT
    requires_approval: bool = False
    sequence: int = 0
    created_at: datetime | None = None

    @property
    def requirement_ids(self) -> tuple[str, ...]:
        return tuple(line.requirement_id for line in self.line_items)

    def with_status(self, status: POStatus) -> PurchaseOrder:
        return replace(self, status=status)

    def with_line_items(self, line_items: tuple[POLineItem, ...]) -> PurchaseOrder:
        """Replace line items; only permitted while the PO is a draft."""
        if self.status != POStatus.DRAFT:
            raise ValueError(
                f"Purchase order {self.po_number} is {self.status.value}; "
                "line items are immutable once sent"
            )
        subtotal = quantize_money(sum((line.line_total for line in line_items), Decimal("0")))
        total = subtotal + self.shipping_total + self.tax_amount - self.discount_amount
        return replace(self, line_items=line_items, subtotal=subtotal, total_amount=total)


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OutcomeError:
    """An error reported in a sourcing outcome instead of being raised."""
    code: str
    message: str
    requirement_id: str | None = None
    vendor_id: str | None = None


@dataclass(frozen=True)
class SourcingOutcome:
    """Per-request summary handed to persistence / UI collaborators."""
    request_id: str
    state: RequestState
    ordered: tuple[str, ...] = ()
    unsourced: tuple[str, ...] = ()
    purchase_orders: tuple[str, ...] = ()
    errors: tuple[OutcomeError, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "requestId": self.request_id,
            "state": self.state.value,
            "ordered": list(self.ordered),
            "unsourced": list(self.unsourced),
            "purchaseOrders": list(self.purchase_orders),
            "errors": [
                {
                    "code": e.code,
                    "message": e.message,
                    "requirementId": e.requirement_id,
                    "vendorId": e.vendor_id,
                }
                for e in self.errors
            ],
        }
