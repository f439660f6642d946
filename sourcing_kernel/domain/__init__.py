"""
Pure domain layer.

Data model, lifecycle tables, validation, scoring and selection with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- System time (a Clock is passed in)
- Vendor I/O

All domain objects are immutable and deterministic.
"""

from sourcing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from sourcing_kernel.domain.events import (
    EventSink,
    InMemoryEventSink,
    PurchaseOrderCreated,
    RequirementStatusChanged,
    SourcingRequestResolved,
)
from sourcing_kernel.domain.quote_scorer import QuoteScorer
from sourcing_kernel.domain.quote_validator import (
    QuoteValidation,
    QuoteValidator,
    RejectionReason,
)
from sourcing_kernel.domain.status_machine import (
    PART_STATUS_WORKFLOW,
    SOURCING_REQUEST_WORKFLOW,
    allowed_next_states,
    is_legal_transition,
    is_terminal,
    require_transition,
    transition,
)
from sourcing_kernel.domain.values import (
    AvailabilityStatus,
    BrandType,
    OutcomeError,
    PartRequirement,
    PartStatus,
    POLineItem,
    POStatus,
    PurchaseOrder,
    RequestState,
    ScoredQuote,
    SourcingOutcome,
    SourcingRequest,
    VendorQuote,
)
from sourcing_kernel.domain.vendor_routing import VendorRouter
from sourcing_kernel.domain.winner_selector import (
    OverrideDecision,
    Selection,
    WinnerSelector,
)

__all__ = [
    "AvailabilityStatus",
    "BrandType",
    "Clock",
    "DeterministicClock",
    "EventSink",
    "InMemoryEventSink",
    "OutcomeError",
    "OverrideDecision",
    "PART_STATUS_WORKFLOW",
    "PartRequirement",
    "PartStatus",
    "POLineItem",
    "POStatus",
    "PurchaseOrder",
    "PurchaseOrderCreated",
    "QuoteScorer",
    "QuoteValidation",
    "QuoteValidator",
    "RejectionReason",
    "RequestState",
    "RequirementStatusChanged",
    "SOURCING_REQUEST_WORKFLOW",
    "ScoredQuote",
    "Selection",
    "SourcingOutcome",
    "SourcingRequest",
    "SourcingRequestResolved",
    "SystemClock",
    "VendorQuote",
    "VendorRouter",
    "WinnerSelector",
    "allowed_next_states",
    "is_legal_transition",
    "is_terminal",
    "require_transition",
    "transition",
]
