"""
Typed exception hierarchy for the sourcing kernel.

Every error has a typed class, a machine-readable ``code`` class attribute,
and carries its context as attributes rather than only in the message.
Callers catch by type and read structured fields:

    try:
        builder.build(request, requirements, selections)
    except InvalidTransition as e:
        outcome_errors.append({"code": e.code, "requirement": e.subject_id})

Hierarchy:

    SourcingError (base)
    |
    +-- QuoteError
    |   +-- QuoteValidationError
    |   |   +-- MalformedQuoteError
    |   +-- QuotePayloadMismatchError
    |   +-- InsufficientQuotesError
    |
    +-- WorkflowError
    |   +-- InvalidTransition
    |   +-- AlreadyFinalized
    |
    +-- ConcurrencyError
    |   +-- SequenceConflict
    |
    +-- LookupFailure
    |   +-- SourcingRequestNotFoundError
    |   +-- RequirementNotFoundError
    |
    +-- RepairOrderMismatchError
    +-- ConfigurationError

Code            | When raised
----------------|------------------------------------------------------------
QUOTE_VALIDATION_FAILED | Quote is malformed, negative-priced, short or expired
QUOTE_PAYLOAD_MISMATCH  | Same quote_id resubmitted with a different payload
INSUFFICIENT_QUOTES     | No eligible quote for a requirement at selection
INVALID_TRANSITION      | State machine guard violation (no mutation happens)
ALREADY_FINALIZED       | Operation on a closed sourcing request
SEQUENCE_CONFLICT       | PO number already taken (retried once automatically)

Only SEQUENCE_CONFLICT is retried.  Everything else is reported in the
request outcome.
"""

from typing import Any


class SourcingError(Exception):
    """
    Base exception for all sourcing kernel errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "SOURCING_ERROR"


# Quote-related exceptions


class QuoteError(SourcingError):
    """Base exception for quote ingestion and selection errors."""

    code: str = "QUOTE_ERROR"


class QuoteValidationError(QuoteError):
    """Quote failed validation and was rejected."""

    code: str = "QUOTE_VALIDATION_FAILED"

    def __init__(self, quote_id: str | None, reason: str, detail: str = ""):
        self.quote_id = quote_id
        self.reason = reason
        self.detail = detail
        message = f"Quote {quote_id} rejected: {reason}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class MalformedQuoteError(QuoteValidationError):
    """A vendor payload field could not be parsed into a quote."""

    def __init__(self, quote_id: str | None, field: str, value: Any):
        self.field = field
        self.value = value
        super().__init__(quote_id, "Malformed", field)


class QuotePayloadMismatchError(QuoteError):
    """
    Quote ID already ingested with a different payload.

    Resubmissions must carry a new quote_id; quotes are immutable.
    """

    code: str = "QUOTE_PAYLOAD_MISMATCH"

    def __init__(self, quote_id: str, expected_hash: str, received_hash: str):
        self.quote_id = quote_id
        self.expected_hash = expected_hash
        self.received_hash = received_hash
        super().__init__(
            f"Payload mismatch for quote {quote_id}: "
            f"expected {expected_hash}, received {received_hash}"
        )


class InsufficientQuotesError(QuoteError):
    """No eligible quote exists for a requirement."""

    code: str = "INSUFFICIENT_QUOTES"

    def __init__(self, requirement_id: str, considered: int = 0):
        self.requirement_id = requirement_id
        self.considered = considered
        super().__init__(
            f"No eligible quotes for requirement {requirement_id} "
            f"({considered} considered)"
        )


# Workflow exceptions


class WorkflowError(SourcingError):
    """Base exception for lifecycle state machine errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransition(WorkflowError):
    """Requested state transition is not in the transition table."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, from_state: Any, to_state: Any, subject_id: str | None = None):
        self.from_state = getattr(from_state, "value", from_state)
        self.to_state = getattr(to_state, "value", to_state)
        self.subject_id = subject_id
        subject = f" for {subject_id}" if subject_id else ""
        super().__init__(
            f"Invalid transition{subject}: {self.from_state} -> {self.to_state}"
        )


class AlreadyFinalized(WorkflowError):
    """Sourcing request is closed; the operation has no effect."""

    code: str = "ALREADY_FINALIZED"

    def __init__(self, request_id: str, state: Any, operation: str = ""):
        self.request_id = request_id
        self.state = getattr(state, "value", state)
        self.operation = operation
        super().__init__(
            f"Sourcing request {request_id} is already {self.state}"
            + (f"; cannot {operation}" if operation else "")
        )


# Concurrency exceptions


class ConcurrencyError(SourcingError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class SequenceConflict(ConcurrencyError):
    """Allocated PO number collided with an existing purchase order."""

    code: str = "SEQUENCE_CONFLICT"

    def __init__(self, sequence_name: str, po_number: str | None = None):
        self.sequence_name = sequence_name
        self.po_number = po_number
        super().__init__(
            f"Sequence conflict on {sequence_name}"
            + (f": {po_number} already exists" if po_number else "")
        )


# Lookup exceptions


class LookupFailure(SourcingError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class SourcingRequestNotFoundError(LookupFailure):
    """Sourcing request ID is unknown."""

    code: str = "SOURCING_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Sourcing request not found: {request_id}")


class RequirementNotFoundError(LookupFailure):
    """Requirement ID is not part of the sourcing request."""

    code: str = "REQUIREMENT_NOT_FOUND"

    def __init__(self, requirement_id: str, request_id: str | None = None):
        self.requirement_id = requirement_id
        self.request_id = request_id
        super().__init__(
            f"Requirement {requirement_id} not found"
            + (f" in sourcing request {request_id}" if request_id else "")
        )


class RepairOrderMismatchError(SourcingError):
    """All requirements in a sourcing request must share one repair order."""

    code: str = "REPAIR_ORDER_MISMATCH"

    def __init__(self, requirement_id: str, expected: str, actual: str):
        self.requirement_id = requirement_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Requirement {requirement_id} belongs to repair order {actual}, "
            f"expected {expected}"
        )


class ConfigurationError(SourcingError):
    """Shop configuration is invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid configuration for {field}: {reason}")
