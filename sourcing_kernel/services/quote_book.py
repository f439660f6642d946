"""
QuoteBook -- per-request quote ingestion and audit log.

Responsibility:
    The single entry point through which vendor quotes reach a sourcing
    request, whether they arrive from the aggregator's fan-out or from a
    vendor pushing a submission.  Every submission is kept in the audit log
    with a disposition; only ``accepted`` entries compete in scoring.

Architecture position:
    Kernel > Services.  Owned by the orchestrator (one book per request),
    fed by QuoteAggregator and ``SourcingOrchestrator.submit_quote``.

Invariants enforced:
    - Idempotent resubmission: a ``quote_id`` seen before with the same
      payload hash is recorded as ``duplicate`` and never competes twice.
      A different payload under the same ``quote_id`` is refused.
    - Per (requirement, vendor) only the quote with the latest
      ``received_at`` competes; earlier ones are marked ``superseded``.
      A superseded quote that passed validation stays on file and competes
      again if every newer quote from that vendor has expired by selection.
    - Once the deadline passes or the book is sealed, submissions are
      recorded as ``late`` and never enter scoring.
    - Nothing is ever deleted from the audit log.

Failure modes:
    - QuotePayloadMismatchError: conflicting payload for a known quote_id.
    - RequirementNotFoundError: quote for a requirement outside the request.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any

from sourcing_kernel.domain.clock import Clock, SystemClock
from sourcing_kernel.domain.quote_validator import (
    QuoteValidation,
    QuoteValidator,
    RejectionReason,
)
from sourcing_kernel.domain.values import PartRequirement, VendorQuote
from sourcing_kernel.exceptions import (
    MalformedQuoteError,
    QuotePayloadMismatchError,
    RequirementNotFoundError,
)
from sourcing_kernel.logging_config import get_logger
from sourcing_kernel.utils.hashing import hash_payload

logger = get_logger("services.quote_book")


class QuoteDisposition(str, Enum):
    """What the book did with a submission."""
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"
    DUPLICATE = "duplicate"
    LATE = "late"


@dataclass(frozen=True)
class QuoteEntry:
    """One audit log line."""
    sequence: int
    quote: VendorQuote
    disposition: QuoteDisposition
    ingested_at: datetime
    payload_hash: str
    validation: QuoteValidation | None = None
    superseded_by: str | None = None
    # Vendor payload as received, kept only when it could not be parsed
    raw_payload: dict[str, Any] | None = None

    @property
    def quote_id(self) -> str | None:
        return self.quote.quote_id

    @property
    def rejection_reason(self) -> RejectionReason | None:
        if self.validation is None:
            return None
        return self.validation.reason

    @property
    def competes(self) -> bool:
        return self.disposition == QuoteDisposition.ACCEPTED


class QuoteBook:
    """Thread-safe quote store for one sourcing request."""

    def __init__(
        self,
        request_id: str,
        requirements: Mapping[str, PartRequirement],
        deadline: datetime,
        clock: Clock | None = None,
        validator: QuoteValidator | None = None,
    ):
        self._request_id = request_id
        self._requirements = dict(requirements)
        self._deadline = deadline
        self._clock = clock or SystemClock()
        self._validator = validator or QuoteValidator()
        self._entries: list[QuoteEntry] = []
        # quote_id -> payload hash of its first submission
        self._hashes: dict[str, str] = {}
        # (requirement_id, vendor_id) -> index of the competing entry
        self._current: dict[tuple[str, str], int] = {}
        # (requirement_id, vendor_id) -> indexes of every valid entry
        self._valid: dict[tuple[str, str], list[int]] = {}
        self._sealed = False
        self._lock = threading.Lock()

    @property
    def request_id(self) -> str:
        return self._request_id

    @property
    def deadline(self) -> datetime:
        return self._deadline

    @property
    def sealed(self) -> bool:
        return self._sealed

    def update_requirement(self, requirement: PartRequirement) -> None:
        """Refresh the requirement snapshot used for validation provenance."""
        with self._lock:
            if requirement.requirement_id in self._requirements:
                self._requirements[requirement.requirement_id] = requirement

    def seal(self) -> None:
        """Stop accepting quotes; later submissions are recorded as late."""
        with self._lock:
            if not self._sealed:
                self._sealed = True
                logger.info(
                    "quote_book_sealed",
                    extra={"request_id": self._request_id, "entries": len(self._entries)},
                )

    def submit(self, quote: VendorQuote, ingested_at: datetime | None = None) -> QuoteEntry:
        """
        Record ``quote`` and decide whether it competes.

        Raises:
            QuotePayloadMismatchError: ``quote_id`` known with another payload.
            RequirementNotFoundError: requirement not part of this request.
        """
        now = ingested_at or self._clock.now()
        payload_hash = hash_payload(quote.to_payload())

        with self._lock:
            duplicate = self._claim(quote, payload_hash, now)
            if duplicate is not None:
                return duplicate

            if self._sealed or now > self._deadline:
                return self._append(quote, QuoteDisposition.LATE, now, payload_hash)

            validation = self._validate(quote, now)
            if not validation.is_valid:
                return self._append(
                    quote, QuoteDisposition.REJECTED, now, payload_hash, validation,
                )
            return self._accept(quote, now, payload_hash, validation)

    def submit_malformed(
        self,
        payload: Mapping[str, Any],
        error: MalformedQuoteError,
        ingested_at: datetime | None = None,
    ) -> QuoteEntry:
        """
        Record a vendor payload that did not parse as a ``Malformed`` rejection.

        The entry keeps the raw payload and never competes.  Resubmitting
        the same payload is a duplicate, as for any other quote.

        Raises:
            QuotePayloadMismatchError: ``quote_id`` known with another payload.
            RequirementNotFoundError: requirement not part of this request.
        """
        now = ingested_at or self._clock.now()
        raw = dict(payload)
        quote = VendorQuote(
            quote_id=error.quote_id,
            requirement_id=raw.get("requirement_id", raw.get("requirementId")),
            vendor_id=raw.get("vendor_id", raw.get("vendorId")),
            vendor_name=raw.get("vendor_name", raw.get("vendorName")),
        )
        payload_hash = hash_payload(raw)

        with self._lock:
            duplicate = self._claim(quote, payload_hash, now)
            if duplicate is not None:
                return duplicate

            requirement = self._requirements.get(quote.requirement_id)
            validation = QuoteValidation(
                quote=quote,
                ingested_at=now,
                requirement_status=requirement.current_status if requirement else None,
                reason=RejectionReason.MALFORMED,
                detail=error.field,
            )
            logger.warning(
                "quote_malformed",
                extra={
                    "request_id": self._request_id,
                    "quote_id": quote.quote_id,
                    "vendor_id": quote.vendor_id,
                    "field": error.field,
                },
            )
            return self._append(
                quote, QuoteDisposition.REJECTED, now, payload_hash, validation,
                raw_payload=raw,
            )

    def _claim(self, quote: VendorQuote, payload_hash: str, now: datetime) -> QuoteEntry | None:
        """
        Register ``quote.quote_id`` or record the submission as a duplicate.

        Returns the duplicate entry, or None for a first submission.
        Caller holds the lock.
        """
        if quote.quote_id is not None and quote.quote_id in self._hashes:
            expected = self._hashes[quote.quote_id]
            if expected != payload_hash:
                logger.warning(
                    "quote_payload_mismatch",
                    extra={
                        "request_id": self._request_id,
                        "quote_id": quote.quote_id,
                        "vendor_id": quote.vendor_id,
                    },
                )
                raise QuotePayloadMismatchError(quote.quote_id, expected, payload_hash)
            return self._append(quote, QuoteDisposition.DUPLICATE, now, payload_hash)

        if quote.requirement_id is not None and quote.requirement_id not in self._requirements:
            raise RequirementNotFoundError(quote.requirement_id, self._request_id)

        if quote.quote_id is not None:
            self._hashes[quote.quote_id] = payload_hash
        return None

    def _validate(self, quote: VendorQuote, now: datetime) -> QuoteValidation:
        requirement = self._requirements.get(quote.requirement_id)
        if requirement is None:
            return QuoteValidation(
                quote=quote,
                ingested_at=now,
                requirement_status=None,
                reason=RejectionReason.MISSING_FIELD,
                detail="requirement_id",
            )
        return self._validator.validate(quote, requirement, now)

    def _accept(
        self,
        quote: VendorQuote,
        now: datetime,
        payload_hash: str,
        validation: QuoteValidation,
    ) -> QuoteEntry:
        key = (quote.requirement_id, quote.vendor_id)
        received_at = quote.received_at or now
        current_index = self._current.get(key)
        self._valid.setdefault(key, []).append(len(self._entries))

        if current_index is not None:
            current = self._entries[current_index]
            current_received = current.quote.received_at or current.ingested_at
            if received_at < current_received:
                # An older quote arriving late never displaces a newer one
                return self._append(
                    quote, QuoteDisposition.SUPERSEDED, now, payload_hash, validation,
                    superseded_by=current.quote_id,
                )
            self._entries[current_index] = replace(
                current,
                disposition=QuoteDisposition.SUPERSEDED,
                superseded_by=quote.quote_id,
            )
            logger.info(
                "quote_superseded",
                extra={
                    "request_id": self._request_id,
                    "quote_id": current.quote_id,
                    "superseded_by": quote.quote_id,
                    "vendor_id": quote.vendor_id,
                },
            )

        entry = self._append(quote, QuoteDisposition.ACCEPTED, now, payload_hash, validation)
        self._current[key] = entry.sequence - 1
        return entry

    def _append(
        self,
        quote: VendorQuote,
        disposition: QuoteDisposition,
        now: datetime,
        payload_hash: str,
        validation: QuoteValidation | None = None,
        superseded_by: str | None = None,
        raw_payload: dict[str, Any] | None = None,
    ) -> QuoteEntry:
        entry = QuoteEntry(
            sequence=len(self._entries) + 1,
            quote=quote,
            disposition=disposition,
            ingested_at=now,
            payload_hash=payload_hash,
            validation=validation,
            superseded_by=superseded_by,
            raw_payload=raw_payload,
        )
        self._entries.append(entry)
        logger.info(
            "quote_recorded",
            extra={
                "request_id": self._request_id,
                "quote_id": quote.quote_id,
                "vendor_id": quote.vendor_id,
                "requirement_id": quote.requirement_id,
                "disposition": disposition.value,
            },
        )
        return entry

    def scoring_set(self, requirement_id: str, at: datetime | None = None) -> tuple[VendorQuote, ...]:
        """
        The latest unexpired valid quote per vendor for one requirement.

        Usually that is the accepted entry.  When it has expired by ``at``,
        the vendor's newest superseded quote still in date takes its place.
        """
        at = at or self._clock.now()
        with self._lock:
            quotes = []
            for (req_id, _), indexes in self._valid.items():
                if req_id != requirement_id:
                    continue
                live = [
                    (self._received(self._entries[i]), i)
                    for i in indexes
                    if not self._entries[i].quote.is_expired(at)
                ]
                if live:
                    quotes.append(self._entries[max(live)[1]].quote)
        return tuple(sorted(quotes, key=lambda q: q.vendor_id))

    @staticmethod
    def _received(entry: QuoteEntry) -> datetime:
        return entry.quote.received_at or entry.ingested_at

    def scoring_sets(self, at: datetime | None = None) -> dict[str, tuple[VendorQuote, ...]]:
        at = at or self._clock.now()
        return {req_id: self.scoring_set(req_id, at) for req_id in sorted(self._requirements)}

    def audit_log(self, requirement_id: str | None = None) -> tuple[QuoteEntry, ...]:
        """Every submission in arrival order, optionally for one requirement."""
        with self._lock:
            entries = tuple(self._entries)
        if requirement_id is None:
            return entries
        return tuple(e for e in entries if e.quote.requirement_id == requirement_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
