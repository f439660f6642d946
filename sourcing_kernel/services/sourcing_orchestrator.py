"""
SourcingOrchestrator -- drives one sourcing request end to end.

Responsibility:
    Owns the sourcing request lifecycle and composes the kernel pipeline::

        open -> aggregating -> selecting -> {ordered, partially_ordered, failed}
        (open | aggregating | selecting) -> cancelled

    - ``start_aggregation`` routes each requirement to vendors and fans out
      through QuoteAggregator.  Vendors may also push quotes through
      ``submit_quote`` until the deadline.
    - ``select_winners`` seals the quote book, scores every requirement's
      competing set and selects one winner per requirement.
    - ``build_orders`` groups winners into purchase orders and resolves the
      request: all ordered -> ``ordered``, some -> ``partially_ordered``
      (unsourced requirements go back to ``needed``), none -> ``failed``.
    - ``run`` chains the three steps.

Architecture position:
    Kernel > Services -- the outermost kernel component.  Everything it
    needs is injected: shop config, vendor gateways, PO numbering, clock
    and event sink.

Invariants enforced:
    - Every requirement of a request shares the request's repair order.
    - Request state changes go through the request workflow table; a closed
      request accepts no further operation (``AlreadyFinalized``).
    - Cancellation propagates to in-flight vendor calls and never rolls
      back purchase orders that were already created.
    - Resolved outcomes are served from a bounded TTL cache.  Resolved
      requests leave the open-request map for a bounded TTL cache too;
      once evicted from it they are no longer found.

Failure modes:
    Per-requirement and per-group failures are collected into the outcome's
    ``errors``; only lookup, workflow and configuration problems raise.
"""

from __future__ import annotations

import asyncio
import threading
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sourcing_config.schema import ShopConfig
from sourcing_kernel.domain.clock import Clock, SystemClock
from sourcing_kernel.domain.events import (
    EventSink,
    InMemoryEventSink,
    RequirementStatusChanged,
    SourcingRequestResolved,
)
from sourcing_kernel.domain.quote_scorer import QuoteScorer
from sourcing_kernel.domain.quote_validator import QuoteValidator
from sourcing_kernel.domain.status_machine import (
    is_request_closed,
    require_request_transition,
    transition,
)
from sourcing_kernel.domain.values import (
    OutcomeError,
    PartRequirement,
    PartStatus,
    RequestState,
    SourcingOutcome,
    SourcingRequest,
    VendorQuote,
)
from sourcing_kernel.domain.vendor_routing import VendorRouter
from sourcing_kernel.domain.winner_selector import Selection, WinnerSelector
from sourcing_kernel.exceptions import (
    AlreadyFinalized,
    InsufficientQuotesError,
    InvalidTransition,
    MalformedQuoteError,
    RepairOrderMismatchError,
    RequirementNotFoundError,
    SourcingRequestNotFoundError,
)
from sourcing_kernel.logging_config import LogContext, get_logger
from sourcing_kernel.services.po_number_service import PurchaseOrderNumberService
from sourcing_kernel.services.purchase_order_builder import PurchaseOrderBuilder
from sourcing_kernel.services.quote_aggregator import (
    AggregationResult,
    QuoteAggregator,
    VendorGateway,
)
from sourcing_kernel.services.quote_book import QuoteBook, QuoteDisposition, QuoteEntry
from sourcing_kernel.utils.bounded_cache import BoundedTTLCache

logger = get_logger("services.sourcing_orchestrator")

SOURCEABLE_STATUSES = frozenset({PartStatus.NEEDED, PartStatus.SOURCING})


@dataclass
class _RequestRecord:
    """Mutable working state of one request; guarded by ``lock``."""
    request: SourcingRequest
    requirements: dict[str, PartRequirement]
    book: QuoteBook
    aggregation_errors: list[OutcomeError] = field(default_factory=list)
    selection_errors: list[OutcomeError] = field(default_factory=list)
    build_errors: list[OutcomeError] = field(default_factory=list)
    purchase_orders: list[str] = field(default_factory=list)
    selections: dict[str, Selection] = field(default_factory=dict)
    aggregation: AggregationResult | None = None
    task: asyncio.Future | None = None
    loop: asyncio.AbstractEventLoop | None = None
    lock: threading.RLock = field(default_factory=threading.RLock)


class SourcingOrchestrator:
    """
    Public entry point of the sourcing kernel.

    Usage:
        orchestrator = SourcingOrchestrator(config, gateways, numbers, clock=clock)
        request = orchestrator.open_request("RO-1001", requirements)
        outcome = asyncio.run(orchestrator.run(request.request_id))
    """

    def __init__(
        self,
        config: ShopConfig,
        gateways: Iterable[VendorGateway],
        numbers: PurchaseOrderNumberService,
        clock: Clock | None = None,
        events: EventSink | None = None,
        validator: QuoteValidator | None = None,
    ):
        self._config = config
        self._clock = clock or SystemClock()
        self._events = events or InMemoryEventSink()
        self._validator = validator or QuoteValidator()
        self._router = VendorRouter(config)
        self._aggregator = QuoteAggregator(gateways, config.aggregation, self._clock)
        self._scorer = QuoteScorer(config.weights)
        self._selector = WinnerSelector(config.selection)
        self._builder = PurchaseOrderBuilder(
            numbers, self._router, config.purchase_orders, self._events,
        )
        # Requests still in flight; never evicted
        self._records: dict[str, _RequestRecord] = {}
        # Resolved requests, kept for lookups and the audit log until evicted
        self._closed: BoundedTTLCache[str, _RequestRecord] = BoundedTTLCache(
            config.cache.capacity, config.cache.ttl_seconds, self._clock,
        )
        self._records_lock = threading.Lock()
        self._outcomes: BoundedTTLCache[str, SourcingOutcome] = BoundedTTLCache(
            config.cache.capacity, config.cache.ttl_seconds, self._clock,
        )

    @property
    def events(self) -> EventSink:
        return self._events

    # ------------------------------------------------------------------
    # Opening and lookup
    # ------------------------------------------------------------------

    def open_request(
        self,
        repair_order_id: str,
        requirements: Sequence[PartRequirement],
        deadline: datetime | None = None,
        repair_order_number: str | None = None,
        preferred_vendors: Mapping[str, str] | None = None,
        request_id: str | None = None,
    ) -> SourcingRequest:
        """
        Open a sourcing request for ``requirements`` of one repair order.

        Raises:
            ValueError: no requirements, or a requirement id is repeated.
            RepairOrderMismatchError: a requirement belongs to another RO.
            InvalidTransition: a requirement is not ``needed``/``sourcing``.
            RequirementNotFoundError: a preferred-vendor pin names an
                unknown requirement.
        """
        if not requirements:
            raise ValueError("A sourcing request needs at least one requirement")

        by_id: dict[str, PartRequirement] = {}
        for requirement in requirements:
            if requirement.requirement_id in by_id:
                raise ValueError(f"Duplicate requirement id {requirement.requirement_id}")
            if requirement.repair_order_id != repair_order_id:
                raise RepairOrderMismatchError(
                    requirement.requirement_id, repair_order_id, requirement.repair_order_id,
                )
            if requirement.current_status not in SOURCEABLE_STATUSES:
                raise InvalidTransition(
                    requirement.current_status, PartStatus.SOURCING,
                    subject_id=requirement.requirement_id,
                )
            by_id[requirement.requirement_id] = requirement

        pins = dict(preferred_vendors or {})
        for requirement_id in pins:
            if requirement_id not in by_id:
                raise RequirementNotFoundError(requirement_id)

        now = self._clock.now()
        if deadline is None:
            deadline = now + timedelta(
                seconds=self._config.aggregation.default_deadline_seconds,
            )
        request = SourcingRequest(
            request_id=request_id or str(uuid.uuid4()),
            repair_order_id=repair_order_id,
            repair_order_number=repair_order_number or repair_order_id,
            requirement_ids=frozenset(by_id),
            deadline=deadline,
            created_at=now,
            preferred_vendors=pins,
        )
        book = QuoteBook(request.request_id, by_id, deadline, self._clock, self._validator)

        self._closed.purge_expired()
        self._outcomes.purge_expired()
        with self._records_lock:
            if request.request_id in self._records or request.request_id in self._closed:
                raise ValueError(f"Sourcing request {request.request_id} already exists")
            self._records[request.request_id] = _RequestRecord(
                request=request, requirements=by_id, book=book,
            )

        logger.info(
            "sourcing_request_opened",
            extra={
                "request_id": request.request_id,
                "repair_order_id": repair_order_id,
                "requirement_count": len(by_id),
                "deadline": deadline,
                "preferred_vendors": pins,
            },
        )
        return request

    def _record(self, request_id: str) -> _RequestRecord:
        with self._records_lock:
            record = self._records.get(request_id)
        if record is None:
            record = self._closed.get(request_id)
        if record is None:
            raise SourcingRequestNotFoundError(request_id)
        return record

    def get_request(self, request_id: str) -> SourcingRequest:
        record = self._record(request_id)
        with record.lock:
            return record.request

    def get_requirement(self, request_id: str, requirement_id: str) -> PartRequirement:
        record = self._record(request_id)
        with record.lock:
            requirement = record.requirements.get(requirement_id)
        if requirement is None:
            raise RequirementNotFoundError(requirement_id, request_id)
        return requirement

    def get_requirements(self, request_id: str) -> tuple[PartRequirement, ...]:
        record = self._record(request_id)
        with record.lock:
            return tuple(record.requirements[r] for r in sorted(record.requirements))

    def get_selections(self, request_id: str) -> dict[str, Selection]:
        record = self._record(request_id)
        with record.lock:
            return dict(record.selections)

    def get_outcome(self, request_id: str) -> SourcingOutcome | None:
        """Outcome of a resolved request; None while it is still open."""
        cached = self._outcomes.get(request_id)
        if cached is not None:
            return cached
        record = self._record(request_id)
        with record.lock:
            if not is_request_closed(record.request.state):
                return None
            outcome = self._outcome_for(record)
        self._outcomes.put(request_id, outcome)
        return outcome

    def quote_audit_log(
        self, request_id: str, requirement_id: str | None = None,
    ) -> tuple[QuoteEntry, ...]:
        return self._record(request_id).book.audit_log(requirement_id)

    # ------------------------------------------------------------------
    # Vendor submissions
    # ------------------------------------------------------------------

    def submit_quote(
        self,
        request_id: str,
        quote: VendorQuote | Mapping[str, Any],
    ) -> QuoteEntry:
        """
        Accept a vendor-pushed quote for an open or aggregating request.

        After the deadline, or once selection has begun, the quote is kept
        in the audit log as ``late``.  A payload that cannot be parsed is
        kept as a ``Malformed`` rejection and the request carries on.

        Raises:
            AlreadyFinalized: the request is closed.
            QuotePayloadMismatchError: ``quote_id`` reused with a new payload.
        """
        record = self._record(request_id)
        with record.lock:
            state = record.request.state
        if is_request_closed(state):
            raise AlreadyFinalized(request_id, state, "submit_quote")
        if isinstance(quote, VendorQuote):
            with LogContext.bind(request_id=request_id, vendor_id=quote.vendor_id):
                return record.book.submit(quote)
        try:
            parsed = VendorQuote.from_dict(quote)
        except MalformedQuoteError as e:
            with LogContext.bind(request_id=request_id):
                return record.book.submit_malformed(quote, e)
        with LogContext.bind(request_id=request_id, vendor_id=parsed.vendor_id):
            return record.book.submit(parsed)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def run(self, request_id: str) -> SourcingOutcome:
        """Aggregate, select and order; returns the resolved outcome."""
        record = self._record(request_id)
        with LogContext.bind(
            request_id=request_id, repair_order_id=record.request.repair_order_id,
        ):
            try:
                await self.start_aggregation(request_id)
                self.select_winners(request_id)
                return self.build_orders(request_id)
            except AlreadyFinalized:
                with record.lock:
                    state = record.request.state
                if state != RequestState.CANCELLED:
                    raise
                return self.get_outcome(request_id)

    async def start_aggregation(self, request_id: str) -> AggregationResult:
        """
        Move to ``aggregating`` and collect vendor quotes until done or the
        deadline; then move to ``selecting``.

        Raises:
            AlreadyFinalized: the request was closed, including by a
                ``cancel`` that arrived while vendors were being asked.
        """
        record = self._record(request_id)
        self._advance(record, RequestState.AGGREGATING, "aggregate")

        with record.lock:
            for requirement_id in sorted(record.requirements):
                requirement = record.requirements[requirement_id]
                if requirement.current_status == PartStatus.NEEDED:
                    self._set_status(record, requirement, PartStatus.SOURCING)
            requirements = [record.requirements[r] for r in sorted(record.requirements)]
            request = record.request

        vendor_plan = {
            r.requirement_id: self._router.route(
                r,
                self._aggregator.vendor_ids,
                request.preferred_vendors.get(r.requirement_id),
            )
            for r in requirements
        }

        task = asyncio.ensure_future(
            self._aggregator.aggregate(request, requirements, vendor_plan, record.book)
        )
        with record.lock:
            record.task = task
            record.loop = asyncio.get_running_loop()
        try:
            result = await task
        except asyncio.CancelledError:
            with record.lock:
                state = record.request.state
            if state == RequestState.CANCELLED:
                raise AlreadyFinalized(request_id, state, "aggregate")
            raise
        finally:
            with record.lock:
                record.task = None

        with record.lock:
            record.aggregation = result
            for failure in result.failures:
                record.aggregation_errors.append(OutcomeError(
                    code=f"VENDOR_{failure.kind.upper()}",
                    message=failure.message or f"{failure.kind} from vendor {failure.vendor_id}",
                    requirement_id=failure.requirement_id,
                    vendor_id=failure.vendor_id,
                ))
        self._advance(record, RequestState.SELECTING, "select")
        record.book.seal()
        return result

    def select_winners(self, request_id: str) -> dict[str, Selection]:
        """
        Score and select one winner per requirement.

        Requirements with no eligible quote are left without a selection
        and reported as ``INSUFFICIENT_QUOTES``.
        """
        record = self._record(request_id)
        with record.lock:
            self._require_state(record, RequestState.SELECTING, "select_winners")
            record.book.seal()
            at = self._clock.now()
            selections: dict[str, Selection] = {}
            errors: list[OutcomeError] = []

            for entry in record.book.audit_log():
                if entry.disposition == QuoteDisposition.REJECTED:
                    errors.append(OutcomeError(
                        code="QUOTE_VALIDATION_FAILED",
                        message=f"{entry.rejection_reason.value}: {entry.validation.detail}",
                        requirement_id=entry.quote.requirement_id,
                        vendor_id=entry.quote.vendor_id,
                    ))

            for requirement_id in sorted(record.requirements):
                requirement = record.requirements[requirement_id]
                with LogContext.bind(requirement_id=requirement_id):
                    quotes = record.book.scoring_set(requirement_id, at)
                    scored = self._scorer.score(requirement, quotes)
                    try:
                        selections[requirement_id] = self._selector.select(
                            requirement,
                            scored,
                            at,
                            record.request.preferred_vendors.get(requirement_id),
                        )
                    except InsufficientQuotesError as exc:
                        logger.warning(
                            "requirement_unsourced",
                            extra={"considered": exc.considered},
                        )
                        errors.append(OutcomeError(
                            code=exc.code, message=str(exc), requirement_id=requirement_id,
                        ))
            record.selections = selections
            record.selection_errors = errors
        return dict(selections)

    def build_orders(self, request_id: str) -> SourcingOutcome:
        """Create purchase orders for the selections and resolve the request."""
        record = self._record(request_id)
        with record.lock:
            self._require_state(record, RequestState.SELECTING, "build_orders")
            result = self._builder.build(
                record.request,
                record.requirements,
                [record.selections[r] for r in sorted(record.selections)],
            )
            record.requirements = dict(result.requirements)
            record.purchase_orders.extend(po.po_number for po in result.purchase_orders)
            for failure in result.failures:
                record.build_errors.append(OutcomeError(
                    code=failure.code,
                    message=failure.message,
                    requirement_id=failure.conflicting_requirement_id,
                    vendor_id=failure.vendor_id,
                ))

            self._release_unsourced(record)
            ordered = self._ordered_ids(record)
            if len(ordered) == len(record.requirements):
                final_state = RequestState.ORDERED
            elif ordered:
                final_state = RequestState.PARTIALLY_ORDERED
            else:
                final_state = RequestState.FAILED
            self._advance(record, final_state, "build_orders")
            return self._resolve(record)

    def cancel(self, request_id: str) -> SourcingOutcome:
        """
        Cancel an open, aggregating or selecting request.

        In-flight vendor calls are cancelled; purchase orders already
        created stay in place.

        Raises:
            AlreadyFinalized: the request is already closed.
        """
        record = self._record(request_id)
        with record.lock:
            self._advance(record, RequestState.CANCELLED, "cancel")
            record.book.seal()
            self._release_unsourced(record)
            task, loop = record.task, record.loop
            outcome = self._resolve(record)

        if task is not None and not task.done() and loop is not None:
            loop.call_soon_threadsafe(task.cancel)
        return outcome

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _advance(self, record: _RequestRecord, to_state: RequestState, operation: str) -> None:
        with record.lock:
            current = record.request.state
            if is_request_closed(current):
                raise AlreadyFinalized(record.request.request_id, current, operation)
            require_request_transition(current, to_state, record.request.request_id)
            closed_at = self._clock.now() if is_request_closed(to_state) else None
            record.request = record.request.with_state(to_state, closed_at)
        logger.info(
            "sourcing_request_state_changed",
            extra={
                "request_id": record.request.request_id,
                "from_state": current,
                "to_state": to_state,
            },
        )

    def _require_state(self, record: _RequestRecord, state: RequestState, operation: str) -> None:
        current = record.request.state
        if is_request_closed(current):
            raise AlreadyFinalized(record.request.request_id, current, operation)
        if current != state:
            raise InvalidTransition(current, state, subject_id=record.request.request_id)

    def _set_status(
        self, record: _RequestRecord, requirement: PartRequirement, status: PartStatus,
    ) -> None:
        updated = transition(requirement, status)
        record.requirements[requirement.requirement_id] = updated
        record.book.update_requirement(updated)
        self._events.publish(RequirementStatusChanged(
            requirement_id=updated.requirement_id,
            from_status=requirement.current_status,
            to_status=updated.current_status,
        ))

    def _release_unsourced(self, record: _RequestRecord) -> None:
        for requirement_id in sorted(record.requirements):
            requirement = record.requirements[requirement_id]
            if requirement.current_status == PartStatus.SOURCING:
                self._set_status(record, requirement, PartStatus.NEEDED)

    def _ordered_ids(self, record: _RequestRecord) -> tuple[str, ...]:
        return tuple(
            r for r in sorted(record.requirements)
            if record.requirements[r].current_status == PartStatus.ORDERED
            and record.requirements[r].selected_quote_id is not None
        )

    def _outcome_for(self, record: _RequestRecord) -> SourcingOutcome:
        ordered = self._ordered_ids(record)
        return SourcingOutcome(
            request_id=record.request.request_id,
            state=record.request.state,
            ordered=ordered,
            unsourced=tuple(r for r in sorted(record.requirements) if r not in ordered),
            purchase_orders=tuple(record.purchase_orders),
            errors=tuple(
                record.aggregation_errors + record.selection_errors + record.build_errors
            ),
        )

    def _resolve(self, record: _RequestRecord) -> SourcingOutcome:
        outcome = self._outcome_for(record)
        self._outcomes.put(outcome.request_id, outcome)
        with self._records_lock:
            self._records.pop(outcome.request_id, None)
            self._closed.put(outcome.request_id, record)
        self._events.publish(SourcingRequestResolved(
            request_id=outcome.request_id, state=outcome.state,
        ))
        logger.info(
            "sourcing_request_resolved",
            extra={
                "request_id": outcome.request_id,
                "state": outcome.state,
                "ordered": list(outcome.ordered),
                "unsourced": list(outcome.unsourced),
                "purchase_orders": list(outcome.purchase_orders),
                "error_count": len(outcome.errors),
            },
        )
        return outcome
