"""
PurchaseOrderBuilder -- groups winning quotes into vendor purchase orders.

Responsibility:
    Turns one request's selections into one purchase order per vendor,
    allocates each PO its deterministic number, persists it to the PO
    ledger and moves the ordered requirements to ``ordered``.

Architecture position:
    Kernel > Services.  Called by SourcingOrchestrator after winner
    selection.  Uses PurchaseOrderNumberService for numbering and the
    shared transaction it opens.

Invariants enforced:
    - Each selection appears on exactly one PO line; the sum of PO
      subtotals equals the sum of the selected landed costs.
    - ``total = subtotal + shipping + tax - discount`` on every PO.
    - Every requirement transition is checked before a number is
      allocated.  A group with an illegal transition consumes no number
      and changes no status.
    - A failing vendor group never affects the other groups.
    - ``SequenceConflict`` is retried once past the conflicting number,
      then reported.

Failure modes:
    Reported in ``POBuildResult.failures``, never raised:
    - INVALID_TRANSITION with the conflicting requirement id.
    - SEQUENCE_CONFLICT after the retry is spent.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from sourcing_config.schema import POTotalsPolicy
from sourcing_kernel.domain.events import (
    EventSink,
    InMemoryEventSink,
    PurchaseOrderCreated,
    RequirementStatusChanged,
)
from sourcing_kernel.domain.status_machine import require_transition, transition
from sourcing_kernel.domain.values import (
    PartRequirement,
    PartStatus,
    POLineItem,
    PurchaseOrder,
    SourcingRequest,
    quantize_money,
)
from sourcing_kernel.domain.vendor_routing import VendorRouter
from sourcing_kernel.domain.winner_selector import Selection
from sourcing_kernel.exceptions import InvalidTransition, SequenceConflict
from sourcing_kernel.logging_config import get_logger
from sourcing_kernel.models.purchase_order import PurchaseOrderModel
from sourcing_kernel.services.po_number_service import PurchaseOrderNumberService

logger = get_logger("services.purchase_order_builder")

SEQUENCE_CONFLICT_RETRIES = 1


@dataclass(frozen=True)
class GroupFailure:
    """A vendor group that produced no purchase order."""
    vendor_id: str
    requirement_ids: tuple[str, ...]
    code: str
    message: str
    conflicting_requirement_id: str | None = None


@dataclass(frozen=True)
class POTotals:
    subtotal: Decimal
    shipping_total: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class POBuildResult:
    purchase_orders: tuple[PurchaseOrder, ...] = ()
    requirements: Mapping[str, PartRequirement] = field(default_factory=dict)
    failures: tuple[GroupFailure, ...] = ()

    @property
    def ordered_requirement_ids(self) -> tuple[str, ...]:
        return tuple(
            sorted(rid for po in self.purchase_orders for rid in po.requirement_ids)
        )


def group_by_vendor(selections: Sequence[Selection]) -> dict[str, list[Selection]]:
    """Selections keyed by winning vendor, both in deterministic order."""
    groups: dict[str, list[Selection]] = {}
    for selection in sorted(selections, key=lambda s: (s.vendor_id, s.requirement_id)):
        groups.setdefault(selection.vendor_id, []).append(selection)
    return groups


def compute_totals(lines: Sequence[POLineItem], policy: POTotalsPolicy) -> POTotals:
    subtotal = quantize_money(sum((line.line_total for line in lines), Decimal("0")))
    shipping = quantize_money(policy.po_shipping)
    tax = quantize_money(subtotal * policy.tax_rate)
    discount = quantize_money(subtotal * policy.discount_rate)
    return POTotals(
        subtotal=subtotal,
        shipping_total=shipping,
        tax_amount=tax,
        discount_amount=discount,
        total_amount=subtotal + shipping + tax - discount,
    )


class PurchaseOrderBuilder:
    """Builds, numbers and persists purchase orders for one request at a time."""

    def __init__(
        self,
        numbers: PurchaseOrderNumberService,
        router: VendorRouter,
        totals_policy: POTotalsPolicy | None = None,
        events: EventSink | None = None,
    ):
        self._numbers = numbers
        self._router = router
        self._policy = totals_policy or POTotalsPolicy()
        self._events = events or InMemoryEventSink()

    def build(
        self,
        request: SourcingRequest,
        requirements: Mapping[str, PartRequirement],
        selections: Sequence[Selection],
    ) -> POBuildResult:
        """
        Create one PO per winning vendor.

        Args:
            request: The sourcing request (repair order number, ids).
            requirements: Current requirement snapshots by id.
            selections: One winner per requirement.

        Returns:
            POBuildResult with the created POs, every requirement snapshot
            (ordered ones updated) and per-group failures.
        """
        updated = dict(requirements)
        orders: list[PurchaseOrder] = []
        failures: list[GroupFailure] = []

        for vendor_id, group in group_by_vendor(selections).items():
            requirement_ids = tuple(s.requirement_id for s in group)
            try:
                self._check_transitions(group, updated)
            except InvalidTransition as exc:
                logger.warning(
                    "po_group_rejected",
                    extra={
                        "vendor_id": vendor_id,
                        "requirement_ids": list(requirement_ids),
                        "conflicting_requirement_id": exc.subject_id,
                        "from_state": exc.from_state,
                    },
                )
                failures.append(GroupFailure(
                    vendor_id=vendor_id,
                    requirement_ids=requirement_ids,
                    code=exc.code,
                    message=str(exc),
                    conflicting_requirement_id=exc.subject_id,
                ))
                continue

            try:
                po = self._create_order(request, vendor_id, group, updated)
            except SequenceConflict as exc:
                logger.error(
                    "po_creation_failed",
                    extra={"vendor_id": vendor_id, "po_number": exc.po_number},
                    exc_info=True,
                )
                failures.append(GroupFailure(
                    vendor_id=vendor_id,
                    requirement_ids=requirement_ids,
                    code=exc.code,
                    message=str(exc),
                ))
                continue

            orders.append(po)
            for selection in group:
                before = updated[selection.requirement_id]
                after = transition(before, PartStatus.ORDERED).with_selected_quote(
                    selection.winner.quote_id,
                )
                updated[selection.requirement_id] = after
                self._events.publish(RequirementStatusChanged(
                    requirement_id=after.requirement_id,
                    from_status=before.current_status,
                    to_status=after.current_status,
                ))
            self._events.publish(PurchaseOrderCreated(
                po_number=po.po_number,
                vendor_id=po.vendor_id,
                total_amount=po.total_amount,
            ))

        return POBuildResult(
            purchase_orders=tuple(orders),
            requirements=updated,
            failures=tuple(failures),
        )

    def _check_transitions(
        self,
        group: Sequence[Selection],
        requirements: Mapping[str, PartRequirement],
    ) -> None:
        for selection in group:
            requirement = requirements[selection.requirement_id]
            require_transition(
                requirement.current_status,
                PartStatus.ORDERED,
                subject_id=requirement.requirement_id,
            )

    def price_lines(
        self,
        group: Sequence[Selection],
        requirements: Mapping[str, PartRequirement],
    ) -> tuple[POLineItem, ...]:
        return tuple(
            POLineItem(
                requirement_id=s.requirement_id,
                quote_id=s.winner.quote_id,
                quantity=requirements[s.requirement_id].quantity,
                unit_price=s.winner.quote.unit_price,
                line_total=s.winner.landed_cost,
            )
            for s in group
        )

    def _create_order(
        self,
        request: SourcingRequest,
        vendor_id: str,
        group: Sequence[Selection],
        requirements: Mapping[str, PartRequirement],
    ) -> PurchaseOrder:
        vendor_code = self._router.vendor_code(vendor_id, group[0].winner.quote.vendor_name)
        lines = self.price_lines(group, requirements)
        totals = compute_totals(lines, self._policy)
        ro_number = request.repair_order_number

        attempt = 0
        while True:
            try:
                with self._numbers.allocate(ro_number, vendor_code) as allocation:
                    po = PurchaseOrder(
                        po_number=allocation.po_number,
                        vendor_id=vendor_id,
                        vendor_code=vendor_code,
                        request_id=request.request_id,
                        repair_order_id=request.repair_order_id,
                        line_items=lines,
                        subtotal=totals.subtotal,
                        total_amount=totals.total_amount,
                        shipping_total=totals.shipping_total,
                        tax_amount=totals.tax_amount,
                        discount_amount=totals.discount_amount,
                        requires_approval=totals.total_amount > self._policy.approval_threshold,
                        sequence=allocation.sequence,
                        created_at=allocation.issued_at,
                    )
                    allocation.session.add(PurchaseOrderModel.from_dto(po))
                    allocation.session.flush()
            except SequenceConflict as exc:
                if attempt >= SEQUENCE_CONFLICT_RETRIES:
                    raise
                attempt += 1
                conflicting = int(exc.po_number.rsplit("-", 1)[1]) if exc.po_number else 0
                self._numbers.advance(exc.sequence_name, conflicting)
                logger.warning(
                    "po_number_retry",
                    extra={"po_number": exc.po_number, "attempt": attempt},
                )
                continue

            logger.info(
                "purchase_order_created",
                extra={
                    "po_number": po.po_number,
                    "vendor_id": vendor_id,
                    "request_id": request.request_id,
                    "line_count": len(lines),
                    "total_amount": po.total_amount,
                    "requires_approval": po.requires_approval,
                },
            )
            return po
