"""
Sourcing events (``sourcing_kernel.domain.events``).

Responsibility:
    Immutable event records emitted by the kernel for dashboards and
    notifications, and the ``EventSink`` seam they are published through.
    Consumers live outside the kernel.

Events:
    RequirementStatusChanged{requirement_id, from_status, to_status}
    PurchaseOrderCreated{po_number, vendor_id, total_amount}
    SourcingRequestResolved{request_id, state}
"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Protocol, Union

from sourcing_kernel.domain.values import PartStatus, RequestState
from sourcing_kernel.logging_config import get_logger

logger = get_logger("domain.events")


@dataclass(frozen=True)
class RequirementStatusChanged:
    requirement_id: str
    from_status: PartStatus
    to_status: PartStatus


@dataclass(frozen=True)
class PurchaseOrderCreated:
    po_number: str
    vendor_id: str
    total_amount: Decimal


@dataclass(frozen=True)
class SourcingRequestResolved:
    request_id: str
    state: RequestState


SourcingEvent = Union[RequirementStatusChanged, PurchaseOrderCreated, SourcingRequestResolved]


class EventSink(Protocol):
    """Anything that accepts kernel events."""

    def publish(self, event: SourcingEvent) -> None: ...


class InMemoryEventSink:
    """Collects events in publish order; every event is also logged."""

    def __init__(self) -> None:
        self._events: list[SourcingEvent] = []
        self._lock = threading.Lock()

    def publish(self, event: SourcingEvent) -> None:
        with self._lock:
            self._events.append(event)
        logger.info(
            "event_published",
            extra={"event_type": type(event).__name__, "event": asdict(event)},
        )

    @property
    def events(self) -> tuple[SourcingEvent, ...]:
        with self._lock:
            return tuple(self._events)

    def of_type(self, event_type: type) -> list[SourcingEvent]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
