"""
PurchaseOrderNumberService -- deterministic PO number allocation.

Responsibility:
    Issues PO numbers of the form ``{ro_number}-{YYMM}-{vendorCode}-{seq}``
    where ``seq`` is a zero-padded (3 digit minimum) counter scoped to the
    (repair order, YYMM, vendor code) key.

Architecture position:
    Kernel > Services.  Used by PurchaseOrderBuilder.  Owns its session:
    the allocation and the caller's PO insert commit together in the
    transaction opened by ``allocate``.

Invariants enforced:
    - Numbers for one key are strictly increasing and never repeat.
      In-process callers serialize on a per-key ``threading.Lock``; other
      processes serialize on the locked counter row.  Per-key locks are
      weakly held and disappear once no caller uses them.
    - A number that collides with an existing PO (unique ``po_number``)
      surfaces as ``SequenceConflict`` and the whole allocation rolls back.

Failure modes:
    - SequenceConflict: the allocated number already exists in the ledger.
"""

from __future__ import annotations

import threading
import weakref
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sourcing_kernel.domain.clock import Clock, SystemClock
from sourcing_kernel.exceptions import SequenceConflict
from sourcing_kernel.logging_config import get_logger
from sourcing_kernel.services.sequence_service import SequenceService

logger = get_logger("services.po_number")


def period_code(at: datetime) -> str:
    """Two-digit year and month (``YYMM``) in UTC."""
    if at.tzinfo is not None:
        at = at.astimezone(timezone.utc)
    return at.strftime("%y%m")


def format_po_number(ro_number: str, yymm: str, vendor_code: str, sequence: int) -> str:
    return f"{ro_number}-{yymm}-{vendor_code}-{sequence:03d}"


def sequence_name(ro_number: str, yymm: str, vendor_code: str) -> str:
    return f"po:{ro_number}:{yymm}:{vendor_code}"


@dataclass(frozen=True)
class POAllocation:
    """An allocated PO number and the open transaction it belongs to."""
    po_number: str
    sequence: int
    sequence_name: str
    issued_at: datetime
    session: Session


class PurchaseOrderNumberService:
    """
    Allocates PO numbers inside a database transaction.

    Usage:
        with numbers.allocate("RO-1001", "ACME") as allocation:
            allocation.session.add(PurchaseOrderModel.from_dto(po))
        # committed here; rolled back (number not consumed) on exception
    """

    def __init__(self, session_factory: Callable[[], Session], clock: Clock | None = None):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        # A key's lock lives only while some caller holds a reference to it
        self._key_locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._registry_lock = threading.Lock()

    def _lock_for(self, name: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._key_locks.get(name)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[name] = lock
            return lock

    @contextmanager
    def allocate(self, ro_number: str, vendor_code: str) -> Iterator[POAllocation]:
        """
        Allocate the next number for (``ro_number``, now, ``vendor_code``).

        The yielded session is inside a transaction that commits when the
        ``with`` block exits cleanly.

        Raises:
            SequenceConflict: the number is already taken in the PO ledger.
        """
        issued_at = self._clock.now()
        yymm = period_code(issued_at)
        name = sequence_name(ro_number, yymm, vendor_code)
        po_number: str | None = None

        with self._lock_for(name):
            session = self._session_factory()
            try:
                with session.begin():
                    seq = SequenceService(session).next_value(name)
                    po_number = format_po_number(ro_number, yymm, vendor_code, seq)
                    logger.info(
                        "po_number_allocated",
                        extra={"po_number": po_number, "sequence_name": name, "sequence": seq},
                    )
                    yield POAllocation(
                        po_number=po_number,
                        sequence=seq,
                        sequence_name=name,
                        issued_at=issued_at,
                        session=session,
                    )
            except IntegrityError as exc:
                logger.warning(
                    "po_number_conflict",
                    extra={"po_number": po_number, "sequence_name": name},
                )
                raise SequenceConflict(name, po_number) from exc
            finally:
                session.close()

    def advance(self, name: str, at_least: int) -> int:
        """
        Move counter ``name`` forward to at least ``at_least``.

        Used after a ``SequenceConflict``: the ledger already holds that
        number, so the next allocation must start past it.  ``name`` is the
        conflict's ``sequence_name``, which pins the month the failed number
        was issued in.  Never moves a counter backwards.  Returns the
        counter value afterwards.
        """
        with self._lock_for(name):
            session = self._session_factory()
            try:
                with session.begin():
                    sequences = SequenceService(session)
                    current = sequences.current_value(name) or 0
                    if current < at_least:
                        sequences.reset(name, at_least)
                        current = at_least
                logger.info(
                    "po_sequence_advanced",
                    extra={"sequence_name": name, "value": current},
                )
                return current
            finally:
                session.close()

    def last_issued(self, ro_number: str, vendor_code: str, at: datetime | None = None) -> int | None:
        """Last committed sequence for the key, None if nothing was issued."""
        name = sequence_name(ro_number, period_code(at or self._clock.now()), vendor_code)
        session = self._session_factory()
        try:
            return SequenceService(session).current_value(name)
        finally:
            session.close()
