"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Hands out strictly increasing integers per named sequence.  PO numbering
    keeps one sequence per (repair order, YYMM, vendor code) key.  A
    dedicated counter table with row-level locking (``SELECT ... FOR
    UPDATE``) keeps values unique and ordered under concurrent access.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by PurchaseOrderNumberService.

Invariants enforced:
    - Values for one name are strictly increasing.  The aggregate
      max-plus-one query is never used; the locked counter row is the only
      source of the next value.
    - The increment is visible only after the caller's transaction commits.
      A rollback returns the value (a later allocation may reuse it).

Failure modes:
    - IntegrityError: concurrent counter creation race (handled by savepoint
      rollback and a locked re-read).
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sourcing_kernel.logging_config import get_logger
from sourcing_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Transactional named counters.

    Contract:
        ``next_value(name)`` returns the next strictly increasing value for
        ``name``.  The caller owns the transaction; this service only
        flushes.

    Usage:
        with session.begin():
            seq = SequenceService(session).next_value("po:RO-1:2410:ACME")
    """

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock (or create) the counter row, increment it and return the value.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously committed for ``sequence_name``.
            - The counter row stays locked until the transaction completes.
        """
        # Counters may be cached when expire_on_commit=False and the session is reused
        self._session.expire_all()

        counter = self._locked_counter(sequence_name)

        if counter is None:
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                self._session.expire_all()
                counter = self._session.execute(
                    select(SequenceCounter)
                    .where(SequenceCounter.name == sequence_name)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one()

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing; None if never allocated."""
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """
        Force a counter to ``value``.

        Only for tests and data repair: moving a counter backwards makes the
        next allocation collide with an issued PO number.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            counter = SequenceCounter(name=sequence_name, current_value=value)
            self._session.add(counter)
        else:
            counter.current_value = value

        self._session.flush()
