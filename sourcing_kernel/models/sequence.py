"""
Sequence counter table.

Each row is a named sequence with its current value.  Row-level locking
(``SELECT ... FOR UPDATE``) keeps allocation monotonic under concurrency.
PO numbering uses one row per (repair order, vendor code, YYMM) key.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from sourcing_kernel.db.base import Base


class SequenceCounter(Base):
    """A named, monotonically increasing counter."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.current_value}>"
