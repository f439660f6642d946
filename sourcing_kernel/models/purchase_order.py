"""
SQLAlchemy ORM persistence models for the purchase order ledger.

Responsibility
--------------
Durable record of every purchase order the builder creates, keyed by its
unique ``po_number``.  The unique constraint is what turns a PO-number
collision into a ``SequenceConflict``.

Invariants enforced
-------------------
* ``po_number`` is unique across the ledger.
* All monetary fields use ``Decimal`` -- NEVER float.
* Enum fields stored as String(50) for readability and portability.
* Each ``PurchaseOrderLineModel`` belongs to exactly one PO and
  (purchase_order_id, line_number) is unique.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sourcing_kernel.db.base import TrackedBase


class PurchaseOrderModel(TrackedBase):
    """
    A vendor purchase order.

    Maps to the ``PurchaseOrder`` DTO in ``sourcing_kernel.domain.values``.
    """

    __tablename__ = "purchase_orders"

    __table_args__ = (
        UniqueConstraint("po_number", name="uq_purchase_order_number"),
        Index("idx_purchase_order_request", "request_id"),
        Index("idx_purchase_order_vendor", "vendor_id"),
    )

    po_number: Mapped[str] = mapped_column(String(100), nullable=False)
    vendor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    vendor_code: Mapped[str] = mapped_column(String(4), nullable=False)
    request_id: Mapped[str] = mapped_column(String(100), nullable=False)
    repair_order_id: Mapped[str] = mapped_column(String(100), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    shipping_total: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")
    requires_approval: Mapped[bool] = mapped_column(nullable=False, default=False)
    ordered_at: Mapped[datetime | None] = mapped_column(nullable=True)

    lines: Mapped[list["PurchaseOrderLineModel"]] = relationship(
        "PurchaseOrderLineModel",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseOrderLineModel.line_number",
    )

    def to_dto(self):
        from sourcing_kernel.domain.values import POStatus, PurchaseOrder

        ordered_at = self.ordered_at
        if ordered_at is not None and ordered_at.tzinfo is None:
            ordered_at = ordered_at.replace(tzinfo=timezone.utc)
        return PurchaseOrder(
            po_number=self.po_number,
            vendor_id=self.vendor_id,
            vendor_code=self.vendor_code,
            request_id=self.request_id,
            repair_order_id=self.repair_order_id,
            line_items=tuple(line.to_dto() for line in self.lines),
            subtotal=self.subtotal,
            total_amount=self.total_amount,
            shipping_total=self.shipping_total,
            tax_amount=self.tax_amount,
            discount_amount=self.discount_amount,
            status=POStatus(self.status),
            requires_approval=self.requires_approval,
            sequence=self.sequence,
            created_at=ordered_at,
        )

    @classmethod
    def from_dto(cls, dto) -> "PurchaseOrderModel":
        return cls(
            po_number=dto.po_number,
            vendor_id=dto.vendor_id,
            vendor_code=dto.vendor_code,
            request_id=dto.request_id,
            repair_order_id=dto.repair_order_id,
            sequence=dto.sequence,
            subtotal=dto.subtotal,
            shipping_total=dto.shipping_total,
            tax_amount=dto.tax_amount,
            discount_amount=dto.discount_amount,
            total_amount=dto.total_amount,
            status=dto.status.value,
            requires_approval=dto.requires_approval,
            ordered_at=dto.created_at,
            lines=[
                PurchaseOrderLineModel.from_dto(line, line_number)
                for line_number, line in enumerate(dto.line_items, start=1)
            ],
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.po_number} [{self.status}]>"


class PurchaseOrderLineModel(TrackedBase):
    """One selected quote on a purchase order."""

    __tablename__ = "purchase_order_lines"

    __table_args__ = (
        UniqueConstraint(
            "purchase_order_id", "line_number",
            name="uq_purchase_order_line_number",
        ),
        Index("idx_po_line_requirement", "requirement_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_orders.id"), nullable=False,
    )
    line_number: Mapped[int]
    requirement_id: Mapped[str] = mapped_column(String(100), nullable=False)
    quote_id: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    line_total: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    purchase_order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
        back_populates="lines",
    )

    def to_dto(self):
        from sourcing_kernel.domain.values import POLineItem

        return POLineItem(
            requirement_id=self.requirement_id,
            quote_id=self.quote_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
            line_total=self.line_total,
        )

    @classmethod
    def from_dto(cls, dto, line_number: int) -> "PurchaseOrderLineModel":
        return cls(
            line_number=line_number,
            requirement_id=dto.requirement_id,
            quote_id=dto.quote_id,
            quantity=dto.quantity,
            unit_price=dto.unit_price,
            line_total=dto.line_total,
        )
