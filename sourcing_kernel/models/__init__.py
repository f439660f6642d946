"""ORM models for the sourcing kernel (PO ledger and sequence counters)."""

from sourcing_kernel.models.purchase_order import PurchaseOrderLineModel, PurchaseOrderModel
from sourcing_kernel.models.sequence import SequenceCounter

__all__ = [
    "PurchaseOrderLineModel",
    "PurchaseOrderModel",
    "SequenceCounter",
]
