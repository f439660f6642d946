"""
Kernel services -- the imperative shell around the pure domain.

Quote ingestion and fan-out, PO numbering and building, and the request
orchestrator.  Services own sessions, clocks and concurrency; the domain
layer owns the rules.
"""

from sourcing_kernel.services.po_number_service import (
    POAllocation,
    PurchaseOrderNumberService,
    format_po_number,
)
from sourcing_kernel.services.purchase_order_builder import (
    GroupFailure,
    POBuildResult,
    PurchaseOrderBuilder,
)
from sourcing_kernel.services.quote_aggregator import (
    AggregationResult,
    QuoteAggregator,
    VendorFailure,
    VendorGateway,
)
from sourcing_kernel.services.quote_book import QuoteBook, QuoteDisposition, QuoteEntry
from sourcing_kernel.services.sequence_service import SequenceService
from sourcing_kernel.services.sourcing_orchestrator import SourcingOrchestrator

__all__ = [
    "AggregationResult",
    "GroupFailure",
    "POAllocation",
    "POBuildResult",
    "PurchaseOrderBuilder",
    "PurchaseOrderNumberService",
    "QuoteAggregator",
    "QuoteBook",
    "QuoteDisposition",
    "QuoteEntry",
    "SequenceService",
    "SourcingOrchestrator",
    "VendorFailure",
    "VendorGateway",
    "format_po_number",
]
