"""
Sourcing Kernel - parts sourcing decision engine.

Turns a repair order's required-parts list into vendor purchase orders:
- Quote ingestion with fail-fast validation
- Multi-criteria scoring and deterministic winner selection
- Vendor-grouped purchase orders with locked sequence numbering
- Part lifecycle state machine
"""

__version__ = "0.1.0"
