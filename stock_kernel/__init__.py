"""
Stock Kernel

The append-only inventory ledger underneath the ERP's stock reports:
- RECEIPT / ISSUE transactions tagged with the originating document
- Immutable rows, corrected only by compensating documents
- Fixed-point Decimal quantities, rates and amounts with one rounding policy
- Per-item write serialization
"""

__version__ = "0.1.0"
