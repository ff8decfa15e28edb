"""
Costing Kernel

Cost-layer accounting for SKU shipments:
- Append-only batch (cost layer) ledger
- Batch, time-period and weighted-average costing
- FIFO batch allocation
- Auditable COGS entries with exact decimal rounding
"""

__version__ = "0.1.0"
