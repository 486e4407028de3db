"""
Settlement Kernel - wind-park cost allocation

Distributes a facility's usage-fee pool across its beneficiaries with:
- Temporal membership resolution
- Pooled or proportional distribution
- Two-decimal money and four-decimal share rounding
- VAT on the taxable portion, netting of direct billing
- Atomic, idempotent persistence of header and line items
"""

__version__ = "0.1.0"
