"""
IML Kernel - order-cycle fulfillment core

Tracks in-mould-label orders through purchase, production, inventory,
billing and dispatch with:
- Append-only stage histories
- Per-cycle workflow status that only moves forward
- Quantities derived from history on read
- A single persistence gateway
"""

__version__ = "0.1.0"
