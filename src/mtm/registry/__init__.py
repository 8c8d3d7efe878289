"""Expiring per-pair registries consulted by the transfer verifier.

This module provides:
- ApprovalRegistry: allowance plus expiry per ordered address pair
- BlockingRegistry: expiry-only blocks per ordered address pair
"""

from mtm.registry.approvals import AllowanceUnderflowError, ApprovalRegistry
from mtm.registry.blocking import BlockingRegistry

__all__ = [
    "AllowanceUnderflowError",
    "ApprovalRegistry",
    "BlockingRegistry",
]
