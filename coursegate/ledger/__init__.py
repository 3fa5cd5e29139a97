"""Ledger query capability.

Provides:
- License, ProgressRecord, ContentUnit and Receipt records
- LedgerClient / CourseCatalog protocols
- Gateway-backed clients (Live mode) and in-memory doubles (Demo mode)
"""

from .demo import DemoCourseCatalog, DemoLedger, seed_demo
from .gateway import GatewayCourseCatalog, GatewayLedgerClient
from .models import ContentKind, ContentUnit, License, ProgressRecord, Receipt
from .protocols import CourseCatalog, LedgerClient


__all__ = [
    "ContentKind",
    "ContentUnit",
    "CourseCatalog",
    "DemoCourseCatalog",
    "DemoLedger",
    "GatewayCourseCatalog",
    "GatewayLedgerClient",
    "LedgerClient",
    "License",
    "ProgressRecord",
    "Receipt",
    "seed_demo",
]
