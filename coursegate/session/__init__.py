"""Entitlement session module.

Per-screen state machine over license, progress and content resolution,
plus the registry and HTTP surface that expose it.
"""

from .models import (
    CompletionOutcome,
    SessionEvent,
    SessionPhase,
    SessionSnapshot,
    UnitState,
    UnitView,
)
from .registry import SessionRegistry
from .service import EntitlementSession


__all__ = [
    "CompletionOutcome",
    "EntitlementSession",
    "SessionEvent",
    "SessionPhase",
    "SessionRegistry",
    "SessionSnapshot",
    "UnitState",
    "UnitView",
]
