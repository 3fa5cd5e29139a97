"""Progress tracking module.

Provides:
- Completion bit reads with zeroed fallback
- Completion writes with range validation
"""

from coursegate.ledger.models import ProgressRecord

from .service import CompletionResult, ProgressStore


__all__ = ["CompletionResult", "ProgressRecord", "ProgressStore"]
