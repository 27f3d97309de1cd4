"""
Human-in-the-loop review module.

Provides:
- Review listing of transactions that were not auto-booked
- Accept (with edits) and reject actions
- Decision persistence
"""

from .workflow import ReviewDecision, ReviewError, ReviewItem, ReviewResult, ReviewWorkflow

__all__ = [
    "ReviewWorkflow",
    "ReviewDecision",
    "ReviewError",
    "ReviewItem",
    "ReviewResult",
]
