"""External ledger account classifier (Ollama)."""

from statement_importer.classifier.service import (
    AccountClassifier,
    ClassificationSignal,
    ConcurrencyLimiter,
    MatchTimeoutError,
)

__all__ = [
    "AccountClassifier",
    "ClassificationSignal",
    "ConcurrencyLimiter",
    "MatchTimeoutError",
]
