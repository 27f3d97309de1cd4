"""Import services: deduplication, locking and report aggregation.

The import orchestrator lives in ``statement_importer.services.importer``;
it is not re-exported here because the posting engine depends on the lock
registry in this package.
"""

from statement_importer.services.deduplicator import Deduplicator, DedupResult
from statement_importer.services.locks import KeyedLock, bank_account_key, contact_key
from statement_importer.services.report import (
    BookingOutcome,
    ImportAnalysisReport,
    OutcomeStatus,
    ReportAggregator,
)

__all__ = [
    "BookingOutcome",
    "DedupResult",
    "Deduplicator",
    "ImportAnalysisReport",
    "KeyedLock",
    "OutcomeStatus",
    "ReportAggregator",
    "bank_account_key",
    "contact_key",
]
