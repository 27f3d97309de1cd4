"""Double-entry posting of bank transactions."""

from statement_importer.posting.engine import (
    InvoiceSettledError,
    PostingConflictError,
    PostingEngine,
    PostingError,
)
from statement_importer.posting.entry_builder import (
    AmountValidationError,
    PostingAccounts,
    UnbalancedEntryError,
    assert_balanced,
    build_direct_entry,
    build_relation_entry,
    split_vat,
    validate_amount,
)
from statement_importer.posting.system_accounts import (
    DEFAULT_CHART,
    SystemAccountMissingError,
    SystemAccounts,
    ensure_default_chart,
)

__all__ = [
    "DEFAULT_CHART",
    "AmountValidationError",
    "InvoiceSettledError",
    "PostingAccounts",
    "PostingConflictError",
    "PostingEngine",
    "PostingError",
    "SystemAccountMissingError",
    "SystemAccounts",
    "UnbalancedEntryError",
    "assert_balanced",
    "build_direct_entry",
    "build_relation_entry",
    "ensure_default_chart",
    "split_vat",
    "validate_amount",
]
