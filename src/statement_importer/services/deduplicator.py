"""Fingerprint-based deduplication of parsed statement lines.

A transaction already present for the bank account (same fingerprint) is
dropped and counted; everything else is persisted as Unmatched.
Re-importing a statement is therefore a no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from statement_importer.schemas.fingerprint import fingerprint_transaction
from statement_importer.services.locks import KeyedLock, bank_account_key

if TYPE_CHECKING:
    from statement_importer.schemas.transactions import RawTransaction, StoredBankTransaction
    from statement_importer.state_store import StateStore

logger = logging.getLogger(__name__)


@dataclass
class DedupResult:
    """Outcome of deduplicating one parsed statement.

    ``slots`` keeps input order: the stored transaction for new lines,
    None for duplicates.
    """

    slots: list[StoredBankTransaction | None] = field(default_factory=list)

    @property
    def stored(self) -> list[StoredBankTransaction]:
        return [tx for tx in self.slots if tx is not None]

    @property
    def duplicates(self) -> int:
        return sum(1 for tx in self.slots if tx is None)


class Deduplicator:
    """Persists new statement lines, drops lines seen before."""

    def __init__(self, state_store: StateStore, locks: KeyedLock | None = None) -> None:
        self.store = state_store
        self.locks = locks or KeyedLock()

    def deduplicate(
        self, bank_account_id: int, transactions: list[RawTransaction]
    ) -> DedupResult:
        """Insert each transaction unless its fingerprint exists for the account."""
        result = DedupResult()

        with self.locks.hold(bank_account_key(bank_account_id)):
            for raw in transactions:
                fingerprint = fingerprint_transaction(raw)
                transaction_id = self.store.insert_bank_transaction(
                    bank_account_id, fingerprint, raw
                )
                if transaction_id is None:
                    logger.debug("Duplicate statement line %s", fingerprint[:12])
                    result.slots.append(None)
                    continue
                result.slots.append(self.store.get_bank_transaction(transaction_id))

        logger.info(
            "Bank account %d: %d new, %d duplicate statement lines",
            bank_account_id,
            len(result.stored),
            result.duplicates,
        )
        return result
