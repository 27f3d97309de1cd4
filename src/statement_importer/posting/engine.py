"""Posting engine.

Writes a balanced journal entry for a decided bank transaction. The
entry, its lines, the transaction's Booked status and (for invoice
payments) the invoice settlement are committed as one unit.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from statement_importer.decision.policy import BookingRoute
from statement_importer.posting.entry_builder import (
    PostingAccounts,
    UnbalancedEntryError,
    assert_balanced,
    build_direct_entry,
    build_relation_entry,
)
from statement_importer.posting.system_accounts import SystemAccounts
from statement_importer.services.locks import KeyedLock, bank_account_key, contact_key
from statement_importer.state_store import InvoiceNotOpenError, StaleRecordError

if TYPE_CHECKING:
    from statement_importer.config import LedgerConfig
    from statement_importer.schemas.transactions import (
        JournalEntry,
        MatchCandidate,
        StoredBankTransaction,
    )
    from statement_importer.state_store import StateStore

logger = logging.getLogger(__name__)


class PostingError(Exception):
    """A transaction could not be posted."""

    pass


class PostingConflictError(PostingError):
    """The transaction or invoice changed state before the entry committed."""

    pass


class InvoiceSettledError(PostingConflictError):
    """The matched invoice was settled by another entry first."""

    pass


class PostingEngine:
    """Builds and commits journal entries for bank transactions."""

    def __init__(
        self,
        store: StateStore,
        ledger: LedgerConfig,
        locks: KeyedLock | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.system_accounts = SystemAccounts(store, ledger)
        self.locks = locks or KeyedLock()

    def post(
        self,
        transaction: StoredBankTransaction,
        candidate: MatchCandidate,
        route: BookingRoute,
        *,
        review_decision: str | None = None,
        description: str | None = None,
    ) -> JournalEntry:
        """Post a transaction on the given route.

        Args:
            transaction: Stored, Unmatched bank transaction
            candidate: Candidate with a resolved ledger account
            route: DIRECT or RELATION
            review_decision: Recorded on the transaction when posted from review
            description: Entry description (defaults to the statement text)

        Returns:
            The committed JournalEntry (with id)

        Raises:
            UnbalancedEntryError: debits and credits differ (nothing is written)
            InvoiceSettledError: the matched invoice is no longer Open
            PostingConflictError: transaction no longer Unmatched
            SystemAccountMissingError: a required system account is missing
            PostingError: the candidate cannot be posted
        """
        if route == BookingRoute.MANUAL_REVIEW:
            raise PostingError("manual_review is not a posting route")
        if candidate.suggested_ledger_account_id is None:
            raise PostingError(f"Transaction {transaction.id}: no ledger account to post on")
        if self.store.get_account(candidate.suggested_ledger_account_id) is None:
            raise PostingError(
                f"Transaction {transaction.id}: ledger account "
                f"{candidate.suggested_ledger_account_id} does not exist"
            )

        entry = self._build_entry(transaction, candidate, route, description)
        if candidate.invoice_id is not None:
            # Invoice settlements do not teach the contact's expense/revenue account
            entry.ledger_account_id = None

        try:
            assert_balanced(entry)
        except UnbalancedEntryError:
            logger.error(
                "Refusing to post unbalanced entry for transaction %d (debit %s, credit %s)",
                transaction.id,
                entry.total_debit,
                entry.total_credit,
            )
            raise

        contact_lock = contact_key(candidate.contact_id) if candidate.contact_id else None
        with self.locks.hold(bank_account_key(transaction.bank_account_id), contact_lock):
            try:
                entry.id = self.store.book_transaction(
                    entry,
                    bank_transaction_id=transaction.id,
                    invoice_id=candidate.invoice_id,
                    review_decision=review_decision,
                )
            except InvoiceNotOpenError as e:
                logger.info("Invoice settled before transaction %d committed: %s", transaction.id, e)
                raise InvoiceSettledError(str(e)) from e
            except StaleRecordError as e:
                logger.warning("Posting conflict for transaction %d: %s", transaction.id, e)
                raise PostingConflictError(str(e)) from e

        logger.info(
            "Posted transaction %d on %s route as entry %d (%d lines)",
            transaction.id,
            route.value,
            entry.id,
            len(entry.lines),
        )
        return entry

    def _build_entry(
        self,
        transaction: StoredBankTransaction,
        candidate: MatchCandidate,
        route: BookingRoute,
        description: str | None,
    ) -> JournalEntry:
        raw = transaction.raw
        accounts = PostingAccounts(
            bank_account_id=self.system_accounts.bank(transaction.bank_account_id),
            target_account_id=candidate.suggested_ledger_account_id,
        )

        if route == BookingRoute.DIRECT:
            return build_direct_entry(
                raw, accounts, contact_id=candidate.contact_id, description=description
            )

        accounts.settlement_account_id = (
            candidate.settlement_account_id
            or self.system_accounts.receivable_or_payable(raw.is_income)
        )
        if candidate.vat_rate_guess > 0:
            accounts.vat_account_id = self.system_accounts.vat_account(raw.is_income)
        return build_relation_entry(
            raw,
            accounts,
            candidate.vat_rate_guess,
            contact_id=candidate.contact_id,
            description=description,
        )
