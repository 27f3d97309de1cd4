"""
Review workflow management.

Transactions the decision policy did not auto-book wait here for the
bookkeeper. Accepting one posts it (optionally with an edited account or
contact, creating an approved new contact or account); rejecting one takes
it off the review list without booking.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from ..config import Config
from ..decision.policy import BookingRoute
from ..matching.cleaning import clean_payment_noise
from ..posting.engine import PostingEngine
from ..schemas.transactions import (
    CandidateKind,
    MatchCandidate,
    StoredBankTransaction,
    TransactionStatus,
)
from ..services.locks import KeyedLock
from ..state_store import StateStore

logger = logging.getLogger(__name__)

# Shorter counterparty names are too ambiguous to learn a rule from
MIN_RULE_KEYWORD_LENGTH = 4


class ReviewDecision(str, Enum):
    """User's decision during review."""

    ACCEPTED = "ACCEPTED"  # Accept the suggestion as-is
    EDITED = "EDITED"  # Accepted with edits
    REJECTED = "REJECTED"  # Reject (don't book)


class ReviewError(Exception):
    """A review action cannot be carried out."""

    pass


@dataclass
class ReviewItem:
    """A transaction awaiting review, with the matcher's suggestion."""

    transaction: StoredBankTransaction
    candidate: Optional[MatchCandidate]

    @property
    def id(self) -> int:
        return self.transaction.id

    @property
    def confidence_score(self) -> int:
        return self.candidate.confidence_score if self.candidate else 0


@dataclass
class ReviewResult:
    """Result of a review action."""

    decision: ReviewDecision
    transaction_id: int
    journal_entry_id: Optional[int] = None
    contact_id: Optional[int] = None
    account_id: Optional[int] = None
    rule_id: Optional[int] = None
    changes_made: list[str] = field(default_factory=list)


class ReviewWorkflow:
    """
    Manages the review workflow.

    Responsibilities:
    - List transactions pending review
    - Post accepted transactions (with edits)
    - Create approved contacts and accounts
    - Learn the contact's default ledger account from accepted bookings
    - Learn a bank rule for the counterparty name
    """

    def __init__(self, store: StateStore, config: Config, locks: Optional[KeyedLock] = None):
        """Initialize with state store and configuration."""
        self.store = store
        self.config = config
        self.posting = PostingEngine(store, config.ledger, locks)

    def get_pending_reviews(self, bank_account_id: Optional[int] = None) -> list[ReviewItem]:
        """Get all transactions pending review."""
        return [
            self._to_item(tx) for tx in self.store.list_pending_review(bank_account_id)
        ]

    def get_item(self, transaction_id: int) -> Optional[ReviewItem]:
        tx = self.store.get_bank_transaction(transaction_id)
        return self._to_item(tx) if tx else None

    def accept(
        self,
        transaction_id: int,
        account_code: Optional[str] = None,
        contact_name: Optional[str] = None,
        vat_rate: Optional[Decimal] = None,
    ) -> ReviewResult:
        """
        Accept a transaction and post it.

        Args:
            transaction_id: Bank transaction to book
            account_code: Ledger account code overriding the suggestion
            contact_name: Contact name overriding the suggestion
            vat_rate: VAT rate (percent) overriding the suggestion

        Returns:
            ReviewResult with the journal entry id

        Raises:
            ReviewError: transaction unknown or booked, or no account resolvable
            PostingError: the entry could not be posted
        """
        item = self._require_open(transaction_id)
        tx, candidate = item.transaction, item.candidate
        changes: list[str] = []
        # Records approved in this call, removed again if posting fails
        created: list[tuple[str, int]] = []

        account_id = self._resolve_account(candidate, account_code, changes, created)

        contact_id = candidate.contact_id if candidate else None
        name = candidate.contact_name if candidate else None
        if contact_name and (not name or contact_name.strip() != name):
            name = contact_name.strip()
            contact_id = None
            changes.append("contact")
        contact_id = self._resolve_contact(tx, contact_id, name, created)
        contact = self.store.get_contact(contact_id) if contact_id is not None else None

        if vat_rate is not None:
            changes.append("vat_rate")
            rate = vat_rate
        elif candidate is not None:
            rate = candidate.vat_rate_guess
        else:
            rate = self.config.ledger.standard_vat_rate

        # An invoice settlement only survives if account and contact were kept
        invoice_id = None
        if candidate is not None and not {"account", "contact"} & set(changes):
            invoice_id = candidate.invoice_id

        settlement_account_id = contact.settlement_account_id if contact else None
        accepted = MatchCandidate(
            kind=CandidateKind.EXISTING_CONTACT,
            confidence_score=candidate.confidence_score if candidate else 0,
            contact_name=name or "",
            source=candidate.source if candidate else "review",
            contact_id=contact_id,
            suggested_ledger_account_id=account_id,
            vat_rate_guess=rate,
            invoice_id=invoice_id,
            settlement_account_id=settlement_account_id,
            reasons=(candidate.reasons if candidate else []) + ["accepted in review"],
        )

        route = (
            BookingRoute.RELATION
            if settlement_account_id is not None or rate > 0
            else BookingRoute.DIRECT
        )
        decision = ReviewDecision.EDITED if changes else ReviewDecision.ACCEPTED
        try:
            entry = self.posting.post(tx, accepted, route, review_decision=decision.value)
        except Exception:
            self._discard_created(created)
            raise

        rule_id = None
        if invoice_id is None:
            if contact_id is not None and self.store.set_default_ledger_account_if_missing(
                contact_id, account_id
            ):
                logger.info("Contact %d now defaults to ledger account %d", contact_id, account_id)
            rule_id = self._learn_rule(tx, account_id, contact_id)

        logger.info(
            "Review %s transaction %d as entry %d (%s route)",
            decision.value.lower(),
            transaction_id,
            entry.id,
            route.value,
        )
        return ReviewResult(
            decision=decision,
            transaction_id=transaction_id,
            journal_entry_id=entry.id,
            contact_id=contact_id,
            account_id=account_id,
            rule_id=rule_id,
            changes_made=changes,
        )

    def reject(self, transaction_id: int) -> ReviewResult:
        """Take a transaction off the review list without booking it."""
        self._require_open(transaction_id)
        self.store.set_review_decision(transaction_id, ReviewDecision.REJECTED.value)
        logger.info("Review rejected transaction %d", transaction_id)
        return ReviewResult(decision=ReviewDecision.REJECTED, transaction_id=transaction_id)

    def _to_item(self, tx: StoredBankTransaction) -> ReviewItem:
        candidate = MatchCandidate.from_dict(tx.suggestion) if tx.suggestion else None
        return ReviewItem(transaction=tx, candidate=candidate)

    def _require_open(self, transaction_id: int) -> ReviewItem:
        item = self.get_item(transaction_id)
        if item is None:
            raise ReviewError(f"Bank transaction {transaction_id} not found")
        if item.transaction.status != TransactionStatus.UNMATCHED:
            raise ReviewError(f"Bank transaction {transaction_id} is already booked")
        return item

    def _resolve_account(
        self,
        candidate: Optional[MatchCandidate],
        account_code: Optional[str],
        changes: list[str],
        created: list[tuple[str, int]],
    ) -> int:
        """Account id to post on; creates the proposed account once approved."""
        proposal = candidate.new_ledger_account_proposal if candidate else None

        if account_code:
            account = self.store.get_account_by_code(account_code)
            if account is not None and account.is_active:
                if candidate is None or account.id != candidate.suggested_ledger_account_id:
                    changes.append("account")
                return account.id
            if proposal is None or proposal.code != account_code:
                raise ReviewError(f"Ledger account {account_code} does not exist")

        if candidate is not None and candidate.suggested_ledger_account_id is not None:
            return candidate.suggested_ledger_account_id

        if proposal is not None:
            existing = self.store.get_account_by_code(proposal.code)
            if existing is not None:
                return existing.id
            account_id = self.store.add_account(proposal.code, proposal.name, proposal.type)
            created.append(("account", account_id))
            logger.info("Created approved ledger account %s (%s)", proposal.code, proposal.name)
            return account_id

        raise ReviewError("No ledger account suggested; pass an account code")

    def _resolve_contact(
        self,
        tx: StoredBankTransaction,
        contact_id: Optional[int],
        name: Optional[str],
        created: list[tuple[str, int]],
    ) -> Optional[int]:
        """Existing contact id, or the id of an approved new contact."""
        if contact_id is not None:
            return contact_id
        if not name:
            return None
        existing = self.store.find_contact_by_name(name)
        if existing is not None:
            return existing.id
        contact_id = self.store.add_contact(name, iban=tx.raw.counterparty_account_ref)
        created.append(("contact", contact_id))
        logger.info("Created approved contact %d", contact_id)
        return contact_id

    def _learn_rule(
        self, tx: StoredBankTransaction, account_id: int, contact_id: Optional[int]
    ) -> Optional[int]:
        """Remember the counterparty name as a rule for the booked account."""
        keyword = clean_payment_noise(tx.raw.counterparty_name)
        if len(keyword) < MIN_RULE_KEYWORD_LENGTH:
            return None
        rule_id = self.store.learn_bank_rule(keyword, account_id, contact_id)
        logger.info("Bank rule %d: %r books on ledger account %d", rule_id, keyword, account_id)
        return rule_id

    def _discard_created(self, created: list[tuple[str, int]]) -> None:
        # Contacts first, they may point at a created account
        for kind, record_id in sorted(created, key=lambda c: c[0] != "contact"):
            if kind == "contact":
                self.store.delete_contact(record_id)
            else:
                self.store.delete_account(record_id)
            logger.info("Removed approved %s %d after failed posting", kind, record_id)
