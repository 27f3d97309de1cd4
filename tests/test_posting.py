"""Tests for the posting engine."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest
from fixtures import make_transaction, store_transaction

from statement_importer.config import LedgerConfig
from statement_importer.decision import BookingRoute
from statement_importer.posting import (
    PostingConflictError,
    PostingEngine,
    PostingError,
    SystemAccountMissingError,
    UnbalancedEntryError,
)
from statement_importer.schemas.transactions import (
    AccountType,
    CandidateKind,
    InvoiceDirection,
    JournalEntry,
    JournalLine,
    MatchCandidate,
    TransactionStatus,
)


def known_contact_candidate(
    account_id: int | None,
    contact_id: int | None = None,
    vat_rate: str = "21",
    invoice_id: int | None = None,
    settlement_account_id: int | None = None,
) -> MatchCandidate:
    return MatchCandidate(
        kind=CandidateKind.EXISTING_CONTACT,
        confidence_score=95,
        contact_name="Example Supplier",
        source="known_contact",
        contact_id=contact_id,
        suggested_ledger_account_id=account_id,
        vat_rate_guess=Decimal(vat_rate),
        invoice_id=invoice_id,
        settlement_account_id=settlement_account_id,
    )


@pytest.fixture
def engine(store) -> PostingEngine:
    return PostingEngine(store, LedgerConfig())


class TestDirectPosting:
    """Tests for the direct route."""

    def test_posts_two_line_entry(self, store, engine, account_ids, bank_account_id) -> None:
        contact_id = store.add_contact("Shell")
        tx = store_transaction(store, bank_account_id, make_transaction(amount="-45.50"))

        entry = engine.post(tx, known_contact_candidate(account_ids["4310"], contact_id), BookingRoute.DIRECT)

        assert entry.id is not None
        stored = store.get_bank_transaction(tx.id)
        assert stored.status == TransactionStatus.BOOKED
        assert stored.journal_entry_id == entry.id

        saved = store.get_journal_entry(entry.id)
        assert saved.is_balanced
        assert [(line.account_id, line.debit, line.credit) for line in saved.lines] == [
            (account_ids["1100"], Decimal("0.00"), Decimal("45.50")),
            (account_ids["4310"], Decimal("45.50"), Decimal("0.00")),
        ]
        assert saved.contact_id == contact_id
        assert saved.ledger_account_id == account_ids["4310"]

    def test_records_booking_history(self, store, engine, account_ids, bank_account_id) -> None:
        contact_id = store.add_contact("Shell")
        tx = store_transaction(store, bank_account_id, make_transaction(transaction_date=date(2024, 3, 1)))

        engine.post(tx, known_contact_candidate(account_ids["4310"], contact_id), BookingRoute.DIRECT)

        history = store.get_last_booking(contact_id)
        assert history.ledger_account_id == account_ids["4310"]
        assert history.entry_date == date(2024, 3, 1)

    def test_bank_without_ledger_account_uses_configured_code(self, store, engine, account_ids) -> None:
        bank_account_id = store.add_bank_account("Savings")
        tx = store_transaction(store, bank_account_id)

        entry = engine.post(tx, known_contact_candidate(account_ids["4999"]), BookingRoute.DIRECT)

        assert entry.lines[0].account_id == account_ids["1100"]


class TestRelationPosting:
    """Tests for the relation route."""

    def test_default_settlement_is_creditors(self, store, engine, account_ids, bank_account_id) -> None:
        tx = store_transaction(store, bank_account_id, make_transaction(amount="-605.00"))

        entry = engine.post(tx, known_contact_candidate(account_ids["4999"]), BookingRoute.RELATION)

        assert [(line.account_id, line.debit, line.credit) for line in entry.lines] == [
            (account_ids["1100"], Decimal("0.00"), Decimal("605.00")),
            (account_ids["1500"], Decimal("605.00"), Decimal("0.00")),
            (account_ids["1500"], Decimal("0.00"), Decimal("605.00")),
            (account_ids["4999"], Decimal("500.00"), Decimal("0.00")),
            (account_ids["1450"], Decimal("105.00"), Decimal("0.00")),
        ]

    def test_income_uses_debtors_and_vat_payable(self, store, engine, account_ids, bank_account_id) -> None:
        tx = store_transaction(store, bank_account_id, make_transaction(amount="121.00"))

        entry = engine.post(tx, known_contact_candidate(account_ids["8000"]), BookingRoute.RELATION)

        used = {line.account_id for line in entry.lines}
        assert account_ids["1300"] in used
        assert account_ids["1530"] in used

    def test_contact_settlement_account(self, store, engine, account_ids, bank_account_id) -> None:
        settlement_id = store.add_account("1510", "Creditor Example Supplier", AccountType.LIABILITY)
        tx = store_transaction(store, bank_account_id, make_transaction(amount="-100.00"))

        entry = engine.post(
            tx,
            known_contact_candidate(account_ids["4999"], vat_rate="0", settlement_account_id=settlement_id),
            BookingRoute.RELATION,
        )

        assert len(entry.lines) == 4
        assert entry.lines[1].account_id == settlement_id

    def test_missing_system_account(self, store, account_ids, bank_account_id) -> None:
        engine = PostingEngine(store, LedgerConfig(creditors_code="1599"))
        tx = store_transaction(store, bank_account_id)

        with pytest.raises(SystemAccountMissingError, match="1599"):
            engine.post(tx, known_contact_candidate(account_ids["4999"]), BookingRoute.RELATION)

        assert store.get_bank_transaction(tx.id).status == TransactionStatus.UNMATCHED


class TestInvoiceSettlement:
    """Tests for posting invoice payments."""

    def test_invoice_marked_paid(self, store, engine, account_ids, bank_account_id) -> None:
        customer_id = store.add_contact("Example Customer")
        invoice_id = store.add_invoice("INV-2024-001", customer_id, InvoiceDirection.SALES, Decimal("1210.00"))
        tx = store_transaction(store, bank_account_id, make_transaction(amount="1210.00"))
        candidate = known_contact_candidate(
            account_ids["1300"], customer_id, vat_rate="0", invoice_id=invoice_id
        )

        entry = engine.post(tx, candidate, BookingRoute.DIRECT)

        invoice = store.get_invoice(invoice_id)
        assert invoice.status == "Paid"
        assert invoice.outstanding_amount == Decimal("0.00")
        assert entry.lines[1].account_id == account_ids["1300"]
        # Debtors is not a booking-history account for the contact
        assert store.get_last_booking(customer_id) is None

    def test_invoice_already_paid_rolls_back(self, store, engine, account_ids, bank_account_id) -> None:
        customer_id = store.add_contact("Example Customer")
        invoice_id = store.add_invoice("INV-1", customer_id, InvoiceDirection.SALES, Decimal("10.00"))
        first = store_transaction(store, bank_account_id, make_transaction(amount="10.00", description="one"))
        second = store_transaction(store, bank_account_id, make_transaction(amount="10.00", description="two"))
        candidate = known_contact_candidate(account_ids["1300"], customer_id, "0", invoice_id)
        engine.post(first, candidate, BookingRoute.DIRECT)

        with pytest.raises(PostingConflictError, match="no longer Open"):
            engine.post(second, candidate, BookingRoute.DIRECT)

        assert store.get_bank_transaction(second.id).status == TransactionStatus.UNMATCHED
        assert store.count_journal_entries() == 1


class TestPostingGuards:
    """Tests for refusals."""

    def test_double_posting_conflicts(self, store, engine, account_ids, bank_account_id) -> None:
        tx = store_transaction(store, bank_account_id)
        candidate = known_contact_candidate(account_ids["4999"])
        engine.post(tx, candidate, BookingRoute.DIRECT)

        with pytest.raises(PostingConflictError):
            engine.post(tx, candidate, BookingRoute.DIRECT)

        assert store.count_journal_entries() == 1

    def test_manual_review_is_not_a_route(self, store, engine, account_ids, bank_account_id) -> None:
        tx = store_transaction(store, bank_account_id)
        with pytest.raises(PostingError):
            engine.post(tx, known_contact_candidate(account_ids["4999"]), BookingRoute.MANUAL_REVIEW)

    def test_unresolved_account(self, store, engine, bank_account_id) -> None:
        tx = store_transaction(store, bank_account_id)
        with pytest.raises(PostingError, match="no ledger account"):
            engine.post(tx, known_contact_candidate(None), BookingRoute.DIRECT)

    def test_unknown_account(self, store, engine, bank_account_id) -> None:
        tx = store_transaction(store, bank_account_id)
        with pytest.raises(PostingError, match="does not exist"):
            engine.post(tx, known_contact_candidate(9999), BookingRoute.DIRECT)

    def test_unbalanced_entry_never_written(self, store, engine, account_ids, bank_account_id) -> None:
        tx = store_transaction(store, bank_account_id)
        broken = JournalEntry(
            entry_date=date(2024, 1, 15),
            description="broken",
            route="direct",
            lines=[
                JournalLine(account_id=account_ids["1100"], credit=Decimal("45.50")),
                JournalLine(account_id=account_ids["4999"], debit=Decimal("45.49")),
            ],
        )

        with patch.object(engine, "_build_entry", return_value=broken):
            with pytest.raises(UnbalancedEntryError):
                engine.post(tx, known_contact_candidate(account_ids["4999"]), BookingRoute.DIRECT)

        assert store.count_journal_entries() == 0
        assert store.get_bank_transaction(tx.id).status == TransactionStatus.UNMATCHED
