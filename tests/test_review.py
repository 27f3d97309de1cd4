"""Tests for the review workflow."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest
from fixtures import load_fixture_bytes, make_transaction, store_transaction

from statement_importer.config import Config, LedgerConfig
from statement_importer.decision import BookingRoute, decide
from statement_importer.matching import MatchingEngine
from statement_importer.posting import PostingConflictError, SystemAccountMissingError
from statement_importer.review import ReviewDecision, ReviewError, ReviewWorkflow
from statement_importer.schemas.transactions import (
    AccountType,
    InvoiceDirection,
    TransactionStatus,
)
from statement_importer.services.importer import StatementImporter


@pytest.fixture
def imported(store, config, bank_account_id) -> dict[str, int]:
    """Scenario CSV imported: invoice payment booked, supplier pending."""
    customer_id = store.add_contact("Example Customer", iban="NL20INGB0001234567")
    store.add_invoice("INV-2024-001", customer_id, InvoiceDirection.SALES, Decimal("1210.00"))
    report = StatementImporter(store, config).import_statement(
        load_fixture_bytes("scenario.csv"), "scenario.csv", bank_account_id
    )
    booked, pending = report.details
    return {"booked": booked.transaction_id, "pending": pending.transaction_id}


@pytest.fixture
def workflow(store, config) -> ReviewWorkflow:
    return ReviewWorkflow(store, config)


class TestPendingReviews:
    """Tests for listing the review queue."""

    def test_lists_supplier_with_suggestion(self, workflow, imported) -> None:
        items = workflow.get_pending_reviews()

        assert [item.id for item in items] == [imported["pending"]]
        item = items[0]
        assert item.confidence_score == 25
        assert item.candidate.contact_name == "Example Supplier"
        assert item.transaction.raw.amount == Decimal("-605.00")

    def test_filter_by_bank_account(self, store, workflow, imported, account_ids) -> None:
        other = store.add_bank_account("Savings", ledger_account_id=account_ids["1100"])
        assert workflow.get_pending_reviews(other) == []

    def test_item_without_suggestion(self, store, workflow, bank_account_id) -> None:
        tx = store_transaction(store, bank_account_id)
        item = workflow.get_item(tx.id)
        assert item.candidate is None
        assert item.confidence_score == 0
        assert workflow.get_item(9999) is None


class TestAccept:
    """Tests for accepting suggestions."""

    def test_accept_new_supplier_posts_relation_entry(self, store, workflow, imported, account_ids) -> None:
        result = workflow.accept(imported["pending"])

        assert result.decision == ReviewDecision.ACCEPTED
        assert result.changes_made == []
        entry = store.get_journal_entry(result.journal_entry_id)
        assert entry.route == BookingRoute.RELATION.value
        assert [(line.account_id, line.debit, line.credit) for line in entry.lines] == [
            (account_ids["1100"], Decimal("0.00"), Decimal("605.00")),
            (account_ids["1500"], Decimal("605.00"), Decimal("0.00")),
            (account_ids["1500"], Decimal("0.00"), Decimal("605.00")),
            (account_ids["4999"], Decimal("500.00"), Decimal("0.00")),
            (account_ids["1450"], Decimal("105.00"), Decimal("0.00")),
        ]

        tx = store.get_bank_transaction(imported["pending"])
        assert tx.status == TransactionStatus.BOOKED
        assert tx.review_decision == "ACCEPTED"
        assert workflow.get_pending_reviews() == []

    def test_accept_creates_contact_with_default_account(self, store, workflow, imported, account_ids) -> None:
        result = workflow.accept(imported["pending"])

        contact = store.get_contact(result.contact_id)
        assert contact.company_name == "Example Supplier"
        assert contact.iban == "NL30RABO0111222333"
        assert contact.default_ledger_account_id == account_ids["4999"]

    def test_next_transaction_of_accepted_supplier_is_auto_booked(
        self, store, config, workflow, imported, bank_account_id
    ) -> None:
        workflow.accept(imported["pending"])
        tx = make_transaction(
            amount="-605.00",
            description="Consultancy February",
            counterparty_name="Example Supplier",
            counterparty_account_ref="NL30RABO0111222333",
            transaction_date=date(2024, 2, 15),
        )

        candidate = MatchingEngine(store, config).match(tx)
        decision = decide(candidate)

        # The learned rule outranks the known-contact score (94)
        assert candidate.source == "bank_rule"
        assert candidate.confidence_score == 100
        assert decision.route == BookingRoute.DIRECT

    def test_accept_learns_bank_rule(self, store, workflow, imported, account_ids) -> None:
        result = workflow.accept(imported["pending"])

        rule = store.get_bank_rule(result.rule_id)
        assert rule.keyword == "Example Supplier"
        assert rule.ledger_account_id == account_ids["4999"]
        assert rule.contact_id == result.contact_id
        assert rule.use_count == 1

    def test_edited_account_updates_learned_rule(self, store, workflow, bank_account_id, account_ids) -> None:
        first = store_transaction(
            store, bank_account_id, make_transaction(counterparty_name="Shell Utrecht", description="one")
        )
        second = store_transaction(
            store, bank_account_id, make_transaction(counterparty_name="Shell Utrecht", description="two")
        )
        rule_id = workflow.accept(first.id, account_code="4999", vat_rate=Decimal("0")).rule_id

        assert workflow.accept(second.id, account_code="4310", vat_rate=Decimal("0")).rule_id == rule_id
        rule = store.get_bank_rule(rule_id)
        assert rule.ledger_account_id == account_ids["4310"]
        assert rule.use_count == 2

    def test_short_counterparty_name_not_learned(self, store, workflow, bank_account_id) -> None:
        tx = store_transaction(store, bank_account_id, make_transaction(counterparty_name="KPN"))

        result = workflow.accept(tx.id, account_code="4220", vat_rate=Decimal("0"))

        assert result.rule_id is None
        assert store.list_bank_rules() == []

    def test_accept_with_edits(self, store, workflow, imported, account_ids) -> None:
        result = workflow.accept(
            imported["pending"],
            account_code="4700",
            contact_name="Office Depot",
            vat_rate=Decimal("0"),
        )

        assert result.decision == ReviewDecision.EDITED
        assert result.changes_made == ["account", "contact", "vat_rate"]
        assert result.account_id == account_ids["4700"]

        entry = store.get_journal_entry(result.journal_entry_id)
        assert entry.route == BookingRoute.DIRECT.value
        assert [line.account_id for line in entry.lines] == [account_ids["1100"], account_ids["4700"]]
        assert store.get_contact(result.contact_id).company_name == "Office Depot"
        assert store.get_bank_transaction(imported["pending"]).review_decision == "EDITED"

    def test_edit_to_existing_contact(self, store, workflow, imported) -> None:
        existing_id = store.add_contact("Example Supplier B.V.")

        result = workflow.accept(imported["pending"], contact_name="Example Supplier B.V.")

        assert result.contact_id == existing_id
        assert result.changes_made == ["contact"]

    def test_unknown_account_code(self, store, workflow, imported) -> None:
        with pytest.raises(ReviewError, match="does not exist"):
            workflow.accept(imported["pending"], account_code="7777")

        assert store.get_bank_transaction(imported["pending"]).status == TransactionStatus.UNMATCHED
        assert store.find_contact_by_name("Example Supplier") is None

    def test_accept_creates_proposed_account(self, store, config, workflow, bank_account_id) -> None:
        tx = store_transaction(
            store,
            bank_account_id,
            make_transaction(amount="-84.00", counterparty_name="Restaurant De Kas"),
        )
        candidate = MatchingEngine(store, config).match(tx.raw)
        store.save_suggestion(tx.id, candidate.confidence_score, candidate.to_dict())
        assert store.get_account_by_code("4360") is None

        result = workflow.accept(tx.id)

        account = store.get_account_by_code("4360")
        assert account is not None
        assert account.type == AccountType.EXPENSE
        assert result.account_id == account.id

    def test_without_any_suggestion_needs_account_code(self, store, workflow, bank_account_id, account_ids) -> None:
        tx = store_transaction(store, bank_account_id)

        with pytest.raises(ReviewError, match="pass an account code"):
            workflow.accept(tx.id)

        result = workflow.accept(tx.id, account_code="4900", vat_rate=Decimal("0"))
        assert result.account_id == account_ids["4900"]
        assert result.contact_id is None

    def test_already_booked(self, workflow, imported) -> None:
        with pytest.raises(ReviewError, match="already booked"):
            workflow.accept(imported["booked"])

    def test_unknown_transaction(self, workflow) -> None:
        with pytest.raises(ReviewError, match="not found"):
            workflow.accept(424242)


class TestFailedPosting:
    """Approved records do not outlive a failed posting."""

    def test_missing_system_account_removes_new_contact(self, store, temp_db, imported) -> None:
        config = Config(state_db_path=temp_db, ledger=LedgerConfig(creditors_code="1599"))
        workflow = ReviewWorkflow(store, config)

        with pytest.raises(SystemAccountMissingError):
            workflow.accept(imported["pending"])

        assert store.find_contact_by_name("Example Supplier") is None
        assert store.get_bank_transaction(imported["pending"]).status == TransactionStatus.UNMATCHED
        assert store.count_journal_entries() == 1

    def test_conflict_removes_new_contact_and_account(self, store, config, workflow, bank_account_id) -> None:
        tx = store_transaction(
            store,
            bank_account_id,
            make_transaction(amount="-84.00", counterparty_name="Restaurant De Kas"),
        )
        candidate = MatchingEngine(store, config).match(tx.raw)
        store.save_suggestion(tx.id, candidate.confidence_score, candidate.to_dict())
        contacts_before = len(store.list_contacts())

        with patch.object(
            workflow.posting, "post", side_effect=PostingConflictError("changed underneath")
        ), pytest.raises(PostingConflictError):
            workflow.accept(tx.id)

        assert store.get_account_by_code("4360") is None
        assert store.find_contact_by_name("Restaurant De Kas") is None
        assert len(store.list_contacts()) == contacts_before

        # A later attempt creates them again
        result = workflow.accept(tx.id)
        assert store.get_account_by_code("4360").id == result.account_id
        assert store.get_contact(result.contact_id).company_name == "Restaurant De Kas"

    def test_existing_records_are_kept(self, store, workflow, imported) -> None:
        existing_id = store.add_contact("Example Supplier B.V.")

        with patch.object(
            workflow.posting, "post", side_effect=PostingConflictError("changed underneath")
        ), pytest.raises(PostingConflictError):
            workflow.accept(imported["pending"], contact_name="Example Supplier B.V.")

        assert store.get_contact(existing_id) is not None


class TestReject:
    """Tests for rejecting transactions."""

    def test_reject_leaves_queue_without_booking(self, store, workflow, imported) -> None:
        result = workflow.reject(imported["pending"])

        assert result.decision == ReviewDecision.REJECTED
        assert result.journal_entry_id is None
        assert workflow.get_pending_reviews() == []
        tx = store.get_bank_transaction(imported["pending"])
        assert tx.status == TransactionStatus.UNMATCHED
        assert tx.review_decision == "REJECTED"
        assert store.count_journal_entries() == 1

    def test_reject_booked(self, workflow, imported) -> None:
        with pytest.raises(ReviewError):
            workflow.reject(imported["booked"])
