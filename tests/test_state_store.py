"""Tests for the SQLite state store and migrations."""

import sqlite3
from datetime import date
from decimal import Decimal

import pytest
from fixtures import book_history, make_transaction, store_transaction

from statement_importer.schemas.fingerprint import fingerprint_transaction
from statement_importer.schemas.transactions import (
    AccountType,
    InvoiceDirection,
    JournalEntry,
    JournalLine,
    TransactionStatus,
)
from statement_importer.state_store import (
    InvoiceNotOpenError,
    RuleMatchType,
    StaleRecordError,
    StateStore,
)
from statement_importer.state_store.migrations import (
    Migration,
    MigrationError,
    MigrationRunner,
    get_all_migrations,
)


class TestChartAndContacts:
    """Tests for accounts and contacts."""

    def test_default_chart_seeded(self, store, account_ids):
        assert {"1100", "1300", "1450", "1500", "1530", "4999", "8000"} <= set(account_ids)
        assert store.get_account_by_code("1500").type == AccountType.LIABILITY

    def test_list_accounts_by_type(self, store):
        revenue = store.list_accounts([AccountType.REVENUE])
        assert [account.code for account in revenue] == ["8000"]

    def test_duplicate_account_code_rejected(self, store):
        with pytest.raises(sqlite3.IntegrityError):
            store.add_account("1100", "Second bank", AccountType.ASSET)

    def test_contact_round_trip(self, store, account_ids):
        contact_id = store.add_contact(
            "Example Supplier",
            default_ledger_account_id=account_ids["4999"],
            default_vat_rate=Decimal("9"),
            iban="NL30RABO0111222333",
        )
        contact = store.get_contact(contact_id)
        assert contact.company_name == "Example Supplier"
        assert contact.default_vat_rate == Decimal("9")
        assert contact.settlement_account_id is None

    def test_find_contact_by_name_is_case_insensitive(self, store):
        contact_id = store.add_contact("Example Supplier")
        assert store.find_contact_by_name("  example SUPPLIER ").id == contact_id
        assert store.find_contact_by_name("Other") is None

    def test_default_account_only_set_once(self, store, account_ids):
        contact_id = store.add_contact("Example Supplier")
        assert store.set_default_ledger_account_if_missing(contact_id, account_ids["4999"])
        assert not store.set_default_ledger_account_if_missing(contact_id, account_ids["4900"])
        assert store.get_contact(contact_id).default_ledger_account_id == account_ids["4999"]


class TestInvoices:
    """Tests for invoices."""

    def test_open_invoices_by_direction(self, store):
        contact_id = store.add_contact("Example Customer")
        store.add_invoice("S-1", contact_id, InvoiceDirection.SALES, Decimal("10"))
        store.add_invoice("P-1", contact_id, InvoiceDirection.PURCHASE, Decimal("20"), due_date=date(2024, 2, 1))

        sales = store.list_open_invoices(InvoiceDirection.SALES)
        assert [invoice.invoice_number for invoice in sales] == ["S-1"]
        assert sales[0].outstanding_amount == Decimal("10.00")
        purchase = store.list_open_invoices(InvoiceDirection.PURCHASE)[0]
        assert purchase.due_date == date(2024, 2, 1)
        assert len(store.list_open_invoices()) == 2


class TestBankTransactions:
    """Tests for deduplicated bank transactions."""

    def test_insert_and_read_back(self, store, bank_account_id):
        raw = make_transaction(
            amount="-45.5",
            description="Fuel pump 4",
            counterparty_name="Shell Station Utrecht",
            counterparty_account_ref="NL55RABO0123456789",
            source_reference="BR0002",
        )
        stored = store_transaction(store, bank_account_id, raw)

        assert stored.status == TransactionStatus.UNMATCHED
        assert stored.raw == make_transaction(
            amount="-45.50",
            description="Fuel pump 4",
            counterparty_name="Shell Station Utrecht",
            counterparty_account_ref="NL55RABO0123456789",
            source_reference="BR0002",
        )
        assert stored.fingerprint == fingerprint_transaction(raw)

    def test_fingerprint_unique_per_bank_account(self, store, bank_account_id, account_ids):
        raw = make_transaction()
        fingerprint = fingerprint_transaction(raw)
        assert store.insert_bank_transaction(bank_account_id, fingerprint, raw) is not None
        assert store.insert_bank_transaction(bank_account_id, fingerprint, raw) is None

        other_account = store.add_bank_account("Savings", ledger_account_id=account_ids["1100"])
        assert store.insert_bank_transaction(other_account, fingerprint, raw) is not None

    def test_suggestion_and_pending_review(self, store, bank_account_id):
        later = store_transaction(store, bank_account_id, make_transaction(transaction_date=date(2024, 1, 20)))
        earlier = store_transaction(store, bank_account_id, make_transaction(transaction_date=date(2024, 1, 10)))
        store.save_suggestion(later.id, 40, {"kind": "NewContact"})

        pending = store.list_pending_review(bank_account_id)
        assert [tx.id for tx in pending] == [earlier.id, later.id]
        assert pending[1].confidence_score == 40
        assert pending[1].suggestion == {"kind": "NewContact"}

        store.set_review_decision(earlier.id, "REJECTED")
        assert [tx.id for tx in store.list_pending_review()] == [later.id]
        assert store.get_bank_transaction(earlier.id).status == TransactionStatus.UNMATCHED


class TestJournal:
    """Tests for journal entries."""

    def _entry(self, account_ids, amount="10.00", contact_id=None):
        return JournalEntry(
            entry_date=date(2024, 1, 15),
            description="Test entry",
            route="direct",
            reference="BR1",
            contact_id=contact_id,
            ledger_account_id=account_ids["4999"],
            lines=[
                JournalLine(account_id=account_ids["1100"], credit=Decimal(amount)),
                JournalLine(account_id=account_ids["4999"], debit=Decimal(amount)),
            ],
        )

    def test_book_transaction(self, store, account_ids, bank_account_id):
        tx = store_transaction(store, bank_account_id)
        entry_id = store.book_transaction(self._entry(account_ids), tx.id, review_decision="ACCEPTED")

        stored = store.get_bank_transaction(tx.id)
        assert stored.status == TransactionStatus.BOOKED
        assert stored.journal_entry_id == entry_id
        assert stored.review_decision == "ACCEPTED"

        entry = store.get_journal_entry(entry_id)
        assert entry.reference == "BR1"
        assert [line.account_id for line in entry.lines] == [account_ids["1100"], account_ids["4999"]]
        assert entry.is_balanced

    def test_stale_transaction_rolls_back(self, store, account_ids, bank_account_id):
        tx = store_transaction(store, bank_account_id)
        store.book_transaction(self._entry(account_ids), tx.id)

        with pytest.raises(StaleRecordError):
            store.book_transaction(self._entry(account_ids), tx.id)
        assert store.count_journal_entries() == 1

    def test_settled_invoice_rolls_back(self, store, account_ids, bank_account_id):
        customer_id = store.add_contact("Example Customer")
        invoice_id = store.add_invoice("INV-1", customer_id, InvoiceDirection.SALES, Decimal("10.00"))
        first = store_transaction(store, bank_account_id, make_transaction(amount="10.00", description="first"))
        second = store_transaction(store, bank_account_id, make_transaction(amount="10.00", description="second"))
        store.book_transaction(self._entry(account_ids), first.id, invoice_id=invoice_id)

        with pytest.raises(InvoiceNotOpenError, match="no longer Open"):
            store.book_transaction(self._entry(account_ids), second.id, invoice_id=invoice_id)
        assert store.get_bank_transaction(second.id).status == TransactionStatus.UNMATCHED
        assert store.count_journal_entries() == 1

    def test_last_booking_is_most_recent(self, store, account_ids, bank_account_id):
        contact_id = store.add_contact("KPN")
        book_history(store, bank_account_id, contact_id, account_ids["4999"], date(2023, 5, 1))
        book_history(store, bank_account_id, contact_id, account_ids["4220"], date(2023, 11, 1))

        history = store.get_last_booking(contact_id)
        assert history.ledger_account_id == account_ids["4220"]
        assert history.entry_date == date(2023, 11, 1)

    def test_stats(self, store, account_ids, bank_account_id):
        booked = store_transaction(store, bank_account_id, make_transaction(description="booked"))
        store_transaction(store, bank_account_id, make_transaction(description="open"))
        store.book_transaction(self._entry(account_ids), booked.id)

        stats = store.get_stats()
        assert stats["transactions_booked"] == 1
        assert stats["transactions_unmatched"] == 1
        assert stats["pending_review"] == 1
        assert stats["journal_entries"] == 1


class TestNotificationsAndRuns:
    """Tests for tables created by migrations."""

    def test_notifications(self, store):
        store.add_notification("review_required", "2 transactions need review", {"ids": [1, 2]})

        unread = store.list_notifications(unread_only=True)
        assert len(unread) == 1
        assert unread[0].payload == {"ids": [1, 2]}
        assert store.mark_notifications_read() == 1
        assert store.list_notifications(unread_only=True) == []
        assert store.list_notifications()[0].read_at is not None

    def test_import_runs_newest_first(self, store, bank_account_id):
        store.record_import_run(bank_account_id, "jan.sta", "mt940", {"total_processed": 3})
        store.record_import_run(bank_account_id, "feb.sta", None, {"file_error": "bad file"})

        runs = store.list_import_runs()
        assert [run.filename for run in runs] == ["feb.sta", "jan.sta"]
        assert runs[0].file_error == "bad file"
        assert runs[1].total_processed == 3

class TestBankRules:
    """Tests for keyword rules."""

    def test_add_and_list(self, store, account_ids):
        rule_id = store.add_bank_rule("  Shell   Station ", account_ids["4310"])

        rule = store.get_bank_rule(rule_id)
        assert rule.keyword == "Shell Station"
        assert rule.match_type == RuleMatchType.CONTAINS
        assert rule.contact_id is None
        assert rule.is_active
        assert rule.use_count == 0
        assert store.list_bank_rules() == [rule]

    def test_keyword_unique_regardless_of_case(self, store, account_ids):
        store.add_bank_rule("Shell", account_ids["4310"])
        with pytest.raises(ValueError, match="already exists"):
            store.add_bank_rule("SHELL", account_ids["4999"])

    def test_empty_keyword_rejected(self, store, account_ids):
        with pytest.raises(ValueError):
            store.add_bank_rule("   ", account_ids["4310"])

    def test_evaluation_order(self, store, account_ids):
        store.add_bank_rule("uber", account_ids["4999"])
        store.add_bank_rule("uber eats", account_ids["4700"])
        store.add_bank_rule("kpn", account_ids["4220"], priority=10)

        assert [rule.keyword for rule in store.list_bank_rules()] == ["kpn", "uber eats", "uber"]

    def test_disabled_rules_hidden(self, store, account_ids):
        rule_id = store.add_bank_rule("Shell", account_ids["4310"])

        assert store.set_bank_rule_active(rule_id, False)
        assert store.list_bank_rules() == []
        assert [rule.id for rule in store.list_bank_rules(active_only=False)] == [rule_id]
        assert not store.set_bank_rule_active(999, False)

    def test_learn_creates_then_updates(self, store, account_ids):
        contact_id = store.add_contact("Example Supplier")
        first = store.learn_bank_rule("Example Supplier", account_ids["4999"], None)
        second = store.learn_bank_rule("example supplier", account_ids["4700"], contact_id)

        assert first == second
        rule = store.get_bank_rule(first)
        assert rule.keyword == "Example Supplier"
        assert rule.ledger_account_id == account_ids["4700"]
        assert rule.contact_id == contact_id
        assert rule.use_count == 2
        assert rule.last_used_at is not None

    def test_learn_keeps_disabled_rule_disabled(self, store, account_ids):
        rule_id = store.add_bank_rule("Shell", account_ids["4310"], match_type=RuleMatchType.EXACT)
        store.set_bank_rule_active(rule_id, False)

        store.learn_bank_rule("Shell", account_ids["4999"], None)

        rule = store.get_bank_rule(rule_id)
        assert not rule.is_active
        assert rule.match_type == RuleMatchType.EXACT
        assert rule.ledger_account_id == account_ids["4999"]


class TestDeleteUnusedRecords:
    """Tests for removing records nothing refers to."""

    def test_delete_contact_and_account(self, store):
        account_id = store.add_account("4360", "Meals", AccountType.EXPENSE)
        contact_id = store.add_contact("Restaurant De Kas")

        store.delete_contact(contact_id)
        store.delete_account(account_id)

        assert store.get_contact(contact_id) is None
        assert store.get_account(account_id) is None

    def test_referenced_account_kept(self, store):
        account_id = store.add_account("4360", "Meals", AccountType.EXPENSE)
        store.add_contact("Restaurant De Kas", default_ledger_account_id=account_id)

        with pytest.raises(sqlite3.IntegrityError):
            store.delete_account(account_id)
        assert store.get_account(account_id) is not None



class TestMigrations:
    """Tests for the migration runner."""

    def test_migrations_are_ordered(self):
        versions = [migration.version for migration in get_all_migrations()]
        assert versions == sorted(versions)
        assert versions[:3] == [1, 2, 3]

    def test_store_applies_all_migrations(self, temp_db):
        StateStore(temp_db)
        conn = sqlite3.connect(str(temp_db))
        try:
            runner = MigrationRunner(conn)
            assert runner.get_current_version() == max(m.version for m in get_all_migrations())
            assert runner.pending() == []
        finally:
            conn.close()

    def test_store_without_migrations(self, temp_db):
        StateStore(temp_db, run_migrations=False)
        conn = sqlite3.connect(str(temp_db))
        try:
            runner = MigrationRunner(conn)
            assert runner.get_current_version() == 0
            assert runner.run_pending() == [1, 2, 3]
            assert runner.run_pending() == []
        finally:
            conn.close()

    def test_rollback(self, temp_db):
        StateStore(temp_db)
        conn = sqlite3.connect(str(temp_db))
        try:
            runner = MigrationRunner(conn)
            import_runs = next(m for m in get_all_migrations() if m.name == "import_runs")
            runner.rollback_migration(import_runs)

            assert 2 not in runner.get_applied_versions()
            tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
            assert "import_runs" not in tables
        finally:
            conn.close()

    def test_failed_migration_raises(self, temp_db):
        conn = sqlite3.connect(str(temp_db))
        try:
            runner = MigrationRunner(conn)

            def broken(connection):
                connection.execute("ALTER TABLE missing_table ADD COLUMN x TEXT")

            with pytest.raises(MigrationError, match="Migration 99 failed"):
                runner.apply_migration(Migration(99, "broken", broken, None))
            assert 99 not in runner.get_applied_versions()
        finally:
            conn.close()
