"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

import yaml

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..posting import PostingError, ensure_default_chart
from ..review import ReviewError, ReviewWorkflow
from ..schemas.transactions import CandidateKind
from ..services.importer import StatementImporter
from ..services.report import ImportAnalysisReport, OutcomeStatus
from ..state_store import RuleMatchType, StateStore

logger = logging.getLogger(__name__)

CANDIDATE_LABELS = {
    CandidateKind.NEW_CONTACT: "new contact",
    CandidateKind.BANK_RULE: "rule",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="statement-importer",
        description="Import bank statements (MT940, CAMT, CSV) and book them in the ledger",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init command
    init_parser = subparsers.add_parser(
        "init", help="Create config, database, default chart and a bank account"
    )
    init_parser.add_argument(
        "--bank-name",
        type=str,
        default="Main bank account",
        help="Name of the bank account to create (default: Main bank account)",
    )
    init_parser.add_argument(
        "--iban",
        type=str,
        help="IBAN of the bank account",
    )

    # import command
    import_parser = subparsers.add_parser("import", help="Import a bank statement file")
    import_parser.add_argument("file", type=Path, help="Statement file (MT940, CAMT XML, CSV)")
    import_parser.add_argument(
        "--bank-account",
        type=int,
        required=True,
        help="Bank account ID the statement belongs to",
    )
    import_parser.add_argument(
        "--format",
        type=str,
        choices=["mt940", "camt", "csv"],
        help="Skip format detection",
    )
    import_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the analysis report as JSON",
    )

    # review command
    review_parser = subparsers.add_parser("review", help="List transactions pending review")
    review_parser.add_argument(
        "--bank-account",
        type=int,
        help="Only show this bank account",
    )

    # accept command
    accept_parser = subparsers.add_parser("accept", help="Accept and book a reviewed transaction")
    accept_parser.add_argument("id", type=int, help="Bank transaction ID")
    accept_parser.add_argument(
        "--account",
        type=str,
        help="Ledger account code (overrides the suggestion)",
    )
    accept_parser.add_argument(
        "--contact",
        type=str,
        help="Contact name (overrides the suggestion; created if new)",
    )
    accept_parser.add_argument(
        "--vat",
        type=str,
        help="VAT rate in percent (overrides the suggestion)",
    )

    # reject command
    reject_parser = subparsers.add_parser("reject", help="Reject a transaction (not booked)")
    reject_parser.add_argument("id", type=int, help="Bank transaction ID")

    # rules commands
    rules_parser = subparsers.add_parser("rules", help="List bank rules")
    rules_parser.add_argument(
        "--all",
        action="store_true",
        help="Include disabled rules",
    )

    add_rule_parser = subparsers.add_parser(
        "add-rule", help="Book statement lines containing a keyword on an account"
    )
    add_rule_parser.add_argument(
        "keyword", type=str, help="Word(s) in the counterparty name or description"
    )
    add_rule_parser.add_argument(
        "--account",
        type=str,
        required=True,
        help="Ledger account code to book on",
    )
    add_rule_parser.add_argument(
        "--contact",
        type=str,
        help="Existing contact name to book for",
    )
    add_rule_parser.add_argument(
        "--exact",
        action="store_true",
        help="Match the whole counterparty name or description only",
    )
    add_rule_parser.add_argument(
        "--priority",
        type=int,
        default=0,
        help="Higher priority rules are tested first (default: 0)",
    )

    disable_rule_parser = subparsers.add_parser("disable-rule", help="Disable a bank rule")
    disable_rule_parser.add_argument("id", type=int, help="Bank rule ID")

    # status command
    subparsers.add_parser("status", help="Show ledger and import statistics")

    return parser


def cmd_init(config_path: Path, bank_name: str, iban: str | None) -> int:
    """Create config file, database, default chart and a first bank account."""
    if config_path.exists():
        print(f"  ✓ Config exists: {config_path}")
    else:
        create_default_config(config_path)
        print(f"  ✓ Created config: {config_path}")

    config = _load_valid_config(config_path)
    store = StateStore(config.state_db_path)
    created = ensure_default_chart(store)
    print(f"  ✓ Database: {config.state_db_path} ({created} chart accounts created)")

    bank_accounts = store.list_bank_accounts()
    if bank_accounts:
        print(f"  ✓ Bank account exists: #{bank_accounts[0].id} {bank_accounts[0].name}")
        return 0

    bank_ledger = store.get_account_by_code(config.ledger.bank_code)
    bank_account_id = store.add_bank_account(
        bank_name, iban=iban, ledger_account_id=bank_ledger.id if bank_ledger else None
    )
    print(f"  ✓ Created bank account #{bank_account_id}: {bank_name}")
    return 0


def cmd_import(
    config: Config,
    file: Path,
    bank_account_id: int,
    format_hint: str | None = None,
    as_json: bool = False,
) -> int:
    """Import one statement file and print the analysis report."""
    if not file.exists():
        print(f"❌ File not found: {file}")
        return 1

    store = StateStore(config.state_db_path)
    importer = StatementImporter(store, config)
    try:
        report = importer.import_statement(
            file.read_bytes(), file.name, bank_account_id, format_hint=format_hint
        )
    finally:
        importer.close()

    if as_json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print_report(report, file.name)

    return 0 if report.success else 1


def print_report(report: ImportAnalysisReport, filename: str) -> None:
    """Print a human-readable analysis report."""
    if report.file_error:
        print(f"❌ Import of {filename} failed: {report.file_error}")
        return

    print(f"\n📊 Import Analysis: {filename} ({report.format})")
    print("=" * 40)
    print(f"  Processed:          {report.total_processed}")
    print(f"  Auto-booked:        {report.auto_booked}")
    print(f"    direct route:     {report.auto_booked_direct}")
    print(f"    relation route:   {report.auto_booked_relation}")
    print(f"  Needs review:       {report.needs_review}")
    print(f"  Duplicates:         {report.duplicates}")
    print(f"  Errors:             {report.errors}")
    print(f"  Skipped:            {report.skipped}")
    if report.cancelled:
        print("  ⚠️  Import was cancelled")

    print("\n  Confidence")
    for bucket in report.histogram:
        print(f"    {bucket.label:>7}: {bucket.count:4d} ({bucket.percentage}%)")

    errors = [o for o in report.details if o.status == OutcomeStatus.ERROR]
    if errors:
        print("\n⚠️  Errors encountered:")
        for outcome in errors:
            print(f"   - transaction {outcome.transaction_id}: {outcome.error}")
    print()


def cmd_review(config: Config, bank_account_id: int | None = None) -> int:
    """List transactions pending review."""
    store = StateStore(config.state_db_path)
    workflow = ReviewWorkflow(store, config)
    items = workflow.get_pending_reviews(bank_account_id)

    if not items:
        print("✓ Nothing to review")
        return 0

    print(f"\n📋 {len(items)} transaction(s) pending review")
    print("=" * 40)
    for item in items:
        tx = item.transaction
        raw = tx.raw
        print(
            f"  #{tx.id}  {raw.transaction_date}  {raw.amount:>12}  "
            f"{raw.counterparty_name or raw.description[:40]}"
        )
        candidate = item.candidate
        if candidate is None:
            print("        no suggestion")
            continue

        if candidate.suggested_ledger_account_id is not None:
            account = store.get_account(candidate.suggested_ledger_account_id)
            account_text = f"{account.code} {account.name}" if account else "?"
        elif candidate.new_ledger_account_proposal is not None:
            proposal = candidate.new_ledger_account_proposal
            account_text = f"{proposal.code} {proposal.name} (new)"
        else:
            account_text = "none"
        kind = CANDIDATE_LABELS.get(candidate.kind, "contact")
        print(
            f"        {kind}: {candidate.contact_name}  account: {account_text}  "
            f"score: {candidate.confidence_score}"
        )
    print()
    return 0


def cmd_accept(
    config: Config,
    transaction_id: int,
    account_code: str | None = None,
    contact_name: str | None = None,
    vat: str | None = None,
) -> int:
    """Accept and book a transaction from the review list."""
    vat_rate = None
    if vat is not None:
        try:
            vat_rate = Decimal(vat.replace(",", "."))
        except InvalidOperation:
            print(f"❌ Invalid VAT rate: {vat}")
            return 1

    store = StateStore(config.state_db_path)
    workflow = ReviewWorkflow(store, config)
    try:
        result = workflow.accept(
            transaction_id,
            account_code=account_code,
            contact_name=contact_name,
            vat_rate=vat_rate,
        )
    except (ReviewError, PostingError) as e:
        print(f"❌ Cannot book transaction {transaction_id}: {e}")
        return 1

    changes = f" (edited: {', '.join(result.changes_made)})" if result.changes_made else ""
    print(f"✓ Transaction {transaction_id} booked as entry {result.journal_entry_id}{changes}")
    return 0


def cmd_reject(config: Config, transaction_id: int) -> int:
    """Reject a transaction from the review list."""
    store = StateStore(config.state_db_path)
    workflow = ReviewWorkflow(store, config)
    try:
        workflow.reject(transaction_id)
    except ReviewError as e:
        print(f"❌ {e}")
        return 1
    print(f"✓ Transaction {transaction_id} rejected")
    return 0


def cmd_rules(config: Config, include_disabled: bool = False) -> int:
    """List bank rules in evaluation order."""
    store = StateStore(config.state_db_path)
    rules = store.list_bank_rules(active_only=not include_disabled)
    if not rules:
        print("No bank rules")
        return 0

    print(f"\n📏 {len(rules)} bank rule(s)\n")
    for rule in rules:
        account = store.get_account(rule.ledger_account_id)
        contact = store.get_contact(rule.contact_id) if rule.contact_id else None
        target = f"{account.code} {account.name}" if account else "?"
        if contact is not None:
            target += f" for {contact.company_name}"
        state = "" if rule.is_active else "  (disabled)"
        print(
            f"  #{rule.id}  {rule.match_type.value:<8} {rule.keyword!r} -> {target}  "
            f"used {rule.use_count}x{state}"
        )
    print()
    return 0


def cmd_add_rule(
    config: Config,
    keyword: str,
    account_code: str,
    contact_name: str | None = None,
    exact: bool = False,
    priority: int = 0,
) -> int:
    """Create a bank rule."""
    store = StateStore(config.state_db_path)
    account = store.get_account_by_code(account_code)
    if account is None or not account.is_active:
        print(f"❌ Ledger account {account_code} does not exist")
        return 1

    contact_id = None
    if contact_name:
        contact = store.find_contact_by_name(contact_name)
        if contact is None:
            print(f"❌ Contact {contact_name!r} does not exist")
            return 1
        contact_id = contact.id

    try:
        rule_id = store.add_bank_rule(
            keyword,
            account.id,
            contact_id=contact_id,
            match_type=RuleMatchType.EXACT if exact else RuleMatchType.CONTAINS,
            priority=priority,
        )
    except ValueError as e:
        print(f"❌ {e}")
        return 1
    print(f"✓ Bank rule {rule_id}: {keyword!r} -> {account.code} {account.name}")
    return 0


def cmd_disable_rule(config: Config, rule_id: int) -> int:
    store = StateStore(config.state_db_path)
    if not store.set_bank_rule_active(rule_id, False):
        print(f"❌ Bank rule {rule_id} not found")
        return 1
    print(f"✓ Bank rule {rule_id} disabled")
    return 0


def cmd_status(config: Config) -> int:
    """Show ledger and import statistics."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats()

    print("\n📊 Importer Status")
    print("=" * 40)
    print(f"  Transactions booked:    {stats['transactions_booked']}")
    print(f"  Transactions unmatched: {stats['transactions_unmatched']}")
    print(f"  Pending review:         {stats['pending_review']}")
    print(f"  Journal entries:        {stats['journal_entries']}")
    print(f"  Open invoices:          {stats['open_invoices']}")
    print(f"  Contacts:               {stats['contacts']}")

    runs = store.list_import_runs(limit=5)
    if runs:
        print("\n  Recent imports")
        for run in runs:
            outcome = f"failed: {run.file_error}" if run.file_error else (
                f"{run.total_processed} processed, {run.auto_booked} booked, "
                f"{run.needs_review} review"
            )
            print(f"    {run.created_at[:19]}  {run.filename}  {outcome}")

    notifications = store.list_notifications(unread_only=True)
    if notifications:
        print("\n  🔔 Notifications")
        for notification in notifications:
            print(f"    {notification.message}")
        store.mark_notifications_read()
    print()

    return 0


def _load_valid_config(config_path: Path) -> Config:
    """Load config and raise ConfigValidationError if it is inconsistent."""
    config = load_config(config_path)
    errors = config.validate()
    if errors:
        raise ConfigValidationError("; ".join(errors))
    return config


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    try:
        if parsed.command == "init":
            return cmd_init(parsed.config, parsed.bank_name, parsed.iban)

        config = _load_valid_config(parsed.config)
    except ConfigValidationError as e:
        print(f"❌ Invalid config: {e}")
        return 2
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "import":
        return cmd_import(config, parsed.file, parsed.bank_account, parsed.format, parsed.json)
    elif parsed.command == "review":
        return cmd_review(config, parsed.bank_account)
    elif parsed.command == "accept":
        return cmd_accept(config, parsed.id, parsed.account, parsed.contact, parsed.vat)
    elif parsed.command == "reject":
        return cmd_reject(config, parsed.id)
    elif parsed.command == "rules":
        return cmd_rules(config, parsed.all)
    elif parsed.command == "add-rule":
        return cmd_add_rule(
            config, parsed.keyword, parsed.account, parsed.contact, parsed.exact, parsed.priority
        )
    elif parsed.command == "disable-rule":
        return cmd_disable_rule(config, parsed.id)
    elif parsed.command == "status":
        return cmd_status(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
