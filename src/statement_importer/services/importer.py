"""Statement import orchestration service.

Runs one bank statement file through the pipeline:

1. Detect the format and parse (file-level errors end the import)
2. Deduplicate against earlier imports of the same bank account
3. Per transaction, in a worker pool: match, decide, post
4. Aggregate outcomes into an ImportAnalysisReport
5. Notify when transactions await review; record the import run

The import is safe to repeat: duplicates are dropped before matching, so
a re-import never posts twice.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from statement_importer.classifier import AccountClassifier, MatchTimeoutError
from statement_importer.decision.policy import DecisionThresholds, decide
from statement_importer.matching.engine import MatchingEngine
from statement_importer.parsers import FormatDetector, StatementImportError
from statement_importer.posting.engine import InvoiceSettledError, PostingEngine
from statement_importer.services.deduplicator import Deduplicator
from statement_importer.services.locks import KeyedLock
from statement_importer.services.report import (
    BookingOutcome,
    ImportAnalysisReport,
    OutcomeStatus,
    ReportAggregator,
)

if TYPE_CHECKING:
    from statement_importer.config import Config
    from statement_importer.parsers import DocumentExtractor
    from statement_importer.schemas.transactions import StoredBankTransaction
    from statement_importer.state_store import StateStore

logger = logging.getLogger(__name__)

REVIEW_NOTIFICATION = "review_required"

# Each retry sees one more settled invoice
MAX_MATCH_ATTEMPTS = 3


class StatementImporter:
    """Imports bank statement files into the ledger.

    One instance owns the lock registry, so concurrent imports through the
    same instance serialize per bank account and per contact.

    Usage:
        importer = StatementImporter(state_store, config)
        report = importer.import_statement(data, "statement.sta", bank_account_id=1)
    """

    def __init__(
        self,
        state_store: StateStore,
        config: Config,
        classifier: AccountClassifier | None = None,
        document_extractor: DocumentExtractor | None = None,
        locks: KeyedLock | None = None,
    ) -> None:
        """Initialize the importer.

        Args:
            state_store: State store for persistence.
            config: Application configuration.
            classifier: External account classifier; built from config when
                enabled and not given.
            document_extractor: Extractor for scanned statements (PDF/images).
            locks: Shared lock registry (one per importer if not given).
        """
        self.store = state_store
        self.config = config
        self.locks = locks or KeyedLock()

        self._owns_classifier = classifier is None and config.classifier.enabled
        if self._owns_classifier:
            classifier = AccountClassifier(config.classifier)
        self.classifier = classifier

        self.detector = FormatDetector(document_extractor)
        self.deduplicator = Deduplicator(state_store, self.locks)
        self.matcher = MatchingEngine(state_store, config, classifier)
        self.posting = PostingEngine(state_store, config.ledger, self.locks)
        self.thresholds = DecisionThresholds.from_config(config.import_)
        self.max_workers = max(1, config.import_.max_workers)

    def import_statement(
        self,
        file_bytes: bytes,
        filename: str,
        bank_account_id: int,
        format_hint: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ImportAnalysisReport:
        """Import one statement file.

        Args:
            file_bytes: Raw file content.
            filename: Original file name (used for format detection).
            bank_account_id: Bank account the statement belongs to.
            format_hint: Parser name ("mt940", "camt", "csv", "document")
                to skip detection.
            cancel_event: Once set, transactions not yet started are skipped.

        Returns:
            ImportAnalysisReport. File-level failures are reported through
            ``file_error``; this method does not raise for them.
        """
        start_time = time.time()

        if self.store.get_bank_account(bank_account_id) is None:
            report = ImportAnalysisReport.for_file_error(f"Unknown bank account {bank_account_id}")
            logger.error("Import of %s rejected: %s", filename, report.file_error)
            return report

        try:
            parsed = self.detector.parse(file_bytes, filename, format_hint)
        except StatementImportError as e:
            logger.error("Import of %s failed: %s", filename, e)
            report = ImportAnalysisReport.for_file_error(str(e))
            self.store.record_import_run(bank_account_id, filename, None, report.to_dict())
            return report

        for warning in parsed.warnings:
            logger.warning("%s: skipped %s", filename, warning)

        dedup = self.deduplicator.deduplicate(bank_account_id, parsed.transactions)
        aggregator = ReportAggregator(format_name=parsed.format, skipped=parsed.skipped)

        work: list[tuple[int, StoredBankTransaction]] = []
        for position, stored in enumerate(dedup.slots):
            if stored is None:
                aggregator.record(
                    position,
                    BookingOutcome(status=OutcomeStatus.DUPLICATE, reason="already imported"),
                )
            else:
                work.append((position, stored))

        if work:
            with ThreadPoolExecutor(
                max_workers=min(self.max_workers, len(work)),
                thread_name_prefix="statement-import",
            ) as executor:
                futures = [
                    executor.submit(self._process, position, stored, aggregator, cancel_event)
                    for position, stored in work
                ]
                for future in futures:
                    future.result()

        if cancel_event is not None and cancel_event.is_set():
            aggregator.mark_cancelled()

        report = aggregator.build()
        self._notify_review(report, bank_account_id, filename)
        self.store.record_import_run(bank_account_id, filename, report.format, report.to_dict())

        logger.info(
            "Imported %s (%s) in %dms: %d processed, %d auto-booked "
            "(%d direct, %d relation), %d review, %d duplicates, %d errors, %d skipped%s",
            filename,
            report.format,
            int((time.time() - start_time) * 1000),
            report.total_processed,
            report.auto_booked,
            report.auto_booked_direct,
            report.auto_booked_relation,
            report.needs_review,
            report.duplicates,
            report.errors,
            report.skipped,
            " (cancelled)" if report.cancelled else "",
        )
        return report

    def _process(
        self,
        position: int,
        transaction: StoredBankTransaction,
        aggregator: ReportAggregator,
        cancel_event: threading.Event | None,
    ) -> None:
        """Match, decide and post one transaction. Never raises."""
        if cancel_event is not None and cancel_event.is_set():
            aggregator.record(
                position,
                BookingOutcome(
                    status=OutcomeStatus.SKIPPED,
                    reason="import cancelled",
                    transaction_id=transaction.id,
                ),
            )
            return

        try:
            outcome = self._book(transaction)
        except Exception as e:
            logger.exception("Transaction %d failed: %s", transaction.id, e)
            outcome = BookingOutcome(
                status=OutcomeStatus.ERROR,
                reason="processing failed",
                transaction_id=transaction.id,
                error=f"{type(e).__name__}: {e}",
            )
        aggregator.record(position, outcome)

    def _book(self, transaction: StoredBankTransaction) -> BookingOutcome:
        for attempt in range(1, MAX_MATCH_ATTEMPTS + 1):
            try:
                return self._match_and_post(transaction)
            except InvoiceSettledError as e:
                # Another line of the same import paid the invoice first
                logger.info(
                    "Transaction %d: %s, matching again (attempt %d)",
                    transaction.id,
                    e,
                    attempt,
                )

        logger.warning(
            "Transaction %d deferred to review: matched invoices kept being settled",
            transaction.id,
        )
        return BookingOutcome(
            status=OutcomeStatus.NEEDS_REVIEW,
            reason="matched invoice already settled, deferred to review",
            transaction_id=transaction.id,
            confidence_score=0,
        )

    def _match_and_post(self, transaction: StoredBankTransaction) -> BookingOutcome:
        try:
            candidate = self.matcher.match(transaction.raw)
        except MatchTimeoutError as e:
            logger.warning("Transaction %d deferred to review: %s", transaction.id, e)
            return BookingOutcome(
                status=OutcomeStatus.NEEDS_REVIEW,
                reason="classification timed out, deferred to review",
                transaction_id=transaction.id,
                confidence_score=0,
            )

        if candidate is not None:
            self.store.save_suggestion(
                transaction.id, candidate.confidence_score, candidate.to_dict()
            )

        decision = decide(candidate, self.thresholds)
        if not decision.is_auto_booked:
            return BookingOutcome(
                status=OutcomeStatus.NEEDS_REVIEW,
                reason=decision.reason,
                transaction_id=transaction.id,
                confidence_score=decision.confidence_score,
                candidate=candidate,
            )

        self.posting.post(transaction, candidate, decision.route)
        return BookingOutcome(
            status=OutcomeStatus.AUTO_BOOKED,
            reason=decision.reason,
            transaction_id=transaction.id,
            route=decision.route,
            confidence_score=decision.confidence_score,
            candidate=candidate,
        )

    def _notify_review(
        self, report: ImportAnalysisReport, bank_account_id: int, filename: str
    ) -> None:
        if report.needs_review == 0:
            return
        transaction_ids = [
            outcome.transaction_id
            for outcome in report.details
            if outcome.status == OutcomeStatus.NEEDS_REVIEW
        ]
        self.store.add_notification(
            REVIEW_NOTIFICATION,
            f"{report.needs_review} transaction(s) from {filename} need review",
            {
                "bank_account_id": bank_account_id,
                "filename": filename,
                "transaction_ids": transaction_ids,
            },
        )

    def close(self) -> None:
        """Release the classifier HTTP client if this importer created it."""
        if self._owns_classifier and self.classifier is not None:
            self.classifier.close()


def import_statement(
    state_store: StateStore,
    config: Config,
    file_bytes: bytes,
    filename: str,
    bank_account_id: int,
    format_hint: str | None = None,
    cancel_event: threading.Event | None = None,
    document_extractor: DocumentExtractor | None = None,
) -> ImportAnalysisReport:
    """Import one statement file with a short-lived importer."""
    importer = StatementImporter(state_store, config, document_extractor=document_extractor)
    try:
        return importer.import_statement(
            file_bytes, filename, bank_account_id, format_hint, cancel_event
        )
    finally:
        importer.close()
