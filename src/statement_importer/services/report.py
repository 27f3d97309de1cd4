"""Import analysis report.

Collects per-transaction outcomes from the worker threads and produces the
summary shown after an import: totals per outcome, the direct/relation
split of automatic bookings and a confidence histogram.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from statement_importer.decision.policy import BookingRoute
from statement_importer.schemas.transactions import MatchCandidate


class OutcomeStatus(str, Enum):
    """What happened to one parsed transaction."""

    AUTO_BOOKED = "auto_booked"
    NEEDS_REVIEW = "needs_review"
    DUPLICATE = "duplicate"
    ERROR = "error"
    SKIPPED = "skipped"  # not started before cancellation


@dataclass
class BookingOutcome:
    """Per-transaction detail line of the report."""

    status: OutcomeStatus
    reason: str
    transaction_id: int | None = None
    route: BookingRoute | None = None
    confidence_score: int | None = None
    candidate: MatchCandidate | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "status": self.status.value,
            "route": self.route.value if self.route else None,
            "confidence_score": self.confidence_score,
            "candidate": self.candidate.to_dict() if self.candidate else None,
            "reason": self.reason,
            "error": self.error,
        }


@dataclass(frozen=True)
class ConfidenceBucket:
    label: str
    low: int
    high: int

    def contains(self, score: int) -> bool:
        return self.low <= score <= self.high


CONFIDENCE_BUCKETS = (
    ConfidenceBucket("90-100", 90, 100),
    ConfidenceBucket("80-89", 80, 89),
    ConfidenceBucket("60-79", 60, 79),
    ConfidenceBucket("0-59", 0, 59),
)

# Outcomes that went through matching and carry a score
SCORED_STATUSES = (OutcomeStatus.AUTO_BOOKED, OutcomeStatus.NEEDS_REVIEW)


@dataclass
class HistogramBucket:
    label: str
    count: int
    percentage: int

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "count": self.count, "percentage": self.percentage}


@dataclass
class ImportAnalysisReport:
    """Summary of one statement import."""

    total_processed: int = 0
    auto_booked: int = 0
    auto_booked_direct: int = 0
    auto_booked_relation: int = 0
    needs_review: int = 0
    errors: int = 0
    duplicates: int = 0
    skipped: int = 0
    file_error: str | None = None
    cancelled: bool = False
    format: str | None = None
    details: list[BookingOutcome] = field(default_factory=list)

    @property
    def histogram(self) -> list[HistogramBucket]:
        """Confidence histogram over matched outcomes.

        Percentages are of total_processed, rounded half up.
        """
        denominator = self.total_processed or 1
        buckets = []
        for bucket in CONFIDENCE_BUCKETS:
            count = sum(
                1
                for outcome in self.details
                if outcome.status in SCORED_STATUSES
                and bucket.contains(outcome.confidence_score or 0)
            )
            percentage = int(count * 100 / denominator + 0.5)
            buckets.append(HistogramBucket(bucket.label, count, percentage))
        return buckets

    @property
    def success(self) -> bool:
        return self.file_error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "auto_booked": self.auto_booked,
            "auto_booked_direct": self.auto_booked_direct,
            "auto_booked_relation": self.auto_booked_relation,
            "needs_review": self.needs_review,
            "errors": self.errors,
            "duplicates": self.duplicates,
            "skipped": self.skipped,
            "file_error": self.file_error,
            "cancelled": self.cancelled,
            "format": self.format,
            "histogram": [bucket.to_dict() for bucket in self.histogram],
            "details": [outcome.to_dict() for outcome in self.details],
        }

    @classmethod
    def for_file_error(cls, message: str) -> ImportAnalysisReport:
        return cls(file_error=message)


class ReportAggregator:
    """Thread-safe accumulator of booking outcomes.

    Outcomes are recorded against their input position so the report
    keeps statement order regardless of which worker finished first.
    """

    def __init__(self, format_name: str | None = None, skipped: int = 0) -> None:
        self._lock = threading.Lock()
        self._outcomes: dict[int, BookingOutcome] = {}
        self._format = format_name
        self._skipped = skipped
        self._cancelled = False

    def record(self, position: int, outcome: BookingOutcome) -> None:
        with self._lock:
            self._outcomes[position] = outcome

    def mark_cancelled(self) -> None:
        with self._lock:
            self._cancelled = True

    def __len__(self) -> int:
        with self._lock:
            return len(self._outcomes)

    def build(self) -> ImportAnalysisReport:
        """Produce the report from everything recorded so far."""
        with self._lock:
            details = [self._outcomes[position] for position in sorted(self._outcomes)]
            cancelled = self._cancelled

        report = ImportAnalysisReport(
            total_processed=sum(1 for o in details if o.status != OutcomeStatus.SKIPPED),
            skipped=self._skipped,
            cancelled=cancelled,
            format=self._format,
            details=details,
        )
        for outcome in details:
            if outcome.status == OutcomeStatus.AUTO_BOOKED:
                report.auto_booked += 1
                if outcome.route == BookingRoute.RELATION:
                    report.auto_booked_relation += 1
                else:
                    report.auto_booked_direct += 1
            elif outcome.status == OutcomeStatus.NEEDS_REVIEW:
                report.needs_review += 1
            elif outcome.status == OutcomeStatus.DUPLICATE:
                report.duplicates += 1
            elif outcome.status == OutcomeStatus.ERROR:
                report.errors += 1
            elif outcome.status == OutcomeStatus.SKIPPED:
                report.skipped += 1
        return report
