"""Booking decision policy.

Pure function mapping a match candidate to a booking route.

Routes:
- DIRECT: high confidence, known contact without a settlement account
- RELATION: known contact, booked through its settlement account
- MANUAL_REVIEW: everything else (first-time vendors always land here)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from statement_importer.schemas.transactions import CandidateKind

if TYPE_CHECKING:
    from statement_importer.config import ImportConfig
    from statement_importer.schemas.transactions import MatchCandidate


class BookingRoute(str, Enum):
    """How a transaction is booked."""

    DIRECT = "direct"
    RELATION = "relation"
    MANUAL_REVIEW = "manual_review"


@dataclass(frozen=True)
class DecisionThresholds:
    """Confidence thresholds (0-100)."""

    auto_book: int = 90
    relation: int = 60

    @classmethod
    def from_config(cls, config: ImportConfig) -> DecisionThresholds:
        return cls(auto_book=config.auto_book_threshold, relation=config.relation_threshold)


@dataclass(frozen=True)
class BookingDecision:
    """Outcome of the decision policy for one transaction."""

    route: BookingRoute
    reason: str
    confidence_score: int = 0

    @property
    def is_auto_booked(self) -> bool:
        return self.route != BookingRoute.MANUAL_REVIEW


def decide(
    candidate: MatchCandidate | None,
    thresholds: DecisionThresholds | None = None,
) -> BookingDecision:
    """Decide the booking route for a match candidate.

    Args:
        candidate: Best candidate from the matcher (None if nothing matched)
        thresholds: Confidence thresholds (defaults 90/60)

    Returns:
        BookingDecision; never raises for well-formed input
    """
    thresholds = thresholds or DecisionThresholds()

    if candidate is None:
        return BookingDecision(BookingRoute.MANUAL_REVIEW, "no match candidate")

    score = candidate.confidence_score

    if candidate.kind == CandidateKind.NEW_CONTACT:
        return BookingDecision(
            BookingRoute.MANUAL_REVIEW, "new contact requires approval", score
        )
    if not candidate.has_resolved_account:
        return BookingDecision(BookingRoute.MANUAL_REVIEW, "no ledger account resolved", score)

    if score >= thresholds.auto_book:
        if candidate.settlement_account_id is None:
            return BookingDecision(BookingRoute.DIRECT, f"high confidence ({score})", score)
        return BookingDecision(
            BookingRoute.RELATION, f"high confidence ({score}), settlement account", score
        )

    if score >= thresholds.relation:
        return BookingDecision(BookingRoute.RELATION, f"medium confidence ({score})", score)

    return BookingDecision(BookingRoute.MANUAL_REVIEW, f"low confidence ({score})", score)
