"""Booking decision policy."""

from statement_importer.decision.policy import (
    BookingDecision,
    BookingRoute,
    DecisionThresholds,
    decide,
)

__all__ = ["BookingDecision", "BookingRoute", "DecisionThresholds", "decide"]
