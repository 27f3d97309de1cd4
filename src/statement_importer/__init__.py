"""
Bank statement → Normalized transactions → Matching → Double-entry ledger

A deterministic, testable importer that turns bank statement exports
(MT940, CAMT.053, CSV) into balanced journal entries with confidence
scoring, optional human review, and strict deduplication.
"""

__version__ = "0.1.0"
