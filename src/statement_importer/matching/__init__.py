"""Matching of bank transactions to invoices, contacts and ledger accounts."""

from statement_importer.matching.cleaning import (
    clean_payment_noise,
    find_vendor_category,
    keyword_matches,
    normalize_name,
)
from statement_importer.matching.engine import MatchingEngine, name_similarity, recency_bonus

__all__ = [
    "MatchingEngine",
    "clean_payment_noise",
    "find_vendor_category",
    "keyword_matches",
    "name_similarity",
    "normalize_name",
    "recency_bonus",
]
