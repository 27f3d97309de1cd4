"""Counterparty text cleaning and vendor keyword categories.

Bank statement text is full of payment noise (wallet names, terminal
ids, dates, bank codes) that hides the actual vendor. Matching and
contact-name proposals work on the cleaned text.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

from statement_importer.schemas.transactions import AccountType

# Applied in order; each pattern is removed from the text
NOISE_PATTERNS: list[re.Pattern[str]] = [
    # Mobile wallets
    re.compile(r"\b(Apple Pay|Google Pay|Samsung Pay|Garmin Pay)\b", re.IGNORECASE),
    # Payment processor platforms
    re.compile(r"\b(CCV|Mollie|Buckaroo|Adyen|MultiSafepay|Pay\.nl|Sisow)\b", re.IGNORECASE),
    # Terminal / payment method words
    re.compile(r"\b(Betaalautomaat|Betaal automaat|Pinautomaat|Pin automaat)\b", re.IGNORECASE),
    re.compile(r"\b(Contactloos|Mobiele betaling|Mobile payment|NFC)\b", re.IGNORECASE),
    re.compile(r"\b(Pasnummer|Pasnr\.?|Pas nr\.?|Kaart nr\.?|Card nr\.?)", re.IGNORECASE),
    # Dates (DD-MM-YYYY and YYYY-MM-DD, any separator)
    re.compile(r"\b\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4}\b"),
    re.compile(r"\b\d{4}[-/.]\d{1,2}[-/.]\d{1,2}\b"),
    # Times
    re.compile(r"\b\d{1,2}:\d{2}(:\d{2})?\b"),
    # Bank codes and prefixes
    re.compile(
        r"\b(BEA|SEPA|TRX|PAS|NR|REF|IBAN|BIC|TERM|PIN|ID|CODE|Omschrijving|Incasso)\b",
        re.IGNORECASE,
    ),
    # Terminal and transaction ids
    re.compile(r"\b\d{4,}\b"),
]


def clean_payment_noise(text: str | None) -> str:
    """Remove payment noise from statement text.

    Example:
        "BEA Apple Pay SHELL 1234 12-01-2024 14:32 PASNR 004" -> "SHELL 004"
    """
    if not text:
        return ""
    cleaned = text
    for pattern in NOISE_PATTERNS:
        cleaned = pattern.sub(" ", cleaned)
    cleaned = re.sub(r"[,:]+(\s|$)", " ", cleaned)
    return " ".join(cleaned.split())


def strip_diacritics(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def normalize_name(text: str | None) -> str:
    """Normalize a party name for comparison.

    Case- and diacritic-insensitive, payment noise and punctuation removed.
    """
    cleaned = strip_diacritics(clean_payment_noise(text)).lower()
    cleaned = re.sub(r"[^\w\s&]", " ", cleaned)
    return " ".join(cleaned.split())


def keyword_matches(text: str, keyword: str) -> bool:
    """Whole-word, case-insensitive keyword test ("bp" does not match "bpost")."""
    keyword = keyword.strip()
    if not keyword or not text:
        return False
    pattern = r"(?<!\w)" + re.escape(keyword) + r"(?!\w)"
    return re.search(pattern, text, re.IGNORECASE) is not None


@dataclass(frozen=True)
class VendorCategory:
    """Keyword group mapping first-time vendors to a ledger account."""

    category: str
    account_code: str
    keywords: tuple[str, ...]
    account_type: AccountType = AccountType.EXPENSE


VENDOR_CATEGORIES: tuple[VendorCategory, ...] = (
    VendorCategory(
        category="Private withdrawals (cash)",
        account_code="1800",
        keywords=("geldmaat", "geldopname", "cash withdrawal", "atm"),
        account_type=AccountType.EQUITY,
    ),
    VendorCategory(
        category="Fuel",
        account_code="4310",
        keywords=(
            "shell", "bp", "esso", "texaco", "total", "tango", "tinq",
            "fastned", "tesla supercharger", "avia", "lukoil",
        ),
    ),
    VendorCategory(
        category="Parking",
        account_code="4300",
        keywords=("parkmobile", "q-park", "yellowbrick", "parkeren", "parking"),
    ),
    VendorCategory(
        category="Office supplies and groceries",
        account_code="4700",
        keywords=(
            "albert heijn", "ah to go", "jumbo", "lidl", "aldi", "plus supermarkt",
            "picnic", "sligro", "makro", "hanos", "dirk van den broek", "dekamarkt",
            "vomar", "hoogvliet", "coop", "spar", "kruidvat", "etos", "hema",
            "action", "blokker", "bruna", "primera", "staples", "gamma", "praxis",
            "karwei", "hornbach", "hubo",
        ),
    ),
    VendorCategory(
        category="Telephone and internet",
        account_code="4220",
        keywords=("kpn", "ziggo", "vodafone", "t-mobile", "odido"),
    ),
    VendorCategory(
        category="Software and subscriptions",
        account_code="4210",
        keywords=(
            "google workspace", "google cloud", "google ads", "microsoft 365",
            "microsoft azure", "adobe", "dropbox", "zoom", "slack", "github",
            "moneybird", "twinfield", "afas",
        ),
    ),
    VendorCategory(
        category="Insurance",
        account_code="4600",
        keywords=(
            "interpolis", "centraal beheer", "unive", "achmea",
            "nationale nederlanden", "asr verzekeringen",
        ),
    ),
    VendorCategory(
        category="Bank charges",
        account_code="4900",
        keywords=("transactiekosten", "bankkosten", "kosten betaalrekening", "bank charges"),
    ),
    VendorCategory(
        category="Business travel",
        account_code="4300",
        keywords=(
            "ns groep", "connexxion", "uber", "bolt", "schiphol", "klm",
            "transavia", "ryanair", "easyjet",
        ),
    ),
    VendorCategory(
        category="Representation",
        account_code="4360",
        keywords=(
            "thuisbezorgd", "uber eats", "deliveroo", "starbucks", "restaurant",
            "brasserie", "grand cafe", "van der valk", "la place", "loetje",
        ),
    ),
    VendorCategory(
        category="Car maintenance",
        account_code="4310",
        keywords=("kwik-fit", "kwikfit", "carglass", "euromaster", "apk keuring", "rdw"),
    ),
)


def find_vendor_category(text: str) -> tuple[VendorCategory, str] | None:
    """Return the first vendor category whose keyword occurs in the text.

    Longer keywords are tested first so "uber eats" wins over "uber".
    """
    candidates = [
        (len(keyword), index, category, keyword)
        for index, category in enumerate(VENDOR_CATEGORIES)
        for keyword in category.keywords
    ]
    candidates.sort(key=lambda item: (-item[0], item[1]))
    for _, _, category, keyword in candidates:
        if keyword_matches(text, keyword):
            return category, keyword
    return None
