"""Matching engine for bank transactions.

Finds the best counterpart for an imported bank transaction, in order:

1. Invoice match: an open invoice of the counterparty for exactly the
   transaction amount (sales invoices for money in, purchase for money out)
2. Bank rule: a keyword rule of the bookkeeper, found in the counterparty
   name or description, naming the ledger account (and contact)
3. Known contact: an existing contact whose name resembles the counterparty,
   booked on its default account or the account it was last booked on
4. New contact: a proposal for a first-time counterparty, with a ledger
   account from the vendor keyword table or the amount category

At most one candidate is returned. Scores run from 0 to 100.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from statement_importer.matching.cleaning import (
    clean_payment_noise,
    find_vendor_category,
    keyword_matches,
    normalize_name,
)
from statement_importer.posting.system_accounts import SystemAccounts
from statement_importer.schemas.fingerprint import normalize_account_ref
from statement_importer.schemas.transactions import (
    AccountProposal,
    AccountType,
    CandidateKind,
    InvoiceDirection,
    MatchCandidate,
    quantize_amount,
)
from statement_importer.state_store import RuleMatchType

if TYPE_CHECKING:
    from statement_importer.classifier import AccountClassifier
    from statement_importer.config import Config
    from statement_importer.schemas.transactions import (
        Account,
        Contact,
        OpenInvoice,
        RawTransaction,
    )
    from statement_importer.state_store import StateStore

logger = logging.getLogger(__name__)


@dataclass
class NameSimilarity:
    """Similarity between counterparty text and a contact name."""

    score: float  # 0.0 - 1.0
    detail: str  # exact, contains, overlap, iban


def name_similarity(counterparty: str, contact_name: str) -> NameSimilarity:
    """Score two party names (both normalized by the caller).

    exact 1.0, containment 0.85, token overlap (Jaccard) otherwise.
    """
    if not counterparty or not contact_name:
        return NameSimilarity(0.0, "missing")
    if counterparty == contact_name:
        return NameSimilarity(1.0, "exact")
    if contact_name in counterparty or counterparty in contact_name:
        return NameSimilarity(0.85, "contains")

    counterparty_words = set(counterparty.split())
    contact_words = set(contact_name.split())
    union = counterparty_words | contact_words
    if not union:
        return NameSimilarity(0.0, "no match")
    jaccard = len(counterparty_words & contact_words) / len(union)
    return NameSimilarity(jaccard, f"overlap: {len(counterparty_words & contact_words)} words")


def recency_bonus(last_booking: date | None, transaction_date: date) -> int:
    """Bonus for contacts booked recently: 10 within 90 days, 5 within a year."""
    if last_booking is None:
        return 0
    days = abs((transaction_date - last_booking).days)
    if days <= 90:
        return 10
    if days <= 365:
        return 5
    return 0


class MatchingEngine:
    """Engine for matching bank transactions to invoices, contacts and accounts."""

    MIN_NAME_SIMILARITY = 0.5
    KNOWN_CONTACT_BASE = 60
    KNOWN_CONTACT_SPAN = 24
    KNOWN_CONTACT_MAX = 94
    INVOICE_SCORE = 95
    INVOICE_WITH_NUMBER_SCORE = 100
    RULE_SCORE = 100
    NEW_CONTACT_KEYWORD_SCORE = 40
    NEW_CONTACT_BASE_SCORE = 25

    def __init__(
        self,
        state_store: StateStore,
        config: Config,
        classifier: AccountClassifier | None = None,
    ) -> None:
        """Initialize the matching engine.

        Args:
            state_store: State store with chart, contacts and invoices.
            config: Application configuration.
            classifier: Optional external classifier for first-time vendors.
        """
        self.store = state_store
        self.config = config
        self.ledger = config.ledger
        self.classifier = classifier
        self.system_accounts = SystemAccounts(state_store, config.ledger)

    def match(self, transaction: RawTransaction) -> MatchCandidate | None:
        """Find the best candidate for a transaction.

        Raises:
            MatchTimeoutError: if the external classifier timed out
            SystemAccountMissingError: if debtors/creditors are missing for an invoice match
        """
        counterparty_text = transaction.counterparty_name or transaction.description
        counterparty = normalize_name(counterparty_text)

        candidate = self._match_invoice(transaction, counterparty)
        if candidate is None:
            candidate = self._match_rule(transaction)
        if candidate is None:
            candidate = self._match_known_contact(transaction, counterparty)
        if candidate is None:
            candidate = self._propose_new_contact(transaction)

        if candidate is not None:
            logger.debug(
                "Transaction %s %s: %s candidate, score %d",
                transaction.transaction_date,
                transaction.amount,
                candidate.source,
                candidate.confidence_score,
            )
        return candidate

    # Invoice match

    def _match_invoice(
        self, transaction: RawTransaction, counterparty: str
    ) -> MatchCandidate | None:
        direction = InvoiceDirection.SALES if transaction.is_income else InvoiceDirection.PURCHASE
        amount = quantize_amount(abs(transaction.amount))
        description = (transaction.description or "").lower()
        account_ref = normalize_account_ref(transaction.counterparty_account_ref)

        matches: list[tuple[int, date, int, OpenInvoice, Contact]] = []
        contacts: dict[int, Contact | None] = {}
        for invoice in self.store.list_open_invoices(direction):
            if quantize_amount(invoice.outstanding_amount) != amount:
                continue
            if invoice.contact_id not in contacts:
                contacts[invoice.contact_id] = self.store.get_contact(invoice.contact_id)
            contact = contacts[invoice.contact_id]
            if contact is None or not self._is_same_party(contact, counterparty, account_ref):
                continue

            number = invoice.invoice_number.lower()
            score = (
                self.INVOICE_WITH_NUMBER_SCORE
                if number and number in description
                else self.INVOICE_SCORE
            )
            matches.append((score, invoice.due_date or date.max, invoice.id, invoice, contact))

        if not matches:
            return None

        # Highest score first, then earliest due date
        matches.sort(key=lambda m: (-m[0], m[1], m[2]))
        score, _, _, invoice, contact = matches[0]

        reasons = [f"open {direction.value} invoice {invoice.invoice_number} for {amount}"]
        if score == self.INVOICE_WITH_NUMBER_SCORE:
            reasons.append("invoice number in description")
        if len(matches) > 1:
            reasons.append(f"{len(matches)} candidate invoices, earliest due date chosen")

        return MatchCandidate(
            kind=CandidateKind.EXISTING_CONTACT,
            confidence_score=score,
            contact_name=contact.company_name,
            source="invoice_match",
            contact_id=contact.id,
            suggested_ledger_account_id=self.system_accounts.receivable_or_payable(
                transaction.is_income
            ),
            # VAT was recognized when the invoice was booked
            vat_rate_guess=Decimal("0"),
            invoice_id=invoice.id,
            settlement_account_id=contact.settlement_account_id,
            reasons=reasons,
        )

    def _is_same_party(self, contact: Contact, counterparty: str, account_ref: str) -> bool:
        if account_ref and contact.iban and normalize_account_ref(contact.iban) == account_ref:
            return True
        name = normalize_name(contact.company_name)
        if not name or not counterparty:
            return False
        return name in counterparty or counterparty in name

    # Bank rules

    def _match_rule(self, transaction: RawTransaction) -> MatchCandidate | None:
        rules = self.store.list_bank_rules()
        if not rules:
            return None

        parts = [
            clean_payment_noise(part)
            for part in (transaction.counterparty_name, transaction.description)
            if part
        ]
        search_text = " ".join(parts)

        for rule in rules:
            if rule.match_type == RuleMatchType.EXACT:
                keyword = rule.keyword.strip().lower()
                hit = any(part.lower() == keyword for part in parts)
            else:
                hit = keyword_matches(search_text, rule.keyword)
            if not hit:
                continue

            account = self.store.get_account(rule.ledger_account_id)
            if account is None or not account.is_active:
                logger.warning(
                    "Bank rule %d (%r) points at an inactive ledger account, skipped",
                    rule.id,
                    rule.keyword,
                )
                continue
            contact = self.store.get_contact(rule.contact_id) if rule.contact_id else None

            reasons = [f"bank rule {rule.keyword!r}: account {account.code} {account.name}"]
            if contact is not None:
                reasons.append(f"rule contact {contact.company_name!r}")
            vat_rate = (
                contact.default_vat_rate
                if contact is not None and contact.default_vat_rate is not None
                else self.ledger.standard_vat_rate
            )
            return MatchCandidate(
                kind=CandidateKind.BANK_RULE,
                confidence_score=self.RULE_SCORE,
                contact_name=contact.company_name if contact else "",
                source="bank_rule",
                contact_id=contact.id if contact else None,
                suggested_ledger_account_id=account.id,
                vat_rate_guess=vat_rate,
                settlement_account_id=contact.settlement_account_id if contact else None,
                reasons=reasons,
            )
        return None

    # Known contact

    def _match_known_contact(
        self, transaction: RawTransaction, counterparty: str
    ) -> MatchCandidate | None:
        account_ref = normalize_account_ref(transaction.counterparty_account_ref)

        best: tuple[NameSimilarity, Contact] | None = None
        for contact in self.store.list_contacts():
            if account_ref and contact.iban and normalize_account_ref(contact.iban) == account_ref:
                similarity = NameSimilarity(1.0, "iban")
            else:
                similarity = name_similarity(counterparty, normalize_name(contact.company_name))
            if similarity.score < self.MIN_NAME_SIMILARITY:
                continue
            if best is None or similarity.score > best[0].score:
                best = (similarity, contact)

        if best is None:
            return None
        similarity, contact = best

        last_booking = self.store.get_last_booking(contact.id)
        account_id = contact.default_ledger_account_id
        reasons = [f"contact {contact.company_name!r} ({similarity.detail}, {similarity.score:.2f})"]
        if account_id is not None:
            reasons.append("contact default ledger account")
        elif last_booking is not None:
            account_id = last_booking.ledger_account_id
            reasons.append("account of last booking")
        else:
            reasons.append("no ledger account known for contact")

        bonus = recency_bonus(
            last_booking.entry_date if last_booking else None, transaction.transaction_date
        )
        if bonus:
            reasons.append(f"recently booked (+{bonus})")

        score = (
            self.KNOWN_CONTACT_BASE
            + round(self.KNOWN_CONTACT_SPAN * similarity.score)
            + bonus
        )
        score = max(self.KNOWN_CONTACT_BASE, min(self.KNOWN_CONTACT_MAX, score))

        return MatchCandidate(
            kind=CandidateKind.EXISTING_CONTACT,
            confidence_score=score,
            contact_name=contact.company_name,
            source="known_contact",
            contact_id=contact.id,
            suggested_ledger_account_id=account_id,
            vat_rate_guess=(
                contact.default_vat_rate
                if contact.default_vat_rate is not None
                else self.ledger.standard_vat_rate
            ),
            settlement_account_id=contact.settlement_account_id,
            reasons=reasons,
        )

    # New contact

    def _propose_new_contact(self, transaction: RawTransaction) -> MatchCandidate | None:
        name = clean_payment_noise(transaction.counterparty_name) or clean_payment_noise(
            transaction.description
        )
        if not name:
            return None

        search_text = " ".join(
            part for part in (transaction.counterparty_name, transaction.description) if part
        )
        search_text = clean_payment_noise(search_text)
        reasons: list[str] = ["first-time counterparty"]

        if transaction.is_income:
            code, account_name, account_type = (
                self.ledger.default_revenue_code,
                "Revenue",
                AccountType.REVENUE,
            )
            score = self.NEW_CONTACT_BASE_SCORE
            reasons.append("money received: revenue account")
        else:
            hit = find_vendor_category(search_text)
            if hit is not None:
                category, keyword = hit
                code, account_name, account_type = (
                    category.account_code,
                    category.category,
                    category.account_type,
                )
                score = self.NEW_CONTACT_KEYWORD_SCORE
                reasons.append(f"keyword {keyword!r}: {category.category}")
            elif abs(transaction.amount) <= self.ledger.small_expense_limit:
                code, account_name, account_type = (
                    self.ledger.sundry_expense_code,
                    "Sundry expenses",
                    AccountType.EXPENSE,
                )
                score = self.NEW_CONTACT_BASE_SCORE
                reasons.append("small amount: sundry expenses")
            else:
                code, account_name, account_type = (
                    self.ledger.default_expense_code,
                    "General expenses",
                    AccountType.EXPENSE,
                )
                score = self.NEW_CONTACT_BASE_SCORE
                reasons.append("default expense account")

        signal = self._classify(transaction, name)
        if signal is not None:
            reasons.append(f"classifier suggests {signal.account_code} ({signal.confidence})")
            code = signal.account_code
            score = max(score, signal.confidence)

        # A first-time counterparty never scores into the booking range
        score = min(score, self.config.import_.new_contact_cap)

        account = self.store.get_account_by_code(code)
        proposal = None
        if account is None or not account.is_active:
            proposal = AccountProposal(code=code, name=account_name, type=account_type)
            reasons.append(f"account {code} does not exist yet")

        return MatchCandidate(
            kind=CandidateKind.NEW_CONTACT,
            confidence_score=score,
            contact_name=name,
            source="new_contact",
            suggested_ledger_account_id=account.id if proposal is None else None,
            new_ledger_account_proposal=proposal,
            vat_rate_guess=self.ledger.standard_vat_rate,
            reasons=reasons,
        )

    def _classify(self, transaction: RawTransaction, name: str):
        if self.classifier is None or not self.classifier.is_enabled:
            return None
        return self.classifier.classify(transaction, name, self._candidate_accounts(transaction))

    def _candidate_accounts(self, transaction: RawTransaction) -> list[Account]:
        """Chart accounts in the revenue or expense code range for the direction."""
        low, high = (
            self.ledger.revenue_code_range
            if transaction.is_income
            else self.ledger.expense_code_range
        )
        accounts = []
        for account in self.store.list_accounts():
            if account.code.isdigit() and low <= int(account.code) <= high:
                accounts.append(account)
        return accounts
