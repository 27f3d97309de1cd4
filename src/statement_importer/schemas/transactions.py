"""
Canonical transaction model (SSOT).

This is THE single source of truth for statement and ledger data.
Every parser maps into RawTransaction; every downstream component
reads from these types. No other module may invent another schema.
"""

from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Optional

# Rounding precision for currency amounts
CURRENCY_PRECISION = Decimal("0.01")


def quantize_amount(amount: Decimal) -> Decimal:
    """Round an amount to currency minor-unit precision."""
    return amount.quantize(CURRENCY_PRECISION, rounding=ROUND_HALF_UP)


class TransactionStatus(str, Enum):
    """Lifecycle of a stored bank transaction."""

    UNMATCHED = "Unmatched"
    BOOKED = "Booked"


class AccountType(str, Enum):
    """Chart-of-accounts account type."""

    ASSET = "Asset"
    LIABILITY = "Liability"
    EQUITY = "Equity"
    REVENUE = "Revenue"
    EXPENSE = "Expense"


class CandidateKind(str, Enum):
    """Kind of counterpart proposed by the matcher."""

    EXISTING_CONTACT = "ExistingContact"
    NEW_CONTACT = "NewContact"
    BANK_RULE = "BankRule"


class InvoiceDirection(str, Enum):
    """Sales invoices are paid to us, purchase invoices are paid by us."""

    SALES = "sales"
    PURCHASE = "purchase"


@dataclass(frozen=True)
class RawTransaction:
    """
    One statement line as produced by a parser.

    Amount sign convention (SSOT):
    - Positive = money received (credit on the statement)
    - Negative = money paid (debit on the statement)
    """

    transaction_date: date
    amount: Decimal
    description: str
    counterparty_name: Optional[str] = None
    counterparty_account_ref: Optional[str] = None
    source_reference: Optional[str] = None

    @property
    def is_income(self) -> bool:
        return self.amount > 0


@dataclass(frozen=True)
class ParseWarning:
    """Non-fatal problem with a single statement line or XML node."""

    location: str  # e.g. "line 14" or "entry 3"
    message: str

    def __str__(self) -> str:
        return f"{self.location}: {self.message}"


@dataclass
class ParseResult:
    """Output of a statement parser."""

    transactions: list[RawTransaction] = field(default_factory=list)
    skipped: int = 0
    warnings: list[ParseWarning] = field(default_factory=list)
    format: str = ""

    def skip(self, location: str, message: str) -> None:
        """Record a skipped line or node."""
        self.skipped += 1
        self.warnings.append(ParseWarning(location=location, message=message))


@dataclass
class StoredBankTransaction:
    """A deduplicated bank transaction owned by one bank account."""

    id: int
    bank_account_id: int
    fingerprint: str
    raw: RawTransaction
    status: TransactionStatus = TransactionStatus.UNMATCHED
    journal_entry_id: Optional[int] = None
    confidence_score: Optional[int] = None
    suggestion: Optional[dict[str, Any]] = None
    review_decision: Optional[str] = None

    @property
    def amount(self) -> Decimal:
        return self.raw.amount


@dataclass
class Account:
    """Chart-of-accounts entry (owned by the ledger collaborator)."""

    id: int
    code: str
    name: str
    type: AccountType
    is_active: bool = True


@dataclass
class Contact:
    """Relation record (owned by the contacts collaborator)."""

    id: int
    company_name: str
    default_ledger_account_id: Optional[int] = None
    settlement_account_id: Optional[int] = None
    default_vat_rate: Optional[Decimal] = None
    email: Optional[str] = None
    iban: Optional[str] = None


@dataclass
class OpenInvoice:
    """Outstanding invoice (read from the invoicing collaborator)."""

    id: int
    invoice_number: str
    contact_id: int
    direction: InvoiceDirection
    total_amount: Decimal
    outstanding_amount: Decimal
    due_date: Optional[date] = None
    status: str = "Open"


@dataclass
class AccountProposal:
    """A ledger account that does not exist yet and needs approval."""

    code: str
    name: str
    type: AccountType

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "name": self.name, "type": self.type.value}


@dataclass
class MatchCandidate:
    """
    Best counterpart found for a bank transaction.

    Transient: only the JSON form is persisted, as a suggestion for review.
    """

    kind: CandidateKind
    confidence_score: int  # 0-100
    contact_name: str
    source: str  # invoice_match, bank_rule, known_contact, new_contact
    contact_id: Optional[int] = None
    suggested_ledger_account_id: Optional[int] = None
    new_ledger_account_proposal: Optional[AccountProposal] = None
    vat_rate_guess: Decimal = Decimal("0")
    invoice_id: Optional[int] = None
    settlement_account_id: Optional[int] = None
    reasons: list[str] = field(default_factory=list)

    @property
    def has_resolved_account(self) -> bool:
        return self.suggested_ledger_account_id is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "kind": self.kind.value,
            "confidence_score": self.confidence_score,
            "contact_name": self.contact_name,
            "source": self.source,
            "contact_id": self.contact_id,
            "suggested_ledger_account_id": self.suggested_ledger_account_id,
            "new_ledger_account_proposal": (
                self.new_ledger_account_proposal.to_dict()
                if self.new_ledger_account_proposal
                else None
            ),
            "vat_rate_guess": str(self.vat_rate_guess),
            "invoice_id": self.invoice_id,
            "settlement_account_id": self.settlement_account_id,
            "reasons": list(self.reasons),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MatchCandidate":
        """Create from dictionary."""
        proposal = data.get("new_ledger_account_proposal")
        return cls(
            kind=CandidateKind(data["kind"]),
            confidence_score=int(data["confidence_score"]),
            contact_name=data.get("contact_name", ""),
            source=data.get("source", ""),
            contact_id=data.get("contact_id"),
            suggested_ledger_account_id=data.get("suggested_ledger_account_id"),
            new_ledger_account_proposal=(
                AccountProposal(
                    code=proposal["code"],
                    name=proposal["name"],
                    type=AccountType(proposal["type"]),
                )
                if proposal
                else None
            ),
            vat_rate_guess=Decimal(data.get("vat_rate_guess", "0")),
            invoice_id=data.get("invoice_id"),
            settlement_account_id=data.get("settlement_account_id"),
            reasons=list(data.get("reasons", [])),
        )


@dataclass
class JournalLine:
    """One debit or credit line of a journal entry."""

    account_id: int
    debit: Decimal = Decimal("0.00")
    credit: Decimal = Decimal("0.00")
    description: Optional[str] = None


@dataclass
class JournalEntry:
    """
    A double-entry journal entry.

    Invariant: sum(debit) == sum(credit) to the cent. The posting engine
    checks this before anything is written.
    """

    entry_date: date
    description: str
    lines: list[JournalLine]
    route: str  # direct, relation, manual
    reference: Optional[str] = None
    contact_id: Optional[int] = None
    ledger_account_id: Optional[int] = None  # revenue/expense side, for booking history
    id: Optional[int] = None

    @property
    def total_debit(self) -> Decimal:
        return quantize_amount(sum((line.debit for line in self.lines), Decimal("0")))

    @property
    def total_credit(self) -> Decimal:
        return quantize_amount(sum((line.credit for line in self.lines), Decimal("0")))

    @property
    def is_balanced(self) -> bool:
        return self.total_debit == self.total_credit

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["entry_date"] = self.entry_date.isoformat()
        for line in data["lines"]:
            line["debit"] = str(line["debit"])
            line["credit"] = str(line["credit"])
        return data
