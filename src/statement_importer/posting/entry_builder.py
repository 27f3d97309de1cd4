"""
Journal entry builder (SSOT).

This module provides the SINGLE canonical implementation for turning a
booked bank transaction into double-entry journal lines.

Core Invariants:
- sum(debit) == sum(credit) to the cent, for every entry built here
- All line amounts are positive and quantized to CURRENCY_PRECISION
- The bank line is always the first line

Routes:
- direct: bank against the resolved account, full amount (2 lines)
- relation: the payment passes through the contact's settlement account,
  then the settlement is released against the net revenue/expense
  account and the VAT account (4 or 5 lines)

Amount Sign Convention:
- The bank transaction amount is signed (positive = money in)
- Journal line amounts are positive; debit/credit carries the direction
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from statement_importer.schemas.transactions import (
    CURRENCY_PRECISION,
    JournalEntry,
    JournalLine,
)

if TYPE_CHECKING:
    from statement_importer.schemas.transactions import RawTransaction

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


class UnbalancedEntryError(Exception):
    """Raised when a journal entry's debits and credits differ."""

    pass


class AmountValidationError(Exception):
    """Raised when amount validation fails."""

    pass


def validate_amount(
    amount: Decimal | float | str,
    *,
    field_name: str = "amount",
    allow_zero: bool = False,
) -> Decimal:
    """Validate and normalize a journal line amount.

    Args:
        amount: The amount to validate (Decimal, float, or string)
        field_name: Name for error messages
        allow_zero: Whether zero is a valid value (default: False)

    Returns:
        Validated Decimal amount, quantized to CURRENCY_PRECISION

    Raises:
        AmountValidationError: If amount is negative, or zero when not allowed

    Examples:
        >>> validate_amount(Decimal("10.004"))
        Decimal('10.00')
        >>> validate_amount("-5.00")  # Raises AmountValidationError
    """
    try:
        if isinstance(amount, str):
            amount = Decimal(amount.strip())
        elif isinstance(amount, float):
            amount = Decimal(str(amount))
        elif not isinstance(amount, Decimal):
            amount = Decimal(amount)
    except Exception as e:
        raise AmountValidationError(f"{field_name}: Invalid amount format - {e}") from e

    amount = amount.quantize(CURRENCY_PRECISION, rounding=ROUND_HALF_UP)

    if amount < 0:
        raise AmountValidationError(f"{field_name}: Amount must be positive, got {amount}")
    if not allow_zero and amount == 0:
        raise AmountValidationError(f"{field_name}: Amount cannot be zero")
    return amount


def split_vat(gross: Decimal, vat_rate: Decimal) -> tuple[Decimal, Decimal]:
    """Split a VAT-inclusive amount into (net, vat).

    VAT = gross * rate / (100 + rate), rounded half-up to the cent;
    net absorbs the rounding so net + vat == gross exactly.

    Examples:
        >>> split_vat(Decimal("121.00"), Decimal("21"))
        (Decimal('100.00'), Decimal('21.00'))
    """
    gross = validate_amount(gross, field_name="gross")
    if vat_rate < 0:
        raise AmountValidationError(f"vat_rate: must not be negative, got {vat_rate}")
    if vat_rate == 0:
        return gross, ZERO
    vat = (gross * vat_rate / (HUNDRED + vat_rate)).quantize(
        CURRENCY_PRECISION, rounding=ROUND_HALF_UP
    )
    return gross - vat, vat


def assert_balanced(entry: JournalEntry) -> None:
    """Check the double-entry invariant.

    Raises:
        UnbalancedEntryError: if total debit != total credit or the entry has no lines
    """
    if not entry.lines:
        raise UnbalancedEntryError("Journal entry has no lines")
    if not entry.is_balanced:
        raise UnbalancedEntryError(
            f"Journal entry {entry.description!r} is unbalanced: "
            f"debit {entry.total_debit} != credit {entry.total_credit}"
        )


def _dr(account_id: int, amount: Decimal, description: str) -> JournalLine:
    return JournalLine(account_id=account_id, debit=amount, credit=ZERO, description=description)


def _cr(account_id: int, amount: Decimal, description: str) -> JournalLine:
    return JournalLine(account_id=account_id, debit=ZERO, credit=amount, description=description)


@dataclass
class PostingAccounts:
    """Account ids a single posting needs."""

    bank_account_id: int
    target_account_id: int  # revenue/expense (or debtors/creditors for invoice payments)
    settlement_account_id: int | None = None
    vat_account_id: int | None = None


def build_direct_entry(
    transaction: RawTransaction,
    accounts: PostingAccounts,
    *,
    contact_id: int | None = None,
    description: str | None = None,
) -> JournalEntry:
    """Build the two-line entry for the direct route.

    Money in:  Dr bank / Cr target
    Money out: Dr target / Cr bank
    """
    gross = validate_amount(abs(transaction.amount), field_name="bank amount")
    text = description or transaction.description

    if transaction.is_income:
        lines = [_dr(accounts.bank_account_id, gross, text), _cr(accounts.target_account_id, gross, text)]
    else:
        lines = [_cr(accounts.bank_account_id, gross, text), _dr(accounts.target_account_id, gross, text)]

    entry = JournalEntry(
        entry_date=transaction.transaction_date,
        description=text,
        lines=lines,
        route="direct",
        reference=transaction.source_reference,
        contact_id=contact_id,
        ledger_account_id=accounts.target_account_id,
    )
    assert_balanced(entry)
    return entry


def build_relation_entry(
    transaction: RawTransaction,
    accounts: PostingAccounts,
    vat_rate: Decimal,
    *,
    contact_id: int | None = None,
    description: str | None = None,
) -> JournalEntry:
    """Build the entry for the relation route.

    Money in (gross G = net N + VAT V):
        Dr bank G / Cr settlement G      (payment received from the contact)
        Dr settlement G / Cr revenue N / Cr VAT payable V   (settlement released)
    Money out mirrors this with debit and credit swapped and VAT receivable.
    The VAT line is omitted when the rate is zero.
    """
    if accounts.settlement_account_id is None:
        raise ValueError("relation route requires a settlement account")
    gross = validate_amount(abs(transaction.amount), field_name="bank amount")
    net, vat = split_vat(gross, vat_rate)
    if vat > 0 and accounts.vat_account_id is None:
        raise ValueError("relation route with VAT requires a VAT account")

    text = description or transaction.description
    income = transaction.is_income
    # Same-side helper: "with" follows the bank's side, "against" the opposite
    with_bank, against_bank = (_dr, _cr) if income else (_cr, _dr)

    lines = [
        with_bank(accounts.bank_account_id, gross, text),
        against_bank(accounts.settlement_account_id, gross, text),
        with_bank(accounts.settlement_account_id, gross, f"Settlement: {text}"),
        against_bank(accounts.target_account_id, net, text),
    ]
    if vat > 0:
        lines.append(against_bank(accounts.vat_account_id, vat, f"VAT {vat_rate}%: {text}"))

    entry = JournalEntry(
        entry_date=transaction.transaction_date,
        description=text,
        lines=lines,
        route="relation",
        reference=transaction.source_reference,
        contact_id=contact_id,
        ledger_account_id=accounts.target_account_id,
    )
    assert_balanced(entry)
    return entry
