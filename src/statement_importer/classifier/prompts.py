"""Prompt templates for ledger account classification.

Prompts are versioned so stored suggestions can be traced to the
prompt that produced them.
"""

from __future__ import annotations

from dataclasses import dataclass

PROMPT_VERSION = "v1.0"


@dataclass
class AccountPrompt:
    """Prompt template for proposing a ledger account for a first-time vendor.

    Attributes:
        version: Prompt version.
        system_prompt: System message setting LLM behavior.
        user_template: Template for user message with placeholders.
    """

    version: str = PROMPT_VERSION

    system_prompt: str = """You are a bookkeeping assistant for a small business.
Your task is to choose the ledger account a bank transaction should be booked on,
based on the counterparty, the description and the chart of accounts.

Rules:
1. Only suggest account codes from the provided list
2. Money received goes to a revenue account, money paid to an expense account
3. If uncertain, lower your confidence instead of guessing
4. Include a confidence score from 0.0 to 1.0

Respond in JSON format:
{
    "account_code": "4310",
    "confidence": 0.85,
    "reason": "Brief explanation"
}"""

    user_template: str = """Classify this bank transaction:

Transaction Details:
- Direction: {direction}
- Amount: {amount}
- Date: {date}
- Counterparty: {counterparty}
- Description: {description}

Available Accounts:
{accounts}

Provide your suggestion in JSON format."""

    def format_user_message(
        self,
        amount: str,
        date: str,
        counterparty: str | None,
        description: str | None,
        accounts: list[tuple[str, str]],
    ) -> str:
        """Format the user message with transaction details.

        Args:
            amount: Signed transaction amount.
            date: Transaction date.
            counterparty: Cleaned counterparty name.
            description: Transaction description.
            accounts: (code, name) pairs of candidate accounts.

        Returns:
            Formatted user message.
        """
        accounts_str = "\n".join(f"- {code}: {name}" for code, name in accounts)
        direction = "money received" if not amount.startswith("-") else "money paid"
        return self.user_template.format(
            direction=direction,
            amount=amount,
            date=date,
            counterparty=counterparty or "Unknown",
            description=description or "N/A",
            accounts=accounts_str,
        )
