"""Ledger account classifier backed by Ollama.

Provides an optional external signal for first-time vendors: given a
bank transaction and the chart of accounts, the model proposes the
ledger account and a confidence.

Features:
- Ollama integration (localhost, LAN, or remote with auth header)
- Concurrency limiting via semaphore
- Explicit timeouts; a timeout defers the transaction to manual review

Privacy Constraints:
- Never log prompts or statement descriptions at INFO level
"""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from statement_importer.classifier.prompts import PROMPT_VERSION, AccountPrompt

if TYPE_CHECKING:
    from statement_importer.config import ClassifierConfig
    from statement_importer.schemas.transactions import Account, RawTransaction

logger = logging.getLogger(__name__)


class MatchTimeoutError(Exception):
    """The external classification service did not answer in time."""

    pass


@dataclass
class ClassificationSignal:
    """Result of an external account classification."""

    account_code: str
    confidence: int  # 0-100
    reason: str
    model: str
    prompt_version: str = PROMPT_VERSION

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "account_code": self.account_code,
            "confidence": self.confidence,
            "reason": self.reason,
            "model": self.model,
            "prompt_version": self.prompt_version,
        }


class ConcurrencyLimiter:
    """Semaphore-based concurrency limiter for classifier requests.

    Prevents overwhelming the Ollama server when many transactions are
    processed in parallel. Thread-safe.
    """

    def __init__(self, max_concurrent: int = 2) -> None:
        self._semaphore = threading.Semaphore(max_concurrent)
        self._active_count = 0
        self._lock = threading.Lock()

    def acquire(self, timeout: float | None = None) -> bool:
        """Acquire a slot for a request.

        Args:
            timeout: Maximum time to wait (None = blocking)

        Returns:
            True if acquired, False if timeout
        """
        acquired = self._semaphore.acquire(blocking=True, timeout=timeout)
        if acquired:
            with self._lock:
                self._active_count += 1
        return acquired

    def release(self) -> None:
        """Release a slot after request completes."""
        with self._lock:
            self._active_count -= 1
        self._semaphore.release()

    @property
    def active_requests(self) -> int:
        """Current number of active requests."""
        with self._lock:
            return self._active_count


def parse_json_response(content: str) -> dict:
    """Parse JSON from an LLM response, tolerating code fences and chatter.

    Raises:
        json.JSONDecodeError: If no JSON object can be recovered.
    """
    if not content:
        raise json.JSONDecodeError("Empty response", "", 0)

    content = content.strip()
    if content.startswith("```json"):
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    content = content.strip()

    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass

    json_match = re.search(r"\{[^{}]*\}", content, re.DOTALL)
    if json_match:
        return json.loads(json_match.group())
    raise json.JSONDecodeError("No JSON object in response", content, 0)


class AccountClassifier:
    """Ollama-backed ledger account classifier.

    The classifier is a signal, never a decision: its confidence is only
    used to rank a new-contact proposal, which always goes to review.
    """

    def __init__(
        self,
        config: ClassifierConfig,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the classifier.

        Args:
            config: Classifier configuration.
            client: Optional preconfigured HTTP client (tests inject a mock transport).
        """
        self.config = config

        headers = {}
        if config.auth_header:
            # Support formats: "Bearer token" or "Custom-Header: value"
            if ":" in config.auth_header:
                key, value = config.auth_header.split(":", 1)
                headers[key.strip()] = value.strip()
            else:
                headers["Authorization"] = config.auth_header

        self._client = client or httpx.Client(
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(config.timeout_seconds),
                write=30.0,
                pool=10.0,
            ),
            headers=headers,
        )
        self._prompt = AccountPrompt()
        self._limiter = ConcurrencyLimiter(max_concurrent=config.max_concurrent)

    @property
    def is_enabled(self) -> bool:
        return self.config.enabled

    def close(self) -> None:
        self._client.close()

    def classify(
        self,
        transaction: RawTransaction,
        counterparty: str | None,
        accounts: list[Account],
    ) -> ClassificationSignal | None:
        """Ask the model for the ledger account of a transaction.

        Args:
            transaction: Transaction to classify.
            counterparty: Cleaned counterparty name.
            accounts: Candidate accounts (revenue or expense side).

        Returns:
            ClassificationSignal, or None if the service gave no usable answer.

        Raises:
            MatchTimeoutError: if no slot or no answer within the timeout.
        """
        if not self.is_enabled or not accounts:
            return None

        if not self._limiter.acquire(timeout=self.config.timeout_seconds):
            logger.warning(
                "Classifier request timed out waiting for concurrency slot (max=%d, active=%d)",
                self.config.max_concurrent,
                self._limiter.active_requests,
            )
            raise MatchTimeoutError("Classifier busy: no concurrency slot within timeout")

        try:
            content = self._call_ollama(transaction, counterparty, accounts)
        finally:
            self._limiter.release()

        if content is None:
            return None

        try:
            data = parse_json_response(content)
        except json.JSONDecodeError:
            logger.warning("Classifier returned unparseable response")
            return None
        if not isinstance(data, dict):
            logger.warning("Classifier returned %s instead of a JSON object", type(data).__name__)
            return None

        code = str(data.get("account_code", "")).strip()
        known_codes = {account.code for account in accounts}
        if code not in known_codes:
            logger.debug("Classifier suggested unknown account code %r", code)
            return None

        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        confidence = max(0.0, min(1.0, confidence))

        return ClassificationSignal(
            account_code=code,
            confidence=round(confidence * 100),
            reason=str(data.get("reason", ""))[:200],
            model=self.config.model,
        )

    def _call_ollama(
        self,
        transaction: RawTransaction,
        counterparty: str | None,
        accounts: list[Account],
    ) -> str | None:
        """Call the Ollama chat API.

        Returns:
            Response content, or None on HTTP/API failure.

        Raises:
            MatchTimeoutError: on request timeout.
        """
        url = f"{self.config.ollama_url}/api/chat"
        payload = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": self._prompt.system_prompt},
                {
                    "role": "user",
                    "content": self._prompt.format_user_message(
                        amount=str(transaction.amount),
                        date=transaction.transaction_date.isoformat(),
                        counterparty=counterparty,
                        description=transaction.description,
                        accounts=[(account.code, account.name) for account in accounts],
                    ),
                },
            ],
            "stream": False,
            "format": "json",
        }

        # Debug logging only (never at INFO)
        logger.debug("Calling Ollama model %s at %s", self.config.model, self.config.ollama_url)

        try:
            response = self._client.post(url, json=payload)
            response.raise_for_status()
            data = response.json()
            message = data.get("message") if isinstance(data, dict) else None
            if not isinstance(message, dict):
                logger.error("Ollama response has no message object")
                return None
            content = message.get("content")
            return content if isinstance(content, str) else ""
        except httpx.TimeoutException as e:
            logger.warning("Classifier request timed out after %ds", self.config.timeout_seconds)
            raise MatchTimeoutError(
                f"Classifier did not answer within {self.config.timeout_seconds}s"
            ) from e
        except httpx.HTTPStatusError as e:
            logger.error(
                "Ollama API error %s for model '%s' at %s",
                e.response.status_code,
                self.config.model,
                self.config.ollama_url,
            )
            return None
        except httpx.RequestError as e:
            logger.error("Ollama request failed: %s (URL: %s)", e, self.config.ollama_url)
            return None
        except ValueError:
            logger.error("Ollama returned a non-JSON body")
            return None
