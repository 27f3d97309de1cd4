"""
Configuration management (SSOT).

This module defines ALL configuration for the statement importer.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Confidence thresholds are integers on a 0-100 scale
- auto_book_threshold >= relation_threshold > new_contact_cap
- Ledger account codes refer to the chart of accounts, never to database ids
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class ImportConfig:
    """Import pipeline and decision policy settings."""

    # Minimum score for the high-confidence (direct) route
    auto_book_threshold: int = 90
    # Minimum score for the medium-confidence (relation) route
    relation_threshold: int = 60
    # Upper bound for first-time vendor proposals
    new_contact_cap: int = 59
    # Worker pool size for per-transaction processing
    max_workers: int = 5


@dataclass
class LedgerConfig:
    """Chart-of-accounts conventions (Dutch standard chart by default)."""

    bank_code: str = "1100"
    debtors_code: str = "1300"
    creditors_code: str = "1500"
    vat_receivable_code: str = "1450"
    vat_payable_code: str = "1530"
    # Fallback accounts for new-account proposals
    default_revenue_code: str = "8000"
    default_expense_code: str = "4999"
    sundry_expense_code: str = "4900"
    # Expenses up to this amount are proposed on the sundry expense account
    small_expense_limit: Decimal = Decimal("50.00")
    # Code ranges used when proposing brand-new accounts
    revenue_code_range: tuple[int, int] = (8000, 8999)
    expense_code_range: tuple[int, int] = (4000, 4999)
    # Jurisdiction standard VAT rate (percent)
    standard_vat_rate: Decimal = Decimal("21")


@dataclass
class ClassifierConfig:
    """External classification service (Ollama) configuration.

    SSOT for classifier settings:
    - enabled: Master switch (default OFF)
    - ollama_url: Can be localhost, LAN IP, or remote URL
    - auth_header: Optional auth header for proxied deployments
    - max_concurrent: Concurrency limiter for the remote service
    """

    enabled: bool = False
    ollama_url: str = "http://localhost:11434"
    auth_header: str | None = None
    model: str = "qwen2.5:3b-instruct-q4_K_M"
    # Request timeout (seconds); a timeout defers the transaction to review
    timeout_seconds: int = 10
    max_concurrent: int = 2


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    import_: ImportConfig = field(default_factory=ImportConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/ledger.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        thresholds = self.import_
        if not 0 <= thresholds.relation_threshold <= 100:
            errors.append("import.relation_threshold must be between 0 and 100")
        if not 0 <= thresholds.auto_book_threshold <= 100:
            errors.append("import.auto_book_threshold must be between 0 and 100")
        if thresholds.auto_book_threshold < thresholds.relation_threshold:
            errors.append("import.auto_book_threshold must be >= import.relation_threshold")
        if thresholds.new_contact_cap >= thresholds.relation_threshold:
            errors.append("import.new_contact_cap must be < import.relation_threshold")
        if thresholds.max_workers < 1:
            errors.append("import.max_workers must be at least 1")

        if self.ledger.standard_vat_rate < 0:
            errors.append("ledger.standard_vat_rate must not be negative")

        if self.classifier.enabled:
            if not self.classifier.ollama_url:
                errors.append("classifier.ollama_url is required when the classifier is enabled")
            if self.classifier.timeout_seconds <= 0:
                errors.append("classifier.timeout_seconds must be positive")

        return errors


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").lower()
    if value == "true":
        return True
    if value == "false":
        return False
    return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - STATEMENT_IMPORTER_DB (state database path)
    - IMPORT_MAX_WORKERS
    - CLASSIFIER_ENABLED (true/false)
    - OLLAMA_URL
    - OLLAMA_MODEL
    - OLLAMA_TIMEOUT (request timeout in seconds)
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Import / decision policy
    import_data = data.get("import", {})
    max_workers = import_data.get("max_workers", 5)
    max_workers_env = os.environ.get("IMPORT_MAX_WORKERS", "")
    if max_workers_env:
        try:
            max_workers = int(max_workers_env)
        except ValueError:
            pass  # Keep configured value

    import_config = ImportConfig(
        auto_book_threshold=int(import_data.get("auto_book_threshold", 90)),
        relation_threshold=int(import_data.get("relation_threshold", 60)),
        new_contact_cap=int(import_data.get("new_contact_cap", 59)),
        max_workers=max_workers,
    )

    # Ledger conventions
    ledger_data = data.get("ledger", {})
    defaults = LedgerConfig()
    ledger = LedgerConfig(
        bank_code=str(ledger_data.get("bank_code", defaults.bank_code)),
        debtors_code=str(ledger_data.get("debtors_code", defaults.debtors_code)),
        creditors_code=str(ledger_data.get("creditors_code", defaults.creditors_code)),
        vat_receivable_code=str(
            ledger_data.get("vat_receivable_code", defaults.vat_receivable_code)
        ),
        vat_payable_code=str(ledger_data.get("vat_payable_code", defaults.vat_payable_code)),
        default_revenue_code=str(
            ledger_data.get("default_revenue_code", defaults.default_revenue_code)
        ),
        default_expense_code=str(
            ledger_data.get("default_expense_code", defaults.default_expense_code)
        ),
        sundry_expense_code=str(
            ledger_data.get("sundry_expense_code", defaults.sundry_expense_code)
        ),
        small_expense_limit=Decimal(
            str(ledger_data.get("small_expense_limit", defaults.small_expense_limit))
        ),
        standard_vat_rate=Decimal(
            str(ledger_data.get("standard_vat_rate", defaults.standard_vat_rate))
        ),
    )

    # External classifier
    classifier_data = data.get("classifier", {})
    classifier = ClassifierConfig(
        enabled=_env_bool("CLASSIFIER_ENABLED", classifier_data.get("enabled", False)),
        ollama_url=os.environ.get(
            "OLLAMA_URL", classifier_data.get("ollama_url", "http://localhost:11434")
        ),
        auth_header=os.environ.get("OLLAMA_AUTH_HEADER", classifier_data.get("auth_header")),
        model=os.environ.get(
            "OLLAMA_MODEL", classifier_data.get("model", "qwen2.5:3b-instruct-q4_K_M")
        ),
        timeout_seconds=int(
            os.environ.get("OLLAMA_TIMEOUT", classifier_data.get("timeout_seconds", 10))
        ),
        max_concurrent=classifier_data.get("max_concurrent", 2),
    )

    state_db = os.environ.get(
        "STATEMENT_IMPORTER_DB", data.get("state_db_path", "data/ledger.db")
    )

    return Config(
        import_=import_config,
        ledger=ledger,
        classifier=classifier,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Bank statement importer configuration
#
# Confidence scores run from 0 to 100.
# - score >= auto_book_threshold and known contact: booked automatically
# - score >= relation_threshold and known contact: booked via the relation route
# - anything else: left for manual review

import:
  auto_book_threshold: 90
  relation_threshold: 60
  new_contact_cap: 59          # First-time vendors never score above this
  max_workers: 5               # Parallel transactions per file

# Chart of accounts conventions
ledger:
  bank_code: "1100"
  debtors_code: "1300"
  creditors_code: "1500"
  vat_receivable_code: "1450"
  vat_payable_code: "1530"
  default_revenue_code: "8000"
  default_expense_code: "4999"
  sundry_expense_code: "4900"
  small_expense_limit: 50.00
  standard_vat_rate: 21

# External classifier (Ollama); optional signal for first-time vendors
classifier:
  enabled: false
  ollama_url: "http://localhost:11434"
  auth_header: null
  model: "qwen2.5:3b-instruct-q4_K_M"
  timeout_seconds: 10           # Timed-out transactions go to manual review
  max_concurrent: 2

# State database path
state_db_path: "data/ledger.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
