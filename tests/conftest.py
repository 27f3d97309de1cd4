"""Test fixtures and utilities."""

from pathlib import Path

import pytest

from statement_importer.config import Config
from statement_importer.posting import ensure_default_chart
from statement_importer.state_store import StateStore


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def config(temp_db) -> Config:
    """Default configuration pointing at the temporary database."""
    return Config(state_db_path=temp_db)


@pytest.fixture
def store(temp_db) -> StateStore:
    """State store seeded with the default chart of accounts."""
    state_store = StateStore(temp_db)
    ensure_default_chart(state_store)
    return state_store


@pytest.fixture
def account_ids(store: StateStore) -> dict[str, int]:
    """Chart account ids by code."""
    return {account.code: account.id for account in store.list_accounts()}


@pytest.fixture
def bank_account_id(store: StateStore, account_ids: dict[str, int]) -> int:
    """Bank account booked on ledger account 1100."""
    return store.add_bank_account("Main bank account", "NL91ABNA0417164300", account_ids["1100"])
