"""Per-key lock registry.

Serializes work on the same bank account or contact across worker
threads while unrelated keys proceed in parallel. Keys are strings such
as "bank_account:3" or "contact:17".

Lock order: callers acquire bank account keys before contact keys.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager


def bank_account_key(bank_account_id: int) -> str:
    return f"bank_account:{bank_account_id}"


def contact_key(contact_id: int) -> str:
    return f"contact:{contact_id}"


class KeyedLock:
    """Registry of one lock per key, created on first use."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: str | None) -> Iterator[None]:
        """Hold the locks for all given keys, acquired in argument order.

        None entries are ignored and repeated keys are only locked once.
        """
        seen: list[str] = []
        for key in keys:
            if key is not None and key not in seen:
                seen.append(key)

        with ExitStack() as stack:
            for key in seen:
                stack.enter_context(self._lock_for(key))
            yield

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)
