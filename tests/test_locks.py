"""Tests for the keyed lock registry."""

import threading
import time

from statement_importer.services import KeyedLock, bank_account_key, contact_key


class TestKeyedLock:
    """Tests for KeyedLock."""

    def test_keys(self):
        assert bank_account_key(3) == "bank_account:3"
        assert contact_key(17) == "contact:17"

    def test_locks_created_on_first_use(self):
        locks = KeyedLock()
        assert len(locks) == 0
        with locks.hold("a", None, "b", "a"):
            pass
        assert len(locks) == 2

    def test_same_key_serializes(self):
        """Two threads holding the same key never overlap."""
        locks = KeyedLock()
        active = []
        overlaps = []

        def work():
            for _ in range(20):
                with locks.hold(bank_account_key(1)):
                    active.append(1)
                    if len(active) > 1:
                        overlaps.append(True)
                    time.sleep(0.001)
                    active.pop()

        threads = [threading.Thread(target=work) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert overlaps == []

    def test_different_keys_run_in_parallel(self):
        locks = KeyedLock()
        entered = threading.Event()
        release = threading.Event()

        def hold_first():
            with locks.hold(bank_account_key(1)):
                entered.set()
                release.wait(timeout=5)

        thread = threading.Thread(target=hold_first)
        thread.start()
        assert entered.wait(timeout=5)

        # A different key is available while the first is held
        with locks.hold(bank_account_key(2)):
            first_still_held = thread.is_alive()
        release.set()
        thread.join()

        assert first_still_held

    def test_released_after_exception(self):
        locks = KeyedLock()
        try:
            with locks.hold(contact_key(1)):
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        with locks.hold(contact_key(1)):
            pass
