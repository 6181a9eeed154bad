"""Tests for vidcore.engine.locks."""

from __future__ import annotations

import threading
import time

from vidcore.engine.locks import KeyedLocks


class TestKeyedLocks:
    def test_reentrant_and_released(self):
        locks = KeyedLocks()
        with locks.hold(1):
            with locks.hold(1):
                assert len(locks) == 1
        assert len(locks) == 0

    def test_same_key_serialises(self):
        locks = KeyedLocks()
        active = []
        overlaps = []

        def worker():
            with locks.hold("v"):
                active.append(1)
                if len(active) > 1:
                    overlaps.append(True)
                time.sleep(0.01)
                active.pop()

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []
        assert len(locks) == 0

    def test_different_keys_do_not_block(self):
        locks = KeyedLocks()
        entered = threading.Event()

        def other():
            with locks.hold("b"):
                entered.set()

        with locks.hold("a"):
            t = threading.Thread(target=other)
            t.start()
            assert entered.wait(timeout=2)
            t.join()
