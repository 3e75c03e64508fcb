"""Tests for the per-entity lock registry."""

import threading

from sakura.shared.locking import held_keys, hold, order_key, transaction_key


class TestEntityLocks:
    def test_released_keys_leave_the_registry(self):
        with hold(order_key("ord-1"), transaction_key("PAY1"), None):
            assert held_keys() == {"order:ord-1", "txn:PAY1"}
        assert held_keys() == set()

    def test_reentrant_hold_keeps_the_key_until_the_outer_block_ends(self):
        with hold(order_key("ord-1")):
            with hold(order_key("ord-1")):
                pass
            assert held_keys() == {"order:ord-1"}
        assert held_keys() == set()

    def test_key_released_after_an_error(self):
        try:
            with hold(order_key("ord-1")):
                raise ValueError("boom")
        except ValueError:
            pass
        assert held_keys() == set()

    def test_waiting_thread_gets_the_same_lock(self):
        entered = threading.Event()
        release = threading.Event()
        order = []

        def _first():
            with hold(order_key("ord-1")):
                entered.set()
                release.wait(timeout=5)
                order.append("first")

        def _second():
            entered.wait(timeout=5)
            with hold(order_key("ord-1")):
                order.append("second")

        threads = [threading.Thread(target=_first), threading.Thread(target=_second)]
        for thread in threads:
            thread.start()
        entered.wait(timeout=5)
        release.set()
        for thread in threads:
            thread.join(timeout=5)

        assert order == ["first", "second"]
        assert held_keys() == set()

    def test_many_entities_do_not_accumulate(self):
        for n in range(500):
            with hold(order_key(f"ord-{n}")):
                pass
        assert held_keys() == set()
