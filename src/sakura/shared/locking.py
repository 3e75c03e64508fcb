"""Per-entity mutual exclusion.

Every state change on an order, payment transaction, shipment, coupon or
product stock runs while holding the lock for that entity's key. Keys
are acquired in sorted order so that operations touching several entities
(payment completion touches the transaction, the order and the coupon)
cannot deadlock against each other.

In a multi-process deployment this registry is replaced by row-level
locks in the database; the key scheme stays the same.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass

_registry_lock = threading.Lock()
_locks: dict[str, "_Entry"] = {}


@dataclass
class _Entry:
    lock: threading.RLock
    holders: int = 0


def order_key(order_id) -> str:
    return f"order:{order_id}"


def cart_key(cart_id) -> str:
    return f"cart:{cart_id}"


def product_key(product_id, variant_id=None) -> str:
    return f"product:{product_id}:{variant_id or '-'}"


def coupon_key(code: str) -> str:
    return f"coupon:{code.strip().upper()}"


def transaction_key(transaction_id) -> str:
    return f"txn:{transaction_id}"


def shipment_key(tracking_number) -> str:
    return f"shipment:{tracking_number}"


def return_key(return_id) -> str:
    return f"return:{return_id}"


def _checkout(key: str) -> threading.RLock:
    with _registry_lock:
        entry = _locks.get(key)
        if entry is None:
            entry = _locks[key] = _Entry(threading.RLock())
        entry.holders += 1
        return entry.lock


def _checkin(key: str) -> None:
    with _registry_lock:
        entry = _locks[key]
        entry.holders -= 1
        if entry.holders == 0:
            del _locks[key]


@contextmanager
def hold(*keys):
    """Hold the locks for ``keys`` (``None`` entries are ignored) for the duration of the block.

    A key stays in the registry only while someone holds or waits on it.
    """
    ordered = sorted({k for k in keys if k})
    acquired = []
    try:
        for key in ordered:
            lock = _checkout(key)
            try:
                lock.acquire()
            except BaseException:
                _checkin(key)
                raise
            acquired.append((key, lock))
        yield
    finally:
        for key, lock in reversed(acquired):
            lock.release()
            _checkin(key)


def held_keys() -> set[str]:
    """Keys currently held or waited on."""
    with _registry_lock:
        return set(_locks)


def reset_locks() -> None:
    """Drop all known locks (tests only; never call while a lock is held)."""
    with _registry_lock:
        _locks.clear()
