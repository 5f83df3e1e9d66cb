# launchsniper/dedup.py
from typing import FrozenSet, Set


class DecisionGuard:
    """
    Per-token dedup for the decision pipeline.

    A token is blocked while a decision is in flight ("in decision") and
    while it holds a PENDING/ACTIVE trade ("open"). Every method runs on the
    event loop without awaiting, so check-and-mark is atomic.
    """
    def __init__(self):
        self._in_decision: Set[str] = set()
        self._open: Set[str] = set()

    @staticmethod
    def _key(address: str) -> str:
        return address.lower()

    def try_acquire(self, address: str) -> bool:
        key = self._key(address)
        if key in self._in_decision or key in self._open:
            return False
        self._in_decision.add(key)
        return True

    def promote(self, address: str):
        """Decision finished with an ACTIVE trade: keep blocking until it closes."""
        key = self._key(address)
        self._in_decision.discard(key)
        self._open.add(key)

    def release(self, address: str):
        key = self._key(address)
        self._in_decision.discard(key)
        self._open.discard(key)

    def is_busy(self, address: str) -> bool:
        key = self._key(address)
        return key in self._in_decision or key in self._open

    @property
    def in_decision(self) -> FrozenSet[str]:
        return frozenset(self._in_decision)

    @property
    def open_positions(self) -> FrozenSet[str]:
        return frozenset(self._open)
