"""
In-memory deduplication ledger for relayed events.
"""

import threading


def event_identity(transaction_hash: str, log_index: int) -> str:
    """Stable per-event key: transaction hash and log index."""
    return f"{transaction_hash}-{log_index}"


class DedupLedger:
    """
    Set of claimed event identities.

    A claim is taken before an event is processed and released only when
    processing fails in a way that should allow another attempt. Claims that
    survive are permanent.
    """

    def __init__(self) -> None:
        self._claimed: set[str] = set()
        self._lock = threading.Lock()

    def try_claim(self, identity: str) -> bool:
        """Atomically claim an identity. False if it was already claimed."""
        with self._lock:
            if identity in self._claimed:
                return False
            self._claimed.add(identity)
            return True

    def release(self, identity: str) -> None:
        """Drop a claim so the event can be attempted again."""
        with self._lock:
            self._claimed.discard(identity)

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._claimed

    def __len__(self) -> int:
        with self._lock:
            return len(self._claimed)
