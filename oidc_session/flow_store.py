"""
In-memory store for pending authorization flows (flow key -> state, nonce, code_verifier).
Lives only across the redirect round-trip; entries expire after the flow TTL so a stale callback cannot be replayed.
"""
import threading
import time
from dataclasses import dataclass, field

from oidc_session.config import FLOW_TTL


@dataclass(frozen=True)
class FlowState:
    state: str
    nonce: str
    code_verifier: str
    created_at: float = field(default_factory=time.monotonic)

    def expired(self, ttl: float = FLOW_TTL) -> bool:
        return (time.monotonic() - self.created_at) > ttl


class FlowStore:
    """
    One pending flow per key. The key identifies a client context (e.g. a browser's flow cookie);
    starting a new login under the same key replaces the older pending flow.
    """

    def __init__(self, ttl: float = FLOW_TTL):
        self.ttl = ttl
        self._pending: dict[str, FlowState] = {}
        self._lock = threading.Lock()

    def save(self, key: str, flow: FlowState) -> None:
        with self._lock:
            self._pending[key] = flow

    def load(self, key: str) -> FlowState | None:
        """Stored flow for key, expired or not; callers decide how to treat expiry."""
        with self._lock:
            return self._pending.get(key)

    def discard(self, key: str) -> None:
        with self._lock:
            self._pending.pop(key, None)

    def is_expired(self, flow: FlowState) -> bool:
        return flow.expired(self.ttl)

    def purge_expired(self) -> int:
        """Drop stale flows; returns how many were removed."""
        now = time.monotonic()
        with self._lock:
            stale = [k for k, f in self._pending.items() if (now - f.created_at) > self.ttl]
            for k in stale:
                del self._pending[k]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
