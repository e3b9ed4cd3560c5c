"""
auth/revocation.py -- Blacklist of tokens invalidated before their natural expiry.

A logged-out token stays signed and unexpired, so signature checks alone would
keep honouring it. The registry remembers the raw token string until the
token's own expiry; after that the token fails verification on its own and
the entry is dead weight.

Pattern: Protocol + in-process default. RevocationRegistry is the interface the
TokenCodec depends on; InMemoryRevocationRegistry is the process-wide default.
A shared key-value store with native TTLs can implement the same three methods
for multi-process deployments without touching the codec or the service.

Known limitation: the in-memory registry is lost on restart. Revoked tokens
that have not yet expired become usable again after a restart.

Concurrency: FastAPI runs sync route handlers on a thread pool, so the dict is
guarded by a lock. The lock is never held across I/O.

Layer rule: stdlib only.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Protocol


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RevocationRegistry(Protocol):
    def revoke(self, token: str, expires_at: datetime) -> None: ...
    def is_revoked(self, token: str) -> bool: ...
    def purge_expired(self) -> int: ...


class InMemoryRevocationRegistry:
    """Thread-safe token blacklist with self-expiring entries.

    Entries past their expiry are reported as not revoked even before
    purge_expired() physically removes them, so memory use is bounded by
    the number of tokens revoked within one token lifetime.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._entries: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def revoke(self, token: str, expires_at: datetime) -> None:
        if not token:
            return
        with self._lock:
            current = self._entries.get(token)
            # Re-revoking never shortens an entry.
            if current is None or expires_at > current:
                self._entries[token] = expires_at

    def is_revoked(self, token: str) -> bool:
        with self._lock:
            expires_at = self._entries.get(token)
            if expires_at is None:
                return False
            if expires_at <= self._clock():
                del self._entries[token]
                return False
            return True

    def purge_expired(self) -> int:
        """Drop entries whose token has expired. Returns the number removed."""
        now = self._clock()
        with self._lock:
            stale = [t for t, exp in self._entries.items() if exp <= now]
            for token in stale:
                del self._entries[token]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
