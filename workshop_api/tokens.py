from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import secrets
import threading
from typing import Protocol

from workshop_api.errors import InvalidOrExpiredToken
from workshop_api.models import utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


# Purpose: Mint an unguessable 256-bit token string.
def new_token() -> str:
    return secrets.token_hex(32)


@dataclass(frozen=True)
class TokenEntry:
    workshop_id: str
    expires_at: datetime
    created_at: datetime


# Purpose: Storage contract for attendance tokens; swap in a shared backend for multi-process deployments.
class TokenStore(Protocol):
    # Purpose: Save a freshly minted token.
    def issue(self, token: str, entry: TokenEntry) -> None: ...

    # Purpose: Read a token without removing it.
    def lookup(self, token: str) -> TokenEntry | None: ...

    # Purpose: Remove a token and return its entry, if it was present.
    def delete(self, token: str) -> TokenEntry | None: ...

    # Purpose: Put a consumed token back after a failed scan.
    def restore(self, token: str, entry: TokenEntry) -> None: ...

    # Purpose: Drop expired tokens and return how many were removed.
    def purge_expired(self, now: datetime) -> int: ...


# Purpose: Process-local attendance token map; a restart only forces staff devices to fetch a fresh token.
class InMemoryTokenStore:
    # Purpose: Start with an empty map guarded by a lock.
    def __init__(self) -> None:
        self._entries: dict[str, TokenEntry] = {}
        self._lock = threading.Lock()

    # Purpose: Number of tokens currently held.
    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # Purpose: Save a freshly minted token.
    def issue(self, token: str, entry: TokenEntry) -> None:
        with self._lock:
            self._entries[token] = entry

    # Purpose: Read a token without removing it.
    def lookup(self, token: str) -> TokenEntry | None:
        with self._lock:
            return self._entries.get(token)

    # Purpose: Remove a token atomically; only one caller ever gets the entry back.
    def delete(self, token: str) -> TokenEntry | None:
        with self._lock:
            return self._entries.pop(token, None)

    # Purpose: Put a token back unless a newer entry already took its place.
    def restore(self, token: str, entry: TokenEntry) -> None:
        with self._lock:
            self._entries.setdefault(token, entry)

    # Purpose: Drop tokens whose expiry has passed.
    def purge_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)


# Purpose: Short-lived, single-use tokens that authorize one attendance scan.
class AttendanceTokenBroker:
    # Purpose: Bind the broker to a store, a token lifetime and a clock.
    def __init__(self, store: TokenStore, ttl_seconds: int, clock: Clock = utcnow) -> None:
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock

    # Purpose: Mint a token for a workshop and sweep expired ones.
    def issue(self, workshop_id: str) -> tuple[str, datetime]:
        now = self.clock()
        token = new_token()
        entry = TokenEntry(workshop_id=workshop_id, expires_at=now + self.ttl, created_at=now)
        self.store.issue(token, entry)
        purged = self.store.purge_expired(now)
        if purged:
            logger.debug("Purged %s expired attendance tokens", purged)
        return token, entry.expires_at

    # Purpose: Resolve a token to its workshop without consuming it.
    def redeem(self, token: str | None) -> TokenEntry:
        if not token:
            raise InvalidOrExpiredToken("QR code not scanned. Please scan the QR code first.")
        entry = self.store.lookup(token)
        if entry is None:
            raise InvalidOrExpiredToken("Invalid or expired QR code. Please scan the latest QR code.")
        if entry.expires_at <= self.clock():
            self.store.delete(token)
            raise InvalidOrExpiredToken("Invalid or expired QR code. Please scan the latest QR code.")
        return entry

    # Purpose: Take the token out of the store so it cannot be replayed.
    def consume(self, token: str) -> TokenEntry:
        entry = self.store.delete(token)
        if entry is None or entry.expires_at <= self.clock():
            raise InvalidOrExpiredToken("Invalid or expired QR code. Please scan the latest QR code.")
        return entry

    # Purpose: Return a consumed token to the store after the scan was rejected.
    def release(self, token: str, entry: TokenEntry) -> None:
        self.store.restore(token, entry)

    # Purpose: Sweep expired tokens using the broker clock.
    def purge_expired(self) -> int:
        return self.store.purge_expired(self.clock())
