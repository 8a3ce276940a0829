"""
auth/lockout.py -- Progressive account lockout after repeated failed logins.

Each identifier (the lowercased email) accumulates failures inside a sliding
window. Reaching max_attempts locks it for
base_minutes * multiplier ** level, capped at max_minutes; level grows with
every lockout inside the window, so a persistent attacker waits longer each
time. A successful login resets the identifier.

State is in memory and per process. That is enough to slow online guessing
against a single instance; the slowapi per-IP limits in api/ cover the rest.
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass
class _Entry:
    attempts: int = 0
    last_attempt: float = 0.0
    locked_until: float | None = None
    level: int = 0


@dataclass(frozen=True)
class LockoutStatus:
    locked: bool
    attempts: int = 0
    retry_after: int = 0  # seconds until the lock lifts, 0 when unlocked


class LoginLockout:
    def __init__(
        self,
        max_attempts: int = 5,
        base_minutes: int = 15,
        max_minutes: int = 24 * 60,
        window_minutes: int = 60,
        multiplier: int = 2,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_attempts = max_attempts
        self.base_minutes = base_minutes
        self.max_minutes = max_minutes
        self.window_minutes = window_minutes
        self.multiplier = multiplier
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def _retry_after(self, entry: _Entry, now: float) -> int:
        if entry.locked_until is None or now >= entry.locked_until:
            return 0
        return math.ceil(entry.locked_until - now)

    def check(self, identifier: str) -> LockoutStatus:
        """Return the current lock state without recording anything."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(identifier)
            if entry is None:
                return LockoutStatus(locked=False)
            retry_after = self._retry_after(entry, now)
            return LockoutStatus(locked=retry_after > 0, attempts=entry.attempts, retry_after=retry_after)

    def record_failure(self, identifier: str) -> LockoutStatus:
        """Count one failed attempt; lock the identifier once the limit is hit."""
        now = self._clock()
        with self._lock:
            entry = self._entries.setdefault(identifier, _Entry())

            if entry.last_attempt < now - self.window_minutes * 60:
                entry.attempts = 0
                entry.level = 0

            retry_after = self._retry_after(entry, now)
            if retry_after:
                # Already locked: attempts made during a lock do not count.
                return LockoutStatus(locked=True, attempts=entry.attempts, retry_after=retry_after)

            if entry.locked_until is not None:
                # Previous lock expired; start a fresh count at the raised level.
                entry.locked_until = None
                entry.attempts = 0

            entry.attempts += 1
            entry.last_attempt = now

            if entry.attempts >= self.max_attempts:
                minutes = min(self.base_minutes * self.multiplier**entry.level, self.max_minutes)
                entry.locked_until = now + minutes * 60
                entry.level += 1
                return LockoutStatus(locked=True, attempts=entry.attempts, retry_after=minutes * 60)

            return LockoutStatus(locked=False, attempts=entry.attempts)

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._entries.pop(identifier, None)

    def purge_expired(self) -> int:
        """Drop entries that are unlocked and whose window has passed.

        Such an entry would be reset by the next record_failure() anyway, so
        removing it changes no outcome. Returns the number removed.
        """
        now = self._clock()
        cutoff = now - self.window_minutes * 60
        with self._lock:
            stale = [
                key
                for key, entry in self._entries.items()
                if entry.last_attempt < cutoff and self._retry_after(entry, now) == 0
            ]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
