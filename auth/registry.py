"""
Bookkeeping behind SecurityGuard: failed-attempt counters, lockouts,
rate-limit windows and the suspicious IP set.

Two implementations share one contract. InMemorySecurityRegistry serves
single-process deployments and tests. ValkeySecurityRegistry keeps the
same state in Valkey so several workers agree on who is locked out.
Every increment is atomic in both.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Protocol

from auth.types import BruteForceAttempt, RateLimitEntry
from clients.valkey_client import ValkeyClient
from utils.timezone import parse_iso

logger = logging.getLogger(__name__)


def _lock_elapsed(attempt: BruteForceAttempt, now: datetime) -> bool:
    return attempt.locked_until is not None and now >= attempt.locked_until


class SecurityRegistry(Protocol):
    def record_failure(self, identifier: str, now: datetime) -> BruteForceAttempt: ...

    def get_attempt(self, identifier: str) -> BruteForceAttempt | None: ...

    def set_lock(self, identifier: str, locked_until: datetime) -> bool: ...

    def clear_attempt(self, identifier: str) -> None: ...

    def hit_window(self, identifier: str, now: datetime, window: timedelta) -> RateLimitEntry: ...

    def get_window(self, identifier: str) -> RateLimitEntry | None: ...

    def clear_window(self, identifier: str) -> None: ...

    def add_suspicious_ip(self, ip_address: str) -> None: ...

    def remove_suspicious_ip(self, ip_address: str) -> None: ...

    def is_suspicious_ip(self, ip_address: str) -> bool: ...

    def purge_expired(self, now: datetime, window: timedelta) -> int: ...


class InMemorySecurityRegistry:
    """Dicts and a set behind one lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._attempts: dict[str, BruteForceAttempt] = {}
        self._windows: dict[str, RateLimitEntry] = {}
        self._suspicious_ips: set[str] = set()

    def record_failure(self, identifier: str, now: datetime) -> BruteForceAttempt:
        """Increment the failure counter. A lapsed lockout starts a fresh count."""
        with self._lock:
            attempt = self._attempts.get(identifier)
            if attempt is None or _lock_elapsed(attempt, now):
                attempt = BruteForceAttempt(
                    identifier=identifier,
                    attempts=1,
                    first_attempt=now,
                    last_attempt=now,
                )
                self._attempts[identifier] = attempt
            else:
                attempt.attempts += 1
                attempt.last_attempt = now
            return attempt.model_copy()

    def get_attempt(self, identifier: str) -> BruteForceAttempt | None:
        with self._lock:
            attempt = self._attempts.get(identifier)
            return attempt.model_copy() if attempt else None

    def set_lock(self, identifier: str, locked_until: datetime) -> bool:
        """Lock the identifier unless already locked. Returns True if this call locked it."""
        with self._lock:
            attempt = self._attempts.get(identifier)
            if attempt is None or attempt.locked_until is not None:
                return False
            attempt.locked_until = locked_until
            return True

    def clear_attempt(self, identifier: str) -> None:
        with self._lock:
            self._attempts.pop(identifier, None)

    def hit_window(self, identifier: str, now: datetime, window: timedelta) -> RateLimitEntry:
        """Count a request, opening a fresh window if none is running."""
        with self._lock:
            entry = self._windows.get(identifier)
            if entry is None or now > entry.window_start + window:
                entry = RateLimitEntry(identifier=identifier, count=1, window_start=now)
                self._windows[identifier] = entry
            else:
                entry.count += 1
            return entry.model_copy()

    def get_window(self, identifier: str) -> RateLimitEntry | None:
        with self._lock:
            entry = self._windows.get(identifier)
            return entry.model_copy() if entry else None

    def clear_window(self, identifier: str) -> None:
        with self._lock:
            self._windows.pop(identifier, None)

    def add_suspicious_ip(self, ip_address: str) -> None:
        with self._lock:
            self._suspicious_ips.add(ip_address)

    def remove_suspicious_ip(self, ip_address: str) -> None:
        with self._lock:
            self._suspicious_ips.discard(ip_address)

    def is_suspicious_ip(self, ip_address: str) -> bool:
        with self._lock:
            return ip_address in self._suspicious_ips

    def purge_expired(self, now: datetime, window: timedelta) -> int:
        """Drop elapsed lockouts and rate windows. Unlocked counters stay."""
        with self._lock:
            stale_attempts = [
                key
                for key, attempt in self._attempts.items()
                if attempt.locked_until is not None and now > attempt.locked_until
            ]
            for key in stale_attempts:
                del self._attempts[key]

            stale_windows = [
                key for key, entry in self._windows.items() if now > entry.window_start + window
            ]
            for key in stale_windows:
                del self._windows[key]

        return len(stale_attempts) + len(stale_windows)


class ValkeySecurityRegistry:
    """
    Registry state in Valkey hashes and a set.

    Keys:
        security:bruteforce:<identifier>  hash (attempts, first_attempt,
                                          last_attempt, locked_until)
        security:ratelimit:<identifier>   hash (count, window_start)
        security:suspicious_ips           set

    Expiry is delegated to key TTLs, so purge_expired has nothing to do.
    """

    KEY_PREFIX = "security:"
    SUSPICIOUS_IPS_KEY = "security:suspicious_ips"

    def __init__(self, valkey: ValkeyClient, attempt_ttl_seconds: int = 86400):
        self._valkey = valkey
        self._attempt_ttl_seconds = attempt_ttl_seconds

    def _attempt_key(self, identifier: str) -> str:
        return f"{self.KEY_PREFIX}bruteforce:{identifier}"

    def _window_key(self, identifier: str) -> str:
        return f"{self.KEY_PREFIX}ratelimit:{identifier}"

    def record_failure(self, identifier: str, now: datetime) -> BruteForceAttempt:
        key = self._attempt_key(identifier)
        previous = self.get_attempt(identifier)
        if previous is not None and _lock_elapsed(previous, now):
            self._valkey.delete(key)

        attempts = self._valkey.hincrby(key, "attempts")
        self._valkey.hsetnx(key, "first_attempt", now.isoformat())
        self._valkey.hset(key, {"last_attempt": now.isoformat()})

        if attempts == 1:
            self._valkey.expire(key, self._attempt_ttl_seconds)

        attempt = self.get_attempt(identifier)
        if attempt is None:
            # Key expired between the increment and the read
            return BruteForceAttempt(
                identifier=identifier, attempts=attempts, first_attempt=now, last_attempt=now
            )
        return attempt

    def get_attempt(self, identifier: str) -> BruteForceAttempt | None:
        data = self._valkey.hgetall(self._attempt_key(identifier))
        if not data or "attempts" not in data:
            return None

        first = data.get("first_attempt")
        last = data.get("last_attempt") or first
        locked_until = data.get("locked_until")
        return BruteForceAttempt(
            identifier=identifier,
            attempts=int(data["attempts"]),
            first_attempt=parse_iso(first or last),
            last_attempt=parse_iso(last or first),
            locked_until=parse_iso(locked_until) if locked_until else None,
        )

    def set_lock(self, identifier: str, locked_until: datetime) -> bool:
        key = self._attempt_key(identifier)
        if not self._valkey.hsetnx(key, "locked_until", locked_until.isoformat()):
            return False
        # Outlive the lock so the guard sees it expire and clears it
        self._valkey.expire(key, self._attempt_ttl_seconds)
        return True

    def clear_attempt(self, identifier: str) -> None:
        self._valkey.delete(self._attempt_key(identifier))

    def hit_window(self, identifier: str, now: datetime, window: timedelta) -> RateLimitEntry:
        key = self._window_key(identifier)
        count = self._valkey.hincrby(key, "count")

        if count == 1:
            # First hit opens the window
            self._valkey.hset(key, {"window_start": now.isoformat()})
            self._valkey.expire(key, int(window.total_seconds()))
            return RateLimitEntry(identifier=identifier, count=1, window_start=now)

        window_start = self._valkey.hgetall(key).get("window_start")
        return RateLimitEntry(
            identifier=identifier,
            count=count,
            window_start=parse_iso(window_start) if window_start else now,
        )

    def get_window(self, identifier: str) -> RateLimitEntry | None:
        data = self._valkey.hgetall(self._window_key(identifier))
        if not data or "count" not in data or "window_start" not in data:
            return None
        return RateLimitEntry(
            identifier=identifier,
            count=int(data["count"]),
            window_start=parse_iso(data["window_start"]),
        )

    def clear_window(self, identifier: str) -> None:
        self._valkey.delete(self._window_key(identifier))

    def add_suspicious_ip(self, ip_address: str) -> None:
        self._valkey.sadd(self.SUSPICIOUS_IPS_KEY, ip_address)

    def remove_suspicious_ip(self, ip_address: str) -> None:
        self._valkey.srem(self.SUSPICIOUS_IPS_KEY, ip_address)

    def is_suspicious_ip(self, ip_address: str) -> bool:
        return self._valkey.sismember(self.SUSPICIOUS_IPS_KEY, ip_address)

    def purge_expired(self, now: datetime, window: timedelta) -> int:
        return 0
