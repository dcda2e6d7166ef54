"""
Valkey (Redis-compatible) client for shared security counters.

Simple wrapper around redis-py. Holds lockout counters, rate-limit
windows and the suspicious IP set when several workers must agree.
Fail-fast: raises on connection failure, never returns fallback values.
"""

import logging

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        attempts = client.hincrby("security:bruteforce:a@b.com", "attempts")
        client.expire("security:bruteforce:a@b.com", 900)
    """

    def __init__(self, url: str):
        """
        Initialize Valkey connection.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)

        Raises:
            redis.ConnectionError: If connection fails
        """
        self._client = redis.from_url(url, decode_responses=True)
        # Verify connectivity immediately (fail-fast)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        """
        Health check.

        Returns True if Valkey responds.
        Raises redis.ConnectionError if unreachable.
        """
        self._client.ping()
        return True

    def delete(self, *keys: str) -> int:
        """Delete keys. Returns how many existed."""
        if not keys:
            return 0
        return self._client.delete(*keys)

    def expire(self, key: str, seconds: int) -> bool:
        """Set TTL on key. Returns False if the key doesn't exist."""
        return bool(self._client.expire(key, seconds))

    def ttl(self, key: str) -> int:
        """
        Get remaining TTL in seconds.

        Returns:
            -2 if key doesn't exist
            -1 if key has no expiration
            Positive int: remaining seconds
        """
        return self._client.ttl(key)

    def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        """
        Atomically increment a hash field.

        Creates the hash and field at 0 first if missing. Returns the new value.
        """
        return self._client.hincrby(key, field, amount)

    def hsetnx(self, key: str, field: str, value: str) -> bool:
        """Set hash field only if absent. Returns True if this call set it."""
        return bool(self._client.hsetnx(key, field, value))

    def hset(self, key: str, mapping: dict[str, str]) -> None:
        self._client.hset(key, mapping=mapping)

    def hgetall(self, key: str) -> dict[str, str]:
        """All fields of a hash. Empty dict if the key doesn't exist."""
        return self._client.hgetall(key)

    def sadd(self, key: str, member: str) -> bool:
        return self._client.sadd(key, member) > 0

    def srem(self, key: str, member: str) -> bool:
        return self._client.srem(key, member) > 0

    def sismember(self, key: str, member: str) -> bool:
        return bool(self._client.sismember(key, member))

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
        logger.info("ValkeyClient closed")
