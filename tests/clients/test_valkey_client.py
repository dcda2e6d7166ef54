"""Tests for ValkeyClient - Redis-compatible store for security counters."""

import pytest

KEY = "test:valkey_client:hash"
SET_KEY = "test:valkey_client:set"


@pytest.fixture(autouse=True)
def cleanup(valkey):
    yield
    valkey.delete(KEY, SET_KEY)


class TestValkeyClientInit:
    """Connection initialization."""

    def test_connects_with_valid_url(self, valkey):
        """Valid URL creates working connection."""
        assert valkey.ping() is True


class TestHashOperations:
    def test_hincrby_counts_from_zero(self, valkey):
        assert valkey.hincrby(KEY, "attempts") == 1
        assert valkey.hincrby(KEY, "attempts") == 2

    def test_hsetnx_only_sets_once(self, valkey):
        assert valkey.hsetnx(KEY, "locked_until", "a") is True
        assert valkey.hsetnx(KEY, "locked_until", "b") is False
        assert valkey.hgetall(KEY) == {"locked_until": "a"}

    def test_hset_and_hgetall(self, valkey):
        valkey.hset(KEY, {"count": "3", "window_start": "2026-01-01T00:00:00+00:00"})
        assert valkey.hgetall(KEY)["count"] == "3"

    def test_hgetall_missing_is_empty(self, valkey):
        assert valkey.hgetall("test:valkey_client:missing") == {}


class TestExpiration:
    """TTL functionality."""

    def test_ttl_minus_two_for_missing(self, valkey):
        assert valkey.ttl("test:valkey_client:missing") == -2

    def test_expire_sets_ttl(self, valkey):
        valkey.hincrby(KEY, "attempts")
        assert valkey.ttl(KEY) == -1

        assert valkey.expire(KEY, 100) is True
        assert 95 <= valkey.ttl(KEY) <= 100

    def test_expire_missing_key(self, valkey):
        assert valkey.expire("test:valkey_client:missing", 100) is False


class TestSetOperations:
    def test_membership(self, valkey):
        assert valkey.sadd(SET_KEY, "203.0.113.9") is True
        assert valkey.sadd(SET_KEY, "203.0.113.9") is False
        assert valkey.sismember(SET_KEY, "203.0.113.9") is True

        assert valkey.srem(SET_KEY, "203.0.113.9") is True
        assert valkey.sismember(SET_KEY, "203.0.113.9") is False

    def test_delete_counts_existing(self, valkey):
        valkey.sadd(SET_KEY, "x")
        assert valkey.delete(SET_KEY, "test:valkey_client:missing") == 1
