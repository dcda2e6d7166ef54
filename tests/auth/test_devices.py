"""Tests for auth/devices.py - trusted device registry."""

import pytest

from auth.devices import TrustedDeviceRegistry
from auth.types import AuditAction, AuditQuery

UA = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"


@pytest.fixture
def devices(config, audit, clock):
    return TrustedDeviceRegistry(config, audit, clock)


class TestTrustDevice:
    def test_trust_device(self, devices, clock):
        result = devices.trust_device("u1", "Field tablet", "tablet", "198.51.100.1", UA)

        assert result.success is True
        assert result.message == "Device added to trusted list"

    def test_expires_after_thirty_days(self, devices, clock):
        start = clock()
        device = devices.trust_device("u1", "Laptop", "desktop", "198.51.100.1", UA).device
        assert (device.expires_at - start).days == 30

    def test_already_trusted(self, devices):
        devices.trust_device("u1", "Laptop", "desktop", "198.51.100.1", UA)

        result = devices.trust_device("u1", "Laptop", "desktop", "198.51.100.2", UA)

        assert result.success is False
        assert result.message == "Device already trusted"

    def test_limit(self, devices):
        for i in range(5):
            devices.trust_device("u1", f"Device {i}", "phone", "198.51.100.1", UA)

        result = devices.trust_device("u1", "One too many", "phone", "198.51.100.1", UA)

        assert result.success is False
        assert result.message == "Maximum trusted devices limit (5) reached"

    def test_audited(self, devices, audit):
        devices.trust_device("u1", "Laptop", "desktop", "198.51.100.1", UA)

        entry = audit.query(AuditQuery(action=AuditAction.USER_PROFILE_UPDATED)).entries[0]
        assert entry.resource == "trusted_device"
        assert entry.details["action"] == "added_trusted_device"


class TestFingerprint:
    def test_depends_on_secret(self, config, clock):
        first = TrustedDeviceRegistry(config, clock=clock)
        second = TrustedDeviceRegistry(
            config.model_copy(update={"device_secret": "another-device-secret"}), clock=clock
        )

        assert first.fingerprint(UA, "phone", "Pixel") != second.fingerprint(UA, "phone", "Pixel")

    def test_stable(self, devices):
        assert devices.fingerprint(UA, "phone", "Pixel") == devices.fingerprint(UA, "phone", "Pixel")


class TestLookupAndRemoval:
    def test_is_trusted(self, devices):
        device = devices.trust_device("u1", "Laptop", "desktop", "198.51.100.1", UA).device

        assert devices.is_trusted("u1", device.fingerprint) is True
        assert devices.is_trusted("u2", device.fingerprint) is False

    def test_expired_device_not_trusted(self, devices, clock):
        device = devices.trust_device("u1", "Laptop", "desktop", "198.51.100.1", UA).device
        clock.advance(days=31)

        assert devices.is_trusted("u1", device.fingerprint) is False
        assert devices.list_devices("u1") == []

    def test_remove_device(self, devices):
        device = devices.trust_device("u1", "Laptop", "desktop", "198.51.100.1", UA).device

        assert devices.remove_device("u1", device.id) is True
        assert devices.remove_device("u1", device.id) is False
        assert devices.is_trusted("u1", device.fingerprint) is False

    def test_list_most_recently_used_first(self, devices, clock):
        laptop = devices.trust_device("u1", "Laptop", "desktop", "198.51.100.1", UA).device
        clock.advance(hours=1)
        devices.trust_device("u1", "Phone", "phone", "198.51.100.1", UA)
        clock.advance(hours=1)
        devices.is_trusted("u1", laptop.fingerprint)

        assert [d.device_name for d in devices.list_devices("u1")] == ["Laptop", "Phone"]


class TestCleanup:
    def test_drops_removed_and_expired(self, devices, clock):
        laptop = devices.trust_device("u1", "Laptop", "desktop", "198.51.100.1", UA).device
        devices.trust_device("u2", "Tablet", "tablet", "198.51.100.2", UA)
        devices.remove_device("u1", laptop.id)
        clock.advance(days=20)
        devices.trust_device("u3", "Phone", "phone", "198.51.100.3", UA)
        clock.advance(days=11)

        assert devices.cleanup_expired() == 2
        assert [d.device_name for d in devices.list_devices("u3")] == ["Phone"]
        assert devices.cleanup_expired() == 0

    def test_nothing_to_drop(self, devices):
        devices.trust_device("u1", "Laptop", "desktop", "198.51.100.1", UA)
        assert devices.cleanup_expired() == 0
