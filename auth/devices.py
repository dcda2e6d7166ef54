"""Trusted devices remembered per user."""

import hashlib
import hmac
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from auth.audit_trail import AuditTrail
from auth.config import AuthConfig
from auth.types import AuditAction, TrustedDevice
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


@dataclass
class DeviceTrustResult:
    success: bool
    message: str
    device: TrustedDevice | None = None


class TrustedDeviceRegistry:
    """
    Per-user list of devices that skipped extra verification.

    A device is identified by an HMAC of its user agent, type and name
    keyed with ``device_secret``, so fingerprints cannot be forged without
    the secret.
    """

    def __init__(
        self,
        config: AuthConfig,
        audit: AuditTrail | None = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._config = config
        self._audit = audit
        self._clock = clock
        self._devices: dict[str, list[TrustedDevice]] = {}
        self._lock = threading.Lock()

    def fingerprint(self, user_agent: str, device_type: str, device_name: str) -> str:
        return hmac.new(
            self._config.device_secret.encode("utf-8"),
            f"{user_agent}:{device_type}:{device_name}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _is_live(self, device: TrustedDevice, now: datetime) -> bool:
        return device.active and device.expires_at > now

    def trust_device(
        self,
        user_id: str,
        device_name: str,
        device_type: str,
        ip_address: str,
        user_agent: str,
    ) -> DeviceTrustResult:
        """Remember a device for ``trusted_device_days``."""
        now = self._clock()
        fingerprint = self.fingerprint(user_agent, device_type, device_name)

        with self._lock:
            devices = self._devices.setdefault(user_id, [])
            live = [d for d in devices if self._is_live(d, now)]

            if any(d.fingerprint == fingerprint for d in live):
                return DeviceTrustResult(success=False, message="Device already trusted")

            if len(live) >= self._config.max_trusted_devices:
                return DeviceTrustResult(
                    success=False,
                    message=(
                        f"Maximum trusted devices limit "
                        f"({self._config.max_trusted_devices}) reached"
                    ),
                )

            device = TrustedDevice(
                id=str(uuid.uuid4()),
                user_id=user_id,
                fingerprint=fingerprint,
                device_name=device_name,
                device_type=device_type,
                ip_address=ip_address,
                user_agent=user_agent,
                trusted_at=now,
                last_used=now,
                expires_at=now + timedelta(days=self._config.trusted_device_days),
            )
            devices.append(device)

        self._log(user_id, device, "added_trusted_device", ip_address, user_agent)
        return DeviceTrustResult(
            success=True, message="Device added to trusted list", device=device.model_copy()
        )

    def is_trusted(self, user_id: str, fingerprint: str) -> bool:
        """True for a live trusted device; also stamps its last use."""
        now = self._clock()
        with self._lock:
            for device in self._devices.get(user_id, []):
                if device.fingerprint == fingerprint and self._is_live(device, now):
                    device.last_used = now
                    return True
        return False

    def remove_device(self, user_id: str, device_id: str) -> bool:
        with self._lock:
            device = next(
                (d for d in self._devices.get(user_id, []) if d.id == device_id and d.active),
                None,
            )
            if device is None:
                return False
            device.active = False

        self._log(user_id, device, "removed_trusted_device", device.ip_address, device.user_agent)
        return True

    def list_devices(self, user_id: str) -> list[TrustedDevice]:
        """Live devices, most recently used first."""
        now = self._clock()
        with self._lock:
            live = [d.model_copy() for d in self._devices.get(user_id, []) if self._is_live(d, now)]
        return sorted(live, key=lambda d: d.last_used, reverse=True)

    def cleanup_expired(self) -> int:
        """Drop removed and expired devices. Returns how many were dropped."""
        now = self._clock()
        removed = 0
        with self._lock:
            for user_id in list(self._devices):
                devices = self._devices[user_id]
                live = [d for d in devices if self._is_live(d, now)]
                removed += len(devices) - len(live)
                if live:
                    self._devices[user_id] = live
                else:
                    del self._devices[user_id]

        if removed:
            logger.info(f"Removed {removed} stale trusted devices")
        return removed

    def _log(
        self,
        user_id: str,
        device: TrustedDevice,
        change: str,
        ip_address: str,
        user_agent: str,
    ) -> None:
        logger.info(f"{change} {device.id} for user {user_id}")
        if self._audit:
            self._audit.log(
                AuditAction.USER_PROFILE_UPDATED,
                user_id=user_id,
                resource="trusted_device",
                resource_id=device.id,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"action": change, "device_name": device.device_name},
            )
