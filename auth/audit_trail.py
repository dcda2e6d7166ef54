"""Audit trail with pattern-based security alerts.

Bounded in-memory log of auth and data-access actions. Every append runs
the alert patterns; alerts are deduplicated per (type, user, ip) while
unresolved. Old entries can be archived to a JSON lines file.
"""

import csv
import io
import json
import logging
import threading
import uuid
from collections import Counter, deque
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable

from auth.config import AuthConfig
from auth.types import (
    AuditAction,
    AuditLogEntry,
    AuditPage,
    AuditQuery,
    AuditSeverity,
    AuditStatistics,
    AuditSummary,
    CountedItem,
    SecurityAlert,
    SecurityAlertType,
    UserRole,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

UNKNOWN_IP = "unknown"

SECURITY_ACTIONS = frozenset(
    {
        AuditAction.SECURITY_VIOLATION,
        AuditAction.BRUTE_FORCE_DETECTED,
        AuditAction.RATE_LIMIT_EXCEEDED,
        AuditAction.SUSPICIOUS_ACTIVITY,
        AuditAction.SESSION_HIJACK_DETECTED,
        AuditAction.ACCOUNT_LOCKED,
        AuditAction.UNAUTHORIZED_ACCESS,
    }
)

SEVERITY_LOG_LEVELS = {
    AuditSeverity.INFO: logging.INFO,
    AuditSeverity.WARNING: logging.WARNING,
    AuditSeverity.ERROR: logging.ERROR,
    AuditSeverity.CRITICAL: logging.CRITICAL,
}

CSV_COLUMNS = [
    "id",
    "timestamp",
    "user_id",
    "user_role",
    "action",
    "resource",
    "resource_id",
    "method",
    "success",
    "severity",
    "ip_address",
    "user_agent",
    "session_id",
    "details",
]


class AuditTrail:
    """Append-only audit log (ring buffer) plus correlated security alerts."""

    def __init__(self, config: AuthConfig, clock: Callable[[], datetime] = now_utc):
        self._config = config
        self._clock = clock
        self._entries: deque[AuditLogEntry] = deque(maxlen=config.audit_max_entries)
        self._alerts: dict[str, SecurityAlert] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def log(
        self,
        action: AuditAction,
        *,
        user_id: str,
        resource: str = "authentication",
        success: bool = True,
        user_role: UserRole | None = None,
        resource_id: str | None = None,
        method: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
        severity: AuditSeverity | None = None,
        session_id: str | None = None,
    ) -> AuditLogEntry:
        """
        Append an entry and run the alert patterns against it.

        Severity defaults to INFO for successes and WARNING for failures.
        When the buffer is full the oldest entry is dropped.
        """
        if severity is None:
            severity = AuditSeverity.INFO if success else AuditSeverity.WARNING

        entry = AuditLogEntry(
            id=str(uuid.uuid4()),
            user_id=user_id,
            user_role=user_role,
            action=action,
            resource=resource,
            resource_id=resource_id,
            method=method,
            ip_address=ip_address,
            user_agent=user_agent,
            success=success,
            timestamp=self._clock(),
            details=details or {},
            severity=severity,
            session_id=session_id,
        )

        with self._lock:
            self._entries.append(entry)
            self._check_patterns(entry)

        logger.log(
            SEVERITY_LOG_LEVELS[severity],
            f"Audit {action.value} user={user_id} resource={resource} success={success}",
        )
        return entry

    def log_authentication_attempt(
        self,
        user_id: str,
        method: str,
        success: bool,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        return self.log(
            AuditAction.LOGIN_SUCCESS if success else AuditAction.LOGIN_FAILURE,
            user_id=user_id,
            method=method,
            success=success,
            ip_address=ip_address,
            user_agent=user_agent,
            details=details,
        )

    def log_user_action(
        self,
        user_id: str,
        action: AuditAction,
        resource: str,
        resource_id: str | None = None,
        user_role: UserRole | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> AuditLogEntry:
        return self.log(
            action,
            user_id=user_id,
            resource=resource,
            resource_id=resource_id,
            user_role=user_role,
            ip_address=ip_address,
            user_agent=user_agent,
            details=details,
            session_id=session_id,
        )

    def log_security_event(
        self,
        action: AuditAction,
        user_id: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
        severity: AuditSeverity = AuditSeverity.WARNING,
    ) -> AuditLogEntry:
        """Security events are recorded as failures on the "security" resource."""
        return self.log(
            action,
            user_id=user_id,
            resource="security",
            success=False,
            ip_address=ip_address,
            user_agent=user_agent,
            details=details,
            severity=severity,
        )

    # -------------------------------------------------------------------------
    # Alert patterns (called with the lock held)
    # -------------------------------------------------------------------------

    def _check_patterns(self, entry: AuditLogEntry) -> None:
        now = entry.timestamp

        if entry.action == AuditAction.LOGIN_FAILURE:
            since = now - timedelta(hours=1)
            failures = [
                e
                for e in self._entries
                if e.action == AuditAction.LOGIN_FAILURE
                and e.user_id == entry.user_id
                and e.timestamp >= since
            ]
            if len(failures) >= self._config.failed_login_alert_threshold:
                self._raise_alert(
                    SecurityAlertType.MULTIPLE_FAILED_LOGINS,
                    AuditSeverity.ERROR,
                    f"{len(failures)} failed login attempts for {entry.user_id} in the last hour",
                    [e.id for e in failures],
                    user_id=entry.user_id,
                )

        if entry.ip_address and entry.ip_address != UNKNOWN_IP:
            since = now - timedelta(hours=1)
            from_ip = [
                e for e in self._entries if e.ip_address == entry.ip_address and e.timestamp >= since
            ]
            if len(from_ip) >= self._config.ip_activity_alert_threshold:
                self._raise_alert(
                    SecurityAlertType.SUSPICIOUS_IP_ACTIVITY,
                    AuditSeverity.WARNING,
                    f"{len(from_ip)} actions from {entry.ip_address} in the last hour",
                    [e.id for e in from_ip],
                    ip_address=entry.ip_address,
                )

        if entry.action == AuditAction.DATA_ACCESSED:
            since = now - timedelta(minutes=1)
            accesses = [
                e
                for e in self._entries
                if e.action == AuditAction.DATA_ACCESSED
                and e.user_id == entry.user_id
                and e.timestamp >= since
            ]
            if len(accesses) >= self._config.data_access_alert_threshold:
                self._raise_alert(
                    SecurityAlertType.UNUSUAL_ACCESS_PATTERN,
                    AuditSeverity.WARNING,
                    f"{len(accesses)} data accesses by {entry.user_id} in the last minute",
                    [e.id for e in accesses],
                    user_id=entry.user_id,
                )

    def _raise_alert(
        self,
        alert_type: SecurityAlertType,
        severity: AuditSeverity,
        description: str,
        related_entries: list[str],
        user_id: str | None = None,
        ip_address: str | None = None,
    ) -> SecurityAlert:
        """Create an alert or fold the entries into a matching unresolved one."""
        for alert in self._alerts.values():
            if (
                not alert.resolved
                and alert.type == alert_type
                and alert.user_id == user_id
                and alert.ip_address == ip_address
            ):
                known = set(alert.related_entries)
                alert.related_entries.extend(e for e in related_entries if e not in known)
                alert.description = description
                return alert

        alert = SecurityAlert(
            id=str(uuid.uuid4()),
            type=alert_type,
            severity=severity,
            user_id=user_id,
            ip_address=ip_address,
            description=description,
            timestamp=self._clock(),
            related_entries=list(dict.fromkeys(related_entries)),
        )
        self._alerts[alert.id] = alert
        logger.warning(f"Security alert {alert_type.value}: {description}")
        return alert

    # -------------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------------

    def get_security_alerts(self, resolved: bool | None = None) -> list[SecurityAlert]:
        """Alerts newest first, optionally filtered by resolution state."""
        with self._lock:
            alerts = [
                a.model_copy(deep=True)
                for a in self._alerts.values()
                if resolved is None or a.resolved == resolved
            ]
        return sorted(alerts, key=lambda a: a.timestamp, reverse=True)

    def resolve_alert(self, alert_id: str, resolved_by: str) -> bool:
        """
        Mark an alert resolved.

        Resolving twice is a no-op that keeps the first resolver. Returns
        False only for unknown alert ids.
        """
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return False
            if alert.resolved:
                return True
            alert.resolved = True
            alert.resolved_at = self._clock()
            alert.resolved_by = resolved_by

        logger.info(f"Security alert {alert_id} resolved by {resolved_by}")
        return True

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def _matching(self, query: AuditQuery) -> list[AuditLogEntry]:
        with self._lock:
            entries = list(self._entries)

        matched = [
            e
            for e in entries
            if (query.user_id is None or e.user_id == query.user_id)
            and (query.user_role is None or e.user_role == query.user_role)
            and (query.action is None or e.action == query.action)
            and (query.resource is None or e.resource == query.resource)
            and (query.severity is None or e.severity == query.severity)
            and (query.ip_address is None or e.ip_address == query.ip_address)
            and (query.success is None or e.success == query.success)
            and (query.start_date is None or e.timestamp >= query.start_date)
            and (query.end_date is None or e.timestamp <= query.end_date)
        ]
        matched.sort(key=lambda e: e.timestamp, reverse=True)
        return matched

    def query(self, query: AuditQuery | None = None) -> AuditPage:
        """Filtered entries, newest first, paged by limit/offset."""
        query = query or AuditQuery()
        matched = self._matching(query)
        page = matched[query.offset : query.offset + query.limit]
        return AuditPage(
            entries=page,
            total=len(matched),
            has_more=query.offset + query.limit < len(matched),
        )

    def summary(self, start: datetime | None = None, end: datetime | None = None) -> AuditSummary:
        """Counts over a period. Defaults to the trailing 24 hours."""
        end = end or self._clock()
        start = start or end - timedelta(hours=24)

        with self._lock:
            entries = [e for e in self._entries if start <= e.timestamp <= end]

        successful = sum(1 for e in entries if e.success)
        actions = Counter(e.action.value for e in entries)
        users = Counter(e.user_id for e in entries)

        return AuditSummary(
            start=start,
            end=end,
            total_entries=len(entries),
            successful=successful,
            failed=len(entries) - successful,
            security_events=sum(1 for e in entries if e.action in SECURITY_ACTIONS),
            top_actions=[CountedItem(key=k, count=c) for k, c in actions.most_common(10)],
            top_users=[CountedItem(key=k, count=c) for k, c in users.most_common(10)],
        )

    def statistics(self) -> AuditStatistics:
        now = self._clock()
        with self._lock:
            entries = list(self._entries)
            active_alerts = sum(1 for a in self._alerts.values() if not a.resolved)

        failures = [e for e in entries if not e.success]
        reasons = Counter(str(e.details.get("reason", "unspecified")) for e in failures)
        failure_rate = round(len(failures) / len(entries) * 100, 2) if entries else 0.0

        return AuditStatistics(
            total_entries=len(entries),
            entries_last_24h=sum(1 for e in entries if e.timestamp >= now - timedelta(hours=24)),
            failure_rate_percent=failure_rate,
            top_failure_reasons=[CountedItem(key=k, count=c) for k, c in reasons.most_common(5)],
            active_alerts=active_alerts,
        )

    def export(self, query: AuditQuery | None = None, fmt: str = "json") -> str:
        """
        Export every matching entry (no paging).

        Args:
            query: Filters; limit and offset are ignored.
            fmt: "json" for a JSON array or "csv" with a header row.

        Raises:
            ValueError: For any other format.
        """
        if fmt not in ("json", "csv"):
            raise ValueError(f"Unsupported export format: {fmt}")

        entries = self._matching(query or AuditQuery())
        records = [e.model_dump(mode="json") for e in entries]

        if fmt == "json":
            return json.dumps(records, indent=2)

        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for record in records:
            record["details"] = json.dumps(record["details"])
            writer.writerow({column: record.get(column) for column in CSV_COLUMNS})
        return buffer.getvalue()

    # -------------------------------------------------------------------------
    # Retention
    # -------------------------------------------------------------------------

    def cleanup(self, retention_days: int | None = None, archive_path: Path | None = None) -> int:
        """Drop entries older than the retention window.

        Args:
            retention_days: Defaults to ``audit_retention_days``.
            archive_path: If given, dropped entries are appended here as
                JSON lines before removal.

        Returns:
            Number of entries removed
        """
        days = retention_days if retention_days is not None else self._config.audit_retention_days
        cutoff = self._clock() - timedelta(days=days)

        with self._lock:
            expired = [e for e in self._entries if e.timestamp < cutoff]
        if not expired:
            return 0

        # Write to file (JSON lines format, append mode) before forgetting
        if archive_path is not None:
            with open(archive_path, "a") as f:
                for entry in expired:
                    f.write(json.dumps(entry.model_dump(mode="json")) + "\n")

        expired_ids = {e.id for e in expired}
        with self._lock:
            kept = [e for e in self._entries if e.id not in expired_ids]
            self._entries.clear()
            self._entries.extend(kept)

        logger.info(f"Audit cleanup removed {len(expired)} entries older than {days} days")
        return len(expired)
