# Core - Security Audit Log
#
# Append-only record of every credential operation and policy check.
# The whole log lives under one key of the key-value store as a JSON
# array; each write re-reads it, appends, enforces retention (entry cap
# and age) and rewrites it as a unit.
#
# Sensitive fields are redacted before an entry is ever persisted, and a
# failing audit write never fails the operation it records.

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

import structlog

from .constants import (
    AUDIT_ENTRY_VERSION,
    AUDIT_LOG_STORAGE_KEY,
    SENSITIVE_FIELD_MARKERS,
    AuditPolicy,
    AuditResult,
    SecurityEventType,
)
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── Data Model ──────────────────────────────────────────────────


@dataclass(frozen=True)
class AuditLogEntry:
    """One immutable audit record."""

    id: str
    timestamp: str  # ISO-8601, UTC
    event_type: str
    result: str  # SUCCESS, FAILED, WARNING
    data: Dict[str, Any]
    session_id: str
    version: int = AUDIT_ENTRY_VERSION

    @property
    def occurred_at(self) -> datetime:
        return _parse_timestamp(self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditLogEntry":
        return cls(
            id=data["id"],
            timestamp=data["timestamp"],
            event_type=data["event_type"],
            result=data["result"],
            data=data.get("data") or {},
            session_id=data.get("session_id", ""),
            version=data.get("version", AUDIT_ENTRY_VERSION),
        )


@dataclass
class AuditStats:
    total_events: int = 0
    successful_events: int = 0
    failed_events: int = 0
    warning_events: int = 0
    events_by_type: Dict[str, int] = field(default_factory=dict)
    oldest_event: Optional[datetime] = None
    newest_event: Optional[datetime] = None


@dataclass
class SuspiciousActivityReport:
    has_issues: bool
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


# ── Audit Log ───────────────────────────────────────────────────


class SecurityAudit:
    """
    Retention-bounded, append-only audit log for security events.

    One instance per process, created at startup and handed to every
    component that records events.

    Args:
        store: Key-value store holding the serialized log
        policy: Entry cap, retention window and detection thresholds
        clock: Returns the current time (UTC); injectable for tests
        environment: In "development" every entry is also echoed to the
                     structlog audit stream
        session_id: Identifier stamped on every entry of this process
    """

    def __init__(
        self,
        store: KeyValueStore,
        policy: Optional[AuditPolicy] = None,
        clock: Optional[Clock] = None,
        environment: str = "development",
        session_id: Optional[str] = None,
        storage_key: str = AUDIT_LOG_STORAGE_KEY,
    ):
        self._store = store
        self.policy = policy or AuditPolicy()
        self._clock = clock or _utcnow
        self._environment = environment
        self.session_id = session_id or uuid4().hex
        self.storage_key = storage_key

        # Serializes the read-modify-write cycle for in-process callers
        self._write_lock = asyncio.Lock()
        self._events = structlog.get_logger("pulse_security.audit")

    # ------------------------------------------------------------------
    # Write

    async def log(
        self,
        event_type: SecurityEventType,
        result: AuditResult,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Record a security event.

        Never raises: a failed audit write is reported on the diagnostic
        logger and swallowed so it cannot break the audited operation.
        """
        try:
            entry = AuditLogEntry(
                id=uuid4().hex,
                timestamp=self._clock().isoformat(),
                event_type=SecurityEventType(event_type).value,
                result=AuditResult(result).value,
                data=self.sanitize_log_data(data or {}),
                session_id=self.session_id,
            )

            async with self._write_lock:
                entries = await self._read_log()
                entries.append(entry)
                await self._write_log(self._enforce_retention(entries))

            if self._environment == "development":
                self._events.info(
                    "audit_event",
                    event_type=entry.event_type,
                    result=entry.result,
                    data=entry.data,
                )
        except Exception as e:
            logger.error(f"Failed to write audit log: {e}")

    async def clear_old_entries(self, older_than_days: int = 90) -> int:
        """
        Remove entries older than the given age.

        Returns:
            Number of entries removed. When anything was removed, the
            cleanup itself is recorded after the pruned log is saved.
        """
        try:
            cutoff = self._clock() - timedelta(days=older_than_days)
            async with self._write_lock:
                entries = await self._read_log()
                kept = [e for e in entries if e.occurred_at > cutoff]
                removed = len(entries) - len(kept)
                if removed > 0:
                    await self._write_log(kept)
        except Exception as e:
            logger.error(f"Failed to clear old audit entries: {e}")
            return 0

        if removed > 0:
            await self.log(SecurityEventType.SECURITY_CONFIG_CHANGED, AuditResult.SUCCESS, {
                "action": "audit_log_cleanup",
                "entries_removed": removed,
                "retention_days": older_than_days,
            })

        return removed

    # ------------------------------------------------------------------
    # Read

    async def query(
        self,
        event_type: Optional[SecurityEventType] = None,
        result: Optional[AuditResult] = None,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
        limit: Optional[int] = 100,
    ) -> List[AuditLogEntry]:
        """
        Filter the log, newest first.

        All filters are combined; `after` and `before` are exclusive.
        `limit=None` returns every match.
        """
        try:
            entries = await self._read_log()
        except Exception as e:
            logger.error(f"Failed to query audit log: {e}")
            return []

        wanted_type = SecurityEventType(event_type).value if event_type else None
        wanted_result = AuditResult(result).value if result else None

        matches = []
        for entry in entries:
            if wanted_type and entry.event_type != wanted_type:
                continue
            if wanted_result and entry.result != wanted_result:
                continue
            occurred = entry.occurred_at
            if after and occurred <= after:
                continue
            if before and occurred >= before:
                continue
            matches.append(entry)

        matches.sort(key=lambda e: e.occurred_at, reverse=True)
        return matches if limit is None else matches[:limit]

    async def get_stats(self) -> AuditStats:
        """Counts by result and event type over the whole log."""
        try:
            entries = await self._read_log()
        except Exception as e:
            logger.error(f"Failed to get audit stats: {e}")
            return AuditStats()

        stats = AuditStats(total_events=len(entries))
        for entry in entries:
            if entry.result == AuditResult.SUCCESS.value:
                stats.successful_events += 1
            elif entry.result == AuditResult.FAILED.value:
                stats.failed_events += 1
            elif entry.result == AuditResult.WARNING.value:
                stats.warning_events += 1
            stats.events_by_type[entry.event_type] = (
                stats.events_by_type.get(entry.event_type, 0) + 1
            )

        if entries:
            timestamps = [e.occurred_at for e in entries]
            stats.oldest_event = min(timestamps)
            stats.newest_event = max(timestamps)

        return stats

    async def get_recent_alerts(self, hours: int = 24) -> List[AuditLogEntry]:
        """Failed events from the last `hours` hours."""
        since = self._clock() - timedelta(hours=hours)
        return await self.query(after=since, result=AuditResult.FAILED)

    async def detect_suspicious_activity(self) -> SuspiciousActivityReport:
        """
        Heuristics over the detection window (default: last hour).

        Flags:
        - more failures than there are sensitive operations
        - a burst of credential retrievals
        - any unauthorized access event
        """
        since = self._clock() - timedelta(hours=self.policy.detection_window_hours)
        recent = await self.query(after=since, limit=None)

        issues: List[str] = []
        recommendations: List[str] = []

        failed = [e for e in recent if e.result == AuditResult.FAILED.value]
        if len(failed) > self.policy.failed_operation_threshold:
            issues.append(f"High number of failed operations: {len(failed)}")
            recommendations.append(
                "Review failed operations and consider implementing rate limiting"
            )

        retrievals = [
            e for e in recent
            if e.event_type == SecurityEventType.CREDENTIAL_RETRIEVED.value
        ]
        if len(retrievals) > self.policy.retrieval_burst_threshold:
            issues.append("Unusually high credential access frequency")
            recommendations.append("Monitor for potential credential harvesting attempts")

        unauthorized = [
            e for e in recent
            if e.event_type == SecurityEventType.UNAUTHORIZED_ACCESS.value
        ]
        if unauthorized:
            issues.append(f"{len(unauthorized)} unauthorized access attempts detected")
            recommendations.append("Investigate unauthorized access attempts immediately")

        return SuspiciousActivityReport(
            has_issues=bool(issues),
            issues=issues,
            recommendations=recommendations,
        )

    async def export_log(self) -> str:
        """Full log as pretty-printed JSON (entries are redacted at write time)."""
        try:
            entries = await self._read_log()
        except Exception as e:
            logger.error(f"Failed to export audit log: {e}")
            return "[]"
        return json.dumps([e.to_dict() for e in entries], indent=2)

    # ------------------------------------------------------------------
    # Internals

    async def _read_log(self) -> List[AuditLogEntry]:
        raw = await self._store.get(self.storage_key)
        if not raw:
            return []

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse audit log: {e}")
            return []
        if not isinstance(parsed, list):
            return []

        entries = []
        for item in parsed:
            try:
                entry = AuditLogEntry.from_dict(item)
                _parse_timestamp(entry.timestamp)
            except (KeyError, TypeError, ValueError):
                continue
            entries.append(entry)
        return entries

    async def _write_log(self, entries: List[AuditLogEntry]) -> None:
        await self._store.set(
            self.storage_key, json.dumps([e.to_dict() for e in entries])
        )

    def _enforce_retention(self, entries: List[AuditLogEntry]) -> List[AuditLogEntry]:
        """Newest first, capped at max_entries, nothing past the retention window."""
        ordered = sorted(entries, key=lambda e: e.occurred_at, reverse=True)
        trimmed = ordered[: self.policy.max_entries]
        cutoff = self._clock() - timedelta(days=self.policy.retention_days)
        return [e for e in trimmed if e.occurred_at > cutoff]

    @staticmethod
    def sanitize_log_data(data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Mask values whose key names look sensitive.

        Non-empty strings keep their last 4 characters ("***abcd");
        anything else becomes "***".
        """
        sanitized = dict(data)
        for key, value in data.items():
            lower_key = str(key).lower()
            if any(marker in lower_key for marker in SENSITIVE_FIELD_MARKERS):
                if isinstance(value, str) and value:
                    sanitized[key] = f"***{value[-4:]}"
                else:
                    sanitized[key] = "***"
        return sanitized
