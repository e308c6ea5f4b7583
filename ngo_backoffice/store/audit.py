"""Store layer — SQLite-backed audit log.

Audit records are append-only.  Two triggers enforce that at the storage
level rather than in application code:

  - ``audit_logs_immutable`` aborts any UPDATE
  - ``audit_logs_expire`` deletes rows whose ``expires_at`` has passed each
    time a new row is inserted

Every read also excludes rows past ``expires_at``, so retention is exact even
between inserts.

Schema::

    CREATE TABLE audit_logs (
        id            TEXT PRIMARY KEY,
        action        TEXT NOT NULL,
        resource      TEXT NOT NULL,
        resource_id   TEXT,
        actor_id      TEXT NOT NULL,
        actor_email   TEXT NOT NULL,
        actor_type    TEXT NOT NULL,
        severity      TEXT NOT NULL,
        status        TEXT NOT NULL,
        ip_address    TEXT NOT NULL,
        user_agent    TEXT,
        path          TEXT,
        request_id    TEXT,
        changes       TEXT,
        metadata      TEXT,
        error_message TEXT,
        timestamp     REAL NOT NULL,
        expires_at    REAL NOT NULL
    );
"""

from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import Any, Callable, Iterable

import aiosqlite

from ngo_backoffice.exceptions import StoreError
from ngo_backoffice.logging import get_logger
from ngo_backoffice.security.audit_records import (
    ActorType,
    AuditAction,
    AuditFilters,
    AuditPage,
    AuditRecord,
    AuditStatus,
    Severity,
)

log = get_logger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS audit_logs (
    id            TEXT PRIMARY KEY,
    action        TEXT NOT NULL,
    resource      TEXT NOT NULL,
    resource_id   TEXT,
    actor_id      TEXT NOT NULL,
    actor_email   TEXT NOT NULL,
    actor_type    TEXT NOT NULL,
    severity      TEXT NOT NULL,
    status        TEXT NOT NULL,
    ip_address    TEXT NOT NULL,
    user_agent    TEXT,
    path          TEXT,
    request_id    TEXT,
    changes       TEXT,
    metadata      TEXT,
    error_message TEXT,
    timestamp     REAL NOT NULL,
    expires_at    REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_audit_actor_ts ON audit_logs (actor_id, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_audit_resource_ts ON audit_logs (resource, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_audit_action_ts ON audit_logs (action, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_audit_severity_ts ON audit_logs (severity, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_audit_expires ON audit_logs (expires_at);

CREATE TRIGGER IF NOT EXISTS audit_logs_immutable
BEFORE UPDATE ON audit_logs
BEGIN
    SELECT RAISE(ABORT, 'audit records are immutable');
END;

CREATE TRIGGER IF NOT EXISTS audit_logs_expire
AFTER INSERT ON audit_logs
BEGIN
    DELETE FROM audit_logs
    WHERE expires_at <= (julianday('now') - 2440587.5) * 86400.0;
END;
"""

_COLUMNS = (
    "id, action, resource, resource_id, actor_id, actor_email, actor_type, "
    "severity, status, ip_address, user_agent, path, request_id, changes, "
    "metadata, error_message, timestamp, expires_at"
)


def _row_to_record(row: Iterable[Any]) -> AuditRecord:
    (
        rid, action, resource, resource_id, actor_id, actor_email, actor_type,
        severity, status, ip_address, user_agent, path, request_id, changes,
        metadata, error_message, timestamp, expires_at,
    ) = row
    return AuditRecord(
        id=rid,
        action=AuditAction(action),
        resource=resource,
        resource_id=resource_id,
        actor_id=actor_id,
        actor_email=actor_email,
        actor_type=ActorType(actor_type),
        severity=Severity(severity),
        status=AuditStatus(status),
        ip_address=ip_address,
        user_agent=user_agent,
        path=path,
        request_id=request_id,
        changes=json.loads(changes) if changes else None,
        metadata=json.loads(metadata) if metadata else None,
        error_message=error_message,
        timestamp=timestamp,
        expires_at=expires_at,
    )


class AuditStore:
    """Async SQLite store for audit records.

    Usage::

        store = AuditStore(Path("~/.ngo-backoffice/audit.db"))
        await store.init()
        await store.insert(record)
        page = await store.query(AuditFilters(resource="event"), page=1, limit=50)
        await store.close()
    """

    def __init__(self, db_path: Path | str, clock: Callable[[], float] = time.time) -> None:
        self._db_path = Path(db_path).expanduser()
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._clock = clock

    async def init(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = await aiosqlite.connect(str(self._db_path))
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.executescript(_SCHEMA_SQL)
            await self._conn.commit()
            log.info("audit_store_ready", db=str(self._db_path))
        except Exception as exc:
            raise StoreError(f"Failed to initialise audit store: {exc}") from exc

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def insert(self, record: AuditRecord) -> None:
        async with self._lock:
            assert self._conn is not None
            await self._conn.execute(
                f"INSERT INTO audit_logs ({_COLUMNS}) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
                (
                    record.id,
                    record.action.value,
                    record.resource,
                    record.resource_id,
                    record.actor_id,
                    record.actor_email,
                    record.actor_type.value,
                    record.severity.value,
                    record.status.value,
                    record.ip_address,
                    record.user_agent,
                    record.path,
                    record.request_id,
                    json.dumps(record.changes, default=str) if record.changes else None,
                    json.dumps(record.metadata, default=str) if record.metadata else None,
                    record.error_message,
                    record.timestamp,
                    record.expires_at,
                ),
            )
            await self._conn.commit()

    # ------------------------------------------------------------------
    # Read — audit log browser
    # ------------------------------------------------------------------

    def _where(self, filters: AuditFilters) -> tuple[str, list[Any]]:
        clauses = ["expires_at > ?"]
        params: list[Any] = [self._clock()]
        if filters.admin_id:
            clauses.append("actor_id = ?")
            params.append(filters.admin_id)
        if filters.resource:
            clauses.append("resource = ?")
            params.append(filters.resource)
        if filters.resource_id:
            clauses.append("resource_id = ?")
            params.append(filters.resource_id)
        if filters.action:
            clauses.append("action = ?")
            params.append(filters.action)
        if filters.start is not None:
            clauses.append("timestamp >= ?")
            params.append(filters.start)
        if filters.end is not None:
            clauses.append("timestamp <= ?")
            params.append(filters.end)
        return " AND ".join(clauses), params

    async def query(
        self,
        filters: AuditFilters | None = None,
        *,
        page: int = 1,
        limit: int = 50,
    ) -> AuditPage:
        """Return one page of records matching *filters*, newest first."""
        assert self._conn is not None
        page = max(1, page)
        limit = max(1, limit)
        where, params = self._where(filters or AuditFilters())

        async with self._conn.execute(
            f"SELECT COUNT(*) FROM audit_logs WHERE {where}", params
        ) as cursor:
            row = await cursor.fetchone()
        total = int(row[0]) if row else 0

        async with self._conn.execute(
            f"SELECT {_COLUMNS} FROM audit_logs WHERE {where} "
            "ORDER BY timestamp DESC LIMIT ? OFFSET ?",
            [*params, limit, (page - 1) * limit],
        ) as cursor:
            rows = await cursor.fetchall()

        return AuditPage(
            records=[_row_to_record(r) for r in rows],
            total=total,
            page=page,
            limit=limit,
        )

    async def count(self, filters: AuditFilters | None = None) -> int:
        assert self._conn is not None
        where, params = self._where(filters or AuditFilters())
        async with self._conn.execute(
            f"SELECT COUNT(*) FROM audit_logs WHERE {where}", params
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    # ------------------------------------------------------------------
    # Read — security dashboard aggregates
    # ------------------------------------------------------------------

    async def security_events(
        self,
        since: float,
        actions: Iterable[AuditAction],
        severities: Iterable[Severity],
        limit: int = 100,
    ) -> list[AuditRecord]:
        """Records since *since* that are security actions, elevated, or system-issued."""
        assert self._conn is not None
        action_values = [a.value for a in actions]
        severity_values = [s.value for s in severities]
        sql = (
            f"SELECT {_COLUMNS} FROM audit_logs "
            "WHERE expires_at > ? AND timestamp >= ? AND ("
            f"action IN ({','.join('?' * len(action_values))}) "
            f"OR severity IN ({','.join('?' * len(severity_values))}) "
            "OR actor_type = ?) "
            "ORDER BY timestamp DESC LIMIT ?"
        )
        params = [
            self._clock(), since, *action_values, *severity_values,
            ActorType.SYSTEM.value, limit,
        ]
        async with self._conn.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_record(r) for r in rows]

    async def security_stats(self, since: float) -> dict[str, int]:
        assert self._conn is not None
        sql = """
            SELECT
                COALESCE(SUM(CASE WHEN action = ? THEN 1 ELSE 0 END), 0),
                COALESCE(SUM(CASE WHEN action = ? THEN 1 ELSE 0 END), 0),
                COALESCE(SUM(CASE WHEN action = ?
                                    OR (status = ? AND severity = ?) THEN 1 ELSE 0 END), 0),
                COALESCE(SUM(CASE WHEN action = ? AND status = ? THEN 1 ELSE 0 END), 0)
            FROM audit_logs
            WHERE expires_at > ? AND timestamp >= ?
        """
        params = (
            AuditAction.LOGIN_FAILED.value,
            AuditAction.RATE_LIMIT_EXCEEDED.value,
            AuditAction.UNAUTHORIZED_ACCESS.value,
            AuditStatus.FAILURE.value,
            Severity.WARNING.value,
            AuditAction.LOGIN.value,
            AuditStatus.SUCCESS.value,
            self._clock(),
            since,
        )
        async with self._conn.execute(sql, params) as cursor:
            row = await cursor.fetchone()
        failed, rate_limits, unauthorized, successful = row if row else (0, 0, 0, 0)
        return {
            "failedLogins": int(failed),
            "rateLimits": int(rate_limits),
            "unauthorizedAttempts": int(unauthorized),
            "successfulLogins": int(successful),
        }

    async def severity_distribution(self, since: float) -> dict[str, int]:
        assert self._conn is not None
        async with self._conn.execute(
            "SELECT severity, COUNT(*) FROM audit_logs "
            "WHERE expires_at > ? AND timestamp >= ? GROUP BY severity",
            (self._clock(), since),
        ) as cursor:
            rows = await cursor.fetchall()
        return {str(sev): int(n) for sev, n in rows}

    async def hourly_counts(
        self,
        since: float,
        actions: Iterable[AuditAction],
    ) -> list[dict[str, Any]]:
        """Counts grouped by UTC hour-of-day and action, ascending by hour."""
        assert self._conn is not None
        action_values = [a.value for a in actions]
        sql = (
            "SELECT CAST(strftime('%H', timestamp, 'unixepoch') AS INTEGER) AS hour, "
            "action, COUNT(*) FROM audit_logs "
            f"WHERE expires_at > ? AND timestamp >= ? AND action IN ({','.join('?' * len(action_values))}) "
            "GROUP BY hour, action ORDER BY hour ASC, action ASC"
        )
        async with self._conn.execute(sql, [self._clock(), since, *action_values]) as cursor:
            rows = await cursor.fetchall()
        return [{"hour": int(h), "action": a, "count": int(n)} for h, a, n in rows]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def purge_expired(self) -> int:
        """Delete expired rows now.  The insert trigger normally does this."""
        async with self._lock:
            assert self._conn is not None
            cursor = await self._conn.execute(
                "DELETE FROM audit_logs WHERE expires_at <= ?", (self._clock(),)
            )
            await self._conn.commit()
            return cursor.rowcount
