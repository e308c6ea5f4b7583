"""Security layer — Audit pipeline.

Turns audit events into immutable ``AuditRecord`` objects and persists them
without blocking the request that produced them:

    route ──record(event)──► bounded queue ──worker task──► AuditStore

``record()`` builds the record synchronously (so its content reflects the
outcome the caller already knows) and returns immediately.  A background
worker drains the queue.  A failed write is logged and counted, never raised
back into the request, and never retried.  When the queue is full the new
record is dropped and counted.

The returned future resolves to ``True`` when the record was written and to
``False`` when it was dropped or the write failed.  Callers that want to know
may await it; everyone else ignores it.

If the process dies between the response and the write, the record is lost.
Audit is observability, not a transactional ledger.

Usage::

    audit = AuditLogger(store, queue_size=10_000, retention_days=90)
    await audit.start()

    async with audit.track(AuditAction.CREATE, "event", actor=actor, meta=meta) as entry:
        doc = await documents.create("events", payload)
        entry.resource_id = doc["id"]
        entry.set_changes(after=snapshot(doc, ("title", "date")))

    audit.record_security_event(AuditAction.RATE_LIMIT_EXCEEDED, meta)
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

from ngo_backoffice.exceptions import BackofficeError, PersistenceError
from ngo_backoffice.logging import get_logger
from ngo_backoffice.security.audit_records import (
    ANONYMOUS_ACTOR,
    SYSTEM_ACTOR,
    AuditAction,
    AuditActor,
    AuditFilters,
    AuditPage,
    AuditRecord,
    AuditStatus,
    RequestMeta,
    Severity,
    classify_severity,
    sanitize_changes,
)
from ngo_backoffice.store.audit import AuditStore

log = get_logger(__name__)

_MAX_ERROR_MESSAGE = 500


@dataclass
class AuditEvent:
    """Input to :meth:`AuditLogger.record`."""

    action: AuditAction
    resource: str
    actor: AuditActor = ANONYMOUS_ACTOR
    meta: RequestMeta = field(default_factory=RequestMeta)
    resource_id: str | None = None
    status: AuditStatus = AuditStatus.SUCCESS
    severity: Severity | None = None
    changes: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    error_message: str | None = None


@dataclass
class TrackedAction:
    """Mutable handle yielded by :meth:`AuditLogger.track`.

    The business code fills in what it learns while running; the record is
    built from it once the block exits.
    """

    resource_id: str | None = None
    changes: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    severity: Severity | None = None

    def set_changes(self, before: Any = None, after: Any = None) -> None:
        self.changes = {"before": before, "after": after}


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, BackofficeError):
        message = exc.message
    else:
        message = f"{type(exc).__name__}: {exc}"
    return message[:_MAX_ERROR_MESSAGE]


class AuditLogger:
    """Fire-and-forget audit writer backed by an :class:`AuditStore`.

    Parameters
    ----------
    store:
        Persistence backend.
    queue_size:
        Maximum records waiting to be written.  New records are dropped when
        the queue is full.
    retention_days:
        Each record's ``expires_at`` is ``timestamp + retention_days``.
    """

    def __init__(
        self,
        store: AuditStore,
        *,
        queue_size: int = 10_000,
        retention_days: int = 90,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._queue: asyncio.Queue[tuple[AuditRecord, asyncio.Future[bool]]] = asyncio.Queue(
            maxsize=queue_size
        )
        self._retention_seconds = retention_days * 86_400
        self._clock = clock
        self._worker: asyncio.Task[None] | None = None
        self._written = 0
        self._failed = 0
        self._dropped = 0

    @property
    def store(self) -> AuditStore:
        return self._store

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain())
            log.debug("audit_worker_started")

    async def flush(self) -> None:
        """Wait until every queued record has been handled."""
        if self._worker is None:
            return
        await self._queue.join()

    async def stop(self) -> None:
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        log.info("audit_worker_stopped", **self.stats())

    def stats(self) -> dict[str, int]:
        return {
            "queued": self._queue.qsize(),
            "written": self._written,
            "failed": self._failed,
            "dropped": self._dropped,
        }

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def build(self, event: AuditEvent) -> AuditRecord:
        now = self._clock()
        return AuditRecord(
            action=event.action,
            resource=event.resource,
            resource_id=event.resource_id,
            actor_id=event.actor.id,
            actor_email=event.actor.email,
            actor_type=event.actor.type,
            status=event.status,
            severity=classify_severity(event.action, event.status, event.severity),
            ip_address=event.meta.ip_address,
            user_agent=event.meta.user_agent,
            path=event.meta.path,
            request_id=event.meta.request_id,
            changes=sanitize_changes(event.changes),
            metadata=event.metadata or None,
            error_message=event.error_message,
            timestamp=now,
            expires_at=now + self._retention_seconds,
        )

    def record(self, event: AuditEvent) -> asyncio.Future[bool]:
        """Queue *event* for persistence and return immediately."""
        record = self.build(event)
        done: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        try:
            self._queue.put_nowait((record, done))
        except asyncio.QueueFull:
            self._dropped += 1
            log.warning(
                "audit_record_dropped",
                action=record.action.value,
                resource=record.resource,
                dropped_total=self._dropped,
            )
            done.set_result(False)
        return done

    async def _drain(self) -> None:
        while True:
            record, done = await self._queue.get()
            try:
                await self._write(record)
            except PersistenceError as exc:
                self._failed += 1
                log.error(
                    "audit_write_failed",
                    action=record.action.value,
                    resource=record.resource,
                    error=exc.message,
                )
                if not done.done():
                    done.set_result(False)
            else:
                self._written += 1
                if not done.done():
                    done.set_result(True)
            finally:
                self._queue.task_done()

    async def _write(self, record: AuditRecord) -> None:
        try:
            await self._store.insert(record)
        except Exception as exc:
            raise PersistenceError(
                f"Audit write failed: {exc}",
                context={"record_id": record.id},
            ) from exc

    # ------------------------------------------------------------------
    # Call-site helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def track(
        self,
        action: AuditAction,
        resource: str,
        *,
        actor: AuditActor,
        meta: RequestMeta,
        resource_id: str | None = None,
        severity: Severity | None = None,
    ) -> AsyncIterator[TrackedAction]:
        """Record exactly one audit entry for the wrapped operation.

        Success is recorded when the block exits normally; failure (with the
        error message) when it raises, after which the exception propagates.
        """
        entry = TrackedAction(resource_id=resource_id, severity=severity)
        try:
            yield entry
        except Exception as exc:
            self.record(
                AuditEvent(
                    action=action,
                    resource=resource,
                    actor=actor,
                    meta=meta,
                    resource_id=entry.resource_id,
                    status=AuditStatus.FAILURE,
                    severity=entry.severity,
                    changes=entry.changes,
                    metadata=entry.metadata,
                    error_message=describe_error(exc),
                )
            )
            raise
        self.record(
            AuditEvent(
                action=action,
                resource=resource,
                actor=actor,
                meta=meta,
                resource_id=entry.resource_id,
                status=AuditStatus.SUCCESS,
                severity=entry.severity,
                changes=entry.changes,
                metadata=entry.metadata,
            )
        )

    def record_auth_event(
        self,
        action: AuditAction,
        actor: AuditActor,
        meta: RequestMeta,
        *,
        success: bool = True,
        error_message: str | None = None,
    ) -> asyncio.Future[bool]:
        return self.record(
            AuditEvent(
                action=action,
                resource="auth",
                actor=actor,
                meta=meta,
                status=AuditStatus.SUCCESS if success else AuditStatus.FAILURE,
                error_message=error_message,
            )
        )

    def record_security_event(
        self,
        action: AuditAction,
        meta: RequestMeta,
        *,
        resource: str = "security",
        actor: AuditActor | None = None,
        severity: Severity = Severity.WARNING,
        error_message: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> asyncio.Future[bool]:
        """Record an event with no natural admin actor (rate limits, anonymous requests)."""
        return self.record(
            AuditEvent(
                action=action,
                resource=resource,
                actor=actor or ANONYMOUS_ACTOR,
                meta=meta,
                status=AuditStatus.FAILURE,
                severity=severity,
                error_message=error_message,
                metadata=metadata,
            )
        )

    def record_unauthorized(
        self,
        meta: RequestMeta,
        resource: str,
        *,
        reason: str,
        actor: AuditActor | None = None,
    ) -> asyncio.Future[bool]:
        return self.record_security_event(
            AuditAction.UNAUTHORIZED_ACCESS,
            meta,
            resource=resource,
            actor=actor,
            error_message=reason,
        )

    def record_api_error(
        self,
        meta: RequestMeta,
        resource: str,
        status_code: int,
        message: str,
        *,
        actor: AuditActor | None = None,
    ) -> asyncio.Future[bool]:
        return self.record(
            AuditEvent(
                action=AuditAction.API_ERROR,
                resource=resource,
                actor=actor or ANONYMOUS_ACTOR,
                meta=meta,
                status=AuditStatus.FAILURE,
                severity=Severity.ERROR if status_code >= 500 else Severity.WARNING,
                error_message=f"HTTP {status_code}: {message}"[:_MAX_ERROR_MESSAGE],
                metadata={"status_code": status_code},
            )
        )

    def record_system_event(
        self,
        action: AuditAction,
        resource: str,
        *,
        resource_id: str | None = None,
        changes: dict[str, Any] | None = None,
        severity: Severity | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> asyncio.Future[bool]:
        """Record an automated change performed by the back office itself."""
        return self.record(
            AuditEvent(
                action=action,
                resource=resource,
                actor=SYSTEM_ACTOR,
                resource_id=resource_id,
                changes=changes,
                severity=severity,
                metadata=metadata,
            )
        )

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def query(
        self,
        filters: AuditFilters | None = None,
        *,
        page: int = 1,
        limit: int = 50,
    ) -> AuditPage:
        return await self._store.query(filters, page=page, limit=limit)

    async def admin_activity(self, admin_id: str, limit: int = 10) -> list[AuditRecord]:
        page = await self._store.query(AuditFilters(admin_id=admin_id), limit=limit)
        return page.records

    async def resource_activity(
        self, resource: str, resource_id: str, limit: int = 10
    ) -> list[AuditRecord]:
        page = await self._store.query(
            AuditFilters(resource=resource, resource_id=resource_id), limit=limit
        )
        return page.records

