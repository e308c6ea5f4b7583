"""Unit tests — AuditLogger + AuditStore.

Tests cover:
  - record() returns before the write and the record is queryable after flush()
  - track() records exactly one entry on success and on failure
  - a full queue drops the record and counts it
  - a failing store is logged and counted, never raised
  - stored records refuse UPDATE
  - expired records never come back from a query and can be purged
  - query filters combine and paginate newest first
"""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import AsyncIterator

import pytest

from ngo_backoffice.security.audit import AuditEvent, AuditLogger
from ngo_backoffice.security.audit_records import (
    ActorType,
    AuditAction,
    AuditActor,
    AuditFilters,
    AuditStatus,
    RequestMeta,
    Severity,
)
from ngo_backoffice.store.audit import AuditStore

pytestmark = pytest.mark.unit

ALICE = AuditActor(id="admin-1", email="alice@example.org")
META = RequestMeta(ip_address="203.0.113.9", user_agent="pytest", path="/admin/events")


@pytest.fixture
async def store(tmp_path: Path) -> AsyncIterator[AuditStore]:
    s = AuditStore(tmp_path / "audit.db")
    await s.init()
    yield s
    await s.close()


@pytest.fixture
async def audit(store: AuditStore) -> AsyncIterator[AuditLogger]:
    logger = AuditLogger(store, queue_size=100, retention_days=90)
    await logger.start()
    yield logger
    await logger.stop()


class _BrokenStore:
    async def insert(self, record: object) -> None:
        raise RuntimeError("disk full")


class TestRecord:
    async def test_record_is_written_after_flush(
        self, audit: AuditLogger, store: AuditStore
    ) -> None:
        done = audit.record(
            AuditEvent(action=AuditAction.CREATE, resource="event", actor=ALICE, meta=META)
        )
        await audit.flush()
        assert await done is True

        page = await store.query()
        assert page.total == 1
        rec = page.records[0]
        assert rec.action is AuditAction.CREATE
        assert rec.actor_id == "admin-1"
        assert rec.actor_type is ActorType.ADMIN
        assert rec.ip_address == "203.0.113.9"
        assert rec.severity is Severity.INFO
        assert rec.expires_at == pytest.approx(rec.timestamp + 90 * 86_400)

    async def test_password_hash_is_stripped_before_storage(
        self, audit: AuditLogger, store: AuditStore
    ) -> None:
        audit.record(
            AuditEvent(
                action=AuditAction.UPDATE,
                resource="admin",
                actor=ALICE,
                changes={
                    "before": {"role": "admin", "password_hash": "$2b$"},
                    "after": {"role": "coordinator", "password_hash": "$2b$"},
                },
            )
        )
        await audit.flush()
        rec = (await store.query()).records[0]
        assert rec.changes == {"before": {"role": "admin"}, "after": {"role": "coordinator"}}

    async def test_full_queue_drops_record(self, store: AuditStore) -> None:
        # Worker never started, so the single slot stays occupied.
        logger = AuditLogger(store, queue_size=1)
        logger.record(AuditEvent(action=AuditAction.LOGIN, resource="auth"))
        dropped = logger.record(AuditEvent(action=AuditAction.LOGIN, resource="auth"))
        assert dropped.done()
        assert dropped.result() is False
        assert logger.stats()["dropped"] == 1

    async def test_write_failure_is_counted_not_raised(self) -> None:
        logger = AuditLogger(_BrokenStore())  # type: ignore[arg-type]
        await logger.start()
        done = logger.record(AuditEvent(action=AuditAction.LOGIN, resource="auth"))
        await logger.flush()
        assert await done is False
        assert logger.stats()["failed"] == 1
        await logger.stop()


class TestTrack:
    async def test_success_records_once_with_resource_id(
        self, audit: AuditLogger, store: AuditStore
    ) -> None:
        async with audit.track(AuditAction.CREATE, "event", actor=ALICE, meta=META) as entry:
            entry.resource_id = "evt-1"
            entry.set_changes(after={"title": "Gala"})
        await audit.flush()

        page = await store.query()
        assert page.total == 1
        rec = page.records[0]
        assert rec.status is AuditStatus.SUCCESS
        assert rec.resource_id == "evt-1"
        assert rec.changes == {"before": None, "after": {"title": "Gala"}}

    async def test_failure_records_once_and_reraises(
        self, audit: AuditLogger, store: AuditStore
    ) -> None:
        with pytest.raises(ValueError, match="boom"):
            async with audit.track(AuditAction.DELETE, "event", actor=ALICE, meta=META):
                raise ValueError("boom")
        await audit.flush()

        page = await store.query()
        assert page.total == 1
        rec = page.records[0]
        assert rec.status is AuditStatus.FAILURE
        assert rec.error_message == "ValueError: boom"
        assert rec.severity is Severity.WARNING

    async def test_security_event_defaults_to_anonymous_actor(
        self, audit: AuditLogger, store: AuditStore
    ) -> None:
        audit.record_security_event(AuditAction.RATE_LIMIT_EXCEEDED, META, resource="auth")
        await audit.flush()
        rec = (await store.query()).records[0]
        assert rec.actor_type is ActorType.ANONYMOUS
        assert rec.status is AuditStatus.FAILURE
        assert rec.severity is Severity.WARNING


class TestStorage:
    async def test_update_is_rejected(self, audit: AuditLogger, store: AuditStore) -> None:
        audit.record(AuditEvent(action=AuditAction.LOGIN, resource="auth", actor=ALICE))
        await audit.flush()
        conn = store._conn
        assert conn is not None
        with pytest.raises(sqlite3.DatabaseError, match="immutable"):
            await conn.execute("UPDATE audit_logs SET severity = 'info'")

    async def test_expired_records_are_not_returned(self, store: AuditStore) -> None:
        long_ago = time.time() - 10 * 86_400
        logger = AuditLogger(store, retention_days=1, clock=lambda: long_ago)
        await logger.start()
        logger.record(AuditEvent(action=AuditAction.LOGIN, resource="auth", actor=ALICE))
        await logger.flush()
        await logger.stop()

        page = await store.query()
        assert page.total == 0
        assert page.records == []

    async def test_purge_expired(self, store: AuditStore, tmp_path: Path) -> None:
        logger = AuditLogger(store, retention_days=1)
        await logger.start()
        logger.record(AuditEvent(action=AuditAction.LOGIN, resource="auth", actor=ALICE))
        await logger.flush()
        await logger.stop()

        later = AuditStore(tmp_path / "audit.db", clock=lambda: time.time() + 2 * 86_400)
        await later.init()
        try:
            assert await later.purge_expired() == 1
            assert await later.purge_expired() == 0
        finally:
            await later.close()
        assert (await store.query()).total == 0

    async def test_filters_and_pagination(self, audit: AuditLogger, store: AuditStore) -> None:
        bob = AuditActor(id="admin-2", email="bob@example.org")
        for i in range(5):
            audit.record(
                AuditEvent(action=AuditAction.CREATE, resource="event", actor=ALICE,
                           resource_id=f"e{i}")
            )
        audit.record(AuditEvent(action=AuditAction.DELETE, resource="event", actor=bob))
        audit.record(AuditEvent(action=AuditAction.CREATE, resource="tag", actor=bob))
        await audit.flush()

        all_records = await store.query()
        assert all_records.total == 7
        timestamps = [r.timestamp for r in all_records.records]
        assert timestamps == sorted(timestamps, reverse=True)

        by_bob = await store.query(AuditFilters(admin_id="admin-2"))
        assert by_bob.total == 2

        combined = await store.query(AuditFilters(admin_id="admin-2", resource="event"))
        assert [r.action for r in combined.records] == [AuditAction.DELETE]

        page2 = await store.query(AuditFilters(action="create"), page=2, limit=4)
        assert page2.total == 6
        assert len(page2.records) == 2
        assert page2.total_pages == 2
        assert page2.to_dict()["totalPages"] == 2
