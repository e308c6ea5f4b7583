"""Store layer — JSON document collections for the managed resources.

Events, volunteers, team groups, tags, empowerment stories, contact
submissions, site content and image metadata are plain JSON documents here.
Their business schemas live with the public site; the back office only needs
create / read / update / delete.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from pathlib import Path
from typing import Any

import aiosqlite

from ngo_backoffice.exceptions import NotFoundError, StoreError
from ngo_backoffice.logging import get_logger

log = get_logger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    collection  TEXT NOT NULL,
    id          TEXT NOT NULL,
    data        TEXT NOT NULL,
    created_at  REAL NOT NULL,
    updated_at  REAL NOT NULL,
    PRIMARY KEY (collection, id)
);

CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents (collection, created_at DESC);
"""

# Keys managed by the store; never taken from client payloads.
_RESERVED = ("id", "created_at", "updated_at")


def _hydrate(doc_id: str, data: str, created_at: float, updated_at: float) -> dict[str, Any]:
    document = json.loads(data)
    document.update({"id": doc_id, "created_at": created_at, "updated_at": updated_at})
    return document


def _strip_reserved(payload: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in payload.items() if k not in _RESERVED}


class DocumentStore:
    """Async SQLite store for schemaless resource documents."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser()
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = await aiosqlite.connect(str(self._db_path))
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.executescript(_SCHEMA_SQL)
            await self._conn.commit()
        except Exception as exc:
            raise StoreError(f"Failed to initialise document store: {exc}") from exc

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def create(self, collection: str, payload: dict[str, Any]) -> dict[str, Any]:
        doc_id = uuid.uuid4().hex
        now = time.time()
        data = json.dumps(_strip_reserved(payload), default=str)
        async with self._lock:
            assert self._conn is not None
            await self._conn.execute(
                "INSERT INTO documents (collection, id, data, created_at, updated_at) "
                "VALUES (?,?,?,?,?)",
                (collection, doc_id, data, now, now),
            )
            await self._conn.commit()
        return _hydrate(doc_id, data, now, now)

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        assert self._conn is not None
        async with self._conn.execute(
            "SELECT id, data, created_at, updated_at FROM documents WHERE collection=? AND id=?",
            (collection, doc_id),
        ) as cursor:
            row = await cursor.fetchone()
        return _hydrate(*row) if row else None

    async def require(self, collection: str, doc_id: str, resource: str) -> dict[str, Any]:
        document = await self.get(collection, doc_id)
        if document is None:
            raise NotFoundError(resource, doc_id)
        return document

    async def list(
        self, collection: str, *, limit: int = 100, offset: int = 0
    ) -> tuple[list[dict[str, Any]], int]:
        """Return one page of documents (newest first) and the collection size."""
        assert self._conn is not None
        async with self._conn.execute(
            "SELECT COUNT(*) FROM documents WHERE collection=?", (collection,)
        ) as cursor:
            row = await cursor.fetchone()
        total = int(row[0]) if row else 0
        async with self._conn.execute(
            "SELECT id, data, created_at, updated_at FROM documents WHERE collection=? "
            "ORDER BY created_at DESC LIMIT ? OFFSET ?",
            (collection, limit, offset),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_hydrate(*r) for r in rows], total

    async def update(
        self, collection: str, doc_id: str, changes: dict[str, Any], resource: str
    ) -> dict[str, Any]:
        """Merge *changes* into the stored document."""
        current = await self.require(collection, doc_id, resource)
        merged = _strip_reserved({**current, **changes})
        now = time.time()
        data = json.dumps(merged, default=str)
        async with self._lock:
            assert self._conn is not None
            await self._conn.execute(
                "UPDATE documents SET data=?, updated_at=? WHERE collection=? AND id=?",
                (data, now, collection, doc_id),
            )
            await self._conn.commit()
        return _hydrate(doc_id, data, current["created_at"], now)

    async def delete(self, collection: str, doc_id: str, resource: str) -> dict[str, Any]:
        """Delete and return the document."""
        current = await self.require(collection, doc_id, resource)
        async with self._lock:
            assert self._conn is not None
            await self._conn.execute(
                "DELETE FROM documents WHERE collection=? AND id=?", (collection, doc_id)
            )
            await self._conn.commit()
        return current

    async def delete_many(self, collection: str, doc_ids: list[str]) -> list[dict[str, Any]]:
        """Delete the listed documents that exist and return them.  Unknown ids are skipped."""
        removed = [d for d in [await self.get(collection, i) for i in doc_ids] if d is not None]
        if not removed:
            return []
        async with self._lock:
            assert self._conn is not None
            await self._conn.executemany(
                "DELETE FROM documents WHERE collection=? AND id=?",
                [(collection, d["id"]) for d in removed],
            )
            await self._conn.commit()
        return removed
