"""Store layer — Administrator accounts.

Administrators are never hard-deleted; deactivation sets ``is_active=0``.
Usernames are unique; emails are unique and stored lowercased.

``role`` is nullable only to represent legacy rows created before roles
existed.  Such rows are migrated once, at their owner's next successful
login, by :meth:`AdminStore.migrate_legacy_role`.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import aiosqlite

from ngo_backoffice.exceptions import ConflictError, NotFoundError, StoreError
from ngo_backoffice.logging import get_logger
from ngo_backoffice.security.models import ALL_PERMISSIONS, Role

log = get_logger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS administrators (
    id                    TEXT PRIMARY KEY,
    username              TEXT NOT NULL UNIQUE,
    email                 TEXT NOT NULL UNIQUE,
    password_hash         TEXT NOT NULL,
    role                  TEXT,
    permissions           TEXT NOT NULL DEFAULT '[]',
    is_active             INTEGER NOT NULL DEFAULT 1,
    reset_token_hash      TEXT,
    reset_token_expires   REAL,
    last_login            REAL,
    last_password_change  REAL,
    created_by            TEXT,
    created_at            REAL NOT NULL,
    updated_at            REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_admins_role ON administrators (role);
CREATE INDEX IF NOT EXISTS idx_admins_reset ON administrators (reset_token_hash);
"""

_COLUMNS = (
    "id, username, email, password_hash, role, permissions, is_active, "
    "reset_token_hash, reset_token_expires, last_login, last_password_change, "
    "created_by, created_at, updated_at"
)

_UPDATABLE = frozenset({"username", "email", "role", "permissions", "is_active"})


@dataclass
class Administrator:
    id: str
    username: str
    email: str
    password_hash: str
    role: Role | None
    permissions: list[str] = field(default_factory=list)
    is_active: bool = True
    reset_token_hash: str | None = None
    reset_token_expires: float | None = None
    last_login: float | None = None
    last_password_change: float | None = None
    created_by: str | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def public_dict(self) -> dict[str, Any]:
        """Account view without credential material."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role.value if self.role else None,
            "permissions": list(self.permissions),
            "is_active": self.is_active,
            "last_login": self.last_login,
            "last_password_change": self.last_password_change,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def audit_snapshot(self) -> dict[str, Any]:
        """Fields recorded in audit change snapshots."""
        view = self.public_dict()
        return {f: view[f] for f in ("username", "email", "role", "permissions", "is_active")}


def _row_to_admin(row: Any) -> Administrator:
    return Administrator(
        id=row[0],
        username=row[1],
        email=row[2],
        password_hash=row[3],
        role=Role(row[4]) if row[4] else None,
        permissions=json.loads(row[5]) if row[5] else [],
        is_active=bool(row[6]),
        reset_token_hash=row[7],
        reset_token_expires=row[8],
        last_login=row[9],
        last_password_change=row[10],
        created_by=row[11],
        created_at=row[12],
        updated_at=row[13],
    )


class AdminStore:
    """Async SQLite store for administrator accounts."""

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
            log.info("admin_store_ready", db=str(self._db_path))
        except Exception as exc:
            raise StoreError(f"Failed to initialise admin store: {exc}") from exc

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def create(
        self,
        *,
        username: str,
        email: str,
        password_hash: str,
        role: Role | None,
        permissions: list[str],
        created_by: str | None = None,
    ) -> Administrator:
        username = username.strip()
        email = email.strip().lower()
        if await self.get_by_username(username) or await self.get_by_email(email):
            raise ConflictError("Username or email already exists")

        now = time.time()
        admin = Administrator(
            id=uuid.uuid4().hex,
            username=username,
            email=email,
            password_hash=password_hash,
            role=role,
            permissions=list(permissions),
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            assert self._conn is not None
            try:
                await self._conn.execute(
                    f"INSERT INTO administrators ({_COLUMNS}) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
                    (
                        admin.id,
                        admin.username,
                        admin.email,
                        admin.password_hash,
                        admin.role.value if admin.role else None,
                        json.dumps(admin.permissions),
                        1,
                        None,
                        None,
                        None,
                        None,
                        admin.created_by,
                        admin.created_at,
                        admin.updated_at,
                    ),
                )
                await self._conn.commit()
            except aiosqlite.IntegrityError as exc:
                raise ConflictError("Username or email already exists") from exc
        log.info("admin_created", admin_id=admin.id, role=admin.role.value if admin.role else None)
        return admin

    async def update(self, admin_id: str, **fields: Any) -> Administrator:
        """Update profile fields (username, email, role, permissions, is_active)."""
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        if not fields:
            return await self.require(admin_id)

        assignments: list[str] = []
        params: list[Any] = []
        for key, value in fields.items():
            if key == "role":
                value = value.value if isinstance(value, Role) else value
            elif key == "permissions":
                value = json.dumps(list(value))
            elif key == "is_active":
                value = 1 if value else 0
            elif key == "email":
                value = str(value).strip().lower()
            elif key == "username":
                value = str(value).strip()
            assignments.append(f"{key}=?")
            params.append(value)

        await self._execute_update(admin_id, assignments, params)
        return await self.require(admin_id)

    async def set_password(self, admin_id: str, password_hash: str) -> None:
        """Replace the password hash and invalidate any pending reset token."""
        await self._execute_update(
            admin_id,
            [
                "password_hash=?",
                "last_password_change=?",
                "reset_token_hash=NULL",
                "reset_token_expires=NULL",
            ],
            [password_hash, time.time()],
        )

    async def set_reset_token(self, admin_id: str, token_hash: str, expires_at: float) -> None:
        await self._execute_update(
            admin_id,
            ["reset_token_hash=?", "reset_token_expires=?"],
            [token_hash, expires_at],
        )

    async def record_login(self, admin_id: str) -> None:
        await self._execute_update(admin_id, ["last_login=?"], [time.time()])

    async def migrate_legacy_role(self, admin_id: str) -> bool:
        """Give a role-less legacy account the super admin role and all permissions.

        Only touches rows whose role is still NULL.  Returns True when a row
        was migrated.
        """
        async with self._lock:
            assert self._conn is not None
            cursor = await self._conn.execute(
                "UPDATE administrators SET role=?, permissions=?, updated_at=? "
                "WHERE id=? AND role IS NULL",
                (
                    Role.SUPER_ADMIN.value,
                    json.dumps([p.value for p in ALL_PERMISSIONS]),
                    time.time(),
                    admin_id,
                ),
            )
            await self._conn.commit()
            return cursor.rowcount > 0

    async def _execute_update(self, admin_id: str, assignments: list[str], params: list[Any]) -> None:
        async with self._lock:
            assert self._conn is not None
            try:
                cursor = await self._conn.execute(
                    f"UPDATE administrators SET {', '.join(assignments)}, updated_at=? WHERE id=?",
                    (*params, time.time(), admin_id),
                )
                await self._conn.commit()
            except aiosqlite.IntegrityError as exc:
                raise ConflictError("Username or email already exists") from exc
        if cursor.rowcount == 0:
            raise NotFoundError("admin", admin_id)

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def _fetch_one(self, where: str, params: tuple[Any, ...]) -> Administrator | None:
        assert self._conn is not None
        async with self._conn.execute(
            f"SELECT {_COLUMNS} FROM administrators WHERE {where}", params
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_admin(row) if row else None

    async def get(self, admin_id: str) -> Administrator | None:
        return await self._fetch_one("id=?", (admin_id,))

    async def require(self, admin_id: str) -> Administrator:
        admin = await self.get(admin_id)
        if admin is None:
            raise NotFoundError("admin", admin_id)
        return admin

    async def get_by_username(self, username: str) -> Administrator | None:
        return await self._fetch_one("username=?", (username.strip(),))

    async def get_by_email(self, email: str) -> Administrator | None:
        return await self._fetch_one("email=?", (email.strip().lower(),))

    async def get_by_reset_token(self, token_hash: str, now: float | None = None) -> Administrator | None:
        """Return the account holding an unexpired reset token with this digest."""
        return await self._fetch_one(
            "reset_token_hash=? AND reset_token_expires > ?",
            (token_hash, now if now is not None else time.time()),
        )

    async def list_all(self) -> list[Administrator]:
        assert self._conn is not None
        async with self._conn.execute(
            f"SELECT {_COLUMNS} FROM administrators ORDER BY created_at DESC"
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_admin(r) for r in rows]

    async def count_missing_role(self, created_before: float | None = None) -> int:
        assert self._conn is not None
        sql = "SELECT COUNT(*) FROM administrators WHERE role IS NULL"
        params: tuple[Any, ...] = ()
        if created_before is not None:
            sql += " AND created_at < ?"
            params = (created_before,)
        async with self._conn.execute(sql, params) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0
