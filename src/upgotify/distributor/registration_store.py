"""
Registration storage for the distributor.

Persists the mapping between local UnifiedPush subscriptions and the Gotify
applications created for them, plus the watermark of the highest processed
message id.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
import weakref
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Callable, TypeVar

from upgotify.core.exceptions import StoreError
from upgotify.core.logging_config import mask_token

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Registration:
    """
    A local subscription mapped to an upstream application.

    Attributes:
        local_app_id: Bus name of the subscribing application
        local_token: Subscription token chosen by the subscriber
        upstream_app_id: Gotify application id
        upstream_app_token: Gotify application token, embedded in the endpoint
    """

    local_app_id: str
    local_token: str
    upstream_app_id: int
    upstream_app_token: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "local_app_id": self.local_app_id,
            "local_token": self.local_token,
            "upstream_app_id": self.upstream_app_id,
            "upstream_app_token": self.upstream_app_token,
        }


class RegistrationStore:
    """
    SQLite-backed registration store.

    Every operation is a single transaction on one shared connection,
    serialized by a lock, so readers observe either the state before or after
    a write. The async methods run the blocking SQLite work in the default
    executor.

    ``lock_for(token)`` hands out one asyncio lock per subscription token.
    Callers hold it across lookup-then-write sequences.
    """

    def __init__(self, db_path: Path | str | None = None):
        """
        Open (and create if needed) the store.

        Args:
            db_path: Path to SQLite database. If None, uses in-memory database.

        Raises:
            StoreError: If the database cannot be opened or initialized
        """
        self.db_path = str(db_path) if db_path else ":memory:"
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        self._key_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._init_database()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open registration store at {self.db_path}: {e}") from e

    def _init_database(self) -> None:
        """Initialize database schema."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS registrations (
                    local_app_id TEXT NOT NULL,
                    local_token TEXT NOT NULL,
                    upstream_app_id INTEGER NOT NULL UNIQUE,
                    upstream_app_token TEXT NOT NULL
                )
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_local_token
                ON registrations(local_token)
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS watermark (
                    message_id INTEGER NOT NULL
                )
            """)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def lock_for(self, token: str) -> asyncio.Lock:
        """
        Per-token lock serializing register, unregister and reconcile.

        Locks are held weakly: an entry lives only while a caller holds or
        waits on it, so the table does not grow with every token ever seen.
        """
        lock = self._key_locks.get(token)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[token] = lock
        return lock

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(self._locked, func, *args))

    def _locked(self, func: Callable[..., T], *args: Any) -> T:
        with self._lock:
            try:
                return func(*args)
            except sqlite3.Error as e:
                logger.warning(
                    "Registration store operation failed",
                    extra={"event": "store.error", "operation": func.__name__, "error": str(e)},
                )
                raise StoreError(f"Store operation {func.__name__} failed: {e}") from e

    # ==================== Registrations ====================

    async def get(self, token: str) -> list[Registration]:
        """All registrations for a subscription token (possibly several)."""
        return await self._run(self._get, token)

    def _get(self, token: str) -> list[Registration]:
        rows = self._conn.execute(
            "SELECT * FROM registrations WHERE local_token = ?",
            (token,),
        ).fetchall()
        return [self._row_to_registration(row) for row in rows]

    async def find(self, local_app_id: str, token: str) -> Registration | None:
        """Registration for an exact (application, token) pair."""
        return await self._run(self._find, local_app_id, token)

    def _find(self, local_app_id: str, token: str) -> Registration | None:
        row = self._conn.execute(
            "SELECT * FROM registrations WHERE local_app_id = ? AND local_token = ?",
            (local_app_id, token),
        ).fetchone()
        return self._row_to_registration(row) if row else None

    async def get_by_upstream_id(self, upstream_app_id: int) -> Registration | None:
        """Registration owning a Gotify application, used to route messages."""
        return await self._run(self._get_by_upstream_id, upstream_app_id)

    def _get_by_upstream_id(self, upstream_app_id: int) -> Registration | None:
        row = self._conn.execute(
            "SELECT * FROM registrations WHERE upstream_app_id = ?",
            (upstream_app_id,),
        ).fetchone()
        return self._row_to_registration(row) if row else None

    async def all(self) -> list[Registration]:
        return await self._run(self._all)

    def _all(self) -> list[Registration]:
        rows = self._conn.execute("SELECT * FROM registrations ORDER BY rowid").fetchall()
        return [self._row_to_registration(row) for row in rows]

    async def insert(self, registration: Registration) -> None:
        """
        Persist a new registration.

        Raises:
            StoreError: On any database failure, including a duplicate
                upstream application id
        """
        await self._run(self._insert, registration)
        logger.info(
            "Registration stored",
            extra={
                "event": "store.inserted",
                "app_id": registration.local_app_id,
                "token": mask_token(registration.local_token),
                "upstream_app_id": registration.upstream_app_id,
            },
        )

    def _insert(self, registration: Registration) -> None:
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO registrations (
                    local_app_id, local_token, upstream_app_id, upstream_app_token
                ) VALUES (?, ?, ?, ?)
                """,
                (
                    registration.local_app_id,
                    registration.local_token,
                    registration.upstream_app_id,
                    registration.upstream_app_token,
                ),
            )

    async def delete(self, token: str, upstream_app_id: int | None = None) -> int:
        """
        Remove registrations for a token.

        Args:
            token: Subscription token
            upstream_app_id: When given, only the row for this application is
                removed, so a mapping re-created concurrently survives

        Returns:
            Number of rows removed
        """
        removed = await self._run(self._delete, token, upstream_app_id)
        if removed:
            logger.info(
                "Registration removed",
                extra={"event": "store.deleted", "token": mask_token(token), "rows": removed},
            )
        return removed

    def _delete(self, token: str, upstream_app_id: int | None) -> int:
        with self._conn:
            if upstream_app_id is None:
                cursor = self._conn.execute(
                    "DELETE FROM registrations WHERE local_token = ?",
                    (token,),
                )
            else:
                cursor = self._conn.execute(
                    "DELETE FROM registrations WHERE local_token = ? AND upstream_app_id = ?",
                    (token, upstream_app_id),
                )
            return cursor.rowcount

    # ==================== Watermark ====================

    async def get_watermark(self) -> int | None:
        """Highest processed message id, or None before the first message."""
        return await self._run(self._get_watermark)

    def _get_watermark(self) -> int | None:
        row = self._conn.execute("SELECT MAX(message_id) FROM watermark").fetchone()
        return row[0] if row and row[0] is not None else None

    async def set_watermark(self, message_id: int) -> int:
        """
        Advance the watermark to max(current, message_id).

        Returns:
            The stored watermark after the update
        """
        return await self._run(self._set_watermark, message_id)

    def _set_watermark(self, message_id: int) -> int:
        with self._conn:
            current = self._get_watermark()
            if current is None:
                self._conn.execute("INSERT INTO watermark (message_id) VALUES (?)", (message_id,))
                return message_id
            if message_id > current:
                self._conn.execute("UPDATE watermark SET message_id = ?", (message_id,))
                return message_id
            return current

    def _row_to_registration(self, row: sqlite3.Row) -> Registration:
        return Registration(
            local_app_id=row["local_app_id"],
            local_token=row["local_token"],
            upstream_app_id=int(row["upstream_app_id"]),
            upstream_app_token=row["upstream_app_token"],
        )
