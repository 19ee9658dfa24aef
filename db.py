import sqlite3
import aiosqlite
import asyncio
import datetime
import json
import logging
import time
import uuid
from contextlib import contextmanager, asynccontextmanager
from typing import Any, List, Mapping, Optional, Tuple

from errors import ImageStoreError, RecordStoreError
from models import ImagePair, ImagePayload, StorageUsage, WorkoutRecord
from tools import WorkoutKey

logger = logging.getLogger(__name__)


def _utcnow() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "storage_slots": (
            """CREATE TABLE storage_slots (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT
                );""",
            ["key", "value", "updated_at"],
        ),
    }

    def __init__(self, db_path: str = "workouts.db") -> None:
        self._db_path = db_path
        self._ensure_schema()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        conn.execute(f"DROP TABLE IF EXISTS {table}_old;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            conn.execute(
                f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
            )
        conn.execute(f"DROP TABLE {table}_old;")


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            yield conn
            await conn.commit()
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous repository helpers using aiosqlite."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.lastrowid

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return rows


class StorageSlotRepository(AsyncBaseRepository):
    """String-keyed slots, each holding one serialized document."""

    async def load(self, key: str) -> Optional[str]:
        rows = await self.fetch_all(
            "SELECT value FROM storage_slots WHERE key = ?;", (key,)
        )
        return rows[0][0] if rows else None

    async def save(self, key: str, value: str) -> None:
        """Overwrite ``key``; returns once the write is committed."""
        await self.execute(
            "INSERT INTO storage_slots (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at;",
            (key, value, _utcnow()),
        )


class WorkoutRecordRepository:
    """Ordered workout history kept in memory and persisted as one JSON snapshot.

    Every mutation serializes the complete updated list and waits for the slot
    write to commit before the in-memory list is replaced. A failed write
    raises :class:`RecordStoreError` and leaves the in-memory list unchanged.
    Mutations are serialized with a lock.
    """

    def __init__(
        self, slots: StorageSlotRepository, slot_key: str = "fitnessWorkouts"
    ) -> None:
        self._slots = slots
        self._slot_key = slot_key
        self._records: List[WorkoutRecord] = []
        self._loaded = False
        self._lock = asyncio.Lock()

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> List[WorkoutRecord]:
        async with self._lock:
            await self._load()
        return self.fetch_all_workouts()

    async def _load(self) -> None:
        try:
            raw = await self._slots.load(self._slot_key)
        except (sqlite3.Error, OSError) as exc:
            logger.error("Failed to read workout history: %s", exc)
            raise RecordStoreError(f"Failed to read workout history: {exc}") from exc
        records: List[WorkoutRecord] = []
        if raw and raw.strip():
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise RecordStoreError(f"Could not parse stored workouts: {exc}") from exc
            if not isinstance(payload, list):
                raise RecordStoreError("Stored workouts must be a JSON list")
            try:
                records = [WorkoutRecord.model_validate(item) for item in payload]
            except ValueError as exc:
                raise RecordStoreError(f"Invalid stored workout: {exc}") from exc
        self._records = records
        self._loaded = True
        logger.info("Loaded %d workouts from slot %s", len(records), self._slot_key)

    def fetch_all_workouts(self) -> List[WorkoutRecord]:
        """Return all records, oldest first."""
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def get(self, workout_id: Any) -> Optional[WorkoutRecord]:
        index = self._index_of_id(str(workout_id))
        return None if index is None else self._records[index]

    def find_by_key(self, data: Optional[Mapping[str, Any]]) -> Optional[WorkoutRecord]:
        index = self._index_of_key(WorkoutKey.compute(data))
        return None if index is None else self._records[index]

    def resolve_id(self, data: Optional[Mapping[str, Any]]) -> Tuple[str, bool]:
        """Return ``(id, existing)`` for a workout about to be saved."""
        existing = self.find_by_key(data)
        if existing is not None:
            return existing.id, True
        return self.mint_id(), False

    @staticmethod
    def mint_id() -> str:
        return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"

    def recent_window(self, limit: int) -> List[WorkoutRecord]:
        """Return the last ``limit`` records, newest first.

        Order follows list position, so an updated record keeps its place.
        """
        if limit <= 0:
            return []
        return list(reversed(self._records[-limit:]))

    def tail(self, limit: int) -> List[WorkoutRecord]:
        """Return the last ``limit`` records, oldest first."""
        if limit <= 0:
            return []
        return list(self._records[-limit:])

    async def upsert(self, record: WorkoutRecord) -> str:
        """Insert ``record`` or overwrite the record with the same workout key.

        An update keeps the existing id and position and replaces ``data``,
        ``insights`` and ``created_at``. Returns the stored id.
        """
        async with self._lock:
            if not self._loaded:
                await self._load()
            record = record.model_copy(deep=True)
            saved_at = _utcnow()
            records = list(self._records)
            index = self._index_of_key(WorkoutKey.of(record))
            if index is not None:
                existing = records[index]
                records[index] = existing.model_copy(
                    update={
                        "data": record.data,
                        "insights": record.insights,
                        "created_at": saved_at,
                    }
                )
                workout_id = existing.id
            else:
                workout_id = record.id or self.mint_id()
                if self._index_of_id(workout_id) is not None:
                    raise ValueError(f"workout id {workout_id} already in use")
                records.append(
                    record.model_copy(update={"id": workout_id, "created_at": saved_at})
                )
            await self._persist(records)
            self._records = records
        if index is not None:
            logger.info("Updated workout %s (%s)", workout_id, WorkoutKey.of(record))
        else:
            logger.info("Added workout %s (%s)", workout_id, WorkoutKey.of(record))
        return workout_id

    async def delete(self, workout_id: Any) -> bool:
        """Remove a record; returns ``False`` if it did not exist."""
        async with self._lock:
            if not self._loaded:
                await self._load()
            index = self._index_of_id(str(workout_id))
            if index is None:
                return False
            records = self._records[:index] + self._records[index + 1:]
            await self._persist(records)
            self._records = records
        logger.info("Deleted workout %s", workout_id)
        return True

    async def _persist(self, records: List[WorkoutRecord]) -> None:
        try:
            payload = json.dumps([r.to_json_dict() for r in records])
        except (TypeError, ValueError) as exc:
            raise RecordStoreError(f"Workout data is not serializable: {exc}") from exc
        try:
            await self._slots.save(self._slot_key, payload)
        except (sqlite3.Error, OSError) as exc:
            logger.error("Failed to persist workout history: %s", exc)
            raise RecordStoreError(f"Failed to persist workout history: {exc}") from exc

    def _index_of_key(self, key: str) -> Optional[int]:
        for i, r in enumerate(self._records):
            if WorkoutKey.of(r) == key:
                return i
        return None

    def _index_of_id(self, workout_id: str) -> Optional[int]:
        for i, r in enumerate(self._records):
            if r.id == workout_id:
                return i
        return None


class ScreenshotRepository:
    """Versioned asynchronous store for the screenshot pair of each workout.

    Pairs live in their own SQLite file, keyed by ``"workout_" + id``. The
    connection is opened lazily and shared; concurrent :meth:`open` calls
    wait on the same lock and get the same handle. SQLite and OS errors are
    raised as :class:`ImageStoreError`.
    """

    SCHEMA_VERSION = 1
    KEY_PREFIX = "workout_"

    _SCHEMA = (
        """CREATE TABLE IF NOT EXISTS screenshots (
                id TEXT PRIMARY KEY,
                workout_id TEXT NOT NULL,
                image1,
                image2,
                stored_at TEXT NOT NULL
            );""",
        "CREATE INDEX IF NOT EXISTS idx_screenshots_workout_id ON screenshots (workout_id);",
    )

    def __init__(self, db_path: str = "workout_images.db", timeout: float = 5.0) -> None:
        self._db_path = db_path
        self._timeout = timeout
        self._conn: Optional[aiosqlite.Connection] = None
        self._open_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @classmethod
    def storage_key(cls, workout_id: Any) -> str:
        return f"{cls.KEY_PREFIX}{workout_id}"

    async def open(self) -> aiosqlite.Connection:
        if self._conn is not None:
            return self._conn
        async with self._open_lock:
            if self._conn is not None:
                return self._conn
            try:
                conn = await aiosqlite.connect(self._db_path, timeout=self._timeout)
            except (sqlite3.Error, OSError) as exc:
                logger.error("Failed to open screenshot store: %s", exc)
                raise ImageStoreError(f"Failed to open screenshot store: {exc}") from exc
            try:
                await self._ensure_schema(conn)
            except sqlite3.Error as exc:
                await conn.close()
                logger.error("Failed to initialize screenshot store: %s", exc)
                raise ImageStoreError(
                    f"Failed to initialize screenshot store: {exc}"
                ) from exc
            self._conn = conn
            logger.info("Screenshot store opened at %s", self._db_path)
            return conn

    async def _ensure_schema(self, conn: aiosqlite.Connection) -> None:
        cursor = await conn.execute("PRAGMA user_version;")
        row = await cursor.fetchone()
        if row and row[0] >= self.SCHEMA_VERSION:
            return
        for statement in self._SCHEMA:
            await conn.execute(statement)
        await conn.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION};")
        await conn.commit()
        logger.info("Screenshot store schema created (version %d)", self.SCHEMA_VERSION)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @asynccontextmanager
    async def _transaction(self, action: str):
        conn = await self.open()
        try:
            yield conn
            await conn.commit()
        except (sqlite3.Error, OSError) as exc:
            # no pending writes may survive on the shared connection
            try:
                await conn.rollback()
            except sqlite3.Error as rollback_exc:
                logger.error("Failed to roll back screenshot store: %s", rollback_exc)
            logger.error("Failed to %s: %s", action, exc)
            raise ImageStoreError(f"Failed to {action}: {exc}") from exc

    async def put(
        self, workout_id: Any, image1: ImagePayload, image2: ImagePayload
    ) -> str:
        """Replace the pair stored for ``workout_id``; returns its storage key."""
        key = self.storage_key(workout_id)
        async with self._transaction("store screenshots") as conn:
            await conn.execute(
                "INSERT OR REPLACE INTO screenshots (id, workout_id, image1, image2, stored_at) "
                "VALUES (?, ?, ?, ?, ?);",
                (key, str(workout_id), image1, image2, _utcnow()),
            )
        logger.debug("Stored screenshots for workout %s", workout_id)
        return key

    async def get(self, workout_id: Any) -> Optional[ImagePair]:
        async with self._transaction("read screenshots") as conn:
            cursor = await conn.execute(
                "SELECT workout_id, image1, image2, stored_at FROM screenshots WHERE id = ?;",
                (self.storage_key(workout_id),),
            )
            row = await cursor.fetchone()
        if row is None:
            logger.debug("No screenshots found for workout %s", workout_id)
            return None
        return ImagePair(workout_id=row[0], image1=row[1], image2=row[2], stored_at=row[3])

    async def delete(self, workout_id: Any) -> bool:
        """Delete the pair; returns ``False`` if none was stored."""
        async with self._transaction("delete screenshots") as conn:
            cursor = await conn.execute(
                "DELETE FROM screenshots WHERE id = ?;", (self.storage_key(workout_id),)
            )
            removed = cursor.rowcount > 0
        if removed:
            logger.debug("Deleted screenshots for workout %s", workout_id)
        return removed

    async def list_workout_ids(self) -> set[str]:
        async with self._transaction("list screenshots") as conn:
            cursor = await conn.execute("SELECT id FROM screenshots;")
            rows = await cursor.fetchall()
        prefix = len(self.KEY_PREFIX)
        return {row[0][prefix:] for row in rows}

    async def usage(self) -> StorageUsage:
        async with self._transaction("calculate screenshot usage") as conn:
            cursor = await conn.execute(
                "SELECT COALESCE(SUM(COALESCE(length(image1), 0) + COALESCE(length(image2), 0)), 0), "
                "COUNT(*) FROM screenshots;"
            )
            total, count = await cursor.fetchone()
        return StorageUsage(total_bytes=total, pair_count=count)

    async def clear(self) -> int:
        """Delete every stored pair; returns how many were removed."""
        async with self._transaction("clear screenshots") as conn:
            cursor = await conn.execute("DELETE FROM screenshots;")
            removed = cursor.rowcount
        logger.info("Cleared %d screenshot pairs", removed)
        return removed
