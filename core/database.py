"""
Database - SQLite storage for users, memories and quiz history

A small pool of aiosqlite connections so concurrent tasks (dispatcher,
AI tools, memory summarizer) don't queue behind a single connection.
Schema changes live in MIGRATIONS and are applied in order, tracked
through PRAGMA user_version.
"""

import aiosqlite
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


@dataclass
class User:
    """Per-user stats row"""
    id: int
    name: str = "Unknown"
    level: int = 0
    xp: int = 0
    social_credit: int = 0
    relationship: str = ""
    example_input: str = ""
    example_output: str = ""


@dataclass
class Memory:
    """A persisted key -> content fact about one user"""
    id: int
    user_id: str
    key: str
    content: str


# (version, statements). Append only; never edit an applied migration.
MIGRATIONS: List[Tuple[int, Sequence[str]]] = [
    (1, (
        """
        CREATE TABLE IF NOT EXISTS "user" (
            id INTEGER PRIMARY KEY,
            level INTEGER NOT NULL DEFAULT 0,
            xp INTEGER NOT NULL DEFAULT 0,
            name TEXT NOT NULL DEFAULT '',
            social_credit INTEGER NOT NULL DEFAULT 0
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS memory (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            key TEXT NOT NULL,
            content TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_memory_user ON memory(user_id, key)",
    )),
    (2, (
        """ALTER TABLE "user" ADD COLUMN relationship TEXT NOT NULL DEFAULT ''""",
        """ALTER TABLE "user" ADD COLUMN example_input TEXT NOT NULL DEFAULT ''""",
        """ALTER TABLE "user" ADD COLUMN example_output TEXT NOT NULL DEFAULT ''""",
    )),
    (3, (
        """
        CREATE TABLE IF NOT EXISTS math_question (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            question TEXT UNIQUE NOT NULL,
            answer REAL NOT NULL
        )
        """,
    )),
    (4, (
        """CREATE INDEX IF NOT EXISTS idx_user_name ON "user"(name COLLATE NOCASE)""",
    )),
]

USER_COLUMNS = (
    "id, name, level, xp, social_credit, relationship, example_input, example_output"
)


def _row_to_user(row) -> User:
    return User(
        id=row["id"],
        name=row["name"],
        level=row["level"],
        xp=row["xp"],
        social_credit=row["social_credit"],
        relationship=row["relationship"],
        example_input=row["example_input"],
        example_output=row["example_output"],
    )


def _row_to_memory(row) -> Memory:
    return Memory(id=row["id"], user_id=row["user_id"], key=row["key"], content=row["content"])


class Database:
    """
    Pooled SQLite store.

    Checkout blocks (asynchronously) when every connection is in use.
    """

    def __init__(self, db_path: Path, pool_size: int = 4):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.pool_size = pool_size
        self._pool: Optional[asyncio.Queue] = None
        self._connections: List[aiosqlite.Connection] = []

    async def initialize(self):
        """Open the pool and bring the schema up to date"""
        self._pool = asyncio.Queue(maxsize=self.pool_size)

        for _ in range(self.pool_size):
            conn = await aiosqlite.connect(str(self.db_path))
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA busy_timeout=5000")
            self._connections.append(conn)

        await self._run_migrations(self._connections[0])

        for conn in self._connections:
            self._pool.put_nowait(conn)

        logger.info(f"Database initialized: {self.db_path} (pool size {self.pool_size})")

    async def _run_migrations(self, conn: aiosqlite.Connection):
        """Apply every migration newer than the recorded schema version"""
        cursor = await conn.execute("PRAGMA user_version")
        row = await cursor.fetchone()
        current = row[0]

        for version, statements in MIGRATIONS:
            if version <= current:
                continue

            logger.info(f"Running migration {version}")
            try:
                for statement in statements:
                    await conn.execute(statement)
                # PRAGMA doesn't accept bound parameters
                await conn.execute(f"PRAGMA user_version = {int(version)}")
                await conn.commit()
            except Exception:
                await conn.rollback()
                logger.error(f"Migration {version} failed", exc_info=True)
                raise

            current = version

        logger.debug(f"Schema at version {current}")

    async def close(self):
        """Close every pooled connection"""
        for conn in self._connections:
            await conn.close()
        self._connections.clear()
        self._pool = None
        logger.info("Database closed")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Check a connection out of the pool for the duration of the block.

        If the block raises, its uncommitted writes are rolled back before
        the connection is returned, so the next user can't commit them.
        """
        if self._pool is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")

        conn = await self._pool.get()
        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                await conn.rollback()
            raise
        finally:
            self._pool.put_nowait(conn)

    # Users

    async def get_user(self, user_id: int) -> Optional[User]:
        async with self.connection() as conn:
            cursor = await conn.execute(
                f'SELECT {USER_COLUMNS} FROM "user" WHERE id = ?', (user_id,)
            )
            row = await cursor.fetchone()
        return _row_to_user(row) if row else None

    async def get_user_or_default(self, user_id: int) -> User:
        """Missing users resolve to zeroed stats"""
        user = await self.get_user(user_id)
        return user if user else User(id=user_id)

    async def insert_user(self, user: User):
        async with self.connection() as conn:
            await conn.execute(
                f'INSERT INTO "user" ({USER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)',
                (
                    user.id, user.name, user.level, user.xp, user.social_credit,
                    user.relationship, user.example_input, user.example_output,
                ),
            )
            await conn.commit()

    async def update_user(self, user: User):
        async with self.connection() as conn:
            await conn.execute(
                """
                UPDATE "user"
                SET name = ?, level = ?, xp = ?, social_credit = ?,
                    relationship = ?, example_input = ?, example_output = ?
                WHERE id = ?
                """,
                (
                    user.name, user.level, user.xp, user.social_credit,
                    user.relationship, user.example_input, user.example_output,
                    user.id,
                ),
            )
            await conn.commit()

    async def find_user_by_name(self, name: str) -> Optional[User]:
        """Case-insensitive display name lookup"""
        async with self.connection() as conn:
            cursor = await conn.execute(
                f'SELECT {USER_COLUMNS} FROM "user" WHERE name = ? COLLATE NOCASE LIMIT 1',
                (name,),
            )
            row = await cursor.fetchone()
        return _row_to_user(row) if row else None

    async def find_users_by_names(self, names: Sequence[str]) -> List[User]:
        if not names:
            return []

        placeholders = ", ".join("?" for _ in names)
        async with self.connection() as conn:
            cursor = await conn.execute(
                f'SELECT {USER_COLUMNS} FROM "user" '
                f"WHERE lower(name) IN ({placeholders})",
                tuple(n.lower() for n in names),
            )
            rows = await cursor.fetchall()
        return [_row_to_user(row) for row in rows]

    async def adjust_social_credit(self, user_id: int, delta: int) -> int:
        """Add delta to a user's social credit, returning the new total"""
        async with self.connection() as conn:
            await conn.execute(
                'INSERT OR IGNORE INTO "user" (id, name) VALUES (?, ?)', (user_id, "Unknown")
            )
            await conn.execute(
                'UPDATE "user" SET social_credit = social_credit + ? WHERE id = ?',
                (delta, user_id),
            )
            cursor = await conn.execute(
                'SELECT social_credit FROM "user" WHERE id = ?', (user_id,)
            )
            row = await cursor.fetchone()
            await conn.commit()
        return row["social_credit"]

    # Memories

    async def upsert_memory(self, user_id: int, key: str, content: str):
        """
        Replace the memory stored under (user_id, key).

        Delete-then-insert so the row gets a fresh id and sorts as most recent.
        """
        async with self.connection() as conn:
            await conn.execute(
                "DELETE FROM memory WHERE user_id = ? AND key = ?", (str(user_id), key)
            )
            await conn.execute(
                "INSERT INTO memory (user_id, key, content) VALUES (?, ?, ?)",
                (str(user_id), key, content),
            )
            await conn.commit()

    async def delete_memory(self, user_id: int, key: str) -> bool:
        async with self.connection() as conn:
            cursor = await conn.execute(
                "DELETE FROM memory WHERE user_id = ? AND key = ?", (str(user_id), key)
            )
            await conn.commit()
        return cursor.rowcount > 0

    async def get_memories(
        self, user_id: int, limit: int = 5, randomize: bool = False
    ) -> List[Memory]:
        """Most recent (or random) memories for a user"""
        order = "RANDOM()" if randomize else "id DESC"
        async with self.connection() as conn:
            cursor = await conn.execute(
                f"SELECT id, user_id, key, content FROM memory "
                f"WHERE user_id = ? ORDER BY {order} LIMIT ?",
                (str(user_id), limit),
            )
            rows = await cursor.fetchall()
        return [_row_to_memory(row) for row in rows]

    # Math quiz history

    async def math_question_exists(self, question: str) -> bool:
        async with self.connection() as conn:
            cursor = await conn.execute(
                "SELECT 1 FROM math_question WHERE question = ?", (question,)
            )
            row = await cursor.fetchone()
        return row is not None

    async def insert_math_question(self, question: str, answer: float):
        async with self.connection() as conn:
            await conn.execute(
                "INSERT OR IGNORE INTO math_question (question, answer) VALUES (?, ?)",
                (question, answer),
            )
            await conn.commit()
