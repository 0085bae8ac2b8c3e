"""
Test SQLite storage: migrations, users, memories, math history
"""

import asyncio
import pytest
import tempfile
import os
import sys
from pathlib import Path

import aiosqlite

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.database import Database, MIGRATIONS, User


@pytest.mark.asyncio
async def test_migrations_set_user_version():
    """Test every migration is applied once and recorded"""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.sqlite"
        db = Database(db_path, pool_size=2)
        await db.initialize()
        await db.close()

        # Reopening must not re-run migrations (ALTER TABLE would fail)
        db = Database(db_path, pool_size=2)
        await db.initialize()

        async with db.connection() as conn:
            cursor = await conn.execute("PRAGMA user_version")
            row = await cursor.fetchone()
        assert row[0] == MIGRATIONS[-1][0]

        await db.close()
        print("✓ Migration test passed")


@pytest.mark.asyncio
async def test_migrates_old_schema():
    """Test a version 1 database gains the later columns and tables"""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "old.sqlite"

        async with aiosqlite.connect(str(db_path)) as conn:
            for statement in MIGRATIONS[0][1]:
                await conn.execute(statement)
            await conn.execute('INSERT INTO "user" (id, name, level, xp) VALUES (1, \'alice\', 3, 7)')
            await conn.execute("PRAGMA user_version = 1")
            await conn.commit()

        db = Database(db_path, pool_size=1)
        await db.initialize()

        user = await db.get_user(1)
        assert user.name == "alice"
        assert user.level == 3
        assert user.relationship == ""
        assert not await db.math_question_exists("1 + 1")

        await db.close()
        print("✓ Old schema migration test passed")


@pytest.mark.asyncio
async def test_user_round_trip():
    """Test insert, update, default and name lookups"""
    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.sqlite")
        await db.initialize()

        assert await db.get_user(10) is None
        default = await db.get_user_or_default(10)
        assert (default.level, default.xp, default.social_credit) == (0, 0, 0)

        await db.insert_user(User(id=10, name="Alice", xp=5))
        user = await db.get_user(10)
        user.level, user.xp = 2, 0
        await db.update_user(user)

        assert (await db.get_user(10)).level == 2
        assert (await db.find_user_by_name("alice")).id == 10
        assert await db.find_user_by_name("bob") is None

        await db.insert_user(User(id=11, name="Bob"))
        found = await db.find_users_by_names(["ALICE", "bob", "carol"])
        assert sorted(u.id for u in found) == [10, 11]
        assert await db.find_users_by_names([]) == []

        await db.close()
        print("✓ User round trip test passed")


@pytest.mark.asyncio
async def test_social_credit():
    """Test social credit accumulates and creates missing users"""
    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.sqlite")
        await db.initialize()

        assert await db.adjust_social_credit(20, 5) == 5
        assert await db.adjust_social_credit(20, -12) == -7
        assert (await db.get_user(20)).social_credit == -7

        await db.close()
        print("✓ Social credit test passed")


@pytest.mark.asyncio
async def test_memory_upsert_replaces():
    """Test writing the same key twice leaves one row with the latest content"""
    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.sqlite")
        await db.initialize()

        await db.upsert_memory(1, "pets", "Has a cat")
        await db.upsert_memory(1, "work", "Nurse")
        await db.upsert_memory(1, "pets", "Has a cat and a dog")

        memories = await db.get_memories(1, limit=10)
        assert len(memories) == 2
        pets = [m for m in memories if m.key == "pets"]
        assert len(pets) == 1
        assert pets[0].content == "Has a cat and a dog"
        # Most recent first
        assert memories[0].key == "pets"

        assert len(await db.get_memories(1, limit=1)) == 1
        assert len(await db.get_memories(1, limit=10, randomize=True)) == 2

        assert await db.delete_memory(1, "work")
        assert not await db.delete_memory(1, "work")
        assert [m.key for m in await db.get_memories(1)] == ["pets"]

        await db.close()
        print("✓ Memory upsert test passed")


@pytest.mark.asyncio
async def test_failed_write_is_rolled_back():
    """Test a write that fails halfway leaves nothing for the next commit on that connection"""
    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.sqlite", pool_size=1)
        await db.initialize()

        await db.upsert_memory(42, "preferences", "A")

        # content is NOT NULL: the insert fails after the delete has run
        with pytest.raises(aiosqlite.IntegrityError):
            await db.upsert_memory(42, "preferences", None)

        # Unrelated write on the same (only) connection
        await db.insert_user(User(id=7, name="bob"))

        memories = await db.get_memories(42)
        assert [(m.key, m.content) for m in memories] == [("preferences", "A")]
        assert (await db.get_user(7)).name == "bob"

        await db.close()
        print("✓ Failed write rollback test passed")


@pytest.mark.asyncio
async def test_math_question_history():
    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.sqlite")
        await db.initialize()

        assert not await db.math_question_exists("12 + 7")
        await db.insert_math_question("12 + 7", 19.0)
        await db.insert_math_question("12 + 7", 19.0)  # Ignored duplicate
        assert await db.math_question_exists("12 + 7")

        await db.close()
        print("✓ Math question history test passed")


@pytest.mark.asyncio
async def test_pool_checkout_blocks_when_exhausted():
    """Test a second checkout waits until the single connection is returned"""
    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.sqlite", pool_size=1)
        await db.initialize()

        async def second_checkout():
            async with db.connection():
                return True

        async with db.connection():
            waiter = asyncio.create_task(second_checkout())
            await asyncio.sleep(0.05)
            assert not waiter.done()

        assert await asyncio.wait_for(waiter, timeout=1)

        await db.close()
        print("✓ Pool checkout test passed")


if __name__ == "__main__":
    asyncio.run(test_migrations_set_user_version())
    asyncio.run(test_migrates_old_schema())
    asyncio.run(test_user_round_trip())
    asyncio.run(test_social_credit())
    asyncio.run(test_memory_upsert_replaces())
    asyncio.run(test_failed_write_is_rolled_back())
    asyncio.run(test_math_question_history())
    asyncio.run(test_pool_checkout_blocks_when_exhausted())
    print("\n✅ All database tests passed!")
