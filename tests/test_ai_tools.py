"""
Test AI tool definitions and execution
"""

import asyncio
import pytest
import tempfile
import os
import sys
from pathlib import Path

import aiohttp

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.database import Database, User
from tools.ai_tools import AIToolExecutor, ToolName, get_ai_tools
from tools.web_search import SearchResult


class MockSearchClient:
    """Mock BraveSearchClient"""
    def __init__(self, results=None, error=None):
        self.results = results or []
        self.error = error
        self.queries = []

    async def search(self, query):
        self.queries.append(query)
        if self.error:
            raise self.error
        return self.results


class BrokenDatabase:
    """Database whose every write fails"""
    async def upsert_memory(self, *args):
        raise RuntimeError("disk full")

    async def adjust_social_credit(self, *args):
        raise RuntimeError("disk full")

    async def find_user_by_name(self, name):
        raise RuntimeError("disk full")


def test_tool_definitions():
    """Test every tool has a schema and web search is optional"""
    tools = get_ai_tools()
    names = {t["name"] for t in tools}

    assert names == {t.value for t in ToolName}
    for tool in tools:
        assert tool["input_schema"]["type"] == "object"
        assert tool["description"]

    without_search = {t["name"] for t in get_ai_tools(include_web_search=False)}
    assert "web_search" not in without_search
    assert len(without_search) == len(names) - 1
    print("✓ Tool definitions test passed")


@pytest.mark.asyncio
async def test_memory_tools():
    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.sqlite")
        await db.initialize()
        executor = AIToolExecutor(db, user_id=1)

        await executor.execute("save_memory", {"memory_name": "pets", "memory_content": "A cat"})
        await executor.execute("save_memory", {"memory_name": "pets", "memory_content": "Two cats"})

        memories = await db.get_memories(1)
        assert [(m.key, m.content) for m in memories] == [("pets", "Two cats")]

        result = await executor.execute("remove_memory", {"memory_name": "pets"})
        assert "Removed" in result
        assert await db.get_memories(1) == []

        result = await executor.execute("save_memory", {"memory_name": "pets"})
        assert result.startswith("Error")

        assert executor.log_lines == [
            "Saved memory `pets`",
            "Saved memory `pets`",
            "Removed memory `pets`",
        ]
        await db.close()
        print("✓ Memory tools test passed")


@pytest.mark.asyncio
async def test_social_credit_tool():
    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.sqlite")
        await db.initialize()
        executor = AIToolExecutor(db, user_id=7)

        assert await executor.execute("social_credit", {"social_credit": 15}) == "Social credit is now 15"
        assert await executor.execute("social_credit", {"social_credit": 20, "remove": True}) == "Social credit is now -5"
        assert executor.log_lines == ["Social credit +15 (now 15)", "Social credit -20 (now -5)"]

        result = await executor.execute("social_credit", {"social_credit": "lots"})
        assert result.startswith("Error")
        await db.close()
        print("✓ Social credit tool test passed")


@pytest.mark.asyncio
async def test_user_memory_resolution():
    """Test names resolve through mentions, then the database, and are never invented"""
    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.sqlite")
        await db.initialize()
        await db.insert_user(User(id=2, name="Bob"))

        executor = AIToolExecutor(db, user_id=1, mentions={"Carol": 3})

        await executor.execute("save_user_memory", {
            "username": "carol", "memory_name": "food", "memory_content": "Hates olives"
        })
        await executor.execute("save_user_memory", {
            "username": "BOB", "memory_name": "food", "memory_content": "Loves olives"
        })
        result = await executor.execute("save_user_memory", {
            "username": "dave", "memory_name": "food", "memory_content": "Unknown"
        })

        assert "Unknown user" in result
        assert (await db.get_memories(3))[0].content == "Hates olives"
        assert (await db.get_memories(2))[0].content == "Loves olives"
        assert await db.find_user_by_name("dave") is None

        result = await executor.execute("remove_user_memory", {"username": "bob", "memory_name": "food"})
        assert "Removed" in result
        assert await db.get_memories(2) == []

        await db.close()
        print("✓ User memory resolution test passed")


@pytest.mark.asyncio
async def test_web_search_tool():
    results = [SearchResult("Axolotl", "https://example.com/axolotl", "Salamander")]
    search_client = MockSearchClient(results=results)
    executor = AIToolExecutor(db=None, user_id=1, search_client=search_client)

    result = await executor.execute("web_search", {"query": "axolotl"})
    assert "Axolotl" in result
    assert search_client.queries == ["axolotl"]
    assert executor.log_lines == ["Searched the web for `axolotl`"]

    failing = AIToolExecutor(
        db=None, user_id=1, search_client=MockSearchClient(error=aiohttp.ClientError("boom"))
    )
    assert (await failing.execute("web_search", {"query": "x"})).startswith("Web search failed")

    unavailable = AIToolExecutor(db=None, user_id=1)
    assert await unavailable.execute("web_search", {"query": "x"}) == "Web search is not available"
    print("✓ Web search tool test passed")


@pytest.mark.asyncio
async def test_storage_errors_are_reported_not_raised():
    executor = AIToolExecutor(BrokenDatabase(), user_id=1)

    assert await executor.execute("save_memory", {"memory_name": "a", "memory_content": "b"}) == "Memory could not be saved"
    assert await executor.execute("social_credit", {"social_credit": 1}) == "Social credit unchanged"
    result = await executor.execute("save_user_memory", {
        "username": "x", "memory_name": "a", "memory_content": "b"
    })
    assert "Unknown user" in result
    assert executor.log_lines == []
    print("✓ Storage error test passed")


@pytest.mark.asyncio
async def test_malformed_arguments_are_reported_not_raised():
    """Test null, numeric and non-object tool input never escapes execute"""
    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.sqlite")
        await db.initialize()
        executor = AIToolExecutor(db, user_id=1)

        result = await executor.execute("save_memory", {"memory_name": "k", "memory_content": None})
        assert result == "Error: memory_name and memory_content are required"

        result = await executor.execute("save_memory", {"memory_name": "age", "memory_content": 42})
        assert result == "Saved memory 'age'"
        assert [(m.key, m.content) for m in await db.get_memories(1)] == [("age", "42")]

        result = await executor.execute("remove_memory", None)
        assert result == "Error: memory_name is required"

        result = await executor.execute("save_user_memory", ["bob", "k", "v"])
        assert result.startswith("Error")
        await db.close()

    failing = AIToolExecutor(db=None, user_id=1, search_client=MockSearchClient(error=ValueError("bad json")))
    result = await failing.execute("web_search", {"query": "weather"})
    assert result == "Error running web_search: bad json"
    assert failing.log_lines == []
    print("✓ Malformed argument test passed")


@pytest.mark.asyncio
async def test_unknown_tool():
    executor = AIToolExecutor(db=None, user_id=1)
    assert await executor.execute("launch_missiles", {}) == "Unknown tool: launch_missiles"
    print("✓ Unknown tool test passed")


if __name__ == "__main__":
    test_tool_definitions()
    asyncio.run(test_memory_tools())
    asyncio.run(test_social_credit_tool())
    asyncio.run(test_user_memory_resolution())
    asyncio.run(test_web_search_tool())
    asyncio.run(test_storage_errors_are_reported_not_raised())
    asyncio.run(test_malformed_arguments_are_reported_not_raised())
    asyncio.run(test_unknown_tool())
    print("\n✅ All AI tool tests passed!")
