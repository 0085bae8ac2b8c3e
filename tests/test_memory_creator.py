"""
Test background memory creation
"""

import asyncio
import json
import pytest
import tempfile
import os
import sys
from pathlib import Path
from types import SimpleNamespace

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.config import BotConfig
from core.database import Database, User
from core.memory_creator import MemoryCreator, build_memory_prompt, parse_memory_response


class MockMessages:
    """Mock anthropic messages resource returning canned texts in order"""
    def __init__(self, texts):
        self.texts = list(texts)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.texts.pop(0))])


class MockAnthropic:
    def __init__(self, texts):
        self.messages = MockMessages(texts)


def test_parse_tolerates_prose():
    text = 'Here you go:\n{"memories": [{"username": "alice", "key": "pets", "content": "Has a cat"}]}\nDone!'
    entries = parse_memory_response(text)

    assert len(entries) == 1
    assert (entries[0].username, entries[0].key, entries[0].content) == ("alice", "pets", "Has a cat")
    print("✓ Prose tolerant parsing test passed")


def test_parse_skips_incomplete_entries():
    text = json.dumps({"memories": [
        {"username": "alice", "key": "pets"},
        "not an object",
        {"username": "bob", "key": "work", "content": "Baker"},
    ]})
    entries = parse_memory_response(text)

    assert [e.username for e in entries] == ["bob"]
    print("✓ Incomplete entry test passed")


def test_parse_rejects_garbage():
    for text in ["no json here", '{"other": []}', "{not json}"]:
        with pytest.raises(ValueError):
            parse_memory_response(text)
    print("✓ Garbage rejection test passed")


def test_prompt_includes_conversation():
    prompt = build_memory_prompt("alice: I got a cat", "alice, bob")

    assert "alice: I got a cat" in prompt
    assert "Participants in this conversation: alice, bob" in prompt
    assert '"memories"' in prompt
    print("✓ Prompt test passed")


@pytest.mark.asyncio
async def test_create_memories_resolves_names():
    """Test known names are stored, unknown names are skipped"""
    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.sqlite")
        await db.initialize()
        await db.insert_user(User(id=1, name="Alice"))
        await db.upsert_memory(1, "pets", "Has a dog")

        response = json.dumps({"memories": [
            {"username": "alice", "key": "pets", "content": "Has a dog and a new cat"},
            {"username": "ghost", "key": "work", "content": "Haunts houses"},
        ]})
        client = MockAnthropic([response])
        config = BotConfig(bot_id="test", name="Test")
        config.api.memory_model = "memory-model"
        creator = MemoryCreator(config, db, anthropic_client=client)

        created = await creator.create_memories("alice: got a cat", ["alice", "ghost"])

        assert created == 1
        assert client.messages.calls[0]["model"] == "memory-model"
        memories = await db.get_memories(1)
        assert [(m.key, m.content) for m in memories] == [("pets", "Has a dog and a new cat")]

        await db.close()
        print("✓ Name resolution test passed")


@pytest.mark.asyncio
async def test_create_memories_retries_bad_json():
    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.sqlite")
        await db.initialize()
        await db.insert_user(User(id=1, name="alice"))

        good = json.dumps({"memories": [{"username": "alice", "key": "k", "content": "c"}]})
        client = MockAnthropic(["garbage", good])
        creator = MemoryCreator(BotConfig(bot_id="test", name="Test"), db, anthropic_client=client)

        assert await creator.create_memories("ctx", ["alice"]) == 1
        assert len(client.messages.calls) == 2

        # Three bad responses: gives up without raising
        client = MockAnthropic(["bad"] * 3)
        creator = MemoryCreator(BotConfig(bot_id="test", name="Test"), db, anthropic_client=client)
        assert await creator.create_memories("ctx", ["alice"]) == 0
        assert len(client.messages.calls) == 3

        await db.close()
        print("✓ Retry test passed")


@pytest.mark.asyncio
async def test_create_memories_stops_on_hard_failure():
    """Test a failure another attempt can't fix abandons the pass after one call"""
    class FailingMessages(MockMessages):
        async def create(self, **kwargs):
            self.calls.append(kwargs)
            raise RuntimeError("invalid x-api-key")

    client = MockAnthropic([])
    client.messages = FailingMessages([])
    creator = MemoryCreator(BotConfig(bot_id="test", name="Test"), db=None, anthropic_client=client)

    assert await creator.create_memories("ctx", ["alice"]) == 0
    assert len(client.messages.calls) == 1
    print("✓ Hard failure test passed")


@pytest.mark.asyncio
async def test_create_memories_without_client():
    creator = MemoryCreator(BotConfig(bot_id="test", name="Test"), db=None)
    assert await creator.create_memories("ctx", ["alice"]) == 0
    print("✓ No client test passed")


if __name__ == "__main__":
    test_parse_tolerates_prose()
    test_parse_skips_incomplete_entries()
    test_parse_rejects_garbage()
    test_prompt_includes_conversation()
    asyncio.run(test_create_memories_resolves_names())
    asyncio.run(test_create_memories_retries_bad_json())
    asyncio.run(test_create_memories_stops_on_hard_failure())
    asyncio.run(test_create_memories_without_client())
    print("\n✅ All memory creator tests passed!")
