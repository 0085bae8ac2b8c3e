"""
Test novelty helpers: zalgo text, word shuffle, subreddit images, message cache
"""

import asyncio
import random
import unicodedata
import pytest
import os
import sys

import aiohttp

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.message_cache import CachedMessage, MessageCache
from core.zalgo import ZALGO_DOWN, ZALGO_MID, ZALGO_UP, shuffle_words, zalgify_text
from tools.image_source import RedditImageSource, pick_image


class MockResponse:
    def __init__(self, payload):
        self.payload = payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def raise_for_status(self):
        pass

    async def json(self):
        return self.payload


class MockSession:
    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error
        self.urls = []

    def get(self, url, headers=None, timeout=None):
        self.urls.append(url)
        if self.error:
            raise self.error
        return MockResponse(self.payload)


def post(url, over_18=False):
    return {"data": {"url_overridden_by_dest": url, "over_18": over_18}}


def test_zalgo_tables():
    for table in (ZALGO_UP, ZALGO_DOWN, ZALGO_MID):
        assert all(unicodedata.combining(c) or unicodedata.category(c).startswith("M") for c in table)
    print("✓ Zalgo table test passed")


def test_zalgify_keeps_base_text():
    text = "hello world"
    result = zalgify_text(text, random.Random(5))

    base = "".join(c for c in result if not unicodedata.category(c).startswith("M"))
    assert base == text
    # At least one mark above and one below every character
    assert len(result) >= len(text) * 3

    # Marks through the middle show up on roughly a third of characters
    long_result = zalgify_text("x" * 300, random.Random(5))
    mid_marks = sum(1 for c in long_result if c in ZALGO_MID)
    assert 0 < mid_marks <= 300
    print("✓ Zalgify test passed")


def test_shuffle_words():
    text = "the quick brown fox jumps"
    result = shuffle_words(text, random.Random(2))

    assert sorted(result.split(" ")) == sorted(text.split(" "))
    assert shuffle_words("single", random.Random(2)) == "single"
    print("✓ Shuffle test passed")


def test_pick_image_filters():
    children = [
        post("https://i.redd.it/safe.jpg"),
        post("https://i.redd.it/nsfw.jpg", over_18=True),
        post("https://www.reddit.com/gallery/abc"),
        {"data": {}},
    ]

    for seed in range(10):
        assert pick_image(children, random.Random(seed)) == "https://i.redd.it/safe.jpg"

    assert pick_image([post("https://v.redd.it/video")], random.Random(0)) is None
    assert pick_image([], random.Random(0)) is None
    print("✓ Image filter test passed")


@pytest.mark.asyncio
async def test_random_image_fetch():
    listing = {"data": {"children": [post("https://i.imgur.com/cat.png")]}}
    session = MockSession(payload=listing)
    source = RedditImageSource(session, ["aww"])

    assert await source.random_image(random.Random(0)) == "https://i.imgur.com/cat.png"
    assert session.urls == ["https://www.reddit.com/r/aww/.json"]
    print("✓ Image fetch test passed")


@pytest.mark.asyncio
async def test_random_image_failures():
    failing = RedditImageSource(MockSession(error=aiohttp.ClientError("down")), ["aww"])
    assert await failing.random_image(random.Random(0)) is None

    empty = RedditImageSource(MockSession(payload={}), ["aww"])
    assert await empty.random_image(random.Random(0)) is None

    unconfigured = RedditImageSource(MockSession(payload={}), [])
    assert await unconfigured.random_image(random.Random(0)) is None
    print("✓ Image failure test passed")


def test_message_cache():
    cache = MessageCache(max_messages=3)
    for i, name in enumerate(["alice", "bob", "alice", "carol"]):
        cache.add(1, CachedMessage(id=i, author_id=i, author_name=name, content=f"m{i}", is_bot=False))
    cache.add(1, CachedMessage(id=9, author_id=99, author_name="Trickster", content="hi", is_bot=True))

    # Bounded: oldest two evicted
    assert [m.id for m in cache.recent(1)] == [2, 3, 9]
    assert [m.id for m in cache.recent(1, limit=2)] == [3, 9]
    assert cache.participants(1) == ["alice", "carol"]

    assert cache.update(1, 3, "edited")
    assert cache.recent(1)[1].content == "edited"
    assert not cache.update(1, 0, "evicted")

    cache.remove(1, 3)
    assert [m.id for m in cache.recent(1)] == [2, 9]
    assert cache.recent(2) == []
    print("✓ Message cache test passed")


if __name__ == "__main__":
    test_zalgo_tables()
    test_zalgify_keeps_base_text()
    test_shuffle_words()
    test_pick_image_filters()
    asyncio.run(test_random_image_fetch())
    asyncio.run(test_random_image_failures())
    test_message_cache()
    print("\n✅ All novelty tests passed!")
