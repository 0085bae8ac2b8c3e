"""
Message Cache
Bounded per-channel history of recent messages, used to build AI context.
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List


@dataclass
class CachedMessage:
    id: int
    author_id: int
    author_name: str
    content: str
    is_bot: bool


class MessageCache:
    """Lightweight in-memory conversation storage"""

    def __init__(self, max_messages: int = 100):
        """
        Args:
            max_messages: Maximum messages to store per channel
        """
        self.channels: Dict[int, Deque[CachedMessage]] = {}
        self.max_messages = max_messages

    def add(self, channel_id: int, message: CachedMessage) -> None:
        if channel_id not in self.channels:
            self.channels[channel_id] = deque(maxlen=self.max_messages)
        self.channels[channel_id].append(message)

    def update(self, channel_id: int, message_id: int, content: str) -> bool:
        """Replace the content of a cached message (edits). Returns False if not cached."""
        for cached in self.channels.get(channel_id, ()):
            if cached.id == message_id:
                cached.content = content
                return True
        return False

    def remove(self, channel_id: int, message_id: int) -> None:
        messages = self.channels.get(channel_id)
        if not messages:
            return
        for cached in list(messages):
            if cached.id == message_id:
                messages.remove(cached)
                break

    def recent(self, channel_id: int, limit: int = 20) -> List[CachedMessage]:
        """
        Retrieve recent messages for a channel.

        Returns:
            Up to limit messages, most recent last
        """
        if channel_id not in self.channels:
            return []
        return list(self.channels[channel_id])[-limit:]

    def participants(self, channel_id: int, limit: int = 20) -> List[str]:
        """Distinct human author names among the recent messages, in first-seen order"""
        names = []
        for cached in self.recent(channel_id, limit):
            if not cached.is_bot and cached.author_name not in names:
                names.append(cached.author_name)
        return names
