"""
Memory Creator - Background extraction of per-user facts from conversation

Every few messages a channel's recent conversation is sent to the model,
which returns consolidated facts per participant as JSON. Each fact is
written with replace-by-key semantics.
"""

import json
import logging
from dataclasses import dataclass
from typing import List, Optional, TYPE_CHECKING

from .retry_logic import GenerationError, UnusableOutput, retry_generation

if TYPE_CHECKING:
    from anthropic import AsyncAnthropic
    from .config import BotConfig
    from .database import Database

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


@dataclass
class MemoryEntry:
    username: str
    key: str
    content: str


def build_memory_prompt(context: str, participants: str) -> str:
    return f"""You are a memory creation system for a Discord bot. Your job is to extract important facts, preferences, and information about users from conversations.

Analyze the following conversation and create memories for each participant. Focus on:
- Personal preferences and interests
- Facts about their life, work, or hobbies
- Relationships with other users
- Behaviors and patterns
- Important events or milestones

Participants in this conversation: {participants}

Conversation:
{context}

Respond ONLY with valid JSON in this exact format:
{{
  "memories": [
    {{
      "username": "exact_username_from_conversation",
      "key": "category_or_topic",
      "content": "the actual memory content"
    }}
  ]
}}

IMPORTANT GUIDELINES:
- Only create memories if there's meaningful information from THIS conversation
- Each user should have AT MOST ONE memory entry per unique "key" category
- The "key" should be a broad category like "preferences", "hobbies", "work", "personality", "relationships", "recent_activity"
- The "content" should combine ALL related facts for that category into ONE comprehensive entry
- Use exact usernames as they appear in the conversation
- If there's nothing meaningful to remember, return an empty memories array

EXAMPLE - CORRECT (one entry combining related facts):
{{
  "memories": [
    {{"username": "alice", "key": "preferences", "content": "Likes cats, dislikes insects"}}
  ]
}}

EXAMPLE - WRONG (duplicate keys for the same user):
{{
  "memories": [
    {{"username": "alice", "key": "preferences", "content": "Likes cats"}},
    {{"username": "alice", "key": "preferences", "content": "Dislikes insects"}}
  ]
}}

Remember: Output ONLY valid JSON, nothing else. Combine related information under the same key."""


def parse_memory_response(response_text: str) -> List[MemoryEntry]:
    """
    Parse the model's JSON, tolerating prose around it.

    Raises:
        ValueError: If no valid memories object can be decoded
    """
    start = response_text.find("{")
    end = response_text.rfind("}")
    if start == -1 or end < start:
        raise ValueError(f"No JSON object in memory response: {response_text[:200]!r}")

    data = json.loads(response_text[start:end + 1])
    if not isinstance(data, dict) or not isinstance(data.get("memories"), list):
        raise ValueError("Memory response is missing a 'memories' list")

    entries = []
    for item in data["memories"]:
        if not isinstance(item, dict):
            continue
        username = str(item.get("username", "")).strip()
        key = str(item.get("key", "")).strip()
        content = str(item.get("content", "")).strip()
        if username and key and content:
            entries.append(MemoryEntry(username=username, key=key, content=content))
    return entries


class MemoryCreator:
    """Runs one summarization pass per call. Intended to be spawned as a task."""

    def __init__(
        self,
        config: "BotConfig",
        db: "Database",
        anthropic_client: Optional["AsyncAnthropic"] = None,
    ):
        self.config = config
        self.db = db
        self.anthropic = anthropic_client
        self.model = config.api.memory_model or config.api.model

    async def _request_memories(self, prompt: str) -> List[MemoryEntry]:
        response = await self.anthropic.messages.create(
            model=self.model,
            max_tokens=2048,
            messages=[{"role": "user", "content": prompt}],
        )

        response_text = "".join(b.text for b in response.content if b.type == "text")
        logger.debug(f"Raw memory response: {response_text}")

        try:
            return parse_memory_response(response_text)
        except ValueError as e:
            raise UnusableOutput(f"Failed to parse memory JSON: {e}") from e

    async def create_memories(self, context: str, participants: List[str]) -> int:
        """
        Extract and store memories from a conversation window.

        Returns: number of memories written (0 on any failure)
        """
        if self.anthropic is None:
            logger.warning("API key not configured, skipping memory creation")
            return 0

        logger.info(f"Creating memories using model: {self.model}")
        prompt = build_memory_prompt(context, ", ".join(participants))

        try:
            entries = await retry_generation(
                lambda: self._request_memories(prompt), "Memory creation", MAX_ATTEMPTS
            )
        except GenerationError as e:
            logger.error(f"Memory creation abandoned: {e}")
            return 0

        created = 0
        for entry in entries:
            try:
                user = await self.db.find_user_by_name(entry.username)
            except Exception as e:
                logger.error(f"Failed to look up '{entry.username}': {e}", exc_info=True)
                continue

            if user is None:
                logger.warning(f"Could not resolve username '{entry.username}' to user ID, skipping memory")
                continue

            try:
                await self.db.upsert_memory(user.id, entry.key, entry.content)
            except Exception as e:
                logger.error(f"Failed to insert memory for {entry.username}: {e}", exc_info=True)
                continue

            logger.info(f"Created memory for {entry.username} ({user.id}): {entry.key} = {entry.content}")
            created += 1

        logger.info(f"Created {created} memories")
        return created
