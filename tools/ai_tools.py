"""
AI Tools - Callable tools exposed to the model during a reply

The tool set is closed: every tool has a ToolName member and a handler
in AIToolExecutor. Storage failures inside a tool are logged and reported
back to the model as text; they never abort the reply.
"""

import asyncio
import logging
from enum import Enum
from typing import Dict, List, Optional, TYPE_CHECKING

import aiohttp

from .web_search import format_search_results

if TYPE_CHECKING:
    from core.database import Database
    from .web_search import BraveSearchClient

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    SAVE_MEMORY = "save_memory"
    REMOVE_MEMORY = "remove_memory"
    SOCIAL_CREDIT = "social_credit"
    WEB_SEARCH = "web_search"
    SAVE_USER_MEMORY = "save_user_memory"
    REMOVE_USER_MEMORY = "remove_user_memory"


def get_ai_tools(include_web_search: bool = True) -> list:
    """
    Generate tool definitions for the Claude API.

    Args:
        include_web_search: Only offer web_search when a search client exists
    """
    tools = [
        {
            "name": ToolName.SAVE_MEMORY.value,
            "description": "Save a memory about the user you are responding to. If a memory with the same name already exists it is overwritten.",
            "input_schema": {
                "type": "object",
                "properties": {
                    "memory_name": {
                        "type": "string",
                        "description": "Category of the memory, e.g. 'preferences', 'hobbies', 'work'"
                    },
                    "memory_content": {
                        "type": "string",
                        "description": "The content of the memory"
                    }
                },
                "required": ["memory_name", "memory_content"]
            }
        },
        {
            "name": ToolName.REMOVE_MEMORY.value,
            "description": "Remove a memory about the user you are responding to, by name.",
            "input_schema": {
                "type": "object",
                "properties": {
                    "memory_name": {
                        "type": "string",
                        "description": "The name of the memory to remove"
                    }
                },
                "required": ["memory_name"]
            }
        },
        {
            "name": ToolName.SOCIAL_CREDIT.value,
            "description": "Change the social credit of the user you are responding to.",
            "input_schema": {
                "type": "object",
                "properties": {
                    "social_credit": {
                        "type": "integer",
                        "description": "The amount of social credit to add (negative to remove)"
                    },
                    "remove": {
                        "type": "boolean",
                        "description": "Set to true to remove the social credit instead of adding it"
                    }
                },
                "required": ["social_credit"]
            }
        },
        {
            "name": ToolName.SAVE_USER_MEMORY.value,
            "description": "Save a memory about another user in the conversation, identified by their display name.",
            "input_schema": {
                "type": "object",
                "properties": {
                    "username": {
                        "type": "string",
                        "description": "Display name of the user, exactly as it appears in the conversation"
                    },
                    "memory_name": {
                        "type": "string",
                        "description": "Category of the memory"
                    },
                    "memory_content": {
                        "type": "string",
                        "description": "The content of the memory"
                    }
                },
                "required": ["username", "memory_name", "memory_content"]
            }
        },
        {
            "name": ToolName.REMOVE_USER_MEMORY.value,
            "description": "Remove a memory about another user in the conversation, identified by their display name.",
            "input_schema": {
                "type": "object",
                "properties": {
                    "username": {
                        "type": "string",
                        "description": "Display name of the user"
                    },
                    "memory_name": {
                        "type": "string",
                        "description": "The name of the memory to remove"
                    }
                },
                "required": ["username", "memory_name"]
            }
        },
    ]

    if include_web_search:
        tools.append({
            "name": ToolName.WEB_SEARCH.value,
            "description": "Search the web for current information. Use sparingly.",
            "input_schema": {
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "The search query"
                    }
                },
                "required": ["query"]
            }
        })

    return tools


def _text(params: dict, name: str) -> str:
    """String argument from tool input; null and missing become empty"""
    value = params.get(name)
    if value is None:
        return ""
    return str(value).strip()


class AIToolExecutor:
    """
    Executes tool calls for one AI reply.

    Bound to the acting user. Each call appends one human-readable line to
    log_lines so the final reply can show what the model did.
    """

    def __init__(
        self,
        db: "Database",
        user_id: int,
        mentions: Optional[Dict[str, int]] = None,
        search_client: Optional["BraveSearchClient"] = None,
    ):
        self.db = db
        self.user_id = user_id
        self.search_client = search_client
        # Case-insensitive name -> user id
        self.mentions = {name.lower(): uid for name, uid in (mentions or {}).items()}
        self.log_lines: List[str] = []

        self._handlers = {
            ToolName.SAVE_MEMORY: self._save_memory,
            ToolName.REMOVE_MEMORY: self._remove_memory,
            ToolName.SOCIAL_CREDIT: self._social_credit,
            ToolName.WEB_SEARCH: self._web_search,
            ToolName.SAVE_USER_MEMORY: self._save_user_memory,
            ToolName.REMOVE_USER_MEMORY: self._remove_user_memory,
        }

    async def execute(self, name: str, tool_input: dict) -> str:
        """Route a tool call to its handler, returning the tool_result text"""
        try:
            tool = ToolName(name)
        except ValueError:
            logger.warning(f"Model called unknown tool: {name}")
            return f"Unknown tool: {name}"

        logger.info(f"Tool call {tool.value}: {tool_input}")
        if tool_input is None:
            tool_input = {}
        if not isinstance(tool_input, dict):
            return f"Error: {tool.value} expects an object of arguments"

        try:
            return await self._handlers[tool](tool_input)
        except Exception as e:
            logger.error(f"Tool {tool.value} failed: {e}", exc_info=True)
            return f"Error running {tool.value}: {e}"

    async def _resolve_user(self, username: str) -> Optional[int]:
        """Resolve a display name to a known user id. Never invents one."""
        user_id = self.mentions.get(username.lower())
        if user_id is not None:
            return user_id

        try:
            user = await self.db.find_user_by_name(username)
        except Exception as e:
            logger.error(f"Error resolving username '{username}': {e}", exc_info=True)
            return None
        return user.id if user else None

    async def _save_memory(self, params: dict) -> str:
        key = _text(params, "memory_name")
        content = _text(params, "memory_content")
        if not key or not content:
            return "Error: memory_name and memory_content are required"

        try:
            await self.db.upsert_memory(self.user_id, key, content)
        except Exception as e:
            logger.error(f"Failed to save memory '{key}' for {self.user_id}: {e}", exc_info=True)
            return "Memory could not be saved"

        self.log_lines.append(f"Saved memory `{key}`")
        return f"Saved memory '{key}'"

    async def _remove_memory(self, params: dict) -> str:
        key = _text(params, "memory_name")
        if not key:
            return "Error: memory_name is required"

        try:
            removed = await self.db.delete_memory(self.user_id, key)
        except Exception as e:
            logger.error(f"Failed to remove memory '{key}' for {self.user_id}: {e}", exc_info=True)
            return "Memory could not be removed"

        self.log_lines.append(f"Removed memory `{key}`")
        return f"Removed memory '{key}'" if removed else f"No memory named '{key}'"

    async def _social_credit(self, params: dict) -> str:
        try:
            amount = int(params.get("social_credit", 0))
        except (TypeError, ValueError):
            return "Error: social_credit must be an integer"

        if params.get("remove") and amount > 0:
            amount = -amount

        try:
            total = await self.db.adjust_social_credit(self.user_id, amount)
        except Exception as e:
            logger.error(f"Failed to adjust social credit for {self.user_id}: {e}", exc_info=True)
            return "Social credit unchanged"

        self.log_lines.append(f"Social credit {amount:+d} (now {total})")
        return f"Social credit is now {total}"

    async def _web_search(self, params: dict) -> str:
        query = _text(params, "query")
        if not query:
            return "Error: query is required"
        if self.search_client is None:
            return "Web search is not available"

        try:
            results = await self.search_client.search(query)
        except (aiohttp.ClientError, asyncio.TimeoutError, RuntimeError) as e:
            logger.error(f"Web search failed for '{query}': {e}")
            return f"Web search failed: {e}"

        self.log_lines.append(f"Searched the web for `{query}`")
        return format_search_results(query, results)

    async def _save_user_memory(self, params: dict) -> str:
        username = _text(params, "username")
        key = _text(params, "memory_name")
        content = _text(params, "memory_content")
        if not username or not key or not content:
            return "Error: username, memory_name and memory_content are required"

        user_id = await self._resolve_user(username)
        if user_id is None:
            logger.warning(f"Could not resolve username '{username}', skipping memory")
            return f"Unknown user '{username}', memory not saved"

        try:
            await self.db.upsert_memory(user_id, key, content)
        except Exception as e:
            logger.error(f"Failed to save memory '{key}' for {username}: {e}", exc_info=True)
            return "Memory could not be saved"

        self.log_lines.append(f"Saved memory `{key}` for {username}")
        return f"Saved memory '{key}' for {username}"

    async def _remove_user_memory(self, params: dict) -> str:
        username = _text(params, "username")
        key = _text(params, "memory_name")
        if not username or not key:
            return "Error: username and memory_name are required"

        user_id = await self._resolve_user(username)
        if user_id is None:
            logger.warning(f"Could not resolve username '{username}', skipping memory removal")
            return f"Unknown user '{username}', nothing removed"

        try:
            removed = await self.db.delete_memory(user_id, key)
        except Exception as e:
            logger.error(f"Failed to remove memory '{key}' for {username}: {e}", exc_info=True)
            return "Memory could not be removed"

        self.log_lines.append(f"Removed memory `{key}` for {username}")
        return f"Removed memory '{key}' for {username}" if removed else f"No memory named '{key}' for {username}"
