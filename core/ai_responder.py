"""
AI Responder - Persona replies through the Claude API

Builds the system prompt from the persona, the acting user's stats and
memories and the conversation context, then runs the tool-use loop.
Replies come back either complete (generate) or as a stream of growing
text snapshots (stream) for the StreamingRelay to render.
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional, TYPE_CHECKING

import anthropic

from .persona import KnownUser, render_system_prompt
from tools.ai_tools import AIToolExecutor, get_ai_tools

if TYPE_CHECKING:
    from anthropic import AsyncAnthropic
    from .command import AIRequest
    from .config import BotConfig
    from .database import Database
    from tools.web_search import BraveSearchClient

logger = logging.getLogger(__name__)


class AIError(Exception):
    """Missing API key or provider failure. Rendered to users as 'AI Error: ...'"""
    pass


class ResponseStream:
    """
    Incremental reply text.

    Each queue item is the full reply so far (not a delta). None marks
    the end of the stream, whether the reply finished or failed.
    """

    def __init__(self):
        self.queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self.task: Optional[asyncio.Task] = None

    def cancel(self):
        """Stop the producer. The relay still sees the closing None."""
        if self.task and not self.task.done():
            self.task.cancel()


class AIResponder:
    """Generates persona replies, optionally tool-augmented"""

    def __init__(
        self,
        config: "BotConfig",
        db: "Database",
        anthropic_client: Optional["AsyncAnthropic"] = None,
        search_client: Optional["BraveSearchClient"] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.db = db
        self.anthropic = anthropic_client
        self.search_client = search_client
        self._clock = clock

        logger.info(
            f"AIResponder initialized (model={config.api.model}, "
            f"web_search={'on' if search_client else 'off'})"
        )

    async def _prepare(self, request: "AIRequest"):
        """Build the system prompt and tool executor for a request"""
        if self.anthropic is None:
            raise AIError(f"API key not configured ({self.config.api.api_key_env_var})")

        try:
            user = await self.db.get_user_or_default(request.user_id)
            user.name = request.author_name
            memories = await self.db.get_memories(
                request.user_id,
                limit=self.config.ai.memory_limit,
                randomize=self.config.ai.memory_recall == "random",
            )

            other_names = {
                name for name in list(request.mentions) + list(request.participants)
                if name.lower() != user.name.lower()
            }
            others = await self.db.find_users_by_names(sorted(other_names))
        except Exception as e:
            raise AIError(f"Failed to load user data: {e}") from e

        known_users = [
            KnownUser.from_user(u) for u in others
            if u.id != request.user_id and (u.relationship or u.example_input)
        ]

        system_prompt = render_system_prompt(
            persona_name=self.config.persona.name,
            user=user,
            memories=memories,
            context=request.context,
            known_users=known_users,
            base_prompt=self.config.persona.base_prompt,
        )

        executor = AIToolExecutor(
            self.db,
            request.user_id,
            mentions=request.mentions,
            search_client=self.search_client,
        )
        return system_prompt, executor

    def _api_params(self, system_prompt: str, messages: list, final_round: bool) -> dict:
        params = {
            "model": self.config.api.model,
            "max_tokens": self.config.api.max_tokens,
            "temperature": self.config.api.temperature,
            "system": system_prompt,
            "messages": messages,
            "tools": get_ai_tools(include_web_search=self.search_client is not None),
        }
        if final_round:
            # Out of tool rounds: the model must answer in text now
            params["tool_choice"] = {"type": "none"}
        return params

    async def _run_tools(self, content, executor: AIToolExecutor) -> List[dict]:
        tool_results = []
        for block in content:
            if block.type == "tool_use":
                result = await executor.execute(block.name, block.input)
                tool_results.append({
                    "type": "tool_result",
                    "tool_use_id": block.id,
                    "content": result
                })
        return tool_results

    def render_reply(self, text: str, log_lines: List[str]) -> str:
        """Prefix tool log lines and clamp to the message length limit"""
        reply = text.strip()
        if log_lines:
            header = "\n".join(f"-# {line}" for line in log_lines)
            reply = f"{header}\n{reply}" if reply else header
        return reply[:self.config.ai.reply_chars]

    async def generate(self, request: "AIRequest") -> str:
        """
        Produce a complete reply.

        Raises:
            AIError: Missing API key or provider failure
        """
        system_prompt, executor = await self._prepare(request)
        messages = [{"role": "user", "content": request.content}]
        max_rounds = self.config.api.max_tool_rounds
        round_texts: List[str] = []

        try:
            for round_number in range(max_rounds + 1):
                response = await self.anthropic.messages.create(
                    **self._api_params(system_prompt, messages, round_number == max_rounds)
                )

                round_text = "".join(b.text for b in response.content if b.type == "text").strip()
                if round_text:
                    round_texts.append(round_text)

                if response.stop_reason != "tool_use":
                    break

                tool_results = await self._run_tools(response.content, executor)
                messages.append({"role": "assistant", "content": response.content})
                messages.append({"role": "user", "content": tool_results})
        except anthropic.APIError as e:
            logger.error(f"Claude API error: {e}")
            raise AIError(str(e)) from e

        # Text said before a tool call stays on its own line
        response_text = "\n".join(round_texts)

        logger.info(
            f"Reply generated for {request.author_name} "
            f"({len(response_text)} chars, {len(executor.log_lines)} tool calls)"
        )
        return self.render_reply(response_text, executor.log_lines)

    async def stream(self, request: "AIRequest") -> ResponseStream:
        """
        Start a streamed reply.

        Prompt assembly happens before this returns, so a missing key or
        a storage failure raises AIError here. Failures after streaming
        has started become a final "AI Error: ..." snapshot.
        """
        system_prompt, executor = await self._prepare(request)
        response_stream = ResponseStream()
        response_stream.task = asyncio.create_task(
            self._produce(request, system_prompt, executor, response_stream.queue)
        )
        return response_stream

    async def _produce(
        self,
        request: "AIRequest",
        system_prompt: str,
        executor: AIToolExecutor,
        queue: "asyncio.Queue[Optional[str]]",
    ):
        messages = [{"role": "user", "content": request.content}]
        max_rounds = self.config.api.max_tool_rounds
        coalesce = self.config.streaming.coalesce_seconds
        accumulated = ""
        last_push = self._clock()

        try:
            for round_number in range(max_rounds + 1):
                params = self._api_params(system_prompt, messages, round_number == max_rounds)

                separator = "\n" if accumulated.strip() else ""

                async with self.anthropic.messages.stream(**params) as stream:
                    async for text in stream.text_stream:
                        accumulated += separator + text
                        separator = ""
                        now = self._clock()
                        if now - last_push >= coalesce:
                            queue.put_nowait(self.render_reply(accumulated, executor.log_lines))
                            last_push = now
                    final_message = await stream.get_final_message()

                if final_message.stop_reason != "tool_use":
                    break

                tool_results = await self._run_tools(final_message.content, executor)
                messages.append({"role": "assistant", "content": final_message.content})
                messages.append({"role": "user", "content": tool_results})

                # Tool log lines changed the visible header
                queue.put_nowait(self.render_reply(accumulated, executor.log_lines))

            queue.put_nowait(self.render_reply(accumulated, executor.log_lines))
            logger.info(
                f"Streamed reply for {request.author_name} "
                f"({len(accumulated)} chars, {len(executor.log_lines)} tool calls)"
            )
        except asyncio.CancelledError:
            logger.info(f"Streamed reply for {request.author_name} cancelled")
            raise
        except Exception as e:
            logger.error(f"AI Error while streaming: {e}", exc_info=True)
            queue.put_nowait(f"AI Error: {e}"[:self.config.ai.reply_chars])
        finally:
            queue.put_nowait(None)
