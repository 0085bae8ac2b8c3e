"""
Discord Client Integration

Handles discord.py setup, event handlers and Command execution.
The decision of what to do with a message lives in the Dispatcher;
this module only turns its Commands into Discord API calls and owns
the background tasks (AI replies, streaming relays, memory passes).
"""

import discord
import asyncio
import logging
import re
from datetime import timedelta
from io import BytesIO
from typing import Dict, Optional, Set, Tuple, TYPE_CHECKING

from .ai_responder import AIError, ResponseStream
from .command import AIRequest, Command, IncomingMessage
from .message_cache import CachedMessage
from .streaming_relay import StreamingRelay

if TYPE_CHECKING:
    from .ai_responder import AIResponder
    from .avatar_updater import AvatarUpdater
    from .config import BotConfig
    from .dispatcher import Dispatcher
    from .memory_creator import MemoryCreator
    from .message_cache import MessageCache

logger = logging.getLogger(__name__)


def split_message(text: str, max_length: int = 2000) -> list[str]:
    """
    Split a message into chunks that fit Discord's character limit.

    Splits on code block boundaries first (keeping ``` blocks intact where
    possible), then paragraphs, sentences, words, and finally a hard cut.
    """
    if len(text) <= max_length:
        return [text]

    chunks = []
    parts = re.split(r'(```[\s\S]*?```)', text)
    current_chunk = ""

    for part in parts:
        is_code_block = part.startswith('```') and part.endswith('```')

        if len(current_chunk) + len(part) > max_length:
            if current_chunk.strip():
                chunks.append(current_chunk.strip())
                current_chunk = ""

            if is_code_block:
                # Code block too large - split while preserving markers
                lang_line = part.split('\n')[0]
                code_content = part[len(lang_line):-3]
                close_marker = '```'

                temp_code = lang_line + '\n'
                for line in code_content.split('\n'):
                    if len(temp_code) + len(line) + len(close_marker) + 1 > max_length:
                        chunks.append(temp_code + close_marker)
                        temp_code = lang_line + '\n' + line + '\n'
                    else:
                        temp_code += line + '\n'

                if temp_code != lang_line + '\n':
                    chunks.append(temp_code + close_marker)
            else:
                chunks.extend(_split_text_intelligently(part, max_length))
        else:
            current_chunk += part

    if current_chunk.strip():
        chunks.append(current_chunk.strip())

    return chunks if chunks else [text[:max_length]]


def _split_text_intelligently(text: str, max_length: int) -> list[str]:
    """Split plain text on paragraph, sentence, then word boundaries"""
    chunks = []
    remaining = text

    while remaining:
        if len(remaining) <= max_length:
            chunks.append(remaining)
            break

        chunk = remaining[:max_length]
        split_pos = chunk.rfind('\n\n')

        if split_pos == -1:
            for punct in ['. ', '! ', '? ', '.\n', '!\n', '?\n']:
                pos = chunk.rfind(punct)
                if pos > split_pos:
                    split_pos = pos + len(punct)

        if split_pos == -1:
            split_pos = chunk.rfind(' ')

        if split_pos <= 0:
            split_pos = max_length

        chunks.append(remaining[:split_pos].strip())
        remaining = remaining[split_pos:].strip()

    return chunks


class DiscordClient(discord.Client):
    """
    Discord client for the Trickster.

    Handles:
    - Gateway connection and intents
    - Feeding the message cache
    - Running the dispatcher and executing its Commands
    - Spawning AI replies, streaming relays and memory passes
    - The daily avatar rotation, when configured
    """

    def __init__(
        self,
        config: "BotConfig",
        dispatcher: "Dispatcher",
        message_cache: "MessageCache",
        ai_responder: "AIResponder",
        memory_creator: "MemoryCreator",
        avatar_updater: Optional["AvatarUpdater"] = None,
    ):
        intents = discord.Intents.default()
        intents.message_content = True  # Required to read message text
        intents.guilds = True
        intents.members = True  # Required to time members out
        intents.typing = True

        super().__init__(intents=intents)

        self.config = config
        self.dispatcher = dispatcher
        self.message_cache = message_cache
        self.ai_responder = ai_responder
        self.memory_creator = memory_creator
        self.avatar_updater = avatar_updater

        self._background_tasks: Set[asyncio.Task] = set()
        # Triggering message id -> in-flight streamed reply
        self._active_replies: Dict[int, Tuple[ResponseStream, StreamingRelay]] = {}
        # Channel id -> last "is typing" notice, deleted when the next one is posted
        self._typing_notices: Dict[int, discord.Message] = {}
        self._last_typer: Optional[int] = None
        self._avatar_task: Optional[asyncio.Task] = None

        logger.info(f"Discord client initialized for bot '{config.bot_id}'")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def on_ready(self):
        """Bot connected to Discord and ready"""
        logger.info(f"Bot connected: {self.user.name} (ID: {self.user.id})")
        logger.info(f"Logged into {len(self.guilds)} servers")

        for guild in self.guilds:
            logger.info(f"  - {guild.name} (ID: {guild.id}, Members: {guild.member_count})")

        self.dispatcher.bot_user_id = self.user.id
        await self.change_presence(activity=discord.Game(name="tricks"))

        # on_ready fires again after reconnects
        if self.avatar_updater and self._avatar_task is None:
            self._avatar_task = self._spawn(self.avatar_updater.run_daily(self))

        logger.info("Bot is ready!")

    async def on_message(self, message: discord.Message):
        """
        New message received.

        Every message (including the bot's own) goes into the cache for
        AI context; the dispatcher decides whether anything happens.
        """
        self.message_cache.add(
            message.channel.id,
            CachedMessage(
                id=message.id,
                author_id=message.author.id,
                author_name=message.author.display_name,
                content=message.content,
                is_bot=message.author.bot,
            ),
        )

        if message.author == self.user:
            return

        logger.info(f"Message received from {message.author.name}: {message.content[:80]!r}")

        try:
            command = await self.dispatcher.dispatch(IncomingMessage.from_discord(message))
        except Exception as e:
            logger.error(f"Error handling message {message.id}: {e}", exc_info=True)
            return

        if command is None:
            return

        await self.execute_command(message, command)

    async def execute_command(self, message: discord.Message, command: Command):
        """Carry out one Command in the context of the triggering message"""
        try:
            if command.leave_guild and message.guild:
                logger.warning(f"Leaving unconfigured server: {message.guild.name} ({message.guild.id})")
                await message.guild.leave()
                return

            if command.delete:
                await message.delete()
                return

            if command.topic is not None:
                await message.channel.edit(topic=command.topic[:1024])

            if command.reaction:
                await message.add_reaction(command.reaction)

            if command.text or command.files:
                files = [discord.File(BytesIO(data), filename=name) for name, data in command.files]
                if command.reply:
                    await message.reply(command.text, files=files)
                else:
                    await message.channel.send(command.text, files=files)

            if command.timeout_user_id and message.guild:
                await self._timeout_member(message.guild, command.timeout_user_id, command.timeout_seconds)

        except discord.HTTPException as e:
            logger.error(f"Discord API error executing command for message {message.id}: {e}")

        if command.ai is not None:
            self._spawn(self._respond(message, command.ai))

    async def _timeout_member(self, guild: discord.Guild, user_id: int, seconds: int):
        member = guild.get_member(user_id)
        if member is None:
            member = await guild.fetch_member(user_id)
        await member.timeout(timedelta(seconds=seconds), reason="Failed the math test")
        logger.info(f"Timed out {member.display_name} for {seconds}s")

    async def _respond(self, message: discord.Message, request: AIRequest):
        """Generate (or stream) an AI reply, then maybe run a memory pass"""
        try:
            if self.config.api.streaming:
                stream = await self.ai_responder.stream(request)
                relay = StreamingRelay.from_config(stream.queue, message, self.config.streaming)
                self._active_replies[message.id] = (stream, relay)
                try:
                    await relay.run()
                finally:
                    self._active_replies.pop(message.id, None)
            else:
                text = await self.ai_responder.generate(request)
                for i, chunk in enumerate(split_message(text or "...")):
                    if i == 0:
                        await message.reply(chunk)
                    else:
                        await message.channel.send(chunk)

        except AIError as e:
            logger.error(f"AI Error: {e}")
            try:
                await message.reply(f"AI Error: {e}"[:2000])
            except discord.HTTPException as send_error:
                logger.error(f"Failed to send AI error reply: {send_error}")
            return
        except discord.HTTPException as e:
            logger.error(f"Failed to send AI reply: {e}")
            return
        except Exception as e:
            logger.error(f"Error generating AI reply: {e}", exc_info=True)
            return

        if request.create_memories:
            logger.info(f"Message threshold reached, creating memories for {request.author_name}'s conversation")
            self._spawn(self.memory_creator.create_memories(request.context, request.participants))

    async def on_message_edit(self, before: discord.Message, after: discord.Message):
        """Keep cached content in sync so AI context sees edits (including streamed replies)"""
        self.message_cache.update(after.channel.id, after.id, after.content)

    async def on_message_delete(self, message: discord.Message):
        """
        Message deleted.

        Drops it from the cache and, if it triggered a reply that is
        still streaming, stops both the producer and the relay.
        """
        self.message_cache.remove(message.channel.id, message.id)

        active = self._active_replies.pop(message.id, None)
        if active:
            stream, relay = active
            relay.cancel()
            stream.cancel()
            logger.info(f"Triggering message {message.id} deleted, streamed reply cancelled")

    async def on_typing(self, channel, user, when):
        """Occasionally announce that someone is typing"""
        if user.bot or user.id == self._last_typer or not isinstance(channel, discord.TextChannel):
            return

        notice = self.dispatcher.typing_notice(channel.id, user.display_name)
        if notice is None:
            return

        try:
            previous = self._typing_notices.pop(channel.id, None)
            if previous:
                await previous.delete()
            self._typing_notices[channel.id] = await channel.send(notice)
            self._last_typer = user.id
        except discord.HTTPException as e:
            logger.error(f"Failed to post typing notice: {e}")

    async def on_error(self, event: str, *args, **kwargs):
        """Global error handler - prevents bot from crashing on unhandled exceptions"""
        logger.error(f"Error in event {event}", exc_info=True)

    async def on_guild_join(self, guild: discord.Guild):
        logger.info(f"Joined new server: {guild.name} (ID: {guild.id})")
        if self.config.discord.guild_id and guild.id != self.config.discord.guild_id:
            logger.warning(f"Leaving unconfigured server: {guild.name}")
            await guild.leave()

    async def shutdown(self):
        """Cancel in-flight replies and background tasks"""
        for stream, relay in list(self._active_replies.values()):
            relay.cancel()
            stream.cancel()
        self._active_replies.clear()

        for task in list(self._background_tasks):
            task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

        logger.info("Discord client background tasks stopped")
