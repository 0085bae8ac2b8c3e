"""
Dispatcher - Per-message decision tree

Every inbound message is run through an ordered list of guarded branches
and the first one that applies decides the Command. Bookkeeping (XP,
message counters, rate limit registration) happens along the way.

Guild order:
    ignore/leave -> responders -> today-i moderation -> rate limits ->
    quiz intercept -> passive XP -> quiz triggers -> novelty -> AI -> default
"""

import asyncio
import logging
import math
import random
import re
import time
from collections import defaultdict
from typing import Awaitable, Callable, Dict, Optional, TYPE_CHECKING

from .command import AIRequest, Command, IncomingMessage
from .database import User
from .levels import apply_xp
from .message_cache import MessageCache
from .quiz_handler import QuizHandler, one_in
from .rate_limiter import RateLimiters
from .zalgo import shuffle_words, zalgify_text

if TYPE_CHECKING:
    from .config import BotConfig
    from .database import Database
    from tools.image_source import RedditImageSource

logger = logging.getLogger(__name__)

MENTION_PATTERN = re.compile(r"<@!?(\d+)>")


class Dispatcher:
    """
    Turns IncomingMessage into Command.

    Counters, cooldowns, XP and rate limit buckets are only touched while
    holding the dispatch lock.
    """

    def __init__(
        self,
        config: "BotConfig",
        db: "Database",
        cache: MessageCache,
        limiters: RateLimiters,
        quizzes: QuizHandler,
        rng: random.Random,
        bot_user_id: int = 0,
        ai_enabled: bool = False,
        image_source: Optional["RedditImageSource"] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.db = db
        self.cache = cache
        self.limiters = limiters
        self.quizzes = quizzes
        self.rng = rng
        self.bot_user_id = bot_user_id
        self.ai_enabled = ai_enabled
        self.image_source = image_source
        self._clock = clock
        self._sleep = sleep

        # Channel id (or DM user id) -> messages since the last memory pass
        self.message_counts: Dict[int, int] = defaultdict(int)
        # Channel id -> display name of the last author that got no reaction
        self.last_active_names: Dict[int, str] = {}
        self._last_rename: Optional[float] = None
        self._lock = asyncio.Lock()

    # Context

    def _known_names(self, channel_id: int, message: Optional[IncomingMessage] = None) -> Dict[int, str]:
        names = {}
        for cached in self.cache.recent(channel_id, self.cache.max_messages):
            names[cached.author_id] = cached.author_name
        if message is not None:
            names.update(message.mentions)
            names[message.author_id] = message.author_name
        names[self.bot_user_id] = self.config.persona.name
        return names

    def resolve_mentions(self, text: str, names: Dict[int, str]) -> str:
        """Replace <@id> / <@!id> with @name where the name is known"""
        def replace(match):
            user_id = int(match.group(1))
            name = names.get(user_id)
            return f"@{name}" if name else match.group(0)

        return MENTION_PATTERN.sub(replace, text)

    def build_context(self, channel_id: int, message: Optional[IncomingMessage] = None) -> str:
        """
        Render the channel's recent messages as "Name: content" lines.

        The bot's own messages are labelled with the persona name and
        every message is clamped to max_message_chars.
        """
        names = self._known_names(channel_id, message)
        persona_name = self.config.persona.name
        max_chars = self.config.ai.max_message_chars
        lines = []

        for cached in self.cache.recent(channel_id, self.config.ai.context_messages):
            content = cached.content[:max_chars]
            content = self.resolve_mentions(content, names)
            if self.bot_user_id:
                content = content.replace(str(self.bot_user_id), persona_name)

            if cached.author_id == self.bot_user_id:
                lines.append(f"{persona_name}: {content}")
            else:
                lines.append(f"{cached.author_name}: {content}")

        return "\n".join(lines)

    def _build_ai_request(self, message: IncomingMessage, tracking_id: int) -> AIRequest:
        names = self._known_names(message.channel_id, message)
        mentions = {
            name: user_id for user_id, name in names.items()
            if user_id != self.bot_user_id
        }

        create_memories = self.message_counts[tracking_id] >= self.config.ai.memory_threshold
        if create_memories:
            self.message_counts[tracking_id] = 0

        content = message.content[:self.config.ai.max_message_chars]
        return AIRequest(
            user_id=message.author_id,
            author_name=message.author_name,
            content=f"{message.author_name}: {self.resolve_mentions(content, names)}",
            context=self.build_context(message.channel_id, message),
            mentions=mentions,
            participants=self.cache.participants(message.channel_id, self.config.ai.context_messages),
            create_memories=create_memories,
        )

    # Entry point

    async def dispatch(self, message: IncomingMessage) -> Optional[Command]:
        """
        Decide what to do with one message.

        Returns None when nothing should happen. Rate limit buckets are
        charged only for commands that actually do something.

        Dispatches run one at a time: discord.py handles every message in
        its own task, and the XP read-modify-write and the rate limit
        check-then-register both span awaits.
        """
        if message.author_is_bot:
            return None

        async with self._lock:
            if message.is_dm:
                return await self._dispatch_dm(message)

            command = await self._dispatch_guild(message)

            if command is not None and not command.leave_guild:
                self.limiters.channel.register(message.channel_id)
                self.limiters.user.register(message.author_id)

        return command

    async def _dispatch_dm(self, message: IncomingMessage) -> Optional[Command]:
        remaining = self.limiters.dm.limit_duration(message.author_id)
        if remaining is not None:
            seconds = math.ceil(remaining)
            logger.info(f"DM rate limit reached for user {message.author_id}, {seconds} seconds remaining")
            return Command.say(
                f"You've reached the DM rate limit. Please wait {seconds} seconds "
                f"before sending more messages.",
                reply=True,
            )

        self.message_counts[message.author_id] += 1

        if not self.ai_enabled:
            return None

        self.limiters.dm.register(message.author_id)
        return Command(ai=self._build_ai_request(message, tracking_id=message.author_id))

    async def _dispatch_guild(self, message: IncomingMessage) -> Optional[Command]:
        guild_id = self.config.discord.guild_id
        if guild_id and message.guild_id != guild_id:
            logger.warning(f"Message from unexpected guild {message.guild_id}, leaving")
            return Command(leave_guild=True)

        self.message_counts[message.channel_id] += 1

        command = self._check_responders(message)
        if command is not None:
            return command

        today_i_channel = self.config.discord.today_i_channel
        if today_i_channel and message.channel_id == today_i_channel \
                and not message.content.lower().startswith("today i"):
            logger.info(f"Deleting off-topic message {message.id} from {message.author_name}")
            return Command(delete=True)

        if not await self._pass_rate_limits(message):
            return None

        command = await self.quizzes.handle(message)
        if command is not None:
            return command

        command = await self._award_passive_xp(message)
        if command is not None:
            return command

        command = await self.quizzes.trigger(message)
        if command is not None:
            return command

        command = await self._roll_novelty(message)
        if command is not None:
            return command

        if self._should_reply(message):
            logger.info(f"AI reply triggered by {message.author_name} in {message.channel_id}")
            return Command(ai=self._build_ai_request(message, tracking_id=message.channel_id))

        self.last_active_names[message.channel_id] = message.author_name
        return None

    # Branches

    def _check_responders(self, message: IncomingMessage) -> Optional[Command]:
        responder = self.config.responders.get(message.content.strip().upper())
        if responder is None:
            return None
        if responder.message:
            return Command.say(responder.message)
        return Command.react(responder.react)

    async def _pass_rate_limits(self, message: IncomingMessage) -> bool:
        remaining = self.limiters.channel.limit_duration(message.channel_id)
        if remaining is not None:
            logger.info(f"Channel limit reached for {message.channel_id}, {remaining:.1f}s remaining")
            return False

        remaining = self.limiters.user.limit_duration(message.author_id)
        if remaining is not None:
            logger.info(f"User limit reached for {message.author_id}, {remaining:.1f}s remaining")
            if remaining > self.limiters.grace_seconds:
                return False
            await self._sleep(remaining)

        return True

    async def _award_passive_xp(self, message: IncomingMessage) -> Optional[Command]:
        leveling = self.config.leveling
        gain = (
            self.rng.randint(leveling.xp_min, leveling.xp_max)
            + leveling.attachment_xp * len(message.attachments)
        )

        user = await self.db.get_user(message.author_id)
        if user is None:
            await self.db.insert_user(User(id=message.author_id, name=message.author_name, xp=gain))
            logger.debug(f"New user {message.author_name} ({message.author_id}) with {gain} XP")
            return None

        user.name = message.author_name
        user.level, user.xp, leveled_up = apply_xp(user.level, user.xp, gain)
        await self.db.update_user(user)

        if leveled_up:
            logger.info(f"{message.author_name} leveled up to {user.level}")
            return Command.say(f"<@{message.author_id}> leveled up to level {user.level}!")
        return None

    async def _roll_novelty(self, message: IncomingMessage) -> Optional[Command]:
        novelty = self.config.novelty

        if message.channel_id in self.config.discord.rename_channels and self._rename_ready() \
                and one_in(self.rng, novelty.rename_odds):
            lowered = message.content.lower()
            if "uwu" in lowered or "owo" in lowered:
                return Command.say("No furry shit!!!!!")
            self._last_rename = self._clock()
            logger.info(f"Renaming topic of {message.channel_id}")
            return Command(topic=message.content)

        if one_in(self.rng, novelty.zalgo_odds):
            return Command.say(zalgify_text(message.content, self.rng), reply=True)

        if one_in(self.rng, novelty.shuffle_odds):
            return Command.say(shuffle_words(message.content, self.rng), reply=True)

        if self.image_source is not None and one_in(self.rng, novelty.image_odds):
            image = await self.image_source.random_image(self.rng)
            if image:
                return Command.say(image)

        return None

    def _rename_ready(self) -> bool:
        if self._last_rename is None:
            return True
        return self._clock() - self._last_rename > self.config.novelty.rename_cooldown_seconds

    def _should_reply(self, message: IncomingMessage) -> bool:
        if not self.ai_enabled:
            return False
        if self.bot_user_id and (
            self.bot_user_id in message.mentions
            or message.referenced_author_id == self.bot_user_id
        ):
            return True
        return one_in(self.rng, self.config.ai.trigger_odds)

    # Typing

    def typing_notice(self, channel_id: int, user_name: str) -> Optional[str]:
        """
        Occasionally announce that someone is typing.

        Names the channel's last quietly active member when there is one,
        so the announcement usually blames the wrong person.
        """
        if not one_in(self.rng, self.config.discord.typing_indicator_odds):
            return None
        name = self.last_active_names.get(channel_id, user_name)
        return f"{name} is typing"

