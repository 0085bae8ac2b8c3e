"""
Quiz Handler - Pending quiz registry, answer intercept and triggers

At most one quiz (math or color) is pending per channel. Timeouts are
soft: an expired quiz is only noticed when the next message arrives in
its channel.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple, TYPE_CHECKING, Union

from .color_quiz import ColorQuiz
from .command import Command, IncomingMessage
from .database import User
from .levels import apply_xp
from .math_test import MathTest, QuizGenerationError

if TYPE_CHECKING:
    from anthropic import AsyncAnthropic
    from .config import BotConfig
    from .database import Database

logger = logging.getLogger(__name__)


def one_in(rng: random.Random, odds: int) -> bool:
    """True with probability 1/odds. odds <= 0 disables the roll."""
    if odds <= 0:
        return False
    return rng.randrange(odds) == 0


@dataclass
class PendingMathTest:
    user_id: int
    channel_id: int
    question: str
    answer: float
    started_at: float


@dataclass
class PendingColorTest:
    user_id: int
    channel_id: int
    r: int
    g: int
    b: int
    started_at: float

    @property
    def quiz(self) -> ColorQuiz:
        return ColorQuiz(self.r, self.g, self.b)


PendingTest = Union[PendingMathTest, PendingColorTest]


class QuizRegistry:
    """
    Pending quizzes keyed by channel id.

    Insertion checks both maps under one lock, so a math and a color quiz
    can never coexist in a channel.
    """

    def __init__(self):
        self.math: Dict[int, PendingMathTest] = {}
        self.color: Dict[int, PendingColorTest] = {}
        self._lock = asyncio.Lock()

    def has_pending(self, channel_id: int) -> bool:
        return channel_id in self.math or channel_id in self.color

    async def try_add(self, pending: PendingTest) -> bool:
        """Register a pending quiz. Returns False if the channel already has one."""
        async with self._lock:
            if self.has_pending(pending.channel_id):
                logger.debug(f"Channel {pending.channel_id} already has a pending quiz")
                return False

            if isinstance(pending, PendingMathTest):
                self.math[pending.channel_id] = pending
            else:
                self.color[pending.channel_id] = pending
            return True

    async def clear(self, channel_id: int) -> Optional[PendingTest]:
        async with self._lock:
            return self.math.pop(channel_id, None) or self.color.pop(channel_id, None)


class QuizHandler:
    """Intercepts answers to pending quizzes and rolls for new ones"""

    def __init__(
        self,
        config: "BotConfig",
        db: "Database",
        rng: random.Random,
        anthropic_client: Optional["AsyncAnthropic"] = None,
        registry: Optional[QuizRegistry] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.quiz_config = config.quiz
        self.db = db
        self.rng = rng
        self.anthropic_client = anthropic_client
        self.registry = registry or QuizRegistry()
        self._clock = clock

    async def award_quiz_xp(self, user_id: int, user_name: str) -> Tuple[int, Optional[int]]:
        """
        Grant a random quiz bonus.

        Returns: (bonus_xp, new level if the user leveled up else None)
        """
        bonus_xp = self.rng.randint(self.quiz_config.bonus_xp_min, self.quiz_config.bonus_xp_max)

        user = await self.db.get_user(user_id)
        if user is None:
            await self.db.insert_user(User(id=user_id, name=user_name, xp=bonus_xp))
            return bonus_xp, None

        user.name = user_name
        user.level, user.xp, leveled_up = apply_xp(user.level, user.xp, bonus_xp)
        await self.db.update_user(user)

        return bonus_xp, user.level if leveled_up else None

    async def handle(self, message: IncomingMessage) -> Optional[Command]:
        """Resolve the channel's pending quiz against this message, if any"""
        if message.channel_id in self.registry.math:
            return await self.handle_math_quiz(message)
        if message.channel_id in self.registry.color:
            return await self.handle_color_quiz(message)
        return None

    async def handle_math_quiz(self, message: IncomingMessage) -> Optional[Command]:
        pending = self.registry.math.get(message.channel_id)
        if pending is None:
            return None

        elapsed = self._clock() - pending.started_at

        if elapsed > self.quiz_config.math_timeout_seconds:
            await self.registry.clear(message.channel_id)
            logger.info(f"Math quiz in channel {message.channel_id} expired after {elapsed:.1f}s")

            command = Command.say(
                f"<@{pending.user_id}> Time's up! The answer was `{pending.answer:.1f}`. "
                f"You've been timed out for 1 minute."
            )
            if not message.is_dm:
                command.timeout_user_id = pending.user_id
                command.timeout_seconds = self.quiz_config.timeout_penalty_seconds
            return command

        test = MathTest(question=pending.question, answer=pending.answer)
        if not test.validate_answer(message.content):
            return None

        await self.registry.clear(message.channel_id)
        bonus_xp, new_level = await self.award_quiz_xp(message.author_id, message.author_name)
        logger.info(
            f"{message.author_name} solved math quiz {pending.question!r} in {elapsed:.3f}s "
            f"(+{bonus_xp} XP)"
        )

        if new_level is not None:
            text = (
                f"<@{message.author_id}> Correct! Well done. You earned {bonus_xp} XP "
                f"and leveled up to level {new_level}! (Solved in {elapsed:.3f}s)"
            )
        else:
            text = (
                f"<@{message.author_id}> Correct! Well done. You earned {bonus_xp} XP! "
                f"(Solved in {elapsed:.3f}s)"
            )
        return Command.say(text, reply=True)

    async def handle_color_quiz(self, message: IncomingMessage) -> Optional[Command]:
        pending = self.registry.color.get(message.channel_id)
        if pending is None:
            return None

        elapsed = self._clock() - pending.started_at
        quiz = pending.quiz

        if elapsed > self.quiz_config.color_timeout_seconds:
            await self.registry.clear(message.channel_id)
            logger.info(f"Color quiz in channel {message.channel_id} expired after {elapsed:.1f}s")
            return Command.say(
                f"<@{pending.user_id}> Time's up! The color was {quiz.describe()}."
            )

        if not quiz.validate_answer(message.content, self.quiz_config.hex_tolerance):
            return None

        await self.registry.clear(message.channel_id)
        bonus_xp, new_level = await self.award_quiz_xp(message.author_id, message.author_name)
        logger.info(f"{message.author_name} solved color quiz {quiz.hex} (+{bonus_xp} XP)")

        text = f"<@{message.author_id}> Correct! The color was {quiz.describe()}. You earned {bonus_xp} XP"
        if new_level is not None:
            text += f" and leveled up to level {new_level}!"
        else:
            text += "!"
        return Command.say(text, reply=True)

    async def trigger(self, message: IncomingMessage) -> Optional[Command]:
        """Roll for a new quiz in this channel. Math and color never both fire."""
        if self.registry.has_pending(message.channel_id):
            return None

        command = await self.trigger_math_quiz(message)
        if command is not None:
            return command
        return await self.trigger_color_quiz(message)

    async def trigger_math_quiz(self, message: IncomingMessage) -> Optional[Command]:
        if self.anthropic_client is None:
            return None
        if not one_in(self.rng, self.quiz_config.math_odds):
            return None
        if self.registry.has_pending(message.channel_id):
            return None

        try:
            test = await MathTest.generate(
                self.anthropic_client, self.config.api.quiz_model, self.db, self.rng
            )
        except QuizGenerationError as e:
            logger.error(f"Failed to generate math test: {e}")
            return None

        pending = PendingMathTest(
            user_id=message.author_id,
            channel_id=message.channel_id,
            question=test.question,
            answer=test.answer,
            started_at=self._clock(),
        )
        if not await self.registry.try_add(pending):
            return None

        logger.info(f"Math quiz started in channel {message.channel_id}: {test.question!r}")
        return Command.say(
            f"<@{message.author_id}> **MATH TEST TIME!** Solve this in "
            f"{self.quiz_config.math_timeout_seconds:g} seconds:\n`{test.question}`\n"
            f"(Answer to 1 decimal place)"
        )

    async def trigger_color_quiz(self, message: IncomingMessage) -> Optional[Command]:
        if not one_in(self.rng, self.quiz_config.color_odds):
            return None

        quiz = ColorQuiz.generate(self.rng)
        try:
            image_data = quiz.generate_image()
        except (OSError, ValueError) as e:
            logger.error(f"Failed to generate color quiz image: {e}")
            return None

        pending = PendingColorTest(
            user_id=message.author_id,
            channel_id=message.channel_id,
            r=quiz.r,
            g=quiz.g,
            b=quiz.b,
            started_at=self._clock(),
        )
        if not await self.registry.try_add(pending):
            return None

        logger.info(f"Color quiz started in channel {message.channel_id}: {quiz.hex}")
        command = Command.say(
            f"**COLOR QUIZ TIME!** Guess this color in "
            f"{self.quiz_config.color_timeout_seconds:g} seconds!\n"
            f"Format: `#RRGGBB` or `oklch(L% C H)`"
        )
        command.files.append(("color.png", image_data))
        return command
