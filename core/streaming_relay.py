"""
Streaming Relay - Render a streamed reply as one progressively edited message

The reply is only posted once it has a few words, then edited on a fixed
cadence while the text keeps changing, and edited one last time when the
stream closes.
"""

import asyncio
import logging
import time
from typing import Callable, Optional, TYPE_CHECKING

import discord

if TYPE_CHECKING:
    from .config import StreamingConfig

logger = logging.getLogger(__name__)


class StreamingRelay:
    """
    Single consumer of a ResponseStream queue.

    The queue carries full-text snapshots; None closes it. The relay
    polls rather than blocking on get() so both the edit cadence and
    closure are noticed within one poll interval.
    """

    def __init__(
        self,
        stream_queue: "asyncio.Queue[Optional[str]]",
        reply_to: discord.Message,
        min_words: int = 3,
        edit_interval: float = 1.5,
        poll_interval: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.stream_queue = stream_queue
        self.reply_to = reply_to
        self.min_words = min_words
        self.edit_interval = edit_interval
        self.poll_interval = poll_interval
        self._clock = clock

        self.sent_message: Optional[discord.Message] = None
        self.edit_count = 0
        self._content = ""
        self._last_rendered = ""
        self._last_edit_at = 0.0
        self._cancelled = asyncio.Event()

    @classmethod
    def from_config(
        cls,
        stream_queue: "asyncio.Queue[Optional[str]]",
        reply_to: discord.Message,
        config: "StreamingConfig",
    ) -> "StreamingRelay":
        return cls(
            stream_queue,
            reply_to,
            min_words=config.min_words,
            edit_interval=config.edit_interval_seconds,
            poll_interval=config.poll_interval_seconds,
        )

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self):
        """Stop relaying. No further sends or edits happen after this."""
        self._cancelled.set()

    def _drain(self) -> bool:
        """Take every queued snapshot. Returns True once the stream is closed."""
        while True:
            try:
                item = self.stream_queue.get_nowait()
            except asyncio.QueueEmpty:
                return False
            if item is None:
                return True
            self._content = item

    async def _send(self, content: str):
        try:
            self.sent_message = await self.reply_to.reply(content)
        except discord.HTTPException as e:
            # Triggering message may be gone; post standalone instead
            logger.warning(f"Failed to send reply, trying standalone: {e}")
            try:
                self.sent_message = await self.reply_to.channel.send(content)
            except discord.HTTPException as e2:
                logger.error(f"Failed to send streamed reply: {e2}")
                self.cancel()
                return
        self._last_rendered = content
        self._last_edit_at = self._clock()

    async def _edit(self, content: str):
        try:
            await self.sent_message.edit(content=content)
            self.edit_count += 1
        except discord.HTTPException as e:
            logger.error(f"Failed to edit streamed reply: {e}")
        # Counted as attempted either way so a failing edit isn't hammered
        self._last_rendered = content
        self._last_edit_at = self._clock()

    async def run(self) -> Optional[discord.Message]:
        """Relay until the stream closes or cancel() is called"""
        closed = False

        while not closed and not self.cancelled:
            closed = self._drain()
            if closed:
                break

            if self.sent_message is None:
                if len(self._content.split()) >= self.min_words:
                    await self._send(self._content)
            elif (
                self._content != self._last_rendered
                and self._clock() - self._last_edit_at >= self.edit_interval
            ):
                await self._edit(self._content)

            await asyncio.sleep(self.poll_interval)

        if self.cancelled:
            logger.debug("Streaming relay cancelled")
            return self.sent_message

        if self.sent_message is None:
            if self._content.strip():
                await self._send(self._content)
        elif self._content != self._last_rendered:
            await self._edit(self._content)

        return self.sent_message
