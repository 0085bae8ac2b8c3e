"""
Avatar Updater - Daily profile picture from a channel's images

Once a day (at UTC midnight) the bot picks a random image posted in the
configured channel, crops it to a centered square and uses it as its
own avatar. Animated GIFs stay animated.
"""

import asyncio
import logging
import random
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from io import BytesIO
from typing import Awaitable, Callable, List, Optional

import aiohttp
import discord
from PIL import Image, ImageSequence

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
HISTORY_LIMIT = 100
DAY_SECONDS = 24 * 60 * 60

IMAGE_HOSTS = ("cdn.discordapp.com", "media.discordapp.net", "tenor.com")
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp")
TENOR_MEDIA_PATTERN = re.compile(
    r'<meta property="og:image" content="([^"]+)"|(https://media\.tenor\.com[^"]+)'
)


class AvatarError(Exception):
    """A candidate image couldn't be used"""
    pass


@dataclass
class ImageCandidate:
    url: str
    # Set for attachments, so an expired one can be cleaned up
    message: Optional[discord.Message] = None


def is_image_url(url: str) -> bool:
    return any(host in url for host in IMAGE_HOSTS) or url.lower().endswith(IMAGE_EXTENSIONS)


def collect_images(messages: List[discord.Message]) -> List[ImageCandidate]:
    """Attachments, plus the first image link in each message's text"""
    candidates = []
    for message in messages:
        for attachment in message.attachments:
            if is_image_url(attachment.url):
                candidates.append(ImageCandidate(attachment.url, message))

        for word in message.content.split():
            if is_image_url(word):
                candidates.append(ImageCandidate(word))
                break
    return candidates


def crop_to_square(data: bytes) -> bytes:
    """
    Center-crop an image to 1:1.

    GIFs keep every frame and their timing. Everything else becomes PNG.
    """
    with Image.open(BytesIO(data)) as image:
        side = min(image.width, image.height)
        left = (image.width - side) // 2
        top = (image.height - side) // 2
        box = (left, top, left + side, top + side)

        output = BytesIO()
        if image.format == "GIF" and getattr(image, "n_frames", 1) > 1:
            frames = [frame.copy().crop(box) for frame in ImageSequence.Iterator(image)]
            frames[0].save(
                output,
                format="GIF",
                save_all=True,
                append_images=frames[1:],
                loop=image.info.get("loop", 0),
                duration=image.info.get("duration", 100),
            )
        else:
            cropped = image.crop(box)
            if cropped.mode not in ("RGB", "RGBA", "L", "LA", "P"):
                cropped = cropped.convert("RGBA")
            cropped.save(output, format="PNG")
        return output.getvalue()


def seconds_until_midnight(now: datetime) -> float:
    """Seconds from now to the next UTC midnight"""
    now = now.astimezone(timezone.utc)
    midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (midnight - now).total_seconds()


class AvatarUpdater:
    """Picks, downloads, crops and applies a new avatar"""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        channel_id: int,
        rng: random.Random,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session = session
        self.channel_id = channel_id
        self.rng = rng
        self._now = now
        self._sleep = sleep

    async def _resolve_tenor(self, url: str) -> str:
        """Tenor share pages wrap the actual GIF; find its media URL"""
        async with self.session.get(url, timeout=aiohttp.ClientTimeout(total=15)) as response:
            response.raise_for_status()
            html = await response.text()

        match = TENOR_MEDIA_PATTERN.search(html)
        if not match:
            raise AvatarError(f"Could not resolve Tenor URL {url}")
        resolved = match.group(1) or match.group(2)
        logger.info(f"Resolved Tenor URL: {url} -> {resolved}")
        return resolved

    async def _download(self, candidate: ImageCandidate) -> bytes:
        url = candidate.url
        if "tenor.com" in url and "media.tenor.com" not in url:
            url = await self._resolve_tenor(url)

        async with self.session.get(url, timeout=aiohttp.ClientTimeout(total=30)) as response:
            if response.status == 404 and candidate.message is not None:
                # Attachment links expire; drop the dead post so it isn't picked again
                logger.warning(f"Attachment expired, deleting message {candidate.message.id}")
                try:
                    await candidate.message.delete()
                except discord.HTTPException as e:
                    logger.error(f"Failed to delete expired attachment message: {e}")
                raise AvatarError("Attachment expired")
            response.raise_for_status()
            return await response.read()

    async def update_avatar(self, client: discord.Client) -> bool:
        """
        Replace the bot's avatar with a random image from the channel.

        Returns: True if the avatar changed
        """
        channel = client.get_channel(self.channel_id) or await client.fetch_channel(self.channel_id)

        for attempt in range(1, MAX_ATTEMPTS + 1):
            messages = [message async for message in channel.history(limit=HISTORY_LIMIT)]
            candidates = collect_images(messages)
            if not candidates:
                logger.warning(f"No images found in channel {self.channel_id}")
                return False

            candidate = self.rng.choice(candidates)
            logger.info(f"Avatar attempt {attempt}/{MAX_ATTEMPTS}: {candidate.url}")

            try:
                data = crop_to_square(await self._download(candidate))
            except (AvatarError, aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                logger.warning(f"Skipping avatar candidate {candidate.url}: {e}")
                continue

            await client.user.edit(avatar=data)
            logger.info("Avatar updated")
            return True

        logger.error(f"Failed to update avatar after {MAX_ATTEMPTS} attempts")
        return False

    async def run_daily(self, client: discord.Client):
        """Update at every UTC midnight until cancelled"""
        delay = seconds_until_midnight(self._now())
        logger.info(f"First avatar update in {delay:.0f} seconds")
        await self._sleep(delay)

        while True:
            try:
                await self.update_avatar(client)
            except discord.HTTPException as e:
                logger.error(f"Discord rejected avatar update: {e}")
            except Exception as e:
                logger.error(f"Avatar update failed: {e}", exc_info=True)

            await self._sleep(DAY_SECONDS)
