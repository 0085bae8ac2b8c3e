"""
Image Source - Random image reposts from configured subreddits
"""

import asyncio
import logging
import random
from typing import List, Optional

import aiohttp

logger = logging.getLogger(__name__)

USER_AGENT = "trickster-bot/1.0"


def pick_image(children: List[dict], rng: random.Random) -> Optional[str]:
    """
    Choose one direct image link from a Reddit listing.

    NSFW posts are skipped, and only links hosted on an image domain
    (i.redd.it, i.imgur.com, ...) count as direct images.
    """
    urls = []
    for child in children:
        data = child.get("data") or {}
        if data.get("over_18"):
            continue
        url = data.get("url_overridden_by_dest") or ""
        if "i." in url:
            urls.append(url)

    if not urls:
        return None
    return rng.choice(urls)


class RedditImageSource:
    """Fetches a subreddit's front page listing and picks an image"""

    def __init__(self, session: aiohttp.ClientSession, subreddits: List[str]):
        self.session = session
        self.subreddits = subreddits

    async def random_image(self, rng: random.Random) -> Optional[str]:
        """
        Returns: an image URL, or None if nothing suitable was found
        """
        if not self.subreddits:
            return None

        subreddit = rng.choice(self.subreddits)
        url = f"https://www.reddit.com/r/{subreddit}/.json"

        try:
            async with self.session.get(
                url,
                headers={"User-Agent": USER_AGENT},
                timeout=aiohttp.ClientTimeout(total=10),
            ) as response:
                response.raise_for_status()
                listing = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Failed to fetch r/{subreddit}: {e}")
            return None

        children = ((listing or {}).get("data") or {}).get("children") or []
        image = pick_image(children, rng)
        if image is None:
            logger.debug(f"No SFW image found in r/{subreddit}")
        return image
