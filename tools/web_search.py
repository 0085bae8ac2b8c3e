"""
Web Search Integration - Brave Search client and quota management

The AI responder's web_search tool calls the Brave Search API directly.
Usage is tracked against a daily quota persisted to a small JSON file.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


@dataclass
class SearchResult:
    title: str
    url: str
    description: str = ""


class WebSearchManager:
    """
    Tracks web search usage against a daily limit.

    The counter resets when the UTC date changes.
    """

    def __init__(self, stats_file: Path, max_daily: int = 300):
        self.stats_file = stats_file
        self.max_daily = max_daily

        self.stats = self._load_stats()
        self._check_reset()

        logger.info(f"WebSearchManager initialized (max_daily={max_daily})")

    def _load_stats(self) -> Dict:
        """Load stats from file or initialize fresh"""
        if self.stats_file.exists():
            try:
                with open(self.stats_file, 'r') as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load web search stats: {e}")

        return {
            "last_reset": datetime.utcnow().date().isoformat(),
            "searches_today": 0,
            "total_searches": 0
        }

    def _save_stats(self):
        """Persist stats to disk"""
        try:
            self.stats_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.stats_file, 'w') as f:
                json.dump(self.stats, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save web search stats: {e}")

    def _check_reset(self):
        """Reset daily counter once the UTC date has moved on"""
        today = datetime.utcnow().date().isoformat()
        if self.stats.get("last_reset", "")[:10] != today:
            logger.info(f"Daily web search quota reset (was: {self.stats['searches_today']})")
            self.stats["searches_today"] = 0
            self.stats["last_reset"] = today
            self._save_stats()

    def can_search(self) -> tuple[bool, Optional[str]]:
        """
        Check if web search is allowed under quota.

        Returns:
            (allowed, reason_if_blocked)
        """
        self._check_reset()

        if self.stats["searches_today"] >= self.max_daily:
            return False, f"Daily quota exceeded ({self.max_daily} searches/day)"

        return True, None

    def record_search(self):
        """Increment usage counters after successful search"""
        self.stats["searches_today"] += 1
        self.stats["total_searches"] += 1
        self._save_stats()

        logger.info(f"Web search recorded: {self.stats['searches_today']}/{self.max_daily} today")

    def get_stats(self) -> Dict:
        self._check_reset()

        return {
            "searches_today": self.stats["searches_today"],
            "searches_remaining": max(0, self.max_daily - self.stats["searches_today"]),
            "total_searches": self.stats["total_searches"],
            "last_reset": self.stats["last_reset"]
        }


class BraveSearchClient:
    """Thin aiohttp client for the Brave web search endpoint"""

    def __init__(
        self,
        api_key: str,
        session: aiohttp.ClientSession,
        quota: Optional[WebSearchManager] = None,
        max_results: int = 5,
    ):
        self.api_key = api_key
        self.session = session
        self.quota = quota
        self.max_results = max_results

    async def search(self, query: str) -> List[SearchResult]:
        """
        Run a web search.

        Raises:
            RuntimeError: If the daily quota is exhausted
            aiohttp.ClientError: On network or HTTP errors
        """
        if self.quota:
            allowed, reason = self.quota.can_search()
            if not allowed:
                raise RuntimeError(reason)

        headers = {
            "Accept": "application/json",
            "X-Subscription-Token": self.api_key,
        }
        timeout = aiohttp.ClientTimeout(total=15)

        async with self.session.get(
            BRAVE_SEARCH_URL, headers=headers, params={"q": query}, timeout=timeout
        ) as response:
            response.raise_for_status()
            data = await response.json()

        if self.quota:
            self.quota.record_search()

        results = ((data or {}).get("web") or {}).get("results") or []
        logger.debug(f"Brave search '{query}': {len(results)} results")

        return [
            SearchResult(
                title=r.get("title", ""),
                url=r.get("url", ""),
                description=r.get("description") or "",
            )
            for r in results[:self.max_results]
        ]


def format_search_results(query: str, results: List[SearchResult]) -> str:
    """Render results as plain text for a tool_result block"""
    if not results:
        return f"No results found for: {query}"

    lines = [f"Search results for '{query}':"]
    for i, result in enumerate(results, start=1):
        lines.append(f"{i}. {result.title}\n   {result.url}\n   {result.description}")
    return "\n".join(lines)
