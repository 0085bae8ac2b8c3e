#!/usr/bin/env python3
"""
Trickster - Bot Manager CLI

Entry point for spawning the bot.

Usage:
    python bot_manager.py spawn <bot_id>
"""

import asyncio
import logging
import os
import random
import sys
from pathlib import Path

import aiohttp
from anthropic import AsyncAnthropic
from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).parent))

from core.ai_responder import AIResponder
from core.avatar_updater import AvatarUpdater
from core.config import BotConfig
from core.database import Database
from core.discord_client import DiscordClient
from core.dispatcher import Dispatcher
from core.memory_creator import MemoryCreator
from core.message_cache import MessageCache
from core.quiz_handler import QuizHandler
from core.rate_limiter import RateLimiters
from tools.image_source import RedditImageSource
from tools.web_search import BraveSearchClient, WebSearchManager


def resolve_config_path(bot_id: str, bots_dir: Path = Path("bots")) -> Path:
    """
    Locate a bot's config file (prefer .yaml, fall back to .yaml.example).

    Raises:
        FileNotFoundError: If neither exists
    """
    config_path = bots_dir / f"{bot_id}.yaml"
    if config_path.exists():
        return config_path

    template_path = bots_dir / f"{bot_id}.yaml.example"
    if template_path.exists():
        logging.getLogger(__name__).warning(
            f"Using template config for {bot_id}. "
            f"Copy to {bots_dir}/{bot_id}.yaml and customize."
        )
        return template_path

    raise FileNotFoundError(
        f"No config found for bot '{bot_id}'.\n"
        f"Expected: {bots_dir}/{bot_id}.yaml or {bots_dir}/{bot_id}.yaml.example"
    )


class BotManager:
    """
    Manages bot lifecycle: initialization, component setup, graceful shutdown.
    """

    def __init__(self, bot_id: str):
        self.bot_id = bot_id
        self.config: BotConfig = None
        self.client: DiscordClient = None
        self.db: Database = None
        self.http_session: aiohttp.ClientSession = None
        self.anthropic: AsyncAnthropic = None

        self._setup_logging()

    def _setup_logging(self):
        """Configure file and console logging with reduced discord.py noise"""
        log_dir = Path("logs")
        log_dir.mkdir(exist_ok=True)

        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            handlers=[
                logging.StreamHandler(sys.stdout),
                logging.FileHandler(log_dir / f"{self.bot_id}.log"),
            ],
        )

        # Discord.py is chatty - quiet it down
        logging.getLogger("discord").setLevel(logging.WARNING)
        logging.getLogger("discord.http").setLevel(logging.WARNING)

    async def initialize(self) -> str:
        """
        Initialize all bot components in dependency order.
        Returns Discord token for client.start().
        """
        logger = logging.getLogger(__name__)
        logger.info(f"Initializing bot '{self.bot_id}'...")

        load_dotenv()

        self.config = BotConfig.load(resolve_config_path(self.bot_id))
        logger.info(f"Loaded config for bot '{self.config.name}'")

        # Fail fast if config is invalid
        validation_errors = self.config.validate()
        if validation_errors:
            logger.error(f"[{self.bot_id}] Configuration validation failed:")
            for error in validation_errors:
                logger.error(f"  - {error}")
            sys.exit(1)

        logger.info(f"[{self.bot_id}] Configuration validated successfully")

        # Apply log level and file from config
        logging.getLogger().setLevel(getattr(logging, self.config.logging.level))
        configured_log = Path(self.config.logging.file.format(bot_id=self.bot_id))
        if configured_log != Path("logs") / f"{self.bot_id}.log":
            configured_log.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(configured_log)
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
            )
            logging.getLogger().addHandler(file_handler)

        # SQLite store (users, memories, math questions)
        self.db = Database(self.config.database_path, pool_size=self.config.database.pool_size)
        await self.db.initialize()
        logger.info(f"Database initialized at {self.config.database_path}")

        # AI is optional: without a key the bot still runs its scripted branches
        anthropic_key = self.config.anthropic_api_key
        if anthropic_key:
            self.anthropic = AsyncAnthropic(api_key=anthropic_key)
            logger.info("Claude API client initialized")
        else:
            logger.warning(f"{self.config.api.api_key_env_var} not set, AI replies disabled")

        self.http_session = aiohttp.ClientSession(headers={"User-Agent": "trickster-bot/1.0"})

        search_client = None
        brave_key = self.config.brave_api_key
        if brave_key:
            quota = WebSearchManager(
                Path("persistence") / f"{self.bot_id}_web_search_stats.json",
                max_daily=self.config.web_search.max_daily,
            )
            search_client = BraveSearchClient(
                brave_key,
                self.http_session,
                quota=quota,
                max_results=self.config.web_search.max_results,
            )
            logger.info("Web search enabled")

        image_source = None
        if self.config.novelty.image_subreddits:
            image_source = RedditImageSource(self.http_session, self.config.novelty.image_subreddits)

        rng = random.Random()
        cache = MessageCache()
        limiters = RateLimiters(self.config.rate_limiting)
        quizzes = QuizHandler(self.config, self.db, rng, anthropic_client=self.anthropic)

        dispatcher = Dispatcher(
            config=self.config,
            db=self.db,
            cache=cache,
            limiters=limiters,
            quizzes=quizzes,
            rng=rng,
            ai_enabled=self.anthropic is not None,
            image_source=image_source,
        )

        ai_responder = AIResponder(
            self.config, self.db, anthropic_client=self.anthropic, search_client=search_client
        )
        memory_creator = MemoryCreator(self.config, self.db, anthropic_client=self.anthropic)

        avatar_updater = None
        if self.config.discord.pfp_channel:
            avatar_updater = AvatarUpdater(self.http_session, int(self.config.discord.pfp_channel), rng)
            logger.info(f"Daily avatar rotation from channel {self.config.discord.pfp_channel}")

        self.client = DiscordClient(
            config=self.config,
            dispatcher=dispatcher,
            message_cache=cache,
            ai_responder=ai_responder,
            memory_creator=memory_creator,
            avatar_updater=avatar_updater,
        )
        logger.info("Bot initialization complete!")

        return self.config.discord_token

    async def run(self):
        """Connect to Discord and run until interrupted"""
        logger = logging.getLogger(__name__)

        try:
            discord_token = await self.initialize()
            logger.info("Connecting to Discord...")
            await self.client.start(discord_token)

        except asyncio.CancelledError:
            logger.info("Shutdown requested")
        except KeyboardInterrupt:
            logger.info("Shutdown requested by user (Ctrl+C)")
        except Exception as e:
            logger.error(f"Fatal error: {e}", exc_info=True)
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Graceful shutdown: cancel background work, close connections"""
        logger = logging.getLogger(__name__)
        logger.info("Shutting down bot...")

        try:
            if self.client:
                await self.client.shutdown()
                await self.client.close()

            if self.http_session:
                await self.http_session.close()

            if self.anthropic:
                await self.anthropic.close()

            if self.db:
                await self.db.close()

            logger.info("Shutdown complete")

        except Exception as e:
            logger.error(f"Error during shutdown: {e}")


def print_usage():
    """Print CLI usage"""
    print("Trickster - Bot Manager")
    print()
    print("Usage:")
    print("  python bot_manager.py spawn <bot_id>   - Start a bot")
    print("  python bot_manager.py --help           - Show this help")
    print()
    print("Configuration:")
    print("  1. Copy .env.example to .env")
    print("  2. Fill in DISCORD_BOT_TOKEN (and optionally ANTHROPIC_API_KEY, BRAVE_API_KEY)")
    print("  3. Copy bots/trickster.yaml.example to bots/<bot_id>.yaml and edit it")
    print("  4. Run: python bot_manager.py spawn <bot_id>")


def main():
    """CLI entry point"""
    if len(sys.argv) < 2 or sys.argv[1] in ["--help", "-h", "help"]:
        print_usage()
        sys.exit(0)

    command = sys.argv[1]

    if command == "spawn":
        if len(sys.argv) < 3:
            print("Error: Missing bot_id")
            print("Usage: python bot_manager.py spawn <bot_id>")
            sys.exit(1)

        manager = BotManager(sys.argv[2])

        try:
            asyncio.run(manager.run())
        except KeyboardInterrupt:
            pass
        finally:
            # Hard exit to prevent hanging on lingering connector threads
            os._exit(0)

    else:
        print(f"Error: Unknown command '{command}'")
        print_usage()
        sys.exit(1)


if __name__ == "__main__":
    main()
