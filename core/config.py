"""
Configuration system for the Trickster bot.

Loads and validates bot configuration from YAML files.
Secrets (tokens, API keys) are read from environment variables named here.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Dict
import os
import yaml


@dataclass
class DiscordConfig:
    """Discord-specific configuration"""
    token_env_var: str = "DISCORD_BOT_TOKEN"
    guild_id: int = 0  # The only guild the bot stays in (0 = any)
    today_i_channel: Optional[int] = None  # Messages must start with "today i"
    rename_channels: List[int] = field(default_factory=list)
    typing_indicator_odds: int = 100  # 1 in N typing events get announced (0 = off)
    pfp_channel: Optional[int] = None  # Channel whose images become the daily avatar


@dataclass
class PersonaConfig:
    """Persona used for AI replies"""
    name: str = "The Trickster"
    base_prompt: Optional[str] = None  # Overrides the built-in character sheet


@dataclass
class APIConfig:
    """Claude API configuration"""
    api_key_env_var: str = "ANTHROPIC_API_KEY"
    model: str = "claude-sonnet-4-5-20250929"
    memory_model: Optional[str] = None  # Defaults to model
    quiz_model: str = "claude-haiku-4-5"
    max_tokens: int = 1024
    temperature: float = 0.9
    streaming: bool = True
    max_tool_rounds: int = 5


@dataclass
class WebSearchConfig:
    """Brave web search tool configuration"""
    api_key_env_var: str = "BRAVE_API_KEY"
    max_daily: int = 300
    max_results: int = 5


@dataclass
class BucketConfig:
    """One rate limit bucket"""
    window_seconds: float
    max_messages: int


@dataclass
class RateLimitingConfig:
    """Rate limiting configuration"""
    user: BucketConfig = field(
        default_factory=lambda: BucketConfig(window_seconds=30, max_messages=10)
    )
    channel: BucketConfig = field(
        default_factory=lambda: BucketConfig(window_seconds=60, max_messages=120)
    )
    dm: BucketConfig = field(
        default_factory=lambda: BucketConfig(window_seconds=3600, max_messages=30)
    )
    grace_seconds: float = 5.0  # User limits shorter than this are slept out


@dataclass
class AIConfig:
    """When and how the AI responder is invoked"""
    trigger_odds: int = 60  # 1 in N messages get a reply without a mention (0 = off)
    context_messages: int = 20
    max_message_chars: int = 2400
    reply_chars: int = 2000
    memory_limit: int = 5
    memory_recall: str = "recent"  # recent | random
    memory_threshold: int = 15  # Messages per channel before memories are summarized


@dataclass
class StreamingConfig:
    """Streaming relay timing"""
    min_words: int = 3
    edit_interval_seconds: float = 1.5
    poll_interval_seconds: float = 0.05
    coalesce_seconds: float = 0.05


@dataclass
class LevelingConfig:
    """Passive XP per message"""
    xp_min: int = 3
    xp_max: int = 10
    attachment_xp: int = 5


@dataclass
class QuizConfig:
    """Math and color quiz settings"""
    math_odds: int = 500
    color_odds: int = 500
    math_timeout_seconds: float = 30
    color_timeout_seconds: float = 60
    bonus_xp_min: int = 250
    bonus_xp_max: int = 999
    hex_tolerance: int = 20
    timeout_penalty_seconds: int = 60


@dataclass
class NoveltyConfig:
    """Scripted novelty branches (1 in N odds, 0 = off)"""
    rename_odds: int = 10
    rename_cooldown_seconds: float = 150
    zalgo_odds: int = 75
    shuffle_odds: int = 55
    image_odds: int = 40
    image_subreddits: List[str] = field(default_factory=list)


@dataclass
class Responder:
    """Canned reply for an exact trigger phrase"""
    message: Optional[str] = None
    react: Optional[str] = None


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: str = "logs/{bot_id}.log"


@dataclass
class DatabaseConfig:
    """SQLite store"""
    path: str = "persistence/{bot_id}.sqlite"
    pool_size: int = 4


@dataclass
class BotConfig:
    """
    Complete bot configuration.

    Loaded from YAML files in bots/ directory.
    """
    bot_id: str
    name: str
    description: str = ""

    discord: DiscordConfig = field(default_factory=DiscordConfig)
    persona: PersonaConfig = field(default_factory=PersonaConfig)
    api: APIConfig = field(default_factory=APIConfig)
    web_search: WebSearchConfig = field(default_factory=WebSearchConfig)
    rate_limiting: RateLimitingConfig = field(default_factory=RateLimitingConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    leveling: LevelingConfig = field(default_factory=LevelingConfig)
    quiz: QuizConfig = field(default_factory=QuizConfig)
    novelty: NoveltyConfig = field(default_factory=NoveltyConfig)
    responders: Dict[str, Responder] = field(default_factory=dict)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    @classmethod
    def load(cls, yaml_path: Path) -> 'BotConfig':
        """
        Load bot configuration from YAML file.

        Args:
            yaml_path: Path to bot config YAML file

        Returns:
            BotConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not yaml_path.exists():
            raise FileNotFoundError(f"Config file not found: {yaml_path}")

        with open(yaml_path) as f:
            data = yaml.safe_load(f)

        if not data:
            raise ValueError(f"Empty config file: {yaml_path}")

        if "bot_id" not in data:
            raise ValueError("Config missing required field: bot_id")
        if "name" not in data:
            raise ValueError("Config missing required field: name")

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict) -> 'BotConfig':
        """Parse nested configuration dictionaries"""
        discord_data = data.get("discord") or {}
        discord = DiscordConfig(
            token_env_var=discord_data.get("token_env_var", "DISCORD_BOT_TOKEN"),
            guild_id=int(discord_data.get("guild_id", 0)),
            today_i_channel=discord_data.get("today_i_channel"),
            rename_channels=[int(c) for c in discord_data.get("rename_channels", [])],
            typing_indicator_odds=discord_data.get("typing_indicator_odds", 100),
            pfp_channel=discord_data.get("pfp_channel"),
        )

        persona_data = data.get("persona") or {}
        persona = PersonaConfig(
            name=persona_data.get("name", "The Trickster"),
            base_prompt=persona_data.get("base_prompt"),
        )

        api_data = data.get("api") or {}
        api = APIConfig(
            api_key_env_var=api_data.get("api_key_env_var", "ANTHROPIC_API_KEY"),
            model=api_data.get("model", "claude-sonnet-4-5-20250929"),
            memory_model=api_data.get("memory_model"),
            quiz_model=api_data.get("quiz_model", "claude-haiku-4-5"),
            max_tokens=api_data.get("max_tokens", 1024),
            temperature=api_data.get("temperature", 0.9),
            streaming=api_data.get("streaming", True),
            max_tool_rounds=api_data.get("max_tool_rounds", 5),
        )

        web_search_data = data.get("web_search") or {}
        web_search = WebSearchConfig(
            api_key_env_var=web_search_data.get("api_key_env_var", "BRAVE_API_KEY"),
            max_daily=web_search_data.get("max_daily", 300),
            max_results=web_search_data.get("max_results", 5),
        )

        rate_limiting_data = data.get("rate_limiting") or {}
        defaults = RateLimitingConfig()
        rate_limiting = RateLimitingConfig(
            user=_parse_bucket(rate_limiting_data.get("user"), defaults.user),
            channel=_parse_bucket(rate_limiting_data.get("channel"), defaults.channel),
            dm=_parse_bucket(rate_limiting_data.get("dm"), defaults.dm),
            grace_seconds=rate_limiting_data.get("grace_seconds", 5.0),
        )

        ai_data = data.get("ai") or {}
        ai = AIConfig(
            trigger_odds=ai_data.get("trigger_odds", 60),
            context_messages=ai_data.get("context_messages", 20),
            max_message_chars=ai_data.get("max_message_chars", 2400),
            reply_chars=ai_data.get("reply_chars", 2000),
            memory_limit=ai_data.get("memory_limit", 5),
            memory_recall=ai_data.get("memory_recall", "recent"),
            memory_threshold=ai_data.get("memory_threshold", 15),
        )

        streaming_data = data.get("streaming") or {}
        streaming = StreamingConfig(
            min_words=streaming_data.get("min_words", 3),
            edit_interval_seconds=streaming_data.get("edit_interval_seconds", 1.5),
            poll_interval_seconds=streaming_data.get("poll_interval_seconds", 0.05),
            coalesce_seconds=streaming_data.get("coalesce_seconds", 0.05),
        )

        leveling_data = data.get("leveling") or {}
        leveling = LevelingConfig(
            xp_min=leveling_data.get("xp_min", 3),
            xp_max=leveling_data.get("xp_max", 10),
            attachment_xp=leveling_data.get("attachment_xp", 5),
        )

        quiz_data = data.get("quiz") or {}
        quiz = QuizConfig(
            math_odds=quiz_data.get("math_odds", 500),
            color_odds=quiz_data.get("color_odds", 500),
            math_timeout_seconds=quiz_data.get("math_timeout_seconds", 30),
            color_timeout_seconds=quiz_data.get("color_timeout_seconds", 60),
            bonus_xp_min=quiz_data.get("bonus_xp_min", 250),
            bonus_xp_max=quiz_data.get("bonus_xp_max", 999),
            hex_tolerance=quiz_data.get("hex_tolerance", 20),
            timeout_penalty_seconds=quiz_data.get("timeout_penalty_seconds", 60),
        )

        novelty_data = data.get("novelty") or {}
        novelty = NoveltyConfig(
            rename_odds=novelty_data.get("rename_odds", 10),
            rename_cooldown_seconds=novelty_data.get("rename_cooldown_seconds", 150),
            zalgo_odds=novelty_data.get("zalgo_odds", 75),
            shuffle_odds=novelty_data.get("shuffle_odds", 55),
            image_odds=novelty_data.get("image_odds", 40),
            image_subreddits=novelty_data.get("image_subreddits", []),
        )

        # Trigger phrases are matched against uppercased message content
        responders = {}
        for trigger, responder_data in (data.get("responders") or {}).items():
            responder_data = responder_data or {}
            responders[str(trigger).upper()] = Responder(
                message=responder_data.get("message"),
                react=responder_data.get("react"),
            )

        logging_data = data.get("logging") or {}
        logging_config = LoggingConfig(
            level=logging_data.get("level", "INFO"),
            file=logging_data.get("file", "logs/{bot_id}.log"),
        )

        database_data = data.get("database") or {}
        database = DatabaseConfig(
            path=database_data.get("path", "persistence/{bot_id}.sqlite"),
            pool_size=database_data.get("pool_size", 4),
        )

        return cls(
            bot_id=data["bot_id"],
            name=data["name"],
            description=data.get("description", ""),
            discord=discord,
            persona=persona,
            api=api,
            web_search=web_search,
            rate_limiting=rate_limiting,
            ai=ai,
            streaming=streaming,
            leveling=leveling,
            quiz=quiz,
            novelty=novelty,
            responders=responders,
            logging=logging_config,
            database=database,
        )

    @property
    def anthropic_api_key(self) -> Optional[str]:
        return os.getenv(self.api.api_key_env_var) or None

    @property
    def brave_api_key(self) -> Optional[str]:
        return os.getenv(self.web_search.api_key_env_var) or None

    @property
    def discord_token(self) -> Optional[str]:
        return os.getenv(self.discord.token_env_var) or None

    @property
    def database_path(self) -> Path:
        return Path(self.database.path.format(bot_id=self.bot_id))

    def validate(self) -> List[str]:
        """
        Validate configuration values.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []

        if not self.bot_id or not self.bot_id.strip():
            errors.append("bot_id cannot be empty")

        if not self.name or not self.name.strip():
            errors.append("name cannot be empty")

        if not self.discord_token:
            errors.append(f"Environment variable {self.discord.token_env_var} is not set")

        for bucket_name in ("user", "channel", "dm"):
            bucket = getattr(self.rate_limiting, bucket_name)
            if bucket.max_messages < 1:
                errors.append(f"rate_limiting.{bucket_name}.max_messages must be >= 1")
            if bucket.window_seconds <= 0:
                errors.append(f"rate_limiting.{bucket_name}.window_seconds must be > 0")

        if self.ai.memory_recall not in ("recent", "random"):
            errors.append("ai.memory_recall must be 'recent' or 'random'")

        if self.api.max_tool_rounds < 1:
            errors.append("api.max_tool_rounds must be >= 1")

        if self.leveling.xp_min > self.leveling.xp_max:
            errors.append("leveling.xp_min must be <= leveling.xp_max")

        if self.quiz.bonus_xp_min > self.quiz.bonus_xp_max:
            errors.append("quiz.bonus_xp_min must be <= quiz.bonus_xp_max")

        for trigger, responder in self.responders.items():
            if not responder.message and not responder.react:
                errors.append(f"responder '{trigger}' needs a message or a react")

        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR"]
        if self.logging.level not in valid_levels:
            errors.append(f"logging.level must be one of: {valid_levels}")

        return errors


def _parse_bucket(data: Optional[dict], default: BucketConfig) -> BucketConfig:
    """Parse one rate limit bucket, falling back to defaults per field"""
    data = data or {}
    return BucketConfig(
        window_seconds=data.get("window_seconds", default.window_seconds),
        max_messages=data.get("max_messages", default.max_messages),
    )
