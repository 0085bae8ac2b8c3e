"""
Command Model - Values passed between the dispatcher and the Discord client

The dispatcher only ever sees IncomingMessage (a flat snapshot of the
fields it needs) and only ever returns a Command. Executing the Command
against Discord is the client's job.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    import discord


@dataclass
class AttachmentInfo:
    url: str
    size: int
    filename: str = ""


@dataclass
class IncomingMessage:
    """The parts of a Discord message the dispatcher depends on"""
    id: int
    channel_id: int
    guild_id: Optional[int]  # None for DMs
    author_id: int
    author_name: str
    author_is_bot: bool
    content: str
    attachments: List[AttachmentInfo] = field(default_factory=list)
    referenced_author_id: Optional[int] = None
    mentions: Dict[int, str] = field(default_factory=dict)  # user id -> display name

    @property
    def is_dm(self) -> bool:
        return self.guild_id is None

    @classmethod
    def from_discord(cls, message: "discord.Message") -> "IncomingMessage":
        referenced_author_id = None
        resolved = message.reference.resolved if message.reference else None
        if resolved is not None and hasattr(resolved, "author"):
            referenced_author_id = resolved.author.id

        return cls(
            id=message.id,
            channel_id=message.channel.id,
            guild_id=message.guild.id if message.guild else None,
            author_id=message.author.id,
            author_name=message.author.display_name,
            author_is_bot=message.author.bot,
            content=message.content,
            attachments=[
                AttachmentInfo(url=a.url, size=a.size, filename=a.filename)
                for a in message.attachments
            ],
            referenced_author_id=referenced_author_id,
            mentions={u.id: u.display_name for u in message.mentions},
        )


@dataclass
class AIRequest:
    """Everything the AI responder needs for one reply"""
    user_id: int
    author_name: str
    content: str  # "Name: message"
    context: str
    mentions: Dict[str, int] = field(default_factory=dict)  # display name -> user id
    participants: List[str] = field(default_factory=list)
    create_memories: bool = False


@dataclass
class Command:
    """
    One action for the client to perform.

    Several fields may be set at once (e.g. a quiz prompt with an image
    attached, or an expiry notice with a member timeout).
    """
    text: Optional[str] = None
    reply: bool = False
    reaction: Optional[str] = None
    files: List[Tuple[str, bytes]] = field(default_factory=list)
    delete: bool = False
    topic: Optional[str] = None
    timeout_user_id: Optional[int] = None
    timeout_seconds: int = 0
    leave_guild: bool = False
    ai: Optional[AIRequest] = None

    @classmethod
    def say(cls, text: str, reply: bool = False) -> "Command":
        return cls(text=text, reply=reply)

    @classmethod
    def react(cls, emoji: str) -> "Command":
        return cls(reaction=emoji)

