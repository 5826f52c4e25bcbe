import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Set

import utils

if TYPE_CHECKING:
    from connection_manager import Connection

ANONYMOUS = "Anonymous"


@dataclass
class Comment:
    text: str
    author: str = ANONYMOUS
    id: str = field(default_factory=utils.generate_uuid)
    created_at: datetime = field(default_factory=utils.get_utc_now)


@dataclass
class Idea:
    transcription: str
    themes: List[str]
    prompts: List[str]
    comments: List[Comment] = field(default_factory=list)
    id: str = field(default_factory=utils.generate_uuid)
    created_at: datetime = field(default_factory=utils.get_utc_now)


@dataclass
class ChatMessage:
    """Transient chat payload; never stored on a Room."""

    text: str
    sender: str
    id: str = field(default_factory=utils.generate_uuid)
    created_at: datetime = field(default_factory=utils.get_utc_now)


@dataclass(eq=False)
class Room:
    code: str
    participants: Set["Connection"] = field(default_factory=set)
    ideas: List[Idea] = field(default_factory=list)
    # Held while a mutation and the broadcast announcing it are in flight
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    eviction: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    def find_idea(self, idea_id: str) -> Optional[Idea]:
        for idea in self.ideas:
            if idea.id == idea_id:
                return idea
        return None
