import asyncio
import logging
from typing import Dict, Optional

from errors import EmptyInput, IdeaNotFound
from models import ANONYMOUS, Comment, Idea, Room

logger = logging.getLogger(__name__)

DEFAULT_EVICTION_SECONDS = 60.0


class RoomStore:
    """In-memory owner of every room and its ideas.

    All operations are synchronous, so each one runs to completion on the
    event loop before any other coroutine can observe the store. Empty rooms
    are kept for a grace window in case participants come back.
    """

    def __init__(self, eviction_seconds: float = DEFAULT_EVICTION_SECONDS):
        self.eviction_seconds = eviction_seconds
        self._rooms: Dict[str, Room] = {}

    def get(self, code: str) -> Optional[Room]:
        return self._rooms.get(code)

    def get_or_create(self, code: str) -> Room:
        room = self._rooms.get(code)
        if room is None:
            room = Room(code=code)
            self._rooms[code] = room
            logger.info("Creating new room: %s", code)
        return room

    def __contains__(self, code: str) -> bool:
        return code in self._rooms

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    @property
    def participant_count(self) -> int:
        return sum(room.participant_count for room in self._rooms.values())

    def append_idea(self, room: Room, idea: Idea) -> Idea:
        room.ideas.append(idea)
        logger.info("Idea %s added to room %s (%d ideas)", idea.id, room.code, len(room.ideas))
        return idea

    def add_comment(self, room: Room, idea_id: str, text: Optional[str], author: Optional[str] = None) -> Idea:
        """Append a comment to an idea of this room and return the updated idea."""
        idea = room.find_idea(idea_id)
        if idea is None:
            raise IdeaNotFound()
        if not text or not text.strip():
            raise EmptyInput("Empty comment")

        comment = Comment(text=text, author=(author or "").strip() or ANONYMOUS)
        idea.comments.append(comment)
        logger.info("Comment added to idea %s by %s", idea_id, comment.author)
        return idea

    # --- Eviction ---

    def schedule_eviction(self, code: str) -> None:
        room = self._rooms.get(code)
        if room is None:
            return
        self.cancel_eviction(code)
        loop = asyncio.get_running_loop()
        room.eviction = loop.call_later(self.eviction_seconds, self._evict, code)
        logger.debug("Room %s empty; eviction in %ss", code, self.eviction_seconds)

    def cancel_eviction(self, code: str) -> None:
        room = self._rooms.get(code)
        if room is not None and room.eviction is not None:
            room.eviction.cancel()
            room.eviction = None

    def _evict(self, code: str) -> None:
        room = self._rooms.get(code)
        if room is None:
            return
        room.eviction = None
        # Double check it's still empty
        if room.participants:
            return
        del self._rooms[code]
        logger.info("Room %s removed (empty)", code)

    def close(self) -> None:
        for code in list(self._rooms):
            self.cancel_eviction(code)
