from fastapi import WebSocket
from starlette.websockets import WebSocketState
from pydantic import BaseModel
from typing import Awaitable, Callable, Dict, Optional, Union
import json
import logging

import utils
from models import Room
from room_store import RoomStore
from schemas import RoomUpdate

logger = logging.getLogger(__name__)

Message = Union[BaseModel, dict, str]


def serialize(message: Message) -> str:
    if isinstance(message, str):
        return message
    if isinstance(message, BaseModel):
        return message.model_dump_json(by_alias=True)
    return json.dumps(message)


class Connection:
    """One client websocket plus the bookkeeping the server keeps for it."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.id = utils.generate_uuid()

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)

    async def close(self, code: int = 1000) -> None:
        if self.is_open:
            await self.websocket.close(code=code)

    def __repr__(self) -> str:
        return f"<Connection {self.id}>"


class Broadcaster:
    """Best-effort delivery to a room's open connections."""

    async def broadcast(self, room: Room, message: Message, exclude=None) -> int:
        # Serialize once for every recipient
        json_msg = serialize(message)
        delivered = 0
        for connection in list(room.participants):
            if connection is exclude or not connection.is_open:
                continue
            try:
                await connection.send_text(json_msg)
                delivered += 1
            except Exception as exc:
                # Removal happens on the connection's own close path
                logger.warning("Broadcast to %r in room %s failed: %s", connection, room.code, exc)
        return delivered

    async def unicast(self, connection, message: Message) -> bool:
        if not connection.is_open:
            return False
        try:
            await connection.send_text(serialize(message))
            return True
        except Exception as exc:
            logger.warning("Send to %r failed: %s", connection, exc)
            return False


class ConnectionRegistry:
    """Reverse mapping connection -> room code."""

    def __init__(self, store: RoomStore, broadcaster: Broadcaster):
        self.store = store
        self.broadcaster = broadcaster
        self._rooms: Dict[object, str] = {}

    def room_of(self, connection) -> Optional[Room]:
        code = self._rooms.get(connection)
        if code is None:
            return None
        return self.store.get(code)

    def __len__(self) -> int:
        return len(self._rooms)

    async def attach(
        self,
        connection,
        room: Room,
        on_attached: Optional[Callable[[Room], Awaitable[None]]] = None,
    ) -> None:
        """Move `connection` into `room`, leaving any previous room cleanly.

        `on_attached` runs under the room lock right after the connection is
        added, before any other broadcast to the room can reach it.
        """
        self.store.cancel_eviction(room.code)
        previous = self.room_of(connection)
        if previous is not None and previous is not room:
            await self._leave(connection, previous)

        async with room.lock:
            room.participants.add(connection)
            self._rooms[connection] = room.code
            self.store.cancel_eviction(room.code)
            logger.info("Client joined room %s (%d participants)", room.code, room.participant_count)
            if on_attached is not None:
                await on_attached(room)

    def detach(self, connection) -> Optional[Room]:
        """Remove `connection` from its room, if any, and return that room."""
        code = self._rooms.pop(connection, None)
        if code is None:
            return None
        room = self.store.get(code)
        if room is None:
            return None
        room.participants.discard(connection)
        logger.info("Client left room %s (%d participants remaining)", room.code, room.participant_count)
        if not room.participants:
            self.store.schedule_eviction(room.code)
        return room

    async def _leave(self, connection, room: Room) -> None:
        async with room.lock:
            self.detach(connection)
            if room.participants:
                await self.broadcaster.broadcast(room, RoomUpdate(participants=room.participant_count))
