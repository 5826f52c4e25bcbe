"""
Session protocol: decodes client envelopes and drives the room state machine.

A connection starts unjoined; `join_room` moves it into a room (leaving any
previous one), after which it may submit ideas, comment and chat. Every
per-operation failure is answered with an `error` envelope to the requester
only; nothing here closes a connection on its own.
"""

import asyncio
import json
import logging
import time
from typing import Optional, Set

from pydantic import ValidationError

from ai import Analyzer
from connection_manager import Broadcaster, ConnectionRegistry
from errors import CollaboratorFailure, EmptyInput, InvalidEnvelope, NotInRoom, ProtocolError
from models import ChatMessage, Idea, Room
from room_store import RoomStore
from schemas import (
    INBOUND_TYPES,
    AddComment,
    ChatMessageIn,
    ChatMessageOut,
    ErrorMessage,
    IdeaResponse,
    IdeasUpdate,
    IdeaUpdate,
    JoinRoom,
    Ping,
    Pong,
    RoomUpdate,
    SendAudio,
    SendTranscription,
    inbound_adapter,
)

logger = logging.getLogger(__name__)

AUDIO_UNSUPPORTED = (
    "Server-side audio processing is no longer supported. "
    "Please upgrade your client to use Web Speech API."
)


def decode_envelope(text: str):
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        raise InvalidEnvelope("Failed to process message") from None
    if not isinstance(data, dict):
        raise InvalidEnvelope("Failed to process message")

    msg_type = data.get("type")
    if msg_type not in INBOUND_TYPES:
        raise InvalidEnvelope(f"Unknown message type: {msg_type}")
    try:
        return inbound_adapter.validate_python(data)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"][1:]) or msg_type for err in exc.errors())
        raise InvalidEnvelope(f"Invalid {msg_type} message: {fields}") from None


class SessionHandler:
    def __init__(
        self,
        store: RoomStore,
        registry: ConnectionRegistry,
        broadcaster: Broadcaster,
        analyzer: Analyzer,
    ):
        self.store = store
        self.registry = registry
        self.broadcaster = broadcaster
        self.analyzer = analyzer
        # Submissions outlive the connection that sent them
        self._pending: Set[asyncio.Task] = set()

    # --- Dispatch ---

    async def handle_text(self, connection, text: str) -> None:
        if text == "ping":
            await self.broadcaster.unicast(connection, "pong")
            return

        try:
            envelope = decode_envelope(text)
            await self.dispatch(connection, envelope)
        except ProtocolError as exc:
            await self.broadcaster.unicast(connection, ErrorMessage(message=exc.message))
        except MemoryError:
            logger.critical("Out of memory while handling a message from %r", connection)
            raise
        except Exception:
            logger.exception("Error processing message from %r", connection)
            await self.broadcaster.unicast(connection, ErrorMessage(message="Failed to process message"))

    async def dispatch(self, connection, envelope) -> None:
        if isinstance(envelope, Pong):
            return
        if isinstance(envelope, JoinRoom):
            await self.join(connection, envelope.room_code)
            return

        room = self._require_room(connection)
        if isinstance(envelope, SendTranscription):
            self.submit(connection, room, envelope.transcription)
        elif isinstance(envelope, AddComment):
            await self.comment(room, envelope.idea_id, envelope.comment, envelope.author)
        elif isinstance(envelope, ChatMessageIn):
            await self.chat(connection, room, envelope.message, envelope.sender)
        elif isinstance(envelope, SendAudio):
            raise ProtocolError(AUDIO_UNSUPPORTED)

    def _require_room(self, connection) -> Room:
        room = self.registry.room_of(connection)
        if room is None:
            raise NotInRoom()
        return room

    # --- Operations ---

    async def join(self, connection, room_code: str) -> Room:
        room = self.store.get_or_create(room_code)

        async def announce(joined: Room) -> None:
            # Snapshot first, so the newcomer never sees an update before it
            snapshot = IdeasUpdate(ideas=[IdeaResponse.model_validate(idea) for idea in joined.ideas])
            await self.broadcaster.unicast(connection, snapshot)
            await self.broadcaster.broadcast(joined, RoomUpdate(participants=joined.participant_count))

        await self.registry.attach(connection, room, on_attached=announce)
        return room

    def submit(self, connection, room: Room, transcription: Optional[str]) -> asyncio.Task:
        """Validate synchronously, then analyze and store in the background."""
        if not transcription or not transcription.strip():
            raise EmptyInput("Empty transcription")

        logger.info("Transcription received for room %s: %s", room.code, transcription)
        task = asyncio.create_task(self._process_submission(connection, room, transcription))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _process_submission(self, connection, room: Room, transcription: str) -> Optional[Idea]:
        started = time.monotonic()
        try:
            analysis = await self.analyzer(transcription)
        except CollaboratorFailure as exc:
            logger.warning("AI analysis failed for room %s: %s", room.code, exc)
            await self.broadcaster.unicast(connection, ErrorMessage(message=CollaboratorFailure.message))
            return None
        except Exception:
            logger.exception("Error processing idea for room %s", room.code)
            await self.broadcaster.unicast(connection, ErrorMessage(message=CollaboratorFailure.message))
            return None

        idea = Idea(
            transcription=transcription,
            themes=list(analysis.themes),
            prompts=list(analysis.prompts),
        )
        # The room may have been evicted, or evicted and recreated, during the call
        current = self.store.get(room.code)
        if current is None:
            logger.warning("Room %s was removed before idea %s could be stored", room.code, idea.id)
            return None
        room = current
        async with room.lock:
            self.store.append_idea(room, idea)
            await self.broadcaster.broadcast(room, IdeaUpdate(idea=IdeaResponse.model_validate(idea)))
        logger.info("Idea %s processed and broadcast to room %s in %.2fs", idea.id, room.code, time.monotonic() - started)
        return idea

    async def comment(self, room: Room, idea_id: str, text: Optional[str], author: Optional[str]) -> Idea:
        async with room.lock:
            idea = self.store.add_comment(room, idea_id, text, author)
            await self.broadcaster.broadcast(room, IdeaUpdate(idea=IdeaResponse.model_validate(idea)))
        return idea

    async def chat(self, connection, room: Room, text: Optional[str], sender: Optional[str]) -> ChatMessage:
        if not text or not text.strip():
            raise EmptyInput("Empty message")

        message = ChatMessage(text=text, sender=(sender or "").strip() or connection.id)
        async with room.lock:
            # The sender renders its own message locally
            await self.broadcaster.broadcast(
                room,
                ChatMessageOut.model_validate(message),
                exclude=connection,
            )
        logger.info("Chat message from %s in room %s", message.sender, room.code)
        return message

    async def leave(self, connection) -> Optional[Room]:
        """Close path shared by graceful disconnects and heartbeat timeouts."""
        room = self.registry.detach(connection)
        if room is None:
            return None
        async with room.lock:
            if room.participants:
                await self.broadcaster.broadcast(room, RoomUpdate(participants=room.participant_count))
        return room

    # --- Liveness ---

    async def heartbeat(self, connection, interval: float) -> None:
        """Send a `ping` envelope every `interval` seconds; return once a send fails.

        Silence alone never ends the session: unresponsive peers are detected by
        the transport-level ping configured on the server.
        """
        while True:
            await asyncio.sleep(interval)
            if not await self.broadcaster.unicast(connection, Ping()):
                logger.info("Heartbeat to %r failed", connection)
                return

    @property
    def pending(self) -> frozenset:
        return frozenset(self._pending)

    async def close(self) -> None:
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
