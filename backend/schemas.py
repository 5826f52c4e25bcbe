from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_serializer
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

import utils

# --- Inbound envelopes ---

class JoinRoom(BaseModel):
    type: Literal["join_room"]
    room_code: str = Field(..., min_length=1, max_length=64)

class SendTranscription(BaseModel):
    type: Literal["send_transcription"]
    transcription: Optional[str] = None

class AddComment(BaseModel):
    type: Literal["add_comment"]
    idea_id: str
    comment: Optional[str] = None
    author: Optional[str] = None

class ChatMessageIn(BaseModel):
    type: Literal["chat_message"]
    # Carried by clients for symmetry; the connection's current room is authoritative
    room_code: Optional[str] = None
    message: Optional[str] = None
    sender: Optional[str] = None

class SendAudio(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["send_audio"]

class Pong(BaseModel):
    type: Literal["pong"]

InboundEnvelope = Annotated[
    Union[JoinRoom, SendTranscription, AddComment, ChatMessageIn, SendAudio, Pong],
    Field(discriminator="type"),
]

inbound_adapter = TypeAdapter(InboundEnvelope)

INBOUND_TYPES = {"join_room", "send_transcription", "add_comment", "chat_message", "send_audio", "pong"}

# --- Payloads ---

class _Timestamped(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    timestamp: datetime = Field(validation_alias=AliasChoices("created_at", "timestamp"))

    @field_serializer('timestamp')
    def serialize_ts(self, dt: datetime, _info):
        return utils.to_epoch_ms(dt)

class CommentResponse(_Timestamped):
    id: str
    text: str
    author: str

class IdeaResponse(_Timestamped):
    id: str
    transcription: str
    themes: List[str]
    prompts: List[str]
    comments: List[CommentResponse]

# --- Outbound envelopes ---

class IdeasUpdate(BaseModel):
    type: Literal["ideas_update"] = "ideas_update"
    ideas: List[IdeaResponse]

class IdeaUpdate(BaseModel):
    type: Literal["idea_update"] = "idea_update"
    idea: IdeaResponse

class RoomUpdate(BaseModel):
    type: Literal["room_update"] = "room_update"
    participants: int

class ChatMessageOut(_Timestamped):
    type: Literal["chat_message"] = "chat_message"
    id: str
    text: str
    sender: str

class ErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    message: str

class Ping(BaseModel):
    type: Literal["ping"] = "ping"

# --- HTTP side channel ---

class HealthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "ok"
    room_count: int = Field(alias="roomCount")
    total_participants: int = Field(alias="totalParticipants")

class RoomInfoResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    participants: int
    idea_count: int = Field(alias="ideaCount")

class RoomCodeResponse(BaseModel):
    code: str
    join_url: str
    qr_code: str
