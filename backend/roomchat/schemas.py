import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union
from pydantic import BaseModel, Field, StringConstraints, TypeAdapter

Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]
RoomId = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=64)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------- STATE ----------------------
class Profile(BaseModel):
    connection_id: str
    display_name: str
    avatar: str
    bio: str | None = None
    uid: str | None = None
    uid_verified: bool = False
    room_id: str | None = None

class Room(BaseModel):
    id: str
    name: str
    creator_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

class Message(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    room_id: str
    sender_id: str | None
    sender_uid: str | None = None
    sender_uid_verified: bool = False
    display_name: str
    avatar: str | None = None
    body: str
    kind: Literal["text", "file", "system"] = "text"
    file_name: str | None = None
    mime_type: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    expiring: bool = False


# ---------------------- INBOUND ----------------------
class AuthIn(BaseModel):
    type: Literal["auth"]
    display_name: Name
    avatar: str | None = None
    avatar_seed: str | None = None
    bio: Annotated[str, StringConstraints(max_length=280)] | None = None
    uid: str | None = None
    token: str | None = None

class ProfileUpdateIn(BaseModel):
    type: Literal["profile-update"]
    display_name: Name | None = None
    avatar: str | None = None
    bio: Annotated[str, StringConstraints(max_length=280)] | None = None

class JoinRoomIn(BaseModel):
    type: Literal["join-room"]
    room_id: RoomId

class MessageIn(BaseModel):
    type: Literal["message"]
    body: Annotated[str, StringConstraints(min_length=1)]
    kind: Literal["text", "file"] = "text"
    file_name: str | None = None
    mime_type: str | None = None
    expiring: bool = False

class TypingIn(BaseModel):
    type: Literal["typing"]
    is_typing: bool

class DeleteMessageIn(BaseModel):
    type: Literal["delete-message"]
    message_id: Annotated[str, StringConstraints(min_length=1)]

class CreateRoomIn(BaseModel):
    type: Literal["create-room"]
    name: Name

class CallSignalIn(BaseModel):
    type: Literal["call-signal"]
    signal: Any
    to: str | None = None

class GetProfileIn(BaseModel):
    type: Literal["get-profile"]
    connection_id: str

class PingIn(BaseModel):
    type: Literal["ping"]

InboundEvent = Annotated[
    Union[
        AuthIn, ProfileUpdateIn, JoinRoomIn, MessageIn, TypingIn,
        DeleteMessageIn, CreateRoomIn, CallSignalIn, GetProfileIn, PingIn,
    ],
    Field(discriminator="type"),
]

inbound_adapter = TypeAdapter(InboundEvent)


def parse_event(data: Any) -> InboundEvent:
    """Validate a decoded frame; raises pydantic.ValidationError on bad shapes."""
    return inbound_adapter.validate_python(data)


# ---------------------- OUTBOUND ----------------------
def connected_out(connection_id: str) -> dict:
    return {"type": "connected", "connection_id": connection_id}

def history_out(room_id: str, messages: list[Message]) -> dict:
    return {
        "type": "history-snapshot",
        "room_id": room_id,
        "messages": [m.model_dump(mode="json") for m in messages],
    }

def message_out(message: Message) -> dict:
    return {"type": "message", "message": message.model_dump(mode="json")}

def presence_out(profiles: list[Profile]) -> dict:
    return {"type": "presence-update", "users": [p.model_dump(mode="json") for p in profiles]}

def room_list_out(rooms: list[Room]) -> dict:
    return {"type": "room-list", "rooms": [r.model_dump(mode="json") for r in rooms]}

def deleted_out(room_id: str, message_id: str) -> dict:
    return {"type": "message-deleted", "room_id": room_id, "message_id": message_id}

def typing_out(profile: Profile, is_typing: bool) -> dict:
    return {
        "type": "typing",
        "connection_id": profile.connection_id,
        "display_name": profile.display_name,
        "is_typing": is_typing,
    }

def call_signal_out(sender_id: str, signal: Any) -> dict:
    return {"type": "call-signal", "from": sender_id, "signal": signal}

def profile_out(profile: Profile) -> dict:
    return {"type": "profile", "profile": profile.model_dump(mode="json")}

def not_found_out(connection_id: str) -> dict:
    return {"type": "not-found", "connection_id": connection_id}
