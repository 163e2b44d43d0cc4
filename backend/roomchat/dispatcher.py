"""Relay dispatcher: routes inbound events to the right audience.

A connection moves through ``Connected -> Authenticated -> InRoom``; the state
is derived from the registry (profile present, profile has a room). Events
that are not valid in the current state are dropped without a reply, and a
malformed frame from one connection never touches shared state.

All mutations happen synchronously before the first send of an event, so a
broadcast always reflects the state after that event was applied.
"""
import asyncio
import enum
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Iterable, Protocol

from pydantic import ValidationError

from .auth import IdentityError, resolve_uid
from .config import Settings
from .directory import RoomDirectory
from .history import HistoryStore
from .registry import ConnectionRegistry
from .schemas import (
    AuthIn, CallSignalIn, CreateRoomIn, DeleteMessageIn, GetProfileIn, JoinRoomIn,
    Message, MessageIn, PingIn, Profile, ProfileUpdateIn, TypingIn,
    call_signal_out, connected_out, deleted_out, history_out, message_out,
    not_found_out, parse_event, presence_out, profile_out, room_list_out, typing_out,
)

logger = logging.getLogger(__name__)


class Socket(Protocol):
    async def send_json(self, data: Any) -> None: ...


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    IN_ROOM = "in_room"


class RelayDispatcher:
    def __init__(
        self,
        settings: Settings,
        registry: ConnectionRegistry | None = None,
        directory: RoomDirectory | None = None,
        history: HistoryStore | None = None,
    ) -> None:
        self.settings = settings
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.directory = directory if directory is not None else RoomDirectory()
        self.history = history if history is not None else HistoryStore(settings.history_capacity)
        self.sockets: Dict[str, Socket] = {}
        self._dead: set[str] = set()
        self._timers: set[asyncio.Task] = set()
        self._presence_dirty = False
        self.registry.on_change(self._mark_presence)

        if settings.default_room:
            room, _ = self.directory.ensure_exists(settings.default_room, settings.default_room_name)
            self.history.ensure(room.id)

        self._handlers: Dict[type, Callable[[str, Any], Awaitable[None]]] = {
            AuthIn: self._on_auth,
            ProfileUpdateIn: self._on_profile_update,
            JoinRoomIn: self._on_join_room,
            MessageIn: self._on_message,
            TypingIn: self._on_typing,
            DeleteMessageIn: self._on_delete,
            CreateRoomIn: self._on_create_room,
            CallSignalIn: self._on_call_signal,
            GetProfileIn: self._on_get_profile,
            PingIn: self._on_ping,
        }

    # ---------------------- LIFECYCLE ----------------------
    async def connect(self, socket: Socket) -> str:
        connection_id = uuid.uuid4().hex
        self.sockets[connection_id] = socket
        logger.info("Connection %s opened (%d live)", connection_id, len(self.sockets))
        await self._send(connection_id, connected_out(connection_id))
        await self._send(connection_id, room_list_out(self.directory.list()))
        await self._send(connection_id, presence_out(self.registry.list_all()))
        await self._reap()
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        await self._drop(connection_id)
        await self._reap()

    async def close(self) -> None:
        """Cancel pending expiry timers."""
        timers = list(self._timers)
        for task in timers:
            task.cancel()
        await asyncio.gather(*timers, return_exceptions=True)

    def state(self, connection_id: str) -> ConnectionState:
        if connection_id not in self.sockets:
            return ConnectionState.DISCONNECTED
        profile = self.registry.lookup(connection_id)
        if profile is None:
            return ConnectionState.CONNECTED
        if profile.room_id is None:
            return ConnectionState.AUTHENTICATED
        return ConnectionState.IN_ROOM

    # ---------------------- INBOUND ----------------------
    async def handle_text(self, connection_id: str, raw: str) -> None:
        try:
            data = json.loads(raw)
        except (ValueError, RecursionError):
            logger.warning("Dropped non-JSON frame from %s", connection_id)
            return
        await self.handle(connection_id, data)

    async def handle(self, connection_id: str, data: Any) -> None:
        if connection_id not in self.sockets:
            logger.debug("Dropped event for unknown connection %s", connection_id)
            return
        try:
            event = parse_event(data)
        except ValidationError as exc:
            logger.warning("Dropped malformed event from %s: %d error(s)", connection_id, exc.error_count())
            return
        await self._handlers[type(event)](connection_id, event)
        await self._flush_presence()
        await self._reap()

    async def _on_auth(self, connection_id: str, event: AuthIn) -> None:
        try:
            uid = resolve_uid(event.token, event.uid, self.settings)
        except IdentityError as exc:
            logger.info("Rejected auth from %s: %s", connection_id, exc)
            return
        profile = self.registry.register(connection_id, Profile(
            connection_id=connection_id,
            display_name=event.display_name,
            avatar=event.avatar or event.avatar_seed or event.display_name,
            bio=event.bio,
            uid=uid,
            uid_verified=bool(event.token),
        ))
        logger.info("Connection %s authenticated as %r", connection_id, profile.display_name)
        if profile.room_id is None and self.settings.default_room:
            await self._join(connection_id, self.settings.default_room)

    async def _on_profile_update(self, connection_id: str, event: ProfileUpdateIn) -> None:
        current = self.registry.lookup(connection_id)
        if current is None:
            logger.debug("Ignored profile update from unauthenticated %s", connection_id)
            return
        changes = event.model_dump(exclude={"type"}, exclude_unset=True)
        # bio may be cleared with null, the other fields may not
        changes = {k: v for k, v in changes.items() if v is not None or k == "bio"}
        self.registry.register(connection_id, current.model_copy(update=changes))

    async def _on_join_room(self, connection_id: str, event: JoinRoomIn) -> None:
        if self.registry.lookup(connection_id) is None:
            logger.debug("Ignored join from unauthenticated %s", connection_id)
            return
        await self._join(connection_id, event.room_id)

    async def _join(self, connection_id: str, room_id: str) -> None:
        room, created = self.directory.ensure_exists(room_id)
        self.history.ensure(room.id)
        self.registry.set_room(connection_id, room.id)
        logger.info("Connection %s joined room %s", connection_id, room.id)
        await self._send(connection_id, history_out(room.id, self.history.snapshot(room.id)))
        if created:
            await self._send_many(self.sockets, room_list_out(self.directory.list()))

    async def _on_message(self, connection_id: str, event: MessageIn) -> None:
        profile = self.registry.lookup(connection_id)
        if profile is None or profile.room_id is None:
            logger.debug("Ignored message from %s outside any room", connection_id)
            return
        if len(event.body) > self.settings.max_body_length:
            logger.warning("Dropped oversized message from %s (%d chars)", connection_id, len(event.body))
            return
        is_file = event.kind == "file"
        message = Message(
            room_id=profile.room_id,
            sender_id=connection_id,
            sender_uid=profile.uid,
            sender_uid_verified=profile.uid_verified,
            display_name=profile.display_name,
            avatar=profile.avatar,
            body=event.body,
            kind=event.kind,
            file_name=event.file_name if is_file else None,
            mime_type=event.mime_type if is_file else None,
            expiring=event.expiring,
        )
        self.history.append(message.room_id, message)
        await self._send_many(self._message_audience(message.room_id), message_out(message))
        if message.expiring:
            self._schedule_expiry(message.room_id, message.id)

    async def _on_typing(self, connection_id: str, event: TypingIn) -> None:
        profile = self.registry.lookup(connection_id)
        if profile is None or profile.room_id is None:
            return
        peers = [p.connection_id for p in self.registry.members(profile.room_id) if p.connection_id != connection_id]
        await self._send_many(peers, typing_out(profile, event.is_typing))

    async def _on_delete(self, connection_id: str, event: DeleteMessageIn) -> None:
        profile = self.registry.lookup(connection_id)
        if profile is None:
            return
        message = self.history.find(event.message_id)
        if message is None:
            logger.debug("Delete of unknown message %s from %s", event.message_id, connection_id)
            return
        if not self._is_sender(profile, message):
            logger.info("Ignored delete of %s by non-sender %s", message.id, connection_id)
            return
        await self._remove_message(message.room_id, message.id)

    async def _on_create_room(self, connection_id: str, event: CreateRoomIn) -> None:
        if self.registry.lookup(connection_id) is None:
            logger.debug("Ignored room creation from unauthenticated %s", connection_id)
            return
        room = self.directory.create(event.name, connection_id)
        self.history.ensure(room.id)
        logger.info("Room %s (%r) created by %s", room.id, room.name, connection_id)
        await self._send_many(self.sockets, room_list_out(self.directory.list()))

    async def _on_call_signal(self, connection_id: str, event: CallSignalIn) -> None:
        profile = self.registry.lookup(connection_id)
        if profile is None:
            logger.debug("Ignored call signal from unauthenticated %s", connection_id)
            return
        if self.settings.call_signal_scope == "broadcast":
            audience = [cid for cid in self.sockets if cid != connection_id]
        else:
            if profile.room_id is None:
                return
            audience = [p.connection_id for p in self.registry.members(profile.room_id) if p.connection_id != connection_id]
        if event.to is not None:
            audience = [cid for cid in audience if cid == event.to]
        await self._send_many(audience, call_signal_out(connection_id, event.signal))

    async def _on_get_profile(self, connection_id: str, event: GetProfileIn) -> None:
        profile = self.registry.lookup(event.connection_id)
        if profile is None:
            await self._send(connection_id, not_found_out(event.connection_id))
        else:
            await self._send(connection_id, profile_out(profile))

    async def _on_ping(self, connection_id: str, event: PingIn) -> None:
        await self._send(connection_id, {"type": "pong"})

    # ---------------------- HELPERS ----------------------
    @staticmethod
    def _is_sender(profile: Profile, message: Message) -> bool:
        if message.sender_id == profile.connection_id:
            return True
        # a uid only proves authorship when both sides got it from a verified token
        if not (message.sender_uid_verified and profile.uid_verified):
            return False
        return message.sender_uid is not None and message.sender_uid == profile.uid

    def _message_audience(self, room_id: str) -> list[str]:
        if self.settings.message_scope == "global":
            return list(self.sockets)
        return [p.connection_id for p in self.registry.members(room_id)]

    async def _remove_message(self, room_id: str, message_id: str) -> bool:
        if not self.history.remove(room_id, message_id):
            return False
        logger.info("Message %s removed from room %s", message_id, room_id)
        await self._send_many(self._message_audience(room_id), deleted_out(room_id, message_id))
        return True

    def _schedule_expiry(self, room_id: str, message_id: str) -> None:
        task = asyncio.create_task(self._expire(room_id, message_id))
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)

    async def _expire(self, room_id: str, message_id: str) -> None:
        await asyncio.sleep(self.settings.expiring_message_delay)
        # already deleted by its sender: nothing to do
        await self._remove_message(room_id, message_id)
        await self._reap()

    async def _drop(self, connection_id: str) -> None:
        self._dead.discard(connection_id)
        if self.sockets.pop(connection_id, None) is None:
            return
        profile = self.registry.remove(connection_id)
        logger.info("Connection %s closed (%d live)", connection_id, len(self.sockets))
        if profile is not None and profile.room_id is not None and self.settings.announce_departures:
            notice = Message(
                room_id=profile.room_id,
                sender_id=None,
                display_name="system",
                body=f"{profile.display_name} left",
                kind="system",
            )
            self.history.append(notice.room_id, notice)
            await self._send_many(self._message_audience(notice.room_id), message_out(notice))
        await self._flush_presence()

    async def _reap(self) -> None:
        while self._dead:
            await self._drop(self._dead.pop())

    def _mark_presence(self) -> None:
        self._presence_dirty = True

    async def _flush_presence(self) -> None:
        if not self._presence_dirty:
            return
        self._presence_dirty = False
        await self._send_many(self.sockets, presence_out(self.registry.list_all()))

    async def _send(self, connection_id: str, payload: dict) -> None:
        socket = self.sockets.get(connection_id)
        if socket is None or connection_id in self._dead:
            return
        try:
            await socket.send_json(payload)
        except Exception as exc:
            logger.error("Failed to send %s to %s: %s", payload.get("type"), connection_id, exc)
            self._dead.add(connection_id)

    async def _send_many(self, connection_ids: Iterable[str], payload: dict) -> None:
        for connection_id in list(connection_ids):
            await self._send(connection_id, payload)
