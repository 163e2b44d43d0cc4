import secrets
from typing import Dict
from .schemas import Room

class RoomDirectory:
    def __init__(self) -> None:
        self.rooms: Dict[str, Room] = {}

    def create(self, name: str, creator_id: str | None = None) -> Room:
        # names are not unique; every creation gets its own id
        room_id = secrets.token_urlsafe(6)
        while room_id in self.rooms:
            room_id = secrets.token_urlsafe(6)
        room = Room(id=room_id, name=name, creator_id=creator_id)
        self.rooms[room_id] = room
        return room

    def ensure_exists(self, room_id: str, name: str | None = None) -> tuple[Room, bool]:
        room = self.rooms.get(room_id)
        if room is not None:
            return room, False
        room = Room(id=room_id, name=name or room_id)
        self.rooms[room_id] = room
        return room, True

    def get(self, room_id: str) -> Room | None:
        return self.rooms.get(room_id)

    def list(self) -> list[Room]:
        return list(self.rooms.values())

    def __contains__(self, room_id: str) -> bool:
        return room_id in self.rooms
