from collections import deque
from typing import Deque, Dict
from .schemas import Message

class HistoryStore:
    """Bounded per-room message history.

    Each room keeps at most ``capacity`` messages; appending to a full room
    drops the oldest one before ``append`` returns.
    """

    def __init__(self, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._rooms: Dict[str, Deque[Message]] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    def ensure(self, room_id: str) -> None:
        if room_id not in self._rooms:
            self._rooms[room_id] = deque(maxlen=self._capacity)

    def append(self, room_id: str, message: Message) -> None:
        self.ensure(room_id)
        self._rooms[room_id].append(message)

    def snapshot(self, room_id: str) -> list[Message]:
        return list(self._rooms.get(room_id, ()))

    def find(self, message_id: str) -> Message | None:
        for bucket in self._rooms.values():
            for message in bucket:
                if message.id == message_id:
                    return message
        return None

    def remove(self, room_id: str, message_id: str) -> bool:
        bucket = self._rooms.get(room_id)
        if not bucket:
            return False
        for message in bucket:
            if message.id == message_id:
                bucket.remove(message)
                return True
        return False

    def search(self, room_id: str, substring: str) -> list[Message]:
        # plain case-sensitive match on the stored body; client-encrypted bodies never match
        return [m for m in self._rooms.get(room_id, ()) if substring in m.body]

    def rooms(self) -> list[str]:
        return list(self._rooms.keys())

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._rooms.values())
