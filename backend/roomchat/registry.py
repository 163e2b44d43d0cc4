from typing import Callable, Dict
from .schemas import Profile

_UNSET = object()

class ConnectionRegistry:
    """Profiles of authenticated connections, in registration order.

    Every mutation calls the ``on_change`` subscribers; broadcasting the new
    presence list is left to them.
    """

    def __init__(self) -> None:
        self.profiles: Dict[str, Profile] = {}
        self._listeners: list[Callable[[], None]] = []

    def on_change(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def _changed(self) -> None:
        for callback in self._listeners:
            callback()

    def register(self, connection_id: str, profile: Profile, room_id=_UNSET) -> Profile:
        # re-registration keeps the current room unless one is passed explicitly
        current = self.profiles.get(connection_id)
        if room_id is _UNSET:
            room_id = current.room_id if current else profile.room_id
        profile = profile.model_copy(update={"connection_id": connection_id, "room_id": room_id})
        self.profiles[connection_id] = profile
        self._changed()
        return profile

    def set_room(self, connection_id: str, room_id: str | None) -> Profile | None:
        current = self.profiles.get(connection_id)
        if current is None:
            return None
        return self.register(connection_id, current, room_id=room_id)

    def lookup(self, connection_id: str) -> Profile | None:
        return self.profiles.get(connection_id)

    def remove(self, connection_id: str) -> Profile | None:
        profile = self.profiles.pop(connection_id, None)
        if profile is not None:
            self._changed()
        return profile

    def list_all(self) -> list[Profile]:
        return list(self.profiles.values())

    def members(self, room_id: str) -> list[Profile]:
        return [p for p in self.profiles.values() if p.room_id == room_id]

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self.profiles

    def __len__(self) -> int:
        return len(self.profiles)
