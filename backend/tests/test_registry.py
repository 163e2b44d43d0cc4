"""Tests for the connection registry and room directory."""
from roomchat.directory import RoomDirectory
from roomchat.registry import ConnectionRegistry
from roomchat.schemas import Profile


def profile(cid, name="Ann", room=None):
    return Profile(connection_id=cid, display_name=name, avatar=name, room_id=room)


class TestConnectionRegistry:

    def test_register_and_lookup(self):
        registry = ConnectionRegistry()
        registry.register("c1", profile("c1"))
        assert registry.lookup("c1").display_name == "Ann"
        assert registry.lookup("missing") is None

    def test_reregistration_keeps_room(self):
        registry = ConnectionRegistry()
        registry.register("c1", profile("c1"))
        registry.set_room("c1", "LOBBY")
        registry.register("c1", profile("c1", name="Bea"))
        updated = registry.lookup("c1")
        assert updated.display_name == "Bea"
        assert updated.room_id == "LOBBY"

    def test_explicit_room_overrides(self):
        registry = ConnectionRegistry()
        registry.register("c1", profile("c1"), room_id="a")
        registry.register("c1", profile("c1"), room_id=None)
        assert registry.lookup("c1").room_id is None

    def test_remove_missing_is_noop(self):
        registry = ConnectionRegistry()
        calls = []
        registry.on_change(lambda: calls.append(1))
        assert registry.remove("missing") is None
        assert registry.set_room("missing", "LOBBY") is None
        assert calls == []

    def test_every_mutation_notifies(self):
        registry = ConnectionRegistry()
        calls = []
        registry.on_change(lambda: calls.append(1))
        registry.register("c1", profile("c1"))
        registry.set_room("c1", "LOBBY")
        registry.remove("c1")
        assert len(calls) == 3

    def test_list_all_is_insertion_ordered(self):
        registry = ConnectionRegistry()
        for cid in ("c1", "c2", "c3"):
            registry.register(cid, profile(cid, name=cid))
        registry.register("c1", profile("c1", name="renamed"))
        assert [p.connection_id for p in registry.list_all()] == ["c1", "c2", "c3"]

    def test_members_filters_by_room(self):
        registry = ConnectionRegistry()
        registry.register("c1", profile("c1"), room_id="a")
        registry.register("c2", profile("c2"), room_id="b")
        registry.register("c3", profile("c3"), room_id="a")
        assert [p.connection_id for p in registry.members("a")] == ["c1", "c3"]


class TestRoomDirectory:

    def test_duplicate_names_get_distinct_rooms(self):
        directory = RoomDirectory()
        first = directory.create("general", "c1")
        second = directory.create("general", "c2")
        assert first.id != second.id
        assert [r.id for r in directory.list()] == [first.id, second.id]
        assert second.creator_id == "c2"

    def test_ensure_exists_creates_once(self):
        directory = RoomDirectory()
        room, created = directory.ensure_exists("LOBBY", "Lobby")
        assert created is True
        assert room.name == "Lobby"
        again, created = directory.ensure_exists("LOBBY")
        assert created is False
        assert again is room

    def test_implicit_room_is_named_after_its_id(self):
        directory = RoomDirectory()
        room, _ = directory.ensure_exists("games")
        assert room.name == "games"
        assert room.creator_id is None
        assert "games" in directory
        assert directory.get("other") is None
