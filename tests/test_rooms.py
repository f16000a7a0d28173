from sigrelay.rooms import RoomManager


def test_add_and_list_members_in_join_order() -> None:
    rm = RoomManager()
    rm.add_member("demo::r1", "b")
    rm.add_member("demo::r1", "a")
    rm.add_member("demo::r1", "c")
    assert rm.get_room_members("demo::r1") == ["b", "a", "c"]
    assert rm.size("demo::r1") == 3


def test_lookup_does_not_create_rooms() -> None:
    rm = RoomManager()
    assert rm.get_room_members("demo::none") == []
    assert rm.size("demo::none") == 0
    assert not rm.has_room("demo::none")


def test_room_is_removed_when_last_member_leaves() -> None:
    rm = RoomManager()
    rm.add_member("demo::r1", "a")
    rm.add_member("demo::r1", "b")

    assert rm.remove_member("demo::r1", "a")
    assert rm.has_room("demo::r1")

    assert rm.remove_member("demo::r1", "b")
    assert not rm.has_room("demo::r1")
    assert "demo::r1" not in rm.rooms


def test_remove_unknown_member_is_noop() -> None:
    rm = RoomManager()
    assert not rm.remove_member("demo::r1", "a")
    rm.add_member("demo::r1", "a")
    assert not rm.remove_member("demo::r1", "zzz")
    assert rm.get_room_members("demo::r1") == ["a"]


def test_get_stats() -> None:
    rm = RoomManager()
    rm.add_member("demo::r1", "a")
    rm.add_member("demo::r1", "b")
    rm.add_member("demo::r2", "c")
    stats = rm.get_stats()
    assert stats["rooms_total"] == 2
    assert stats["memberships"] == 3
    assert stats["top_rooms"][0] == ("demo::r1", 2)
