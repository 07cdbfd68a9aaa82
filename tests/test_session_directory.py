"""
Tests for session creation, room code resolution and member capacity.
"""

import random
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from backend.errors import NotFound, RoomFull
from backend.room_code import is_valid_room_code
from backend.session_directory import MAX_MEMBERS, SessionDirectory


def test_create_session_gets_unique_valid_code(directory):
    first = directory.create_session("Goblin Ambush", "Mira")
    second = directory.create_session("Dragon Lair", "Mira")

    assert is_valid_room_code(first.room_code)
    assert first.room_code != second.room_code
    assert first.member_count == 0
    assert first.dm_name == "Mira"


def test_create_session_regenerates_on_collision(store):
    codes = iter(["111111", "111111", "111111", "222222"])
    directory = SessionDirectory(store, code_generator=lambda: next(codes))

    first = directory.create_session("One", "DM")
    second = directory.create_session("Two", "DM")

    assert first.room_code == "111111"
    assert second.room_code == "222222"


def test_concurrent_creation_never_reuses_a_code(store):
    # Every thread tries the same code first, so most of them collide
    seen = threading.local()

    def generator():
        if not getattr(seen, "tried", False):
            seen.tried = True
            return "424242"
        return str(random.randint(100000, 999999))

    directory = SessionDirectory(store, code_generator=generator)
    with ThreadPoolExecutor(max_workers=8) as pool:
        sessions = list(pool.map(lambda i: directory.create_session(f"Table {i}", "DM"), range(16)))

    codes = [s.room_code for s in sessions]
    assert len(set(codes)) == len(codes)
    assert codes.count("424242") == 1


def test_resolve_by_code(directory):
    created = directory.create_session("Goblin Ambush", "Mira")

    resolved = directory.resolve_by_code(created.room_code)
    assert resolved.id == created.id

    with pytest.raises(NotFound):
        directory.resolve_by_code("12ab56")
    with pytest.raises(NotFound):
        # Valid shape, unknown code (generated codes never start with 0)
        directory.resolve_by_code("012345")


def test_join_counts_members(directory):
    session = directory.create_session("Goblin Ambush", "Mira")
    member = directory.join(session.id)

    assert member.campaign_id == session.id
    assert member.is_connected is False
    assert directory.resolve_by_code(session.room_code).member_count == 1


def test_join_rejects_ninth_member(directory):
    session = directory.create_session("Full House", "Mira")
    for _ in range(MAX_MEMBERS - 1):
        directory.join(session.id)

    # Seven in: the eighth still fits
    directory.join(session.id)
    assert directory.get_session(session.id).member_count == MAX_MEMBERS

    with pytest.raises(RoomFull):
        directory.join(session.id)
    assert directory.get_session(session.id).member_count == MAX_MEMBERS


def test_concurrent_joins_respect_capacity(directory):
    session = directory.create_session("Rush", "Mira")

    def attempt(_):
        try:
            directory.join(session.id)
            return True
        except RoomFull:
            return False

    with ThreadPoolExecutor(max_workers=12) as pool:
        results = list(pool.map(attempt, range(12)))

    assert results.count(True) == MAX_MEMBERS
    assert results.count(False) == 12 - MAX_MEMBERS
    assert directory.get_session(session.id).member_count == MAX_MEMBERS


def test_join_unknown_session(directory):
    with pytest.raises(NotFound):
        directory.join("no-such-session")


def test_delete_session(directory):
    session = directory.create_session("Short Lived", "Mira")
    directory.join(session.id)
    directory.delete_session(session.id)

    with pytest.raises(NotFound):
        directory.get_session(session.id)
    with pytest.raises(NotFound):
        directory.delete_session(session.id)
