"""
Tests for the bounded combat log.
"""

import pytest

from backend.channel import Role
from backend.errors import NotFound, PersistenceFailure
from backend.event_log import MAX_LOG_ENTRIES, append_entry


def test_append_entry_keeps_newest():
    entries = [str(i) for i in range(MAX_LOG_ENTRIES)]

    result = append_entry(entries, "new")

    assert len(result) == MAX_LOG_ENTRIES
    assert result[0] == "1"
    assert result[-1] == "new"
    # Input list is untouched
    assert len(entries) == MAX_LOG_ENTRIES and entries[-1] == "9"


def test_append_entry_below_capacity():
    assert append_entry(["a"], "b") == ["a", "b"]


@pytest.fixture
def session(directory):
    return directory.create_session("Goblin Ambush", "Mira")


@pytest.mark.asyncio
async def test_eleventh_append_evicts_the_oldest(event_log, store, session):
    for i in range(MAX_LOG_ENTRIES + 1):
        await event_log.append(session.id, f"line {i}")

    entries = await event_log.entries(session.id)
    assert entries == [f"line {i}" for i in range(1, MAX_LOG_ENTRIES + 1)]
    assert store.load_log(session.id) == entries


@pytest.mark.asyncio
async def test_only_the_new_line_is_broadcast(event_log, channels, make_socket, settle, session):
    dm_ws, player_ws = make_socket(), make_socket()
    dm, pc = channels.open(dm_ws), channels.open(player_ws)
    channels.join(dm, session.id, Role.HOST)
    channels.join(pc, session.id, Role.PARTICIPANT, member_id="m1")

    await event_log.append(session.id, "The goblin snarls.", sender=dm)
    await event_log.append(session.id, "Aria draws her blade.", sender=dm)
    await settle(dm, pc)

    expected = [
        {"type": "combat:log-updated", "session_id": session.id, "message": "The goblin snarls."},
        {"type": "combat:log-updated", "session_id": session.id, "message": "Aria draws her blade."},
    ]
    assert player_ws.sent == expected
    assert dm_ws.sent == expected


@pytest.mark.asyncio
async def test_failed_save_broadcasts_nothing(event_log, channels, store, make_socket, settle, session, monkeypatch):
    ws = make_socket()
    conn = channels.open(ws)
    channels.join(conn, session.id, Role.HOST)

    def broken(*args):
        raise PersistenceFailure("down")

    monkeypatch.setattr(store, "save_log", broken)
    with pytest.raises(PersistenceFailure):
        await event_log.append(session.id, "lost")
    await settle(conn)

    assert ws.sent == []


@pytest.mark.asyncio
async def test_append_to_unknown_session(event_log):
    with pytest.raises(NotFound):
        await event_log.append("missing", "hello")


@pytest.mark.asyncio
async def test_unknown_session_leaves_no_lock_behind(event_log, session):
    with pytest.raises(NotFound):
        await event_log.append("missing", "hello")
    await event_log.append(session.id, "hello")

    assert "missing" not in event_log._locks
    assert session.id in event_log._locks

    event_log.forget(session.id)
    assert session.id not in event_log._locks
