"""
Tests for the join/leave handshake, including reconnects.
"""

import pytest

from backend.channel import Role
from backend.errors import NotFound, PersistenceFailure, ProtocolError
from backend.membership import SUPERSEDED_CLOSE_CODE

pytestmark = pytest.mark.asyncio


@pytest.fixture
def table(directory, store):
    session = directory.create_session("Goblin Ambush", "Mira")
    member = directory.join(session.id)
    store.create_character(member.id, name="Aria", char_class="Rogue", hp=9, max_hp=9)
    return session, member


async def test_host_binds_without_touching_the_store(membership, channels, make_socket, settle, table):
    session, member = table
    ws = make_socket()
    conn = channels.open(ws)

    await membership.bind_as_host(conn, session.id)
    await settle(conn)

    assert conn.role == Role.HOST
    assert conn.session_id == session.id
    assert ws.sent == [{"type": "session:joined", "session_id": session.id, "role": "dm", "member_id": None}]


async def test_bind_unknown_session(membership, channels, make_socket):
    conn = channels.open(make_socket())
    with pytest.raises(NotFound):
        await membership.bind_as_host(conn, "missing")
    assert not conn.bound


async def test_participant_bind_marks_connected_and_notifies_host(
    membership, channels, store, make_socket, settle, table
):
    session, member = table
    dm_ws, player_ws = make_socket(), make_socket()
    dm, player = channels.open(dm_ws), channels.open(player_ws)
    await membership.bind_as_host(dm, session.id)

    await membership.bind_as_participant(player, session.id, member.id)
    await settle(dm, player)

    record = store.get_member(member.id)
    assert record.is_connected is True
    assert record.socket_id == player.id

    connected = dm_ws.sent[-1]
    assert connected["type"] == "player:connected"
    assert connected["member"]["id"] == member.id
    assert connected["member"]["character"]["name"] == "Aria"
    assert player_ws.types() == ["session:joined"]


async def test_participant_of_another_session_is_rejected(membership, channels, directory, make_socket, table):
    session, member = table
    other = directory.create_session("Elsewhere", "Bo")
    conn = channels.open(make_socket())

    with pytest.raises(NotFound):
        await membership.bind_as_participant(conn, other.id, member.id)


async def test_binding_twice_is_a_protocol_error(membership, channels, make_socket, table):
    session, member = table
    conn = channels.open(make_socket())
    await membership.bind_as_host(conn, session.id)

    with pytest.raises(ProtocolError):
        await membership.bind_as_participant(conn, session.id, member.id)


async def test_participant_unbind_marks_disconnected(membership, channels, store, make_socket, settle, table):
    session, member = table
    dm_ws = make_socket()
    dm, player = channels.open(dm_ws), channels.open(make_socket())
    await membership.bind_as_host(dm, session.id)
    await membership.bind_as_participant(player, session.id, member.id)

    await membership.unbind(player)
    await settle(dm)

    record = store.get_member(member.id)
    assert record.is_connected is False
    assert record.socket_id is None
    assert dm_ws.sent[-1] == {"type": "player:disconnected", "member_id": member.id}
    assert channels.members(session.id) == [dm]


async def test_host_unbind_has_no_side_effect(membership, channels, make_socket, settle, table):
    session, member = table
    player_ws = make_socket()
    dm, player = channels.open(make_socket()), channels.open(player_ws)
    await membership.bind_as_host(dm, session.id)
    await membership.bind_as_participant(player, session.id, member.id)

    await membership.unbind(dm)
    await settle(player)

    assert player_ws.types() == ["session:joined"]
    assert channels.members(session.id) == [player]


async def test_unbind_swallows_store_failure(membership, channels, store, make_socket, settle, monkeypatch, table):
    session, member = table
    dm_ws = make_socket()
    dm, player = channels.open(dm_ws), channels.open(make_socket())
    await membership.bind_as_host(dm, session.id)
    await membership.bind_as_participant(player, session.id, member.id)

    def broken(*args):
        raise PersistenceFailure("down")

    monkeypatch.setattr(store, "mark_member_disconnected", broken)
    await membership.unbind(player)
    await settle(dm)

    assert dm_ws.sent[-1]["type"] == "player:disconnected"


async def test_reconnect_supersedes_stale_connection(membership, channels, store, make_socket, settle, table):
    session, member = table
    dm_ws, old_ws, new_ws = make_socket(), make_socket(), make_socket()
    dm = channels.open(dm_ws)
    old, new = channels.open(old_ws), channels.open(new_ws)
    await membership.bind_as_host(dm, session.id)
    await membership.bind_as_participant(old, session.id, member.id)

    await membership.bind_as_participant(new, session.id, member.id)
    await settle(dm, old, new)

    assert old.superseded
    assert old_ws.closed[0] == SUPERSEDED_CLOSE_CODE
    assert channels.find_member(session.id, member.id) is new

    # The stale socket's own disconnect must not undo the reconnect
    await membership.unbind(old)
    await settle(dm)

    record = store.get_member(member.id)
    assert record.is_connected is True
    assert record.socket_id == new.id
    assert dm_ws.types() == ["session:joined", "player:connected", "player:connected"]


async def test_unbind_of_unbound_connection_is_a_no_op(membership, channels, make_socket):
    conn = channels.open(make_socket())
    await membership.unbind(conn)
    assert not conn.bound
