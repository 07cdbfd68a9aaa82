"""
Tests for the per-session fan-out channel.
"""

import pytest

from backend.channel import ChannelServer, Role
from schemas.events import LogUpdated

pytestmark = pytest.mark.asyncio


def _line(session_id, message):
    return LogUpdated(session_id=session_id, message=message)


async def test_publish_skips_sender_and_other_sessions(channels, make_socket, settle):
    dm_ws, player_ws, outsider_ws = make_socket(), make_socket(), make_socket()
    dm, player, outsider = channels.open(dm_ws), channels.open(player_ws), channels.open(outsider_ws)
    channels.join(dm, "s1", Role.HOST)
    channels.join(player, "s1", Role.PARTICIPANT, member_id="m1")
    channels.join(outsider, "s2", Role.HOST)

    delivered = await channels.publish("s1", _line("s1", "hello"), sender=dm)
    await settle(dm, player, outsider)

    assert delivered == 1
    assert player_ws.sent == [{"type": "combat:log-updated", "session_id": "s1", "message": "hello"}]
    assert dm_ws.sent == []
    assert outsider_ws.sent == []


async def test_publish_can_include_sender(channels, make_socket, settle):
    ws = make_socket()
    conn = channels.open(ws)
    channels.join(conn, "s1", Role.HOST)

    await channels.publish("s1", _line("s1", "echo"), sender=conn, exclude_sender=False)
    await settle(conn)

    assert ws.types() == ["combat:log-updated"]


async def test_frames_from_one_sender_arrive_in_order(channels, make_socket, settle):
    dm, player_ws = channels.open(make_socket()), make_socket()
    player = channels.open(player_ws)
    channels.join(dm, "s1", Role.HOST)
    channels.join(player, "s1", Role.PARTICIPANT, member_id="m1")

    for i in range(50):
        await channels.publish("s1", _line("s1", str(i)), sender=dm)
    await settle(player)

    assert [frame["message"] for frame in player_ws.sent] == [str(i) for i in range(50)]


async def test_dead_socket_is_dropped_silently(channels, make_socket, settle):
    dm = channels.open(make_socket())
    broken = channels.open(make_socket(fail=True))
    channels.join(dm, "s1", Role.HOST)
    channels.join(broken, "s1", Role.PARTICIPANT, member_id="m1")

    assert await channels.publish("s1", _line("s1", "first"), sender=dm) == 1
    await settle(broken)

    # The failed write removed the connection from the room
    assert broken.closed
    assert channels.members("s1") == [dm]
    assert await channels.publish("s1", _line("s1", "second"), sender=dm) == 0


async def test_send_to_closed_connection_returns_false(channels, make_socket):
    conn = channels.open(make_socket())
    await channels.close(conn)

    assert await channels.send(conn, _line("s1", "late")) is False


async def test_close_flushes_queue_before_closing_socket(channels, make_socket):
    ws = make_socket()
    conn = channels.open(ws)
    channels.join(conn, "s1", Role.PARTICIPANT, member_id="m1")
    await channels.send(conn, _line("s1", "a"))
    await channels.send(conn, _line("s1", "b"))

    await channels.close(conn, code=4001, reason="Reconnected elsewhere")

    assert [frame["message"] for frame in ws.sent] == ["a", "b"]
    assert ws.closed == (4001, "Reconnected elsewhere")
    assert channels.members("s1") == []


async def test_find_member(channels, make_socket):
    dm = channels.open(make_socket())
    player = channels.open(make_socket())
    channels.join(dm, "s1", Role.HOST)
    channels.join(player, "s1", Role.PARTICIPANT, member_id="m1")

    assert channels.find_member("s1", "m1") is player
    assert channels.find_member("s1", "m2") is None
    assert channels.find_member("s2", "m1") is None


async def test_open_requires_running_server(make_socket):
    server = ChannelServer()
    with pytest.raises(RuntimeError):
        server.open(make_socket())


async def test_shutdown_closes_every_connection(make_socket):
    server = ChannelServer()
    await server.start()
    sockets = [make_socket() for _ in range(3)]
    for ws in sockets:
        server.join(server.open(ws), "s1", Role.PARTICIPANT)

    await server.shutdown()

    assert all(ws.closed == (1001, "Server shutting down") for ws in sockets)
    assert server.members("s1") == []
    assert not server.running
