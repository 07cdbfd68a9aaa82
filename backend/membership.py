"""
Membership protocol: binds a channel connection to a session and a role.

Connection states are Unbound -> Bound(host) or Unbound -> Bound(participant).
Unbinding happens once, when the socket goes away. A participant that binds
again for the same member while an older connection is still bound replaces
it immediately: the stale connection is closed and its later unbind leaves
the member record alone.
"""

import logging

from fastapi.concurrency import run_in_threadpool

from backend.channel import ChannelConnection, ChannelServer, Role
from backend.errors import NotFound, PersistenceFailure, ProtocolError
from backend.utils.storage import RecordStore
from schemas.events import PlayerConnected, PlayerDisconnected, SessionJoined

logger = logging.getLogger(__name__)

SUPERSEDED_CLOSE_CODE = 4001


class MembershipProtocol:
    def __init__(self, store: RecordStore, channels: ChannelServer):
        self._store = store
        self._channels = channels

    async def bind_as_host(self, conn: ChannelConnection, session_id: str) -> None:
        if conn.bound:
            raise ProtocolError("Connection is already bound to a session")
        session = await run_in_threadpool(self._store.get_campaign, session_id)
        if not session:
            raise NotFound("Campaign not found")

        self._channels.join(conn, session_id, Role.HOST)
        await self._channels.send(conn, SessionJoined(session_id=session_id, role=Role.HOST.value))
        logger.info(f"DM joined session {session_id}", extra={"session_id": session_id})

    async def bind_as_participant(self, conn: ChannelConnection, session_id: str, member_id: str) -> None:
        if conn.bound:
            raise ProtocolError("Connection is already bound to a session")
        member = await run_in_threadpool(self._store.get_member, member_id)
        if not member or member.campaign_id != session_id:
            raise NotFound("Player not found in this campaign")

        stale = self._channels.find_member(session_id, member_id)

        # Persist first: a failed write leaves the connection unbound
        member = await run_in_threadpool(self._store.mark_member_connected, member_id, conn.id)

        if stale is not None and stale.id != conn.id:
            stale.superseded = True
            logger.info(
                f"Member {member_id} reconnected; closing stale connection {stale.id}",
                extra={"session_id": session_id, "member_id": member_id},
            )
            await self._channels.close(stale, code=SUPERSEDED_CLOSE_CODE, reason="Reconnected elsewhere", wait=False)

        self._channels.join(conn, session_id, Role.PARTICIPANT, member_id=member_id)
        await self._channels.send(
            conn, SessionJoined(session_id=session_id, role=Role.PARTICIPANT.value, member_id=member_id)
        )
        # Notify the DM (and the table) of the new player
        await self._channels.publish(session_id, PlayerConnected(member=member), sender=conn)
        logger.info(
            f"Player {member_id} joined session {session_id}",
            extra={"session_id": session_id, "member_id": member_id},
        )

    async def unbind(self, conn: ChannelConnection) -> None:
        """Runs on disconnect. Best effort: store failures are logged, not raised."""
        if not conn.bound:
            return
        session_id, member_id = conn.session_id, conn.member_id
        self._channels.leave(conn)

        if conn.role != Role.PARTICIPANT or conn.superseded:
            return

        try:
            cleared = await run_in_threadpool(self._store.mark_member_disconnected, member_id, conn.id)
        except PersistenceFailure as e:
            logger.warning(
                f"Could not mark player {member_id} disconnected: {e}",
                extra={"session_id": session_id, "member_id": member_id},
            )
            cleared = True

        if not cleared:
            # A newer connection owns the member record now
            return

        await self._channels.publish(session_id, PlayerDisconnected(member_id=member_id), sender=conn)
        logger.info(
            f"Player {member_id} disconnected from session {session_id}",
            extra={"session_id": session_id, "member_id": member_id},
        )
