"""
Campaign WebSocket endpoint for the live table.

Handles:
- DM and player joins (room binding, reconnects)
- Combat start/end, turn advancement and initiative
- Combat log lines from the DM
- Monster, item, XP and loot notifications
- Player action requests
"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
import json
import logging

from backend.channel import ChannelConnection, Role
from backend.errors import NotFound, NotPermitted, ProtocolError, TableError
from schemas.events import (
    parse_inbound,
    DmJoin,
    PlayerJoin,
    DmStartCombat,
    DmEndCombat,
    DmNextTurn,
    PlayerRollInitiative,
    DmUpdateInitiative,
    DmCombatLog,
    DmUpdateMonster,
    DmAwardXp,
    DmUpdateItem,
    DmGiveLoot,
    PlayerAction,
    InitiativeRolled,
    MonsterUpdated,
    ItemUpdated,
    XpAwarded,
    LootReceived,
    PlayerActionPending,
    ErrorFrame,
)

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Campaign"])


# ============================================================================
# WEBSOCKET ENDPOINT (One connection per DM or player screen)
# ============================================================================

@router.websocket("/socket")
async def campaign_websocket(websocket: WebSocket):
    """
    WebSocket endpoint for a campaign table.

    URL: ws://localhost:8000/api/socket

    The first frame must be `dm:join` or `player:join`. Every frame after
    that is checked against the bound role and session. A rejected frame
    gets an `error` reply; the connection stays open.
    """
    state = websocket.app.state
    channels = state.channels

    await websocket.accept()
    conn = channels.open(websocket)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))

            event_type = None
            try:
                data = _decode_frame(message)
                event_type = data.get("type")
                event = parse_inbound(data)
                await dispatch(state, conn, event)
            except ValidationError as e:
                logger.info(f"Rejected frame from {conn.id}: {e.error_count()} validation errors")
                await channels.send(conn, ErrorFrame(code=ProtocolError.code, message=_first_error(e)))
            except TableError as e:
                logger.info(f"Rejected {event_type} from {conn.id}: {e.code}")
                await channels.send(conn, ErrorFrame(code=e.code, message=e.message))

    except WebSocketDisconnect:
        logger.debug(f"Connection {conn.id} disconnected")
    finally:
        await state.membership.unbind(conn)
        await channels.close(conn)


def _decode_frame(message: dict) -> dict:
    """Parse one text or binary frame into a JSON object."""
    raw = message.get("text")
    if raw is None:
        raw = message.get("bytes")
    if raw is None:
        raise ProtocolError("Empty frame")
    try:
        data = json.loads(raw)
    except ValueError:
        raise ProtocolError("Frame is not valid JSON")
    if not isinstance(data, dict):
        raise ProtocolError("Frame must be a JSON object")
    return data


def _first_error(e: ValidationError) -> str:
    errors = e.errors()
    if not errors:
        return "Invalid frame"
    first = errors[0]
    where = ".".join(str(part) for part in first.get("loc", ()))
    return f"{where}: {first.get('msg')}" if where else first.get("msg", "Invalid frame")


# ============================================================================
# ROLE CHECKS
# ============================================================================

def require_host(conn: ChannelConnection, session_id: str):
    if conn.role != Role.HOST:
        raise NotPermitted("Only the DM can do that")
    if conn.session_id != session_id:
        raise ProtocolError("Event is for a different campaign")


def require_player(conn: ChannelConnection, session_id: str, member_id: str):
    if conn.role != Role.PARTICIPANT:
        raise NotPermitted("Only a joined player can do that")
    if conn.session_id != session_id:
        raise ProtocolError("Event is for a different campaign")
    if conn.member_id != member_id:
        raise NotPermitted("Players can only act for themselves")


# ============================================================================
# MESSAGE HANDLERS
# ============================================================================

async def dispatch(state, conn: ChannelConnection, event):
    """Route one parsed frame to the service that owns it."""
    channels = state.channels
    turn_order = state.turn_order

    if isinstance(event, DmJoin):
        await state.membership.bind_as_host(conn, event.session_id)

    elif isinstance(event, PlayerJoin):
        await state.membership.bind_as_participant(conn, event.session_id, event.member_id)

    elif isinstance(event, DmStartCombat):
        require_host(conn, event.session_id)
        await turn_order.start_combat(event.session_id, sender=conn)

    elif isinstance(event, DmEndCombat):
        require_host(conn, event.session_id)
        await turn_order.end_combat(event.session_id, sender=conn)

    elif isinstance(event, DmNextTurn):
        require_host(conn, event.session_id)
        await turn_order.advance_turn(event.session_id, sender=conn)

    elif isinstance(event, DmUpdateInitiative):
        require_host(conn, event.session_id)
        await turn_order.replace_sequence(event.session_id, event.sequence, sender=conn)

    elif isinstance(event, PlayerRollInitiative):
        require_player(conn, event.session_id, event.member_id)
        # Fold the roll into the order first; a roll outside combat is rejected
        await turn_order.merge_participant_entry(
            event.session_id, event.name, event.initiative, member_id=event.member_id, sender=conn,
        )
        await channels.publish(event.session_id, InitiativeRolled(
            session_id=event.session_id,
            member_id=event.member_id,
            name=event.name,
            initiative=event.initiative,
        ), sender=conn)

    elif isinstance(event, DmCombatLog):
        require_host(conn, event.session_id)
        await state.event_log.append(event.session_id, event.message, sender=conn)

    elif isinstance(event, DmUpdateMonster):
        require_host(conn, event.session_id)
        await channels.publish(event.session_id, MonsterUpdated(
            session_id=event.session_id,
            action=event.action,
            monster=event.monster,
            monster_id=event.monster_id or (event.monster.id if event.monster else None),
        ), sender=conn)

    elif isinstance(event, DmAwardXp):
        require_host(conn, event.session_id)
        await run_in_threadpool(state.store.award_xp, event.session_id, event.amount, event.member_id)
        await channels.publish(event.session_id, XpAwarded(
            session_id=event.session_id,
            amount=event.amount,
            member_id=event.member_id,
        ), sender=conn)

    elif isinstance(event, DmUpdateItem):
        require_host(conn, event.session_id)
        if event.item.campaign_id != event.session_id:
            raise ProtocolError("Item belongs to a different campaign")
        await channels.publish(event.session_id, ItemUpdated(
            session_id=event.session_id,
            item=event.item,
        ), sender=conn)

    elif isinstance(event, DmGiveLoot):
        require_host(conn, event.session_id)
        member = await run_in_threadpool(state.store.get_member, event.member_id)
        if not member or member.campaign_id != event.session_id:
            raise NotFound("Player not found in this campaign")
        await channels.publish(event.session_id, LootReceived(
            session_id=event.session_id,
            member_id=event.member_id,
            item=event.item,
        ), sender=conn)

    elif isinstance(event, PlayerAction):
        require_player(conn, event.session_id, event.member_id)
        await channels.publish(event.session_id, PlayerActionPending(
            session_id=event.session_id,
            member_id=event.member_id,
            action=event.action,
        ), sender=conn)

    else:
        logger.warning(f"Unhandled event type: {event.type}")
