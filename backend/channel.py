"""
Fan-out channel: one broadcast group per session.

Each connection owns a FIFO outbox drained by its own writer task, so a
publish never waits on a slow socket and frames from one sender reach each
recipient in the order they were published. Delivery is at-most-once: a
frame for a connection that is gone, or whose outbox is full, is dropped.
Members that missed frames resynchronize by reloading from the store.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import asyncio
import logging
import uuid

from pydantic import BaseModel

from backend.errors import ChannelUnavailable

logger = logging.getLogger(__name__)

OUTBOX_SIZE = 256


class Role(str, Enum):
    HOST = "dm"
    PARTICIPANT = "player"


@dataclass
class _Close:
    code: int = 1000
    reason: str = ""


@dataclass
class ChannelConnection:
    """An accepted WebSocket plus the group it is bound to."""

    websocket: Any
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    session_id: Optional[str] = None
    role: Optional[Role] = None
    member_id: Optional[str] = None
    superseded: bool = False  # replaced by a newer connection for the same member
    closed: bool = False
    outbox: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=OUTBOX_SIZE))
    writer: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def bound(self) -> bool:
        return self.session_id is not None

    def enqueue(self, frame) -> None:
        if self.closed:
            raise ChannelUnavailable(f"Connection {self.id} is closed")
        try:
            self.outbox.put_nowait(frame)
        except asyncio.QueueFull as e:
            raise ChannelUnavailable(f"Outbox of {self.id} is full") from e


class ChannelServer:
    """Owns every live connection, grouped by session."""

    def __init__(self):
        self._rooms: Dict[str, Dict[str, ChannelConnection]] = {}
        self._connections: Dict[str, ChannelConnection] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        self._running = True
        logger.info("Channel server started")

    async def shutdown(self, timeout: float = 5.0):
        self._running = False
        connections = list(self._connections.values())
        for conn in connections:
            await self.close(conn, code=1001, reason="Server shutting down", wait=False)
        writers = [c.writer for c in connections if c.writer is not None]
        if writers:
            await asyncio.wait(writers, timeout=timeout)
        logger.info(f"Channel server stopped ({len(connections)} connections closed)")

    # ===== Connection lifecycle =====

    def open(self, websocket) -> ChannelConnection:
        """Register an accepted socket and start its writer."""
        if not self._running:
            raise RuntimeError("Channel server is not running")
        conn = ChannelConnection(websocket=websocket)
        conn.writer = asyncio.create_task(self._drain(conn))
        self._connections[conn.id] = conn
        logger.debug(f"Opened connection {conn.id}")
        return conn

    def join(self, conn: ChannelConnection, session_id: str, role: Role, member_id: Optional[str] = None):
        conn.session_id = session_id
        conn.role = role
        conn.member_id = member_id
        self._rooms.setdefault(session_id, {})[conn.id] = conn
        logger.info(f"Connection {conn.id} joined session {session_id} as {role.value}")

    def leave(self, conn: ChannelConnection):
        room = self._rooms.get(conn.session_id) if conn.session_id else None
        if room and room.pop(conn.id, None) is not None:
            logger.info(f"Connection {conn.id} left session {conn.session_id}")
            # Clean up empty session rooms
            if not room:
                del self._rooms[conn.session_id]

    async def close(self, conn: ChannelConnection, code: int = 1000, reason: str = "", wait: bool = True):
        """Leave the group, flush what is queued, then close the socket."""
        self.leave(conn)
        self._connections.pop(conn.id, None)
        if not conn.closed:
            conn.closed = True
            try:
                conn.outbox.put_nowait(_Close(code, reason))
            except asyncio.QueueFull:
                if conn.writer:
                    conn.writer.cancel()
        if wait and conn.writer is not None and conn.writer is not asyncio.current_task():
            await asyncio.wait([conn.writer])

    async def _drain(self, conn: ChannelConnection):
        while True:
            frame = await conn.outbox.get()
            if isinstance(frame, _Close):
                try:
                    await conn.websocket.close(code=frame.code, reason=frame.reason)
                except Exception as e:
                    logger.debug(f"Close of {conn.id} failed: {e}")
                return
            try:
                await conn.websocket.send_json(frame)
            except Exception as e:
                logger.warning(f"Failed to send to {conn.id}: {e}")
                conn.closed = True
                self.leave(conn)
                return

    # ===== Delivery =====

    async def publish(
        self,
        session_id: str,
        event: BaseModel,
        sender: Optional[ChannelConnection] = None,
        exclude_sender: bool = True,
    ) -> int:
        """Queue `event` for every member of the session except the sender."""
        frame = event.model_dump(mode="json")
        delivered = 0
        for conn in list(self._rooms.get(session_id, {}).values()):
            if exclude_sender and sender is not None and conn.id == sender.id:
                continue
            try:
                conn.enqueue(frame)
                delivered += 1
            except ChannelUnavailable as e:
                logger.debug(f"Dropped {frame.get('type')} for session {session_id}: {e}")
        return delivered

    async def send(self, conn: ChannelConnection, event: BaseModel) -> bool:
        """Deliver to one connection (replies and errors)."""
        try:
            conn.enqueue(event.model_dump(mode="json"))
            return True
        except ChannelUnavailable as e:
            logger.debug(f"Dropped direct {event.__class__.__name__}: {e}")
            return False

    # ===== Lookups =====

    def members(self, session_id: str) -> List[ChannelConnection]:
        return list(self._rooms.get(session_id, {}).values())

    def find_member(self, session_id: str, member_id: str) -> Optional[ChannelConnection]:
        for conn in self._rooms.get(session_id, {}).values():
            if conn.role == Role.PARTICIPANT and conn.member_id == member_id:
                return conn
        return None
