# backend/session_directory.py

import logging
import threading
from typing import Callable, Optional

from backend.errors import NotFound
from backend.room_code import generate_room_code, is_valid_room_code
from backend.utils.storage import DuplicateRoomCode, RecordStore
from schemas.records import MemberOut, SessionOut

logger = logging.getLogger(__name__)

MAX_MEMBERS = 8


class SessionDirectory:
    """Maps room codes to sessions and admits members up to capacity."""

    def __init__(self, store: RecordStore, code_generator: Optional[Callable[[], str]] = None):
        self._store = store
        self._generate = code_generator or generate_room_code
        # HTTP handlers run in worker threads; joins must not interleave
        self._join_lock = threading.Lock()

    def create_session(self, name: str, host_name: str) -> SessionOut:
        """
        Create a session under a fresh room code.

        Regenerates until a free code is found. The unique index on the
        room code catches a code taken by a concurrent create between the
        check and the insert; that counts as one more collision.
        """
        while True:
            code = self._generate()
            if self._store.room_code_exists(code):
                logger.debug(f"Room code {code} taken, regenerating")
                continue
            try:
                session = self._store.create_campaign(name, host_name, code)
            except DuplicateRoomCode:
                logger.debug(f"Room code {code} claimed concurrently, regenerating")
                continue
            logger.info(f"Created session {session.id} ({session.name}) with room code {code}")
            return session

    def resolve_by_code(self, code: str) -> SessionOut:
        if not is_valid_room_code(code):
            raise NotFound("Invalid room code")
        session = self._store.get_campaign_by_code(code)
        if not session:
            raise NotFound("Campaign not found")
        return session

    def get_session(self, session_id: str) -> SessionOut:
        session = self._store.get_campaign(session_id)
        if not session:
            raise NotFound("Campaign not found")
        return session

    def join(self, session_id: str) -> MemberOut:
        """Create a member slot; raises RoomFull once MAX_MEMBERS are in."""
        with self._join_lock:
            member = self._store.add_member_within_capacity(session_id, MAX_MEMBERS)
        logger.info(f"Member {member.id} joined session {session_id}")
        return member

    def delete_session(self, session_id: str) -> None:
        if not self._store.delete_campaign(session_id):
            raise NotFound("Campaign not found")
        logger.info(f"Deleted session {session_id}")
