# backend/event_log.py

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi.concurrency import run_in_threadpool

from backend.channel import ChannelConnection, ChannelServer
from backend.errors import NotFound
from backend.utils.storage import RecordStore
from schemas.events import LogUpdated

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 10


def append_entry(entries: List[str], message: str) -> List[str]:
    """Push a message and keep only the newest MAX_LOG_ENTRIES."""
    return (list(entries) + [message])[-MAX_LOG_ENTRIES:]


class EventLog:
    """Per-session combat log, mirrored to the store after every append."""

    def __init__(self, store: RecordStore, channels: ChannelServer):
        self._store = store
        self._channels = channels
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def _locked(self, session_id: str):
        try:
            async with self._locks[session_id]:
                yield
        except NotFound:
            self.forget(session_id)
            raise

    def forget(self, session_id: str) -> None:
        """Drop the per-session lock of a session that no longer exists."""
        self._locks.pop(session_id, None)

    async def append(self, session_id: str, message: str, sender: Optional[ChannelConnection] = None) -> List[str]:
        """
        Append one line and broadcast it.

        Only the new line goes over the channel; members already hold the
        earlier lines, and a joining member reloads the whole log from the
        store. A store failure raises before anything is broadcast.
        """
        async with self._locked(session_id):
            entries = await run_in_threadpool(self._store.load_log, session_id)
            entries = append_entry(entries, message)
            await run_in_threadpool(self._store.save_log, session_id, entries)

            event = LogUpdated(session_id=session_id, message=message)
            await self._channels.publish(session_id, event, sender=sender)
            if sender is not None:
                await self._channels.send(sender, event)
        logger.debug(f"Log [{session_id}]: {message}", extra={"session_id": session_id})
        return entries

    async def entries(self, session_id: str) -> List[str]:
        return await run_in_threadpool(self._store.load_log, session_id)
