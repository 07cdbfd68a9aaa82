"""
Turn-order service: the single writer of each session's initiative state.

Every mutation for a session runs under that session's lock: load the state
from the store, apply the pure transition from `schemas.turn_order`, persist,
then announce. If the store write fails the transition is dropped, nothing
is announced and `PersistenceFailure` reaches the caller, which may retry.

The initiator gets the resulting event as a direct reply; every other member
of the session gets it through the channel. The combat log line that follows
some transitions is written after the commit; a failed log write is logged
and leaves the committed turn state in place.
"""

from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Callable, Dict, List, Optional
import asyncio
import logging
import random

from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from backend.channel import ChannelConnection, ChannelServer
from backend.errors import NotFound, PersistenceFailure
from backend.event_log import EventLog
from backend.utils.storage import RecordStore
from schemas.events import CombatEnded, CombatStarted, InitiativeUpdated, TurnChanged
from schemas.records import MonsterOut
from schemas.turn_order import TurnEntry, TurnState

logger = logging.getLogger(__name__)

COMBAT_STARTED_MESSAGE = "Combat has begun!"
COMBAT_ENDED_MESSAGE = "Combat ended."


def roll_d20() -> int:
    return random.randint(1, 20)


class TurnOrderService:
    def __init__(
        self,
        store: RecordStore,
        channels: ChannelServer,
        event_log: EventLog,
        roller: Optional[Callable[[], int]] = None,
    ):
        self._store = store
        self._channels = channels
        self._log = event_log
        self._roller = roller
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

    def _roll(self) -> int:
        return self._roller() if self._roller else roll_d20()

    async def _announce(self, session_id: str, event: BaseModel, sender: Optional[ChannelConnection]):
        await self._channels.publish(session_id, event, sender=sender)
        if sender is not None:
            await self._channels.send(sender, event)

    async def _commit(self, session_id: str, state: TurnState):
        await run_in_threadpool(self._store.save_turn_state, session_id, state)

    async def _log_line(self, session_id: str, message: str, sender: Optional[ChannelConnection]):
        # The turn state is already committed and announced at this point
        try:
            await self._log.append(session_id, message, sender=sender)
        except PersistenceFailure as e:
            logger.error(
                f"Turn state saved but log line \"{message}\" was not: {e}",
                extra={"session_id": session_id},
            )

    async def get_state(self, session_id: str) -> TurnState:
        return await run_in_threadpool(self._store.load_turn_state, session_id)

    async def start_combat(
        self,
        session_id: str,
        actors: Optional[List[MonsterOut]] = None,
        sender: Optional[ChannelConnection] = None,
    ) -> TurnState:
        """Roll a fresh d20 for every visible monster and open combat."""
        async with self._locked(session_id):
            # Fail fast on an unknown session before rolling anything
            await self.get_state(session_id)
            if actors is None:
                actors = await run_in_threadpool(self._store.list_monsters, session_id, True)
            entries = [
                TurnEntry(
                    id=monster.id,
                    name=monster.name,
                    initiative=self._roll(),
                    kind="monster",
                    hp=monster.hp,
                    max_hp=monster.max_hp,
                )
                for monster in actors
                if not monster.hidden
            ]
            state = TurnState.started(entries)
            await self._commit(session_id, state)
            await self._announce(session_id, CombatStarted(session_id=session_id, sequence=state.sequence), sender)

        logger.info(
            f"Combat started in session {session_id} with {len(state.sequence)} monsters",
            extra={"session_id": session_id},
        )
        await self._log_line(session_id, COMBAT_STARTED_MESSAGE, sender)
        return state

    async def merge_participant_entry(
        self,
        session_id: str,
        name: str,
        initiative: int,
        member_id: Optional[str] = None,
        sender: Optional[ChannelConnection] = None,
    ) -> TurnState:
        """Insert a participant's own roll into the running order."""
        async with self._locked(session_id):
            state = await self.get_state(session_id)
            entry = TurnEntry(name=name, initiative=initiative, kind="player", member_id=member_id)
            state = state.with_entry(entry)
            await self._commit(session_id, state)
            await self._announce(
                session_id,
                InitiativeUpdated(session_id=session_id, sequence=state.sequence, cursor=state.cursor),
                sender,
            )

        logger.info(
            f"{name} rolled {initiative} for initiative in session {session_id}",
            extra={"session_id": session_id, "member_id": member_id},
        )
        return state

    async def replace_sequence(
        self,
        session_id: str,
        sequence: List[TurnEntry],
        sender: Optional[ChannelConnection] = None,
    ) -> TurnState:
        async with self._locked(session_id):
            state = (await self.get_state(session_id)).reordered(sequence)
            await self._commit(session_id, state)
            await self._announce(
                session_id,
                InitiativeUpdated(session_id=session_id, sequence=state.sequence, cursor=state.cursor),
                sender,
            )
        return state

    async def advance_turn(self, session_id: str, sender: Optional[ChannelConnection] = None) -> TurnState:
        async with self._locked(session_id):
            state = (await self.get_state(session_id)).advanced()
            await self._commit(session_id, state)
            await self._announce(session_id, TurnChanged(session_id=session_id, cursor=state.cursor), sender)

        current = state.current
        if current is not None:
            await self._log_line(session_id, f"{current.name}'s turn!", sender)
        return state

    async def end_combat(self, session_id: str, sender: Optional[ChannelConnection] = None) -> TurnState:
        async with self._locked(session_id):
            state = (await self.get_state(session_id)).ended()
            await self._commit(session_id, state)
            await self._announce(session_id, CombatEnded(session_id=session_id), sender)

        logger.info(f"Combat ended in session {session_id}", extra={"session_id": session_id})
        await self._log_line(session_id, COMBAT_ENDED_MESSAGE, sender)
        return state
