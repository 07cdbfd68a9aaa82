"""
Pydantic schemas for the session WebSocket events.

Every frame is a JSON object tagged by `type`. Incoming frames are parsed
into exactly one of the inbound models below; anything else is rejected.
"""

from pydantic import BaseModel, Field, TypeAdapter, model_validator
from typing import Annotated, List, Literal, Optional, Union

from schemas.records import ItemOut, MemberOut, MonsterOut
from schemas.turn_order import TurnEntry


# ============================================================================
# INCOMING MESSAGES (Client → Server)
# ============================================================================

class DmJoin(BaseModel):
    """Host binds its connection to a session."""
    type: Literal["dm:join"] = "dm:join"
    session_id: str


class PlayerJoin(BaseModel):
    """Participant binds its connection to a session and member slot."""
    type: Literal["player:join"] = "player:join"
    session_id: str
    member_id: str


class DmStartCombat(BaseModel):
    type: Literal["dm:start-combat"] = "dm:start-combat"
    session_id: str


class DmEndCombat(BaseModel):
    type: Literal["dm:end-combat"] = "dm:end-combat"
    session_id: str


class DmNextTurn(BaseModel):
    type: Literal["dm:next-turn"] = "dm:next-turn"
    session_id: str


class PlayerRollInitiative(BaseModel):
    """Participant reports the initiative it rolled on its own device."""
    type: Literal["player:roll-initiative"] = "player:roll-initiative"
    session_id: str
    member_id: str
    name: str = Field(..., min_length=1, max_length=100)
    initiative: int


class DmUpdateInitiative(BaseModel):
    """Host replaces the whole initiative order (e.g. after editing a score)."""
    type: Literal["dm:update-initiative"] = "dm:update-initiative"
    session_id: str
    sequence: List[TurnEntry]


class DmCombatLog(BaseModel):
    type: Literal["dm:combat-log"] = "dm:combat-log"
    session_id: str
    message: str = Field(..., min_length=1, max_length=500)


class DmUpdateMonster(BaseModel):
    """Host tells the table a monster was added, changed or removed."""
    type: Literal["dm:update-monster"] = "dm:update-monster"
    session_id: str
    action: Literal["add", "update", "delete"]
    monster: Optional[MonsterOut] = None
    monster_id: Optional[str] = None

    @model_validator(mode="after")
    def check_target(self):
        if self.action == "delete" and not (self.monster_id or self.monster):
            raise ValueError("delete needs monster_id")
        if self.action != "delete" and self.monster is None:
            raise ValueError(f"{self.action} needs monster")
        return self


class DmAwardXp(BaseModel):
    """Host awards XP to one member, or to everyone when member_id is empty."""
    type: Literal["dm:award-xp"] = "dm:award-xp"
    session_id: str
    amount: int = Field(..., ge=0)
    member_id: Optional[str] = None


class DmUpdateItem(BaseModel):
    """Host tells the table an item changed (e.g. a chest was discovered)."""
    type: Literal["dm:update-item"] = "dm:update-item"
    session_id: str
    item: ItemOut


class DmGiveLoot(BaseModel):
    type: Literal["dm:give-loot"] = "dm:give-loot"
    session_id: str
    member_id: str
    item: str = Field(..., min_length=1, max_length=200)


class PlayerAction(BaseModel):
    """Participant declares an action for the host to resolve."""
    type: Literal["player:action"] = "player:action"
    session_id: str
    member_id: str
    action: str = Field(..., min_length=1, max_length=500)


InboundEvent = Annotated[
    Union[
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
    ],
    Field(discriminator="type"),
]

_inbound_adapter = TypeAdapter(InboundEvent)


def parse_inbound(data) -> BaseModel:
    """Validate a raw frame; raises pydantic.ValidationError when it fits no event."""
    return _inbound_adapter.validate_python(data)


# ============================================================================
# OUTGOING MESSAGES (Server → Clients)
# ============================================================================

class SessionJoined(BaseModel):
    """Sent only to the connection that just bound."""
    type: Literal["session:joined"] = "session:joined"
    session_id: str
    role: Literal["dm", "player"]
    member_id: Optional[str] = None


class PlayerConnected(BaseModel):
    type: Literal["player:connected"] = "player:connected"
    member: MemberOut


class PlayerDisconnected(BaseModel):
    type: Literal["player:disconnected"] = "player:disconnected"
    member_id: str


class CombatStarted(BaseModel):
    type: Literal["combat:started"] = "combat:started"
    session_id: str
    sequence: List[TurnEntry]


class CombatEnded(BaseModel):
    type: Literal["combat:ended"] = "combat:ended"
    session_id: str


class TurnChanged(BaseModel):
    type: Literal["combat:turn-changed"] = "combat:turn-changed"
    session_id: str
    cursor: int


class InitiativeRolled(BaseModel):
    type: Literal["player:initiative-rolled"] = "player:initiative-rolled"
    session_id: str
    member_id: str
    name: str
    initiative: int


class InitiativeUpdated(BaseModel):
    """Carries the cursor too: a merge can move it along with the current entry."""
    type: Literal["combat:initiative-updated"] = "combat:initiative-updated"
    session_id: str
    sequence: List[TurnEntry]
    cursor: int


class LogUpdated(BaseModel):
    type: Literal["combat:log-updated"] = "combat:log-updated"
    session_id: str
    message: str


class MonsterUpdated(BaseModel):
    type: Literal["monster:updated"] = "monster:updated"
    session_id: str
    action: Literal["add", "update", "delete"]
    monster: Optional[MonsterOut] = None
    monster_id: Optional[str] = None


class ItemUpdated(BaseModel):
    type: Literal["item:updated"] = "item:updated"
    session_id: str
    item: ItemOut


class XpAwarded(BaseModel):
    type: Literal["xp:awarded"] = "xp:awarded"
    session_id: str
    amount: int
    member_id: Optional[str] = None


class LootReceived(BaseModel):
    type: Literal["loot:received"] = "loot:received"
    session_id: str
    member_id: str
    item: str


class PlayerActionPending(BaseModel):
    type: Literal["player:action-pending"] = "player:action-pending"
    session_id: str
    member_id: str
    action: str


class ErrorFrame(BaseModel):
    """Sent only to the connection whose frame failed."""
    type: Literal["error"] = "error"
    code: str
    message: str
