"""
Pydantic views of the durable records the coordination core reads.

These are what the record store hands back, so callers never hold live
SQLAlchemy objects outside a database session.
"""

from pydantic import BaseModel, ConfigDict
from typing import List, Optional


class CharacterOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    player_id: str
    name: str
    char_class: Optional[str] = None
    level: int = 1
    hp: int
    max_hp: int
    ac: int = 10
    xp: int = 0


class MemberOut(BaseModel):
    """A participant slot, with its character once one is created."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    campaign_id: str
    socket_id: Optional[str] = None
    is_connected: bool = False
    character: Optional[CharacterOut] = None


class MonsterOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    campaign_id: str
    name: str
    hp: int
    max_hp: int
    ac: int = 10
    hidden: bool = True


class ItemOut(BaseModel):
    """A map object (chest, door, loot pile). Undiscovered items are DM-only."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    campaign_id: str
    name: str
    item_type: str
    contents: Optional[str] = None
    discovered: bool = False
    x: Optional[int] = None
    y: Optional[int] = None


class SessionOut(BaseModel):
    """A session as resolved through the directory."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    dm_name: str
    room_code: str
    member_count: int = 0


class SessionDetail(SessionOut):
    members: List[MemberOut] = []
    monsters: List[MonsterOut] = []
    items: List[ItemOut] = []
