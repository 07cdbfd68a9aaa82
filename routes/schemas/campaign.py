"""
Pydantic request/response schemas for the campaign HTTP endpoints.
"""

from pydantic import BaseModel, Field
from typing import List, Optional

from schemas.turn_order import TurnEntry


class CampaignCreate(BaseModel):
    """Request to create a new campaign (the caller becomes the DM)."""
    name: str = Field(..., min_length=1, max_length=100)
    dm_name: str = Field(..., min_length=1, max_length=100)


class PlayerCreate(BaseModel):
    """Request to take a player slot in a campaign."""
    campaign_id: str


class CharacterCreate(BaseModel):
    player_id: str
    name: str = Field(..., min_length=1, max_length=100)
    char_class: Optional[str] = Field(None, max_length=50)
    level: int = Field(default=1, ge=1, le=20)
    hp: int = Field(..., ge=0)
    max_hp: int = Field(..., ge=1)
    ac: int = Field(default=10, ge=0, le=40)


class MonsterCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    hp: int = Field(..., ge=0)
    max_hp: int = Field(..., ge=1)
    ac: int = Field(default=10, ge=0, le=40)
    hidden: bool = True  # Monsters start hidden until the DM reveals them


class MonsterUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    hp: Optional[int] = Field(None, ge=0)
    max_hp: Optional[int] = Field(None, ge=1)
    ac: Optional[int] = Field(None, ge=0, le=40)
    hidden: Optional[bool] = None


class ItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    item_type: str = Field(..., min_length=1, max_length=50)  # chest, door, loot, ...
    contents: Optional[str] = Field(None, max_length=500)
    discovered: bool = False
    x: Optional[int] = None
    y: Optional[int] = None


class ItemUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    item_type: Optional[str] = Field(None, min_length=1, max_length=50)
    contents: Optional[str] = Field(None, max_length=500)
    discovered: Optional[bool] = None
    x: Optional[int] = None
    y: Optional[int] = None


class CombatStateResponse(BaseModel):
    """Everything a (re)connecting client needs to rebuild the combat view."""
    campaign_id: str
    combat_active: bool
    current_turn: int
    initiative_order: List[TurnEntry]
    combat_log: List[str]
