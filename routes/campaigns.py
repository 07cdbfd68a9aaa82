"""
Campaign Routes - Create campaigns, resolve room codes, join, and manage the
records the table shares (characters, monsters, items and combat state).
"""
from fastapi import APIRouter, Depends, Request
from typing import List
import logging

from backend.errors import NotFound
from backend.session_directory import SessionDirectory
from backend.utils.storage import RecordStore
from routes.schemas.campaign import (
    CampaignCreate,
    PlayerCreate,
    CharacterCreate,
    MonsterCreate,
    MonsterUpdate,
    ItemCreate,
    ItemUpdate,
    CombatStateResponse,
)
from schemas.records import CharacterOut, ItemOut, MemberOut, MonsterOut, SessionDetail, SessionOut

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Campaigns"])


def get_directory(request: Request) -> SessionDirectory:
    return request.app.state.directory


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


# ============================================================================
# CAMPAIGNS
# ============================================================================

@router.post("/campaigns", response_model=SessionOut)
def create_campaign(req: CampaignCreate, directory: SessionDirectory = Depends(get_directory)):
    """
    Create a new campaign.

    Returns the campaign with a unique 6-digit room code the DM shares
    with the players.
    """
    return directory.create_session(req.name, req.dm_name)


@router.get("/campaigns/by-code/{code}", response_model=SessionOut)
def get_campaign_by_code(code: str, directory: SessionDirectory = Depends(get_directory)):
    """Resolve a room code to its campaign."""
    return directory.resolve_by_code(code)


@router.get("/campaigns/{campaign_id}", response_model=SessionDetail)
def get_campaign(campaign_id: str, store: RecordStore = Depends(get_store)):
    campaign = store.get_campaign_detail(campaign_id)
    if not campaign:
        raise NotFound("Campaign not found")
    return campaign


@router.delete("/campaigns/{campaign_id}")
def delete_campaign(campaign_id: str, request: Request, directory: SessionDirectory = Depends(get_directory)):
    directory.delete_session(campaign_id)
    request.app.state.turn_order.forget(campaign_id)
    request.app.state.event_log.forget(campaign_id)
    return {"success": True}


@router.get("/campaigns/{campaign_id}/combat-state", response_model=CombatStateResponse)
def get_combat_state(campaign_id: str, store: RecordStore = Depends(get_store)):
    """Full reload of turn order and combat log (used on every (re)connect)."""
    state = store.load_turn_state(campaign_id)
    return CombatStateResponse(
        campaign_id=campaign_id,
        combat_active=state.combat_active,
        current_turn=state.cursor,
        initiative_order=state.sequence,
        combat_log=store.load_log(campaign_id),
    )


# ============================================================================
# PLAYERS & CHARACTERS
# ============================================================================

@router.post("/players", response_model=MemberOut)
def join_campaign(req: PlayerCreate, directory: SessionDirectory = Depends(get_directory)):
    """Take a player slot; rejected with 403 once the room holds 8 players."""
    return directory.join(req.campaign_id)


@router.post("/characters", response_model=CharacterOut)
def create_character(req: CharacterCreate, store: RecordStore = Depends(get_store)):
    fields = req.model_dump(exclude={"player_id"})
    return store.create_character(req.player_id, **fields)


@router.get("/characters/{character_id}", response_model=CharacterOut)
def get_character(character_id: str, store: RecordStore = Depends(get_store)):
    character = store.get_character(character_id)
    if not character:
        raise NotFound("Character not found")
    return character


# ============================================================================
# MONSTERS
# ============================================================================

@router.get("/campaigns/{campaign_id}/monsters", response_model=List[MonsterOut])
def list_monsters(campaign_id: str, store: RecordStore = Depends(get_store)):
    return store.list_monsters(campaign_id)


@router.post("/campaigns/{campaign_id}/monsters", response_model=MonsterOut)
def create_monster(campaign_id: str, req: MonsterCreate, store: RecordStore = Depends(get_store)):
    return store.create_monster(campaign_id, **req.model_dump())


@router.patch("/monsters/{monster_id}", response_model=MonsterOut)
def update_monster(monster_id: str, req: MonsterUpdate, store: RecordStore = Depends(get_store)):
    return store.update_monster(monster_id, **req.model_dump(exclude_unset=True, exclude_none=True))


@router.delete("/monsters/{monster_id}", response_model=MonsterOut)
def delete_monster(monster_id: str, store: RecordStore = Depends(get_store)):
    return store.delete_monster(monster_id)


# ============================================================================
# ITEMS
# ============================================================================

@router.get("/campaigns/{campaign_id}/items", response_model=List[ItemOut])
def list_items(campaign_id: str, discovered_only: bool = False, store: RecordStore = Depends(get_store)):
    """Players' screens pass `discovered_only=true`."""
    return store.list_items(campaign_id, discovered_only)


@router.post("/campaigns/{campaign_id}/items", response_model=ItemOut)
def create_item(campaign_id: str, req: ItemCreate, store: RecordStore = Depends(get_store)):
    return store.create_item(campaign_id, **req.model_dump())


@router.patch("/items/{item_id}", response_model=ItemOut)
def update_item(item_id: str, req: ItemUpdate, store: RecordStore = Depends(get_store)):
    return store.update_item(item_id, **req.model_dump(exclude_unset=True, exclude_none=True))
