"""
Durable record store for sessions, members, monsters, items and combat state.

Every call opens its own database session and commits before returning, so
the store is safe to call from worker threads. Results are pydantic views,
never live ORM objects. Any SQLAlchemy failure is rolled back and raised as
`PersistenceFailure`; durable state is left as it was before the call.
"""

from contextlib import contextmanager
from typing import List, Optional
import logging

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload, sessionmaker

from backend.db import SessionLocal
from backend.errors import NotFound, PersistenceFailure, RoomFull
from backend.models import Campaign, Character, CombatState, Item, Monster, Player
from schemas.records import CharacterOut, ItemOut, MemberOut, MonsterOut, SessionDetail, SessionOut
from schemas.turn_order import TurnEntry, TurnState

logger = logging.getLogger(__name__)


class DuplicateRoomCode(Exception):
    """Another session took the room code between the check and the insert."""


class RecordStore:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    @property
    def bind(self):
        return self._session_factory.kw["bind"]

    @contextmanager
    def _session(self):
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Record store failure: {e}")
            raise PersistenceFailure("Failed to reach the record store") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def ping(self) -> None:
        with self._session() as db:
            db.execute(text("SELECT 1"))

    # ===== Sessions =====

    def room_code_exists(self, room_code: str) -> bool:
        with self._session() as db:
            return db.scalar(select(Campaign.id).where(Campaign.room_code == room_code)) is not None

    def create_campaign(self, name: str, dm_name: str, room_code: str) -> SessionOut:
        with self._session() as db:
            campaign = Campaign(name=name, dm_name=dm_name, room_code=room_code)
            campaign.combat_state = CombatState(
                initiative_order=[], current_turn=0, combat_active=False, combat_log=[],
            )
            db.add(campaign)
            try:
                db.flush()
            except IntegrityError as e:
                raise DuplicateRoomCode(room_code) from e
            return SessionOut(
                id=campaign.id, name=campaign.name, dm_name=campaign.dm_name,
                room_code=campaign.room_code, member_count=0,
            )

    def _session_out(self, db, campaign: Campaign) -> SessionOut:
        count = db.scalar(select(func.count(Player.id)).where(Player.campaign_id == campaign.id))
        return SessionOut(
            id=campaign.id, name=campaign.name, dm_name=campaign.dm_name,
            room_code=campaign.room_code, member_count=count or 0,
        )

    def get_campaign(self, campaign_id: str) -> Optional[SessionOut]:
        with self._session() as db:
            campaign = db.get(Campaign, campaign_id)
            return self._session_out(db, campaign) if campaign else None

    def get_campaign_by_code(self, room_code: str) -> Optional[SessionOut]:
        with self._session() as db:
            campaign = db.scalar(select(Campaign).where(Campaign.room_code == room_code))
            return self._session_out(db, campaign) if campaign else None

    def get_campaign_detail(self, campaign_id: str) -> Optional[SessionDetail]:
        with self._session() as db:
            campaign = db.scalar(
                select(Campaign)
                .where(Campaign.id == campaign_id)
                .options(
                    selectinload(Campaign.players).selectinload(Player.character),
                    selectinload(Campaign.monsters),
                    selectinload(Campaign.items),
                )
            )
            if not campaign:
                return None
            return SessionDetail(
                id=campaign.id, name=campaign.name, dm_name=campaign.dm_name,
                room_code=campaign.room_code, member_count=len(campaign.players),
                members=[MemberOut.model_validate(p) for p in campaign.players],
                monsters=[MonsterOut.model_validate(m) for m in campaign.monsters],
                items=[ItemOut.model_validate(i) for i in campaign.items],
            )

    def delete_campaign(self, campaign_id: str) -> bool:
        with self._session() as db:
            campaign = db.get(Campaign, campaign_id)
            if not campaign:
                return False
            db.delete(campaign)
            return True

    # ===== Members =====

    def add_member_within_capacity(self, campaign_id: str, capacity: int) -> MemberOut:
        """Count and insert in one transaction; callers serialize concurrent joins."""
        with self._session() as db:
            if db.get(Campaign, campaign_id) is None:
                raise NotFound("Campaign not found")
            count = db.scalar(select(func.count(Player.id)).where(Player.campaign_id == campaign_id))
            if count >= capacity:
                raise RoomFull("Room is full")
            player = Player(campaign_id=campaign_id, is_connected=False)
            db.add(player)
            db.flush()
            return MemberOut.model_validate(player)

    def get_member(self, member_id: str) -> Optional[MemberOut]:
        with self._session() as db:
            player = db.get(Player, member_id)
            return MemberOut.model_validate(player) if player else None

    def mark_member_connected(self, member_id: str, socket_id: str) -> MemberOut:
        with self._session() as db:
            player = db.get(Player, member_id)
            if not player:
                raise NotFound("Player not found")
            player.socket_id = socket_id
            player.is_connected = True
            db.flush()
            return MemberOut.model_validate(player)

    def mark_member_disconnected(self, member_id: str, socket_id: str) -> bool:
        """Only clears the member when `socket_id` is still its live connection."""
        with self._session() as db:
            result = db.execute(
                update(Player)
                .where(Player.id == member_id, Player.socket_id == socket_id)
                .values(socket_id=None, is_connected=False)
            )
            return result.rowcount > 0

    # ===== Characters =====

    def create_character(self, member_id: str, **fields) -> CharacterOut:
        with self._session() as db:
            player = db.get(Player, member_id)
            if not player:
                raise NotFound("Player not found")
            if player.character is not None:
                db.delete(player.character)
                db.flush()
            character = Character(player_id=member_id, **fields)
            db.add(character)
            db.flush()
            return CharacterOut.model_validate(character)

    def get_character(self, character_id: str) -> Optional[CharacterOut]:
        with self._session() as db:
            character = db.get(Character, character_id)
            return CharacterOut.model_validate(character) if character else None

    def award_xp(self, campaign_id: str, amount: int, member_id: Optional[str] = None) -> int:
        """Add XP to one member's character or to every character; returns how many changed."""
        with self._session() as db:
            query = select(Character).join(Player).where(Player.campaign_id == campaign_id)
            if member_id:
                query = query.where(Player.id == member_id)
            characters = db.scalars(query).all()
            for character in characters:
                character.xp = (character.xp or 0) + amount
            return len(characters)

    # ===== Monsters =====

    def list_monsters(self, campaign_id: str, visible_only: bool = False) -> List[MonsterOut]:
        with self._session() as db:
            query = select(Monster).where(Monster.campaign_id == campaign_id)
            if visible_only:
                query = query.where(Monster.hidden.is_(False))
            query = query.order_by(Monster.created_at, Monster.id)
            return [MonsterOut.model_validate(m) for m in db.scalars(query).all()]

    def create_monster(self, campaign_id: str, **fields) -> MonsterOut:
        with self._session() as db:
            if db.get(Campaign, campaign_id) is None:
                raise NotFound("Campaign not found")
            monster = Monster(campaign_id=campaign_id, **fields)
            db.add(monster)
            db.flush()
            return MonsterOut.model_validate(monster)

    def update_monster(self, monster_id: str, **fields) -> MonsterOut:
        with self._session() as db:
            monster = db.get(Monster, monster_id)
            if not monster:
                raise NotFound("Monster not found")
            for key, value in fields.items():
                setattr(monster, key, value)
            db.flush()
            return MonsterOut.model_validate(monster)

    def delete_monster(self, monster_id: str) -> MonsterOut:
        with self._session() as db:
            monster = db.get(Monster, monster_id)
            if not monster:
                raise NotFound("Monster not found")
            deleted = MonsterOut.model_validate(monster)
            db.delete(monster)
            return deleted

    # ===== Items =====

    def list_items(self, campaign_id: str, discovered_only: bool = False) -> List[ItemOut]:
        with self._session() as db:
            query = select(Item).where(Item.campaign_id == campaign_id)
            if discovered_only:
                query = query.where(Item.discovered.is_(True))
            query = query.order_by(Item.created_at, Item.id)
            return [ItemOut.model_validate(i) for i in db.scalars(query).all()]

    def create_item(self, campaign_id: str, **fields) -> ItemOut:
        with self._session() as db:
            if db.get(Campaign, campaign_id) is None:
                raise NotFound("Campaign not found")
            item = Item(campaign_id=campaign_id, **fields)
            db.add(item)
            db.flush()
            return ItemOut.model_validate(item)

    def update_item(self, item_id: str, **fields) -> ItemOut:
        with self._session() as db:
            item = db.get(Item, item_id)
            if not item:
                raise NotFound("Item not found")
            for key, value in fields.items():
                setattr(item, key, value)
            db.flush()
            return ItemOut.model_validate(item)

    # ===== Combat state =====

    def _combat_state(self, db, campaign_id: str) -> CombatState:
        state = db.scalar(select(CombatState).where(CombatState.campaign_id == campaign_id))
        if state is None:
            raise NotFound("Campaign not found")
        return state

    def load_turn_state(self, campaign_id: str) -> TurnState:
        with self._session() as db:
            row = self._combat_state(db, campaign_id)
            return TurnState(
                sequence=[TurnEntry.model_validate(e) for e in row.initiative_order or []],
                cursor=row.current_turn or 0,
                combat_active=bool(row.combat_active),
            )

    def save_turn_state(self, campaign_id: str, state: TurnState) -> None:
        with self._session() as db:
            row = self._combat_state(db, campaign_id)
            row.initiative_order = [e.model_dump(mode="json") for e in state.sequence]
            row.current_turn = state.cursor
            row.combat_active = state.combat_active

    def load_log(self, campaign_id: str) -> List[str]:
        with self._session() as db:
            return list(self._combat_state(db, campaign_id).combat_log or [])

    def save_log(self, campaign_id: str, entries: List[str]) -> None:
        with self._session() as db:
            self._combat_state(db, campaign_id).combat_log = list(entries)
