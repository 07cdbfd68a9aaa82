# models.py
from sqlalchemy import Column, String, DateTime, JSON, Integer, Boolean, ForeignKey
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
from backend.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Campaign(Base):
    """One game in progress, addressed by its room code."""
    __tablename__ = "campaigns"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    dm_name = Column(String, nullable=False)
    room_code = Column(String(6), unique=True, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    players = relationship(
        "Player", back_populates="campaign", cascade="all, delete-orphan",
        order_by="Player.joined_at",
    )
    monsters = relationship(
        "Monster", back_populates="campaign", cascade="all, delete-orphan",
        order_by="Monster.created_at",
    )
    items = relationship(
        "Item", back_populates="campaign", cascade="all, delete-orphan",
        order_by="Item.created_at",
    )
    combat_state = relationship(
        "CombatState", back_populates="campaign", uselist=False, cascade="all, delete-orphan",
    )


class Player(Base):
    """A participant slot. Kept after disconnect so reconnects reuse it."""
    __tablename__ = "players"

    id = Column(String, primary_key=True, default=_uuid)
    campaign_id = Column(String, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True)
    socket_id = Column(String, nullable=True)  # channel id of the live connection
    is_connected = Column(Boolean, default=False, nullable=False)
    joined_at = Column(DateTime, default=datetime.utcnow)

    campaign = relationship("Campaign", back_populates="players")
    character = relationship(
        "Character", back_populates="player", uselist=False, cascade="all, delete-orphan",
    )


class Character(Base):
    __tablename__ = "characters"

    id = Column(String, primary_key=True, default=_uuid)
    player_id = Column(String, ForeignKey("players.id", ondelete="CASCADE"), unique=True, nullable=False)
    name = Column(String, nullable=False)
    char_class = Column("class", String, nullable=True)
    level = Column(Integer, default=1)
    hp = Column(Integer, nullable=False)
    max_hp = Column(Integer, nullable=False)
    ac = Column(Integer, default=10)
    xp = Column(Integer, default=0)

    player = relationship("Player", back_populates="character")


class Monster(Base):
    """Host-controlled actor. New monsters start hidden from the players."""
    __tablename__ = "monsters"

    id = Column(String, primary_key=True, default=_uuid)
    campaign_id = Column(String, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    hp = Column(Integer, nullable=False)
    max_hp = Column(Integer, nullable=False)
    ac = Column(Integer, default=10)
    hidden = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    campaign = relationship("Campaign", back_populates="monsters")


class Item(Base):
    """Something on the map the players can find."""
    __tablename__ = "items"

    id = Column(String, primary_key=True, default=_uuid)
    campaign_id = Column(String, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    item_type = Column("type", String, nullable=False)
    contents = Column(String, nullable=True)
    discovered = Column(Boolean, default=False, nullable=False)
    x = Column(Integer, nullable=True)
    y = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    campaign = relationship("Campaign", back_populates="items")


class CombatState(Base):
    """Turn order and combat log of a campaign (one row per campaign)."""
    __tablename__ = "combat_states"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(String, ForeignKey("campaigns.id", ondelete="CASCADE"), unique=True, nullable=False)
    initiative_order = Column(JSON, nullable=False, default=list)  # list of TurnEntry dicts
    current_turn = Column(Integer, nullable=False, default=0)
    combat_active = Column(Boolean, nullable=False, default=False)
    combat_log = Column(JSON, nullable=False, default=list)  # list of strings, newest last

    campaign = relationship("Campaign", back_populates="combat_state")
