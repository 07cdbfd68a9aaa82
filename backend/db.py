# db.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from dotenv import load_dotenv
import os as _os

# When running inside a container (Docker, Railway), avoid loading the
# repository `.env` file. Loading it at import-time can override platform
# provided env vars or point the app at remote DB hosts that are not
# reachable from the local environment. Only load `.env` when not running
# inside a container (no `/.dockerenv`).
if not _os.path.exists("/.dockerenv"):
    load_dotenv()

DATABASE_URL = _os.getenv("DATABASE_URL", "sqlite:///local.db")

Base = declarative_base()


def build_engine(url: str):
    # Store calls run in worker threads, so SQLite connections must be shareable
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def build_session_factory(url: str) -> sessionmaker:
    return sessionmaker(bind=build_engine(url), expire_on_commit=False)


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


def init_db(bind=None):
    from backend.models import Campaign, Player, Character, Monster, Item, CombatState  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
