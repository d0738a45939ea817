"""Database engine and session configuration"""

from __future__ import annotations

from typing import Callable

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from roadmap.config.settings import settings

Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    """
    Create an engine for the configured database

    In-memory SQLite shares one connection so every session sees the same data.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


def init_db(bind: Engine | None = None) -> None:
    """Create tables that do not exist yet (defaults to the configured engine)"""
    # Import models so they register on Base.metadata
    from roadmap.models import kv_entry  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def build_session_factory(database_url: str) -> Callable[[], Session]:
    """Engine + tables + session factory for a database URL"""
    bind = build_engine(database_url)
    init_db(bind)
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
