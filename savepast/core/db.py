from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from savepast.core.config import settings


def make_engine(db_url: str) -> Engine:
    if db_url.startswith("sqlite"):
        # Cache lookups run in worker threads.
        connect_args = {"check_same_thread": False}
        if ":memory:" in db_url:
            # In-memory SQLite (tests) needs a single shared connection across threads.
            return create_engine(db_url, connect_args=connect_args, poolclass=StaticPool, pool_pre_ping=True)
        return create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
    return create_engine(db_url, pool_pre_ping=True)


def make_session_factory(db_url: str, *, create_tables: bool = False) -> sessionmaker:
    eng = make_engine(db_url)
    if create_tables:
        from savepast.models.base import Base
        import savepast.models.tables  # noqa: F401

        Base.metadata.create_all(bind=eng)
    return sessionmaker(bind=eng, autoflush=False, autocommit=False, expire_on_commit=False)


engine = make_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
