"""
Database engine and session factory.

SQLite is the default backend; any SQLAlchemy URL works. Tables are created
at startup with create_all since migrations are managed outside this service.
"""

import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    connect_args = {}
    kwargs = {"pool_pre_ping": True}

    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        if url.database in (None, "", ":memory:"):
            # A single shared connection keeps the in-memory database alive
            kwargs["poolclass"] = StaticPool

    return create_engine(database_url, connect_args=connect_args, **kwargs)


def create_session_factory(
    database_url: Optional[str] = None, engine: Optional[Engine] = None
) -> sessionmaker:
    if engine is None:
        if database_url is None:
            raise ValueError("database_url or engine is required")
        engine = create_db_engine(database_url)
    return sessionmaker(
        bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
    )


def init_db(session_factory: sessionmaker) -> None:
    """Create all tables that do not exist yet."""
    # Import models so they register on Base.metadata
    from app.db import models  # noqa: F401

    engine = session_factory.kw["bind"]
    Base.metadata.create_all(engine)
    logger.info(f"Database initialized ({engine.url.render_as_string(hide_password=True)})")
