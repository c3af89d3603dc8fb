"""
Position Store Database Configuration

The relay only reads positions; the trading API owns writes. Engines are built
from a URL so the server and tests can point at different databases.

For SQLite, use StaticPool (SQLite handles its own connection pooling).
For PostgreSQL/MySQL, use QueuePool with pool_size=20, max_overflow=10.
"""

from typing import Optional, Tuple
import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

DEFAULT_DATABASE_URL = "sqlite:///./pairstream.db"

Base = declarative_base()


def build_engine(database_url: Optional[str] = None) -> Engine:
    """Create an engine with pooling suited to the backend."""
    url = database_url or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
    engine_kwargs = {
        "echo": os.getenv("SQL_ECHO", "false").lower() == "true",
    }

    if url.startswith("sqlite"):
        engine_kwargs.update({
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        })
    else:
        engine_kwargs.update({
            "poolclass": QueuePool,
            "pool_size": 20,
            "max_overflow": 10,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
        })

    return create_engine(url, **engine_kwargs)


def build_session_factory(database_url: Optional[str] = None) -> Tuple[Engine, sessionmaker]:
    """Engine plus a session factory bound to it."""
    engine = build_engine(database_url)
    return engine, sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create the users/positions tables if they do not exist."""
    # Import models so they register with Base
    from pairstream.positions import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
