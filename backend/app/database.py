import logging
import os
from pathlib import Path
from typing import Generator

from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./bracket_engine.db")

_is_sqlite = DATABASE_URL.startswith("sqlite")
_echo = os.getenv("SQL_ECHO", "false").lower() in ("true", "1", "yes")

if _is_sqlite:
    # Concurrent score submissions queue on SQLite's write lock instead of failing at once
    _connect_args = {"check_same_thread": False, "timeout": float(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))}
    if ":memory:" not in DATABASE_URL:
        Path(DATABASE_URL.replace("sqlite:///", "", 1)).parent.mkdir(parents=True, exist_ok=True)
    engine: Engine = create_engine(DATABASE_URL, echo=_echo, connect_args=_connect_args)
else:
    engine = create_engine(DATABASE_URL, echo=_echo, pool_pre_ping=True)


def get_session() -> Generator[Session, None, None]:
    """Get database session"""
    with Session(engine) as session:
        yield session


def init_db() -> None:
    """Initialize database - create all tables"""
    # Import all models to ensure they're registered with SQLModel metadata
    from app.models.bracket import Bracket  # noqa: F401
    from app.models.category import Category  # noqa: F401
    from app.models.match import Match  # noqa: F401
    from app.models.match_event import MatchEvent  # noqa: F401
    from app.models.tournament import Tournament  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.info("Database ready (%s)", engine.url.render_as_string(hide_password=True))
