"""
Database configuration and session management.
"""

from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy.engine import Engine
from typing import Generator, Optional, Callable
from contextlib import contextmanager
import os
import json
import logging

# Import all models to ensure they are registered with SQLModel
from brokerdesk.models import (
    SequenceCounter, LineOfBusiness, SubLineOfBusiness, Rfq, RfqInsurerQuote, Policy, Endorsement
)
from brokerdesk.cache import config_cache

logger = logging.getLogger("brokerdesk")

# Database URL - defaults to SQLite for development
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/brokerdesk.db")


def build_engine(database_url: str = DATABASE_URL, echo: bool = False) -> Engine:
    """Create an engine; SQLite connections wait on locks instead of failing fast."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
        path = database_url.replace("sqlite:///", "", 1)
        if path and path != database_url and not path.startswith(":memory:"):
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
    return create_engine(database_url, echo=echo, connect_args=connect_args)


# Create engine
engine = build_engine(DATABASE_URL)


def create_db_and_tables(bind: Optional[Engine] = None):
    """Create database tables."""
    SQLModel.metadata.create_all(bind or engine)


def get_session() -> Generator[Session, None, None]:
    """Get database session."""
    with Session(engine) as session:
        yield session


def session_factory(bind: Optional[Engine] = None) -> Callable[[], Session]:
    """Return a zero-argument callable producing new sessions on the given engine."""
    target = bind or engine

    def _factory() -> Session:
        return Session(target)

    return _factory


@contextmanager
def session_scope(session: Session) -> Generator[Session, None, None]:
    """
    Unit of work over an existing session.

    Commits when the block completes and rolls back when it raises, so a
    rejected transition never leaves partial writes behind.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def load_seed_data(bind: Optional[Engine] = None):
    """Load the line-of-business catalogue from config/seed.json into the database."""
    lines = config_cache.get_lines_of_business()
    if not lines:
        logger.warning("Seed data not found | lines_of_business=0")
        return

    with Session(bind or engine) as session:
        for lob_data in lines:
            # Check if line already exists
            existing = session.query(LineOfBusiness).filter(LineOfBusiness.id == lob_data["id"]).first()
            if existing:
                continue

            session.add(LineOfBusiness(
                id=lob_data["id"],
                name=lob_data["name"],
                code=lob_data.get("code"),
                min_premium=lob_data.get("min_premium", 0),
                default_brokerage_pct=lob_data.get("default_brokerage_pct"),
                default_vat_pct=lob_data.get("default_vat_pct"),
                rate_basis=lob_data.get("rate_basis"),
                rating_inputs=_dump_json(lob_data.get("rating_inputs")),
            ))

            for sub_data in lob_data.get("sub_lines", []):
                session.add(SubLineOfBusiness(
                    id=sub_data["id"],
                    lob_id=lob_data["id"],
                    name=sub_data["name"],
                    code=sub_data.get("code"),
                    override_min_premium=sub_data.get("override_min_premium"),
                    override_brokerage_pct=sub_data.get("override_brokerage_pct"),
                    override_vat_pct=sub_data.get("override_vat_pct"),
                    override_rate_basis=sub_data.get("override_rate_basis"),
                    override_rating_inputs=_dump_json(sub_data.get("override_rating_inputs")),
                ))

        session.commit()
        logger.info(f"Seed data loaded | lines_of_business={len(lines)}")


def _dump_json(value) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else json.dumps(value)


def initialize_database(bind: Optional[Engine] = None):
    """Initialize database with tables and seed data."""
    logger.info("Creating database tables")
    create_db_and_tables(bind)
    logger.info("Loading seed data")
    load_seed_data(bind)
    logger.info("Database initialization complete")
