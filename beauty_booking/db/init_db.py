"""Database initialization utilities."""

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from beauty_booking.db import models  # noqa: F401 - ensure model metadata is registered
from beauty_booking.db.session import Base, engine as default_engine

logger = logging.getLogger(__name__)


def init_db(engine: Engine | None = None) -> None:
    """Create all tables that do not exist yet."""
    engine = engine or default_engine
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError:
        logger.exception("Database initialization failed.")
        raise
