"""Engine and schema setup for scopeguard."""

from functools import lru_cache
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from scopeguard.core.config import get_settings
from scopeguard.db.base import Base


@lru_cache
def get_engine() -> Engine:
    settings = get_settings()
    return create_engine(settings.database_url, pool_pre_ping=True, echo=settings.debug)


def init_db(engine: Optional[Engine] = None) -> None:
    """Create the roles, policies and role_assignments tables."""
    import scopeguard.db.models  # noqa: F401  registers the mappers

    Base.metadata.create_all(bind=engine or get_engine())
