"""
CLI command modules for the OMERO question types.

Provides shared helpers and imports for all CLI command modules.
"""

from omeroqtypes.config import get_database_url
from omeroqtypes.database import get_engine, get_session
from omeroqtypes.migrations import install_or_upgrade


def get_db_engine(config):
    """Engine for DATABASE_URL if set, otherwise the SQLite path in config."""
    return get_engine(config["paths"]["database_file"], url=get_database_url(config))


def get_db_session(config):
    """Helper to get a database engine and session on an installed, upgraded schema."""
    engine = get_db_engine(config)
    install_or_upgrade(engine)
    session = get_session(engine)
    return engine, session
