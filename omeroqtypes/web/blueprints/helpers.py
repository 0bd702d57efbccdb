"""Shared utilities for blueprint modules."""

import logging

from flask import current_app, flash, g

from omeroqtypes.database import get_session

logger = logging.getLogger(__name__)


def _get_session():
    """Get a database session from the shared app engine."""
    if "db_session" not in g:
        engine = current_app.config["DB_ENGINE"]
        g.db_session = get_session(engine)
    return g.db_session


def image_server_settings():
    """(server url, thumbnail path) from the app config."""
    image_server = current_app.config["APP_CONFIG"].get("image_server", {})
    return image_server.get("url", ""), image_server.get("thumbnail_path", "")


def flash_save_error(task_label, exception):
    """Log the full exception and flash a safe, generic error message."""
    logger.exception("%s failed: %s", task_label, exception)
    flash(f"{task_label} failed. Please try again.", "error")
