"""
Flask application factory for the OMERO question authoring frontend.
"""

import logging
import os
import secrets

from dotenv import dotenv_values
from flask import Flask, g
from flask_wtf.csrf import CSRFProtect

from omeroqtypes.config import apply_defaults, configure_logging, get_database_url, load_config
from omeroqtypes.database import get_engine
from omeroqtypes.migrations import install_or_upgrade
from omeroqtypes.web.blueprints import register_blueprints

logger = logging.getLogger(__name__)

csrf = CSRFProtect()


def _load_or_generate_secret_key(env_path):
    """Load SECRET_KEY from .env or generate and persist a new one."""
    if os.path.exists(env_path):
        value = dotenv_values(env_path).get("SECRET_KEY")
        if value:
            return value

    new_key = secrets.token_hex(32)
    try:
        with open(env_path, "a") as f:
            f.write(f"\nSECRET_KEY={new_key}\n")
    except OSError:
        logger.warning("Could not persist SECRET_KEY to %s; using a per-process key", env_path)
    return new_key


def create_app(config=None):
    """
    Create and configure the Flask application.

    Args:
        config: Application config dict (paths, image_server, logging).
                If None, loads from config.yaml.

    Returns:
        Configured Flask app instance
    """
    root_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
    app = Flask(__name__, template_folder=os.path.join(root_dir, "templates"))

    config = load_config() if config is None else apply_defaults(config)
    configure_logging(config)
    app.config["APP_CONFIG"] = config

    secret_key = os.environ.get("SECRET_KEY")
    if not secret_key:
        secret_key = _load_or_generate_secret_key(os.path.join(root_dir, ".env"))
    app.config["SECRET_KEY"] = secret_key

    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    if os.environ.get("FLASK_HTTPS"):
        app.config["SESSION_COOKIE_SECURE"] = True

    # WTF_CSRF_ENABLED can be set to False by test fixtures
    csrf.init_app(app)

    # One engine for the app lifetime; DATABASE_URL wins over the SQLite path
    engine = get_engine(config["paths"]["database_file"], url=get_database_url(config))
    results = install_or_upgrade(engine)
    failed = [qtype for qtype, ok in results.items() if not ok]
    if failed:
        logger.error("Schema upgrade failed for: %s", ", ".join(failed))
    app.config["DB_ENGINE"] = engine
    app.config["UPGRADE_RESULTS"] = results

    @app.teardown_appcontext
    def close_db_session(exception):
        """Close the database session at the end of each request."""
        session = g.pop("db_session", None)
        if session is not None:
            session.close()

    register_blueprints(app)
    return app
