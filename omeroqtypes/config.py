"""
Configuration loading for the OMERO question types.

Settings come from ``config.yaml`` with environment overrides on top
(``DATABASE_PATH``, ``OMERO_SERVER_URL``).  ``DATABASE_URL`` is read
directly by ``get_database_url`` so PostgreSQL deployments never need a
file path.
"""

import copy
import logging
import os

import yaml

DEFAULT_CONFIG = {
    "paths": {"database_file": "omero_questions.db"},
    "image_server": {
        "url": "/omero-image-repository",
        "thumbnail_path": "/webgateway/render_shape_thumbnail",
    },
    "logging": {"level": "INFO"},
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _merge(base, overrides):
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def apply_defaults(config=None):
    """Return a copy of ``config`` with missing keys filled from DEFAULT_CONFIG."""
    return _merge(copy.deepcopy(DEFAULT_CONFIG), config or {})


def load_config(config_path="config.yaml"):
    """
    Load config.yaml (if present) and apply defaults and env overrides.

    Args:
        config_path: Path to the YAML config file

    Returns:
        Config dict
    """
    loaded = {}
    if os.path.exists(config_path):
        with open(config_path) as f:
            loaded = yaml.safe_load(f) or {}

    config = apply_defaults(loaded)

    if os.environ.get("DATABASE_PATH"):
        config["paths"]["database_file"] = os.environ["DATABASE_PATH"]
    if os.environ.get("OMERO_SERVER_URL"):
        config["image_server"]["url"] = os.environ["OMERO_SERVER_URL"]
    return config


def save_config(config, config_path="config.yaml"):
    """
    Write the config dict back to config.yaml.

    Args:
        config: Application config dict to persist
        config_path: Path to config file (default: config.yaml)
    """
    with open(config_path, "w") as f:
        yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)


def get_database_url(config):
    """SQLAlchemy URL from DATABASE_URL, or None to use the configured SQLite file."""
    return os.environ.get("DATABASE_URL") or None


def configure_logging(config):
    """Set the root log level from ``logging.level`` in the config."""
    level_name = str(config.get("logging", {}).get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level)
    return level
