"""Gunicorn configuration for the OMERO question authoring frontend.

Run with: gunicorn -c gunicorn.conf.py "omeroqtypes.web.app:create_app()"
"""

bind = "0.0.0.0:8000"
workers = 1  # Schema upgrades run at app start; keep a single worker for SQLite
timeout = 120
accesslog = "-"
errorlog = "-"
loglevel = "info"
