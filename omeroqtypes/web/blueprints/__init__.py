"""Flask blueprints for the OMERO question authoring frontend."""

from omeroqtypes.web.blueprints.questions import questions_bp


def register_blueprints(app):
    """Register all blueprint modules on the Flask app."""
    app.register_blueprint(questions_bp)
