"""
Routes package initialization.
Registers the blueprint modules of the importer.
"""

from .import_routes import import_bp


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    app.register_blueprint(import_bp)
