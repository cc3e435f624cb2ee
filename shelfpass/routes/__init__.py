from shelfpass.routes.reader import bp as reader_bp
from shelfpass.routes.admin import bp as admin_bp


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    app.register_blueprint(reader_bp)
    app.register_blueprint(admin_bp)
