from flask import Flask, current_app, has_request_context, jsonify, request
from config import Config
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_babel import Babel

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
babel = Babel()


def create_app(config_class=Config, **overrides):
    """Application factory.

    ``config_class`` is a pydantic settings class (or an instance of one);
    ``overrides`` are applied on top, which is how the tests swap the database.
    """
    app = Flask(__name__)
    settings = config_class() if isinstance(config_class, type) else config_class
    app.config.from_mapping(settings.model_dump())
    app.config.update(overrides)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    def get_locale():
        # CLI commands and the sweep run without a request
        if not has_request_context():
            return None

        # 1. Check for language in cookie first
        lang = request.cookies.get("language")
        if lang and lang in app.config["LANGUAGES"]:
            current_app.logger.debug(
                f"Locale selector: found language in cookie: {lang}")
            return lang

        # 2. Fallback to browser's preferred language
        return request.accept_languages.best_match(app.config["LANGUAGES"])

    babel.init_app(app, locale_selector=get_locale)

    from shelfpass.routes import register_blueprints
    register_blueprints(app)

    from shelfpass.cli import register_commands
    register_commands(app)

    from shelfpass.utils.audit_log import init_audit_logging
    init_audit_logging(app)

    # Registered but not started; the host owns the sweep's lifecycle.
    from shelfpass.utils.scheduler import init_scheduler
    init_scheduler(app)

    from shelfpass import models

    @app.shell_context_processor
    def make_shell_context():
        return {
            "db": db,
            "User": models.User,
            "Book": models.Book,
            "SubscriptionRequest": models.SubscriptionRequest,
        }

    return app


@login_manager.user_loader
def load_user(user_id):
    from shelfpass.models import User
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    from shelfpass.utils.messages import AUTH_LOGIN_REQUIRED
    return jsonify({'error': str(AUTH_LOGIN_REQUIRED)}), 401
