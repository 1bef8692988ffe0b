# backend/oudledger/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    """
    Application factory.

    test_config overrides Config (tests pass an in-memory SQLite URI); it is
    applied before extensions bind so they see the final settings.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Conversion history lives for the life of the process, shared by all requests
    from .services.conversion_engine import ConversionHistory
    from .services.conversion_service import HISTORY_EXTENSION_KEY
    app.extensions[HISTORY_EXTENSION_KEY] = ConversionHistory(limit=app.config["CONVERSION_HISTORY_LIMIT"])

    from .routes.system import system_bp
    from .routes.gift_cards import gift_cards_bp
    from .routes.reports import reports_bp
    from .routes.conversions import conversions_bp

    for blueprint in (system_bp, gift_cards_bp, reports_bp, conversions_bp):
        app.register_blueprint(blueprint)

    allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS", []))

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "X-User-Id, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,DELETE,OPTIONS"
        return response

    from .cli import register_commands
    register_commands(app)

    return app
