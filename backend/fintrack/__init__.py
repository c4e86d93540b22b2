# backend/fintrack/__init__.py
from flask import Flask, request
from flask.json.provider import DefaultJSONProvider

from .config import Config
from .encoding import json_default
from .extensions import db


class RecordJSONProvider(DefaultJSONProvider):
    """Cached records carry permission sets and enums."""
    default = staticmethod(json_default)


def create_app(config_overrides: dict | None = None, transport=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    app.json = RecordJSONProvider(app)

    # Initialize extensions
    db.init_app(app)

    # Import models so the local table is registered before create_all
    from . import models  # noqa: F401

    with app.app_context():
        db.create_all()

    from .workspace import EXTENSION_KEY, Workspace
    app.extensions[EXTENSION_KEY] = Workspace(app, transport=transport)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.data import data_bp
    from .routes.budgets import budgets_bp
    from .routes.admin import admin_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(data_bp)
    app.register_blueprint(budgets_bp)
    app.register_blueprint(admin_bp)

    @app.before_request
    def start_workspace():
        app.extensions[EXTENSION_KEY].ensure_started()

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
