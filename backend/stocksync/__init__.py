# backend/stocksync/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(overrides: dict | None = None) -> Flask:
    """
    Application factory.

    `overrides` is applied on top of Config before extensions initialize
    (tests pass an in-memory database here). The special key REMOTE_LEDGER
    injects a remote ledger instance instead of building one from config.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)

    remote = None
    if overrides:
        overrides = dict(overrides)
        remote = overrides.pop("REMOTE_LEDGER", None)
        app.config.update(overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.coordinator import init_coordinator
    init_coordinator(app, remote)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.products import products_bp, categories_bp, settings_bp
    from .routes.inventory import inventory_bp
    from .routes.orders import orders_bp
    from .routes.sales import sales_bp
    from .routes.imports import imports_bp
    from .routes.backup import backup_bp
    from .routes.sync import sync_bp
    from .routes.reports import reports_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(categories_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(imports_bp)
    app.register_blueprint(backup_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(reports_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
