# backend/supplychain/__init__.py
from __future__ import annotations

from typing import Any, Mapping

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(test_config: Mapping[str, Any] | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before db.init_app reads the database URI
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401
    # Registers the after-commit notification listeners
    from . import events  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.organizations import organizations_bp
    from .routes.orders import orders_bp
    from .routes.documents import documents_bp
    from .routes.inventory import inventory_bp
    from .routes.transfers import transfers_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(organizations_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(documents_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(transfers_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
