# backend/retailcore/__init__.py
import logging

from flask import Flask, jsonify

from .config import Config
from .extensions import db, migrate
from .exceptions import StockCoreError


def create_app(config_object=None, **overrides) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)
    app.config.update(overrides)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.inventory import inventory_bp
    from .routes.sales import sales_bp
    from .routes.returns import returns_bp
    from .routes.replenishments import replenishments_bp
    from .routes.alerts import alerts_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(replenishments_bp)
    app.register_blueprint(alerts_bp)

    # Domain errors raised outside a route's own try block
    @app.errorhandler(StockCoreError)
    def handle_stock_core_error(e):
        return jsonify(e.to_dict()), e.http_status

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
