# backend/grocer/__init__.py
from flask import Flask, jsonify

from .config import Config
from .errors import LedgerError
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.inventory import inventory_bp
    from .routes.registers import registers_bp
    from .routes.carts import carts_bp
    from .routes.discounts import discounts_bp
    from .routes.ledger import ledger_bp

    app.register_blueprint(inventory_bp)
    app.register_blueprint(registers_bp)
    app.register_blueprint(carts_bp)
    app.register_blueprint(discounts_bp)
    app.register_blueprint(ledger_bp)

    @app.errorhandler(LedgerError)
    def handle_ledger_error(exc: LedgerError):
        return jsonify(exc.to_dict()), exc.http_status

    @app.get("/api/health")
    def health():
        return jsonify({"status": "ok"})

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
