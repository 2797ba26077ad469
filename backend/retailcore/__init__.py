# backend/retailcore/__init__.py
from flask import Flask

from .config import Config, engine_options
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Bound how long a storage call may wait on a lock
    options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    for key, value in engine_options(app.config).items():
        options.setdefault(key, value)
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = options

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.inventory import inventory_bp
    from .routes.ledger import ledger_bp
    from .routes.transfers import transfers_bp
    from .routes.distributions import distributions_bp, investors_bp
    from .routes.payments import ho_payments_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(ledger_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(distributions_bp)
    app.register_blueprint(investors_bp)
    app.register_blueprint(ho_payments_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
