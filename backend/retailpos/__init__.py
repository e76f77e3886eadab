# backend/retailpos/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate



def create_app(test_config=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Bounded wait for the SQLite write lock (busy timeout)
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
        connect_args = dict(options.get("connect_args") or {})
        connect_args.setdefault("timeout", app.config["TX_ACQUIRE_TIMEOUT_SECONDS"])
        options["connect_args"] = connect_args
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = options

    # Services log through current_app.logger
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.sales import sales_bp
    from .routes.stock import stock_bp

    app.register_blueprint(sales_bp)
    app.register_blueprint(stock_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
