# backend/stockledger/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_object=Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.sales import sales_bp
    from .routes.stock import stock_bp
    from .routes.demands import demands_bp

    app.register_blueprint(sales_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(demands_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
