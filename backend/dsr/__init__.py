# backend/dsr/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate



def create_app(config_overrides=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Family ownership must be one-to-one before any run can be trusted
    from .services.source_adapters import default_adapters, validate_source_registry
    validate_source_registry(default_adapters())

    # Register blueprints
    from .routes.system import system_bp
    from .routes.reports import reports_bp
    from .routes.records import records_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(records_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    # Unattended cutoff poller (off unless DSR_SCHEDULER_ENABLED)
    from .services.scheduler_service import init_scheduler
    init_scheduler(app)

    return app
