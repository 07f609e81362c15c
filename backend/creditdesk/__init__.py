# backend/creditdesk/__init__.py
from flask import Flask, jsonify

from .config import Config
from .errors import CreditDeskError
from .extensions import db, migrate


def create_app(config_object=Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.businesses import businesses_bp
    from .routes.customers import customers_bp
    from .routes.approvals import approvals_bp

    app.register_blueprint(businesses_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(approvals_bp)

    @app.errorhandler(CreditDeskError)
    def handle_service_error(exc: CreditDeskError):
        return jsonify({"error": str(exc)}), exc.status_code

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
