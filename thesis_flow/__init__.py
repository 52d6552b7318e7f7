"""
Thesis Flow
Flask Application Factory.

Usage:
    from thesis_flow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError

from thesis_flow.config import config
from thesis_flow.core.exceptions import ConflictError, NotFoundError, ValidationError
from thesis_flow.middleware.logging_config import configure_logging
from thesis_flow.models import db
from thesis_flow.services.phase_scheduler import PhaseScheduler
from thesis_flow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

migrate = Migrate()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)

    # ── Import all models so Alembic can detect them ─────────────────────
    from thesis_flow.models import phase as _phase_models    # noqa: F401
    from thesis_flow.models import thesis as _thesis_models  # noqa: F401

    with app.app_context():
        try:
            db.create_all()
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from thesis_flow.blueprints.department_bp import department_bp
    from thesis_flow.blueprints.phase_bp import phase_bp
    from thesis_flow.blueprints.review_bp import review_bp

    app.register_blueprint(department_bp)
    app.register_blueprint(phase_bp)
    app.register_blueprint(review_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(NotFoundError)
    def handle_not_found(e):
        return api_error(E.NOT_FOUND, str(e))

    @app.errorhandler(ValidationError)
    def handle_validation(e):
        return api_error(E.VALIDATION_RULE, str(e), details=e.details)

    @app.errorhandler(ConflictError)
    def handle_conflict(e):
        return api_error(E.CONFLICT_DUPLICATE, str(e))

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(e):
        logger.error("Database error: %s", e, exc_info=True)
        return api_error(E.DATABASE, "Database error")

    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Thesis Flow"}

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-phases")
    def seed_phases_cmd():
        """Create the ten default phases that are missing."""
        from thesis_flow.services.phase_service import seed_phases
        count = seed_phases()
        logger.info("Seeded %s new phases.", count)

    @app.cli.command("apply-phase")
    @click.argument("phase_id", type=int)
    def apply_phase_cmd(phase_id):
        """Re-evaluate the transitions of one phase."""
        from thesis_flow.services.transition_engine import run_phase_transition
        result = run_phase_transition(phase_id)
        click.echo(f"phase {phase_id}: {result['status']}, advanced {result['advanced']}")

    # ── Phase scheduler ──────────────────────────────────────────────────
    scheduler = PhaseScheduler()
    scheduler.init_app(app)
    if app.config.get("PHASE_SCHEDULER_AUTOSTART"):
        try:
            scheduler.start()
        except Exception as e:
            app.logger.error("Phase scheduler failed to start: %s", e)

    return app
