"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade
    flask seed-phases
    flask apply-phase 6
"""

from thesis_flow import create_app

app = create_app()
