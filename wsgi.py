"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade
    flask db migrate -m "description"
    flask run-sla-sweep
"""

from docflow import create_app

app = create_app()
