"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-governance
    gunicorn wsgi:app
"""

from governance_engine import create_app

app = create_app()
