"""
WSGI entry point, also used by Flask-Migrate / Alembic.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi sweep-promotions --repair
"""

from portal import create_app

app = create_app()
