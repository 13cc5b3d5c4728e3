"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi seed-workflow
"""

from welfare_workflow import create_app

app = create_app()
