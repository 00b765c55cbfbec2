"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi create-manager admin --role admin
    gunicorn wsgi:app
"""

from mealpass import create_app

app = create_app()
