"""
WSGI / Flask CLI entry point.

Usage:
    flask --app wsgi db upgrade          # apply migrations/versions
    flask --app wsgi db migrate -m "description"
"""

from diligence import create_app

app = create_app()
