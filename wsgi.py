"""
WSGI / Flask CLI entry point.

Usage:
    flask --app wsgi generate-report 42
"""

from cuj_eval import create_app

app = create_app()
