"""
asgi.py -- ASGI entry point for the session bridge.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so deployments point at one stable module path
while api/ stays importable on its own in tests.
"""

from api.main import app

__all__ = ["app"]
