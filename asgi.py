"""
asgi.py -- ASGI entry point for the school admin backend.

Run with:  uvicorn asgi:app --reload

api/main.py owns the whole application; this module exists so process
managers have a stable import path that does not change if the API package
is reorganized.
"""

from api.main import app

__all__ = ["app"]
