"""
asgi.py -- ASGI entry point for HubAuth.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
