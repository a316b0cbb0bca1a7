"""
asgi.py -- ASGI entry point for the Meetup backend.

Run with:  uvicorn asgi:app --workers 4
           python main.py serve
"""

from api.main import app

__all__ = ["app"]
