"""
asgi.py -- ASGI entry point for the marketplace API.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Kept separate from api/main.py so process managers (uvicorn, gunicorn) have
one stable import path while api/main.py stays free to grow.
"""

from api.main import app

__all__ = ["app"]
