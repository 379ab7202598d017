"""
asgi.py -- Application assembly for the stockdash auth service.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
