"""
asgi.py -- Process-level application for LightAuth.

Settings come from the environment and .env (see core/config.py).

Run with:  uvicorn asgi:app --reload
"""

from api.main import create_app

app = create_app()
