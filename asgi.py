"""
asgi.py -- Application assembly for Auth Starter.

This is the ONLY file that imports from both api/ and web/. It joins the two
layers into a single ASGI app: api/main.py knows nothing about web/, and
web/routes.py knows nothing about api/.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app
from web.routes import router as web_router

app.include_router(web_router, tags=["Web UI"])
