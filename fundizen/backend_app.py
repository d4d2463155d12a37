"""Compatibility wrapper.

Keeps the short `fundizen.backend_app:app` entrypoint working for uvicorn
while the real FastAPI application lives inside `fundizen.backend`.
"""

from .backend.app import app, create_app
from .backend.config import settings
from .core.api_client import FundizenAPIClient

__all__ = ["app", "create_app", "settings", "FundizenAPIClient"]
