"""FastAPI application exposing project and scene grouping endpoints."""

from .app import ProjectService, create_app
from .settings import SceneLinkApiSettings

__all__ = ["create_app", "ProjectService", "SceneLinkApiSettings"]
