"""API routers package."""

from apps.api.routers import health, images

__all__ = ["health", "images"]
