"""Image ingestion and retrieval."""

from apps.api.images.service import ImageService

__all__ = ["ImageService"]
