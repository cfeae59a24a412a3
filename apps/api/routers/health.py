"""
Liveness and build information endpoints.

GET /heartbeat - Plain-text liveness probe
GET / - Greeting plus build information
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from apps.api.config import Settings
from apps.api.dependencies import get_app_settings

router = APIRouter()


@router.get("/heartbeat", response_class=PlainTextResponse)
async def heartbeat() -> str:
    return "Ok."


@router.get("/")
async def index(
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> dict[str, Any]:
    """Return a greeting and the running build."""
    return {
        "hello": "world",
        "build_info": {
            "version": settings.app_version,
            "commit": settings.build_commit,
            "build_date": settings.build_date,
        },
    }
