"""
Image API endpoints.

Endpoints:
- POST /images/upload: Store the first multipart field as an image
- GET /images/{name}: Serve a stored image
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from apps.api.config import Settings
from apps.api.dependencies import get_app_settings, get_image_service, require_uploader_key
from apps.api.images.service import ImageService
from packages.shared.exceptions import NotFoundError, PayloadTooLargeError, ValidationError

router = APIRouter()


async def read_first_field(request: Request, limit_bytes: int) -> bytes:
    """
    Read the first field of a multipart body into memory.

    Raises:
        NotFoundError: Body has no fields (or is not a form)
        ValidationError: Body is not valid multipart
        PayloadTooLargeError: Field is larger than ``limit_bytes``
    """
    try:
        async with request.form() as form:
            fields = form.multi_items()
            if not fields:
                raise NotFoundError("multipart field")

            _, value = fields[0]
            if isinstance(value, UploadFile):
                data = await value.read(limit_bytes + 1)
            else:
                data = value.encode()
    except MultiPartException as e:
        raise ValidationError(f"malformed multipart body: {e.message}") from e
    except StarletteHTTPException as e:
        # Starlette reports parser failures as a 400 HTTPException
        raise ValidationError(f"malformed multipart body: {e.detail}") from e

    if len(data) > limit_bytes:
        raise PayloadTooLargeError(limit_bytes)

    return data


# =============================================================================
# POST /images/upload
# =============================================================================


@router.post(
    "/upload",
    dependencies=[Depends(require_uploader_key)],
    summary="Upload an image",
    description="Stores the first multipart field under a random name and returns its URL.",
)
async def upload_image(
    request: Request,
    settings: Annotated[Settings, Depends(get_app_settings)],
    service: Annotated[ImageService, Depends(get_image_service)],
) -> dict[str, str]:
    data = await read_first_field(request, settings.max_upload_size_bytes)
    url = await service.ingest(data)
    return {"filename": url}


# =============================================================================
# GET /images/{name}
# =============================================================================


@router.get("/{name:path}", summary="Fetch an image")
async def get_image(
    name: str,
    service: Annotated[ImageService, Depends(get_image_service)],
) -> Response:
    image = await service.fetch(name)
    return Response(content=image.data, media_type=image.content_type)
