from __future__ import annotations

from datetime import datetime

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from app.config import Settings
from app.dependencies import (
    ErrorResponse,
    parse_body,
    require_user,
    run_in_session,
    run_then_reclaim,
)
from app.models import ErrorCode
from app.services import storage, store

settings = Settings()

router = APIRouter()


class ImageIn(BaseModel):
    image_url: str


class ImageOut(BaseModel):
    id: int
    project_id: int
    url: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ImageDeletedOut(BaseModel):
    status: str = "deleted"


class UploadIn(BaseModel):
    project_id: int
    filename: str | None = None
    content_type: str
    size: int


class UploadOut(BaseModel):
    upload_url: str
    key: str
    image_url: str
    expires_in: int


def _image_out(image) -> ImageOut:
    return ImageOut.model_validate(image, from_attributes=True)


@router.get(
    "/projects/{project_id}/images",
    response_model=list[ImageOut],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def list_images(project_id: int, user_id: str = Depends(require_user)):
    images = await run_in_session(store.list_images, user_id, project_id)
    return [_image_out(img) for img in images]


@router.post(
    "/projects/{project_id}/images",
    status_code=201,
    response_model=ImageOut,
    responses={
        400: {"model": ErrorResponse},
        402: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def create_image(
    project_id: int, request: Request, user_id: str = Depends(require_user)
):
    body = await parse_body(request, ImageIn)
    image = await run_in_session(store.create_image, user_id, project_id, body.image_url)
    return _image_out(image)


@router.put(
    "/projects/{project_id}/images/{image_id}",
    response_model=ImageOut,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def replace_image(
    project_id: int,
    image_id: int,
    request: Request,
    user_id: str = Depends(require_user),
):
    body = await parse_body(request, ImageIn)
    image, _old_url = await run_then_reclaim(
        store.replace_image,
        user_id,
        project_id,
        image_id,
        body.image_url,
        locators=lambda result: [result[1]] if result[1] else [],
    )
    return _image_out(image)


@router.delete(
    "/projects/{project_id}/images/{image_id}",
    response_model=ImageDeletedOut,
    responses={404: {"model": ErrorResponse}},
)
async def delete_image(
    project_id: int, image_id: int, user_id: str = Depends(require_user)
):
    await run_then_reclaim(
        store.delete_image,
        user_id,
        project_id,
        image_id,
        locators=lambda locator: [locator],
    )
    return ImageDeletedOut()


@router.post(
    "/uploads",
    response_model=UploadOut,
    responses={
        400: {"model": ErrorResponse},
        402: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def create_upload(request: Request, user_id: str = Depends(require_user)):
    """Presign a direct upload; the image row is created afterwards by the client."""
    body = await parse_body(request, UploadIn)
    if body.content_type not in settings.upload_allowed_types:
        err = ErrorResponse(code=ErrorCode.BAD_REQUEST, message="Unsupported image type")
        raise HTTPException(status_code=400, detail=err.model_dump())
    if body.size <= 0 or body.size > settings.upload_max_bytes:
        err = ErrorResponse(code=ErrorCode.BAD_REQUEST, message="Invalid image size")
        raise HTTPException(status_code=400, detail=err.model_dump())

    await run_in_session(store.ensure_can_add_image, user_id, body.project_id)

    key = storage.new_object_key(body.project_id, body.content_type)
    try:
        upload_url = await storage.presign_upload(
            key, body.content_type, settings.upload_url_ttl_s
        )
    except (BotoCoreError, ClientError) as exc:
        err = ErrorResponse(
            code=ErrorCode.STORAGE_UNAVAILABLE, message="Upload is not available"
        )
        raise HTTPException(status_code=503, detail=err.model_dump()) from exc
    return UploadOut(
        upload_url=upload_url,
        key=key,
        image_url=storage.get_public_url(key),
        expires_in=settings.upload_url_ttl_s,
    )
