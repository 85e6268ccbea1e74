from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from app.dependencies import (
    ErrorResponse,
    optional_user,
    parse_body,
    rate_limit,
    require_user,
    run_in_session,
    run_then_reclaim,
)
from app.services import store

router = APIRouter()


class ProjectIn(BaseModel):
    name: str


class VoteStatsOut(BaseModel):
    total: int
    likes: int
    dislikes: int


class ImageStatsOut(BaseModel):
    id: int
    url: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    stats: VoteStatsOut


class ProjectOut(BaseModel):
    id: int
    name: str
    user_id: str
    created_at: datetime | None = None
    view_count: int
    total_images: int
    total_votes: int
    images: list[ImageStatsOut]


class PublicImageOut(BaseModel):
    id: int
    url: str


class PublicProjectOut(BaseModel):
    id: int
    name: str
    total_images: int
    images: list[PublicImageOut]


class ViewOut(BaseModel):
    view_count: int


class ResetOut(BaseModel):
    deleted: int


class DeletedOut(BaseModel):
    status: str = "deleted"
    images_reclaimed: int


def _project_out(project) -> ProjectOut:
    return ProjectOut(
        id=project.id,
        name=project.name,
        user_id=project.user_id,
        created_at=project.created_at,
        view_count=project.view_count,
        total_images=0,
        total_votes=0,
        images=[],
    )


@router.post(
    "/projects",
    status_code=201,
    response_model=ProjectOut,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        402: {"model": ErrorResponse},
    },
)
async def create_project(request: Request, user_id: str = Depends(require_user)):
    body = await parse_body(request, ProjectIn)
    project = await run_in_session(store.create_project, user_id, body.name)
    return _project_out(project)


@router.get(
    "/projects",
    response_model=list[ProjectOut],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def list_projects(
    owner: str | None = Query(None, alias="user"),
    user_id: str = Depends(require_user),
):
    return await run_in_session(store.list_projects, user_id, owner)


@router.get(
    "/projects/{project_id}",
    response_model=ProjectOut | PublicProjectOut,
    responses={404: {"model": ErrorResponse}},
)
async def get_project(project_id: int, user_id: str | None = Depends(optional_user)):
    """Owners and admins get vote stats, anyone else only the images."""
    return await run_in_session(store.get_project_view, user_id, project_id)


@router.put(
    "/projects/{project_id}",
    response_model=ProjectOut,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def rename_project(
    project_id: int, request: Request, user_id: str = Depends(require_user)
):
    body = await parse_body(request, ProjectIn)
    await run_in_session(store.rename_project, user_id, project_id, body.name)
    return await run_in_session(store.get_project_view, user_id, project_id)


@router.delete(
    "/projects/{project_id}",
    response_model=DeletedOut,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def delete_project(project_id: int, user_id: str = Depends(require_user)):
    locators = await run_then_reclaim(store.delete_project, user_id, project_id)
    return DeletedOut(images_reclaimed=len(locators))


@router.post(
    "/projects/{project_id}/view",
    response_model=ViewOut,
    responses={404: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
async def record_view(project_id: int, user_id: str | None = Depends(rate_limit)):
    count = await run_in_session(store.record_view, user_id, project_id)
    return ViewOut(view_count=count)


@router.post(
    "/projects/{project_id}/reset",
    response_model=ResetOut,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def reset_votes(project_id: int, user_id: str = Depends(require_user)):
    deleted = await run_in_session(store.reset_votes, user_id, project_id)
    return ResetOut(deleted=deleted)
