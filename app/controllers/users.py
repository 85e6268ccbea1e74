from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from app.controllers.projects import ProjectOut
from app.dependencies import (
    ErrorResponse,
    parse_body,
    require_user,
    run_in_session,
    run_then_reclaim,
)
from app.services import quota, store

router = APIRouter()


class LimitsOut(BaseModel):
    max_projects: int | None
    max_images_per_project: int | None


class UsageOut(BaseModel):
    role: str
    project_count: int
    images_per_project: dict[str, int]
    limits: LimitsOut


class UserOut(BaseModel):
    id: str
    username: str | None = None
    role: str
    created_at: datetime | None = None
    project_count: int
    projects: list[ProjectOut]


class RoleIn(BaseModel):
    role: str


class RoleOut(BaseModel):
    status: str = "updated"
    id: str
    role: str


class UserDeletedOut(BaseModel):
    status: str = "deleted"
    images_reclaimed: int


@router.get(
    "/user/usage",
    response_model=UsageOut,
    responses={401: {"model": ErrorResponse}},
)
async def get_usage(user_id: str = Depends(require_user)):
    return await run_in_session(quota.usage_summary, user_id)


@router.get(
    "/admin/users",
    response_model=list[UserOut],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def list_users(user_id: str = Depends(require_user)):
    return await run_in_session(store.list_users, user_id)


@router.patch(
    "/admin/users/{target_id}",
    response_model=RoleOut,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def update_role(
    target_id: str, request: Request, user_id: str = Depends(require_user)
):
    body = await parse_body(request, RoleIn)
    user = await run_in_session(store.update_role, user_id, target_id, body.role)
    return RoleOut(id=user.id, role=user.role)


@router.delete(
    "/users/{target_id}",
    response_model=UserDeletedOut,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def delete_user(target_id: str, user_id: str = Depends(require_user)):
    """Delete a user (self or, for admins, anyone but another admin)."""
    locators = await run_then_reclaim(store.delete_user, user_id, target_id)
    return UserDeletedOut(images_reclaimed=len(locators))
