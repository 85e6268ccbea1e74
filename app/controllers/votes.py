from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, StrictBool

from app.dependencies import ErrorResponse, parse_body, rate_limit, run_in_session
from app.services import ledger

router = APIRouter()


class VoteIn(BaseModel):
    image_id: int
    liked: StrictBool


class VoteOut(BaseModel):
    id: int
    image_id: int
    project_id: int
    liked: bool
    created_at: datetime | None = None


@router.post(
    "/projects/{project_id}/vote",
    status_code=201,
    response_model=VoteOut,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def vote(
    project_id: int, request: Request, _user: str | None = Depends(rate_limit)
):
    """Anonymous like/dislike; the viewer tracks what it already voted on."""
    body = await parse_body(request, VoteIn)
    recorded = await run_in_session(
        ledger.record_vote, project_id, body.image_id, body.liked
    )
    return VoteOut.model_validate(recorded, from_attributes=True)
