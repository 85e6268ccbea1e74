from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Iterable, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError
from fastapi import Depends, Header, HTTPException, Request
from pydantic import BaseModel, ValidationError

from app import db as db_module
from app.config import Settings
from app.models import ErrorCode
from app.services import reclamation, store
from app.services.errors import QuotaExceeded, ServiceError

settings = Settings()
redis_client = redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)


logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


class ErrorResponse(BaseModel):
    code: str
    message: str


def http_error(exc: ServiceError) -> HTTPException:
    """Translate a service error into the API error envelope."""
    detail: dict[str, Any] = ErrorResponse(code=exc.code, message=exc.message).model_dump()
    if isinstance(exc, QuotaExceeded):
        detail["role"] = exc.role
        detail["limit"] = exc.limit
    return HTTPException(status_code=exc.status_code, detail=detail)


async def run_in_session(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Call ``func(db, *args, **kwargs)`` in a worker thread with a fresh session."""

    def _call() -> T:
        with db_module.SessionLocal() as db:
            return func(db, *args, **kwargs)

    try:
        return await asyncio.to_thread(_call)
    except ServiceError as exc:
        raise http_error(exc) from exc


async def run_then_reclaim(
    func: Callable[..., T],
    *args: Any,
    locators: Callable[[T], Iterable[str]] = lambda result: result,
) -> T:
    """``run_in_session`` for store calls that release blobs.

    The call and the hand-off of ``locators(result)`` to reclamation run as
    one shielded task: once the transaction commits, the blobs are reclaimed
    even if the request awaiting it was cancelled.
    """

    async def _run() -> T:
        result = await run_in_session(func, *args)
        reclamation.schedule_reclaim(locators(result))
        return result

    task = reclamation.track(asyncio.ensure_future(_run()))
    return await asyncio.shield(task)


async def parse_body(request: Request, model: type[M]) -> M:
    try:
        payload = await request.json()
    except json.JSONDecodeError as exc:
        err = ErrorResponse(code=ErrorCode.BAD_REQUEST, message="Invalid JSON payload")
        raise HTTPException(status_code=400, detail=err.model_dump()) from exc

    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        err = ErrorResponse(code=ErrorCode.BAD_REQUEST, message="Invalid request body")
        raise HTTPException(status_code=400, detail=err.model_dump()) from exc


async def require_api_headers(
    x_api_key: str = Header(..., alias="X-API-Key"),
    x_api_ver: str | None = Header(None, alias="X-API-Ver"),
    x_user_id: str | None = Header(None, alias="X-User-ID"),
) -> str | None:
    """Check the gateway credentials and return the forwarded identity, if any."""
    if x_api_ver is None:
        err = ErrorResponse(code=ErrorCode.UPGRADE_REQUIRED, message="Missing API version")
        raise HTTPException(status_code=426, detail=err.model_dump())

    if x_api_ver != "v1":
        err = ErrorResponse(code=ErrorCode.UPGRADE_REQUIRED, message="Invalid API version")
        raise HTTPException(status_code=426, detail=err.model_dump())

    if x_api_key != settings.api_key:
        err = ErrorResponse(code=ErrorCode.UNAUTHORIZED, message="Invalid API key")
        raise HTTPException(status_code=401, detail=err.model_dump())

    if x_user_id is not None and not x_user_id.strip():
        return None
    return x_user_id.strip() if x_user_id else None


async def optional_user(
    user_id: str | None = Depends(require_api_headers),
    x_user_name: str | None = Header(None, alias="X-User-Name"),
) -> str | None:
    """Identity of the caller; the user row is created on first access."""
    if user_id is None:
        return None
    await run_in_session(store.get_or_create_user, user_id, x_user_name)
    return user_id


async def require_user(user_id: str | None = Depends(optional_user)) -> str:
    if user_id is None:
        err = ErrorResponse(code=ErrorCode.UNAUTHORIZED, message="Missing user ID")
        raise HTTPException(status_code=401, detail=err.model_dump())
    return user_id


async def rate_limit(
    request: Request, user_id: str | None = Depends(optional_user)
) -> str | None:
    """Throttle anonymous endpoints by client IP via Redis."""
    ip = request.client.host if request.client else ""
    ip_key = f"rate:ip:{ip}"

    try:
        pipe = redis_client.pipeline()
        pipe.incr(ip_key)
        pipe.expire(ip_key, 60)
        ip_count, _ = await pipe.execute()
    except RedisError as exc:
        logger.exception("Redis unavailable for rate limiting: %s", exc)
        err = ErrorResponse(
            code=ErrorCode.SERVICE_UNAVAILABLE, message="Rate limiter unavailable"
        )
        raise HTTPException(status_code=503, detail=err.model_dump()) from exc
    if ip_count > settings.vote_rate_limit_per_min:
        err = ErrorResponse(code=ErrorCode.TOO_MANY_REQUESTS, message="Rate limit exceeded")
        raise HTTPException(status_code=429, detail=err.model_dump())

    return user_id
