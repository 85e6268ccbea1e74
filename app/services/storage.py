import logging
import os
from asyncio import Lock
from contextlib import AbstractAsyncContextManager
from typing import AsyncIterator
from urllib.parse import urlparse
from uuid import uuid4

import aioboto3
from aiobotocore.client import AioBaseClient
from botocore.exceptions import BotoCoreError, ClientError

from app.config import Settings


logger = logging.getLogger("s3")  # Logger for S3 interactions


BUCKET = os.getenv("S3_BUCKET", "picvote")
_settings: Settings | None = None

_client_ctx: AbstractAsyncContextManager[AioBaseClient] | None = None
_client: AioBaseClient | None = None
_client_lock: Lock = Lock()

CONTENT_TYPE_EXT = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


def _setting(env: str, attr: str, default: str | None = None) -> str | None:
    return os.getenv(env, getattr(_settings, attr) if _settings is not None else default)


def get_bucket() -> str:
    return _setting("S3_BUCKET", "s3_bucket", BUCKET) or BUCKET


async def _make_client() -> AioBaseClient:
    session = aioboto3.Session()
    client_ctx = session.client(
        "s3",
        endpoint_url=_setting("S3_ENDPOINT", "s3_endpoint"),
        region_name=_setting("S3_REGION", "s3_region", "us-east-1"),
        aws_access_key_id=_setting("S3_ACCESS_KEY", "s3_access_key"),
        aws_secret_access_key=_setting("S3_SECRET_KEY", "s3_secret_key"),
    )
    try:
        client = await client_ctx.__aenter__()
    except Exception as exc:
        try:
            await client_ctx.__aexit__(None, None, None)
        except Exception:  # pragma: no cover - best effort cleanup
            logger.exception("Failed to close S3 client after failed entry")
        logger.exception("Failed to create S3 client: %s", exc)
        raise
    global _client_ctx
    _client_ctx = client_ctx
    return client


async def get_client() -> AioBaseClient:
    """Return a cached aioboto3 client, creating it if needed."""
    global _client
    if _client is not None:
        return _client

    async with _client_lock:
        if _client is None:
            _client = await _make_client()
        return _client


async def close_client() -> None:
    """Close the cached S3 client if it exists."""
    global _client, _client_ctx
    if _client_ctx is not None:
        try:
            await _client_ctx.__aexit__(None, None, None)
        except Exception:  # pragma: no cover - best effort cleanup
            logger.exception("Failed to close S3 client")
    _client = None
    _client_ctx = None


async def init_storage(cfg: Settings) -> None:
    """Store settings and reinitialize the client."""
    global _settings
    _settings = cfg
    await close_client()


def new_object_key(project_id: int, content_type: str) -> str:
    """Return a fresh ``<project_id>/<random>.<ext>`` key."""
    ext = CONTENT_TYPE_EXT.get(content_type, "bin")
    return f"{project_id}/{uuid4().hex[:16]}.{ext}"


def get_public_url(key: str) -> str:
    """Return a public URL for the object."""
    bucket = get_bucket()
    base = _setting("S3_PUBLIC_URL", "s3_public_url")
    if base:
        return f"{base.rstrip('/')}/{key}"

    endpoint = _setting("S3_ENDPOINT", "s3_endpoint")
    if endpoint:
        return f"{endpoint.rstrip('/')}/{bucket}/{key}"

    region = _setting("S3_REGION", "s3_region", "us-east-1")
    return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"


def key_for_locator(locator: str) -> str:
    """Map an image locator (public URL or bare key) back to its object key."""
    if "://" not in locator:
        return locator.lstrip("/")

    bucket = get_bucket()
    prefixes = []
    base = _setting("S3_PUBLIC_URL", "s3_public_url")
    if base:
        prefixes.append(base.rstrip("/") + "/")
    endpoint = _setting("S3_ENDPOINT", "s3_endpoint")
    if endpoint:
        prefixes.append(f"{endpoint.rstrip('/')}/{bucket}/")
    for prefix in prefixes:
        if locator.startswith(prefix):
            return locator[len(prefix):]

    path = urlparse(locator).path.lstrip("/")
    host = urlparse(locator).netloc
    if not host.startswith(f"{bucket}.") and path.startswith(f"{bucket}/"):
        # path-style URL
        return path[len(bucket) + 1:]
    return path


async def presign_upload(key: str, content_type: str, expires_in: int) -> str:
    """Return a presigned PUT URL for ``key``."""
    client = await get_client()
    return await client.generate_presigned_url(
        "put_object",
        Params={"Bucket": get_bucket(), "Key": key, "ContentType": content_type},
        ExpiresIn=expires_in,
    )


async def delete_object(locator: str) -> None:
    """Delete the object behind ``locator``. Deleting a missing key succeeds."""
    key = key_for_locator(locator)
    client = await get_client()
    try:
        await client.delete_object(Bucket=get_bucket(), Key=key)
    except (BotoCoreError, ClientError) as exc:
        logger.warning("S3 delete failed for %s: %s", key, exc)
        raise


async def iter_keys(prefix: str = "") -> AsyncIterator[str]:
    """Yield every object key in the bucket."""
    client = await get_client()
    paginator = client.get_paginator("list_objects_v2")
    async for page in paginator.paginate(Bucket=get_bucket(), Prefix=prefix):
        for obj in page.get("Contents", []):
            yield obj["Key"]
