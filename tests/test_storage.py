from __future__ import annotations
import logging
import re

import boto3
import pytest
import pytest_asyncio
from botocore.exceptions import BotoCoreError, ClientError

from moto import mock_aws

from app.services import storage
from app.config import Settings
from app.services.storage import get_client, get_public_url, key_for_locator


ORIGINAL_MAKE_CLIENT = storage._make_client


class _AsyncPaginator:
    def __init__(self, paginator):
        self._paginator = paginator

    async def _pages(self, **kwargs):
        for page in self._paginator.paginate(**kwargs):
            yield page

    def paginate(self, **kwargs):
        return self._pages(**kwargs)


class _AsyncWrapper:
    def __init__(self, client: boto3.client):
        self._client = client
        self.meta = client.meta

    async def delete_object(self, *args, **kwargs):
        return self._client.delete_object(*args, **kwargs)

    async def generate_presigned_url(self, *args, **kwargs):
        return self._client.generate_presigned_url(*args, **kwargs)

    def get_paginator(self, name):
        return _AsyncPaginator(self._client.get_paginator(name))

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._client.close()


@pytest_asyncio.fixture(autouse=True)
async def use_sync_client(monkeypatch):
    async def _make():
        ctx = _AsyncWrapper(boto3.client("s3", region_name="us-east-1"))
        storage._client_ctx = ctx
        return await ctx.__aenter__()

    monkeypatch.setattr(storage, "_make_client", _make)
    storage._client = None
    storage._client_ctx = None
    yield
    await storage.close_client()


@pytest.fixture
def s3_env(monkeypatch):
    monkeypatch.setenv("S3_BUCKET", "testbucket")
    monkeypatch.setenv("S3_REGION", "us-east-1")
    monkeypatch.delenv("S3_ENDPOINT", raising=False)
    monkeypatch.setenv("S3_PUBLIC_URL", "http://localhost:9000")


@pytest.mark.asyncio
async def test_lazy_client_initialization():
    with mock_aws():
        await storage.init_storage(Settings(_env_file=None))
        assert storage._client is None
        first = await get_client()
        assert first is storage._client
        again = await get_client()
        assert again is first


def test_new_object_key():
    key = storage.new_object_key(42, "image/png")
    assert re.fullmatch(r"42/[0-9a-f]{16}\.png", key)
    assert storage.new_object_key(42, "image/png") != key
    assert storage.new_object_key(1, "application/x-unknown").endswith(".bin")


def test_public_url_variants(monkeypatch):
    monkeypatch.setenv("S3_BUCKET", "pics")
    monkeypatch.setenv("S3_REGION", "eu-west-1")
    monkeypatch.delenv("S3_PUBLIC_URL", raising=False)
    monkeypatch.delenv("S3_ENDPOINT", raising=False)
    assert get_public_url("1/a.jpg") == "https://pics.s3.eu-west-1.amazonaws.com/1/a.jpg"

    monkeypatch.setenv("S3_ENDPOINT", "http://minio:9000/")
    assert get_public_url("1/a.jpg") == "http://minio:9000/pics/1/a.jpg"

    monkeypatch.setenv("S3_PUBLIC_URL", "https://cdn.test/")
    assert get_public_url("1/a.jpg") == "https://cdn.test/1/a.jpg"


def test_key_for_locator(monkeypatch):
    monkeypatch.setenv("S3_BUCKET", "pics")
    monkeypatch.setenv("S3_PUBLIC_URL", "https://cdn.test")
    monkeypatch.setenv("S3_ENDPOINT", "http://minio:9000")

    assert key_for_locator("1/a.jpg") == "1/a.jpg"
    assert key_for_locator("/1/a.jpg") == "1/a.jpg"
    assert key_for_locator("https://cdn.test/1/a.jpg") == "1/a.jpg"
    assert key_for_locator("http://minio:9000/pics/1/a.jpg") == "1/a.jpg"
    assert key_for_locator("https://pics.s3.us-east-1.amazonaws.com/1/a.jpg") == "1/a.jpg"
    assert key_for_locator("https://s3.amazonaws.com/pics/1/a.jpg") == "1/a.jpg"


@pytest.mark.asyncio
async def test_delete_and_list_objects(s3_env):
    await storage.init_storage(Settings(_env_file=None))

    with mock_aws():
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket="testbucket")
        for key in ("1/a.jpg", "1/b.jpg", "2/c.jpg"):
            s3.put_object(Bucket="testbucket", Key=key, Body=b"img")

        assert sorted([k async for k in storage.iter_keys()]) == [
            "1/a.jpg",
            "1/b.jpg",
            "2/c.jpg",
        ]
        assert [k async for k in storage.iter_keys("2/")] == ["2/c.jpg"]

        await storage.delete_object(get_public_url("1/a.jpg"))
        await storage.delete_object("2/c.jpg")
        # deleting a missing key is not an error
        await storage.delete_object("2/c.jpg")

        remaining = s3.list_objects_v2(Bucket="testbucket")["Contents"]
        assert [obj["Key"] for obj in remaining] == ["1/b.jpg"]


@pytest.mark.asyncio
async def test_delete_failure_is_logged(s3_env, caplog):
    await storage.init_storage(Settings(_env_file=None))

    with mock_aws():
        # bucket intentionally missing
        with caplog.at_level(logging.WARNING, logger="s3"):
            with pytest.raises(ClientError):
                await storage.delete_object("1/a.jpg")
    assert "S3 delete failed for 1/a.jpg" in caplog.text


@pytest.mark.asyncio
async def test_presign_upload(s3_env):
    await storage.init_storage(Settings(_env_file=None))

    with mock_aws():
        url = await storage.presign_upload("7/abc.png", "image/png", 600)
    assert "testbucket" in url
    assert "7/abc.png" in url
    assert "Expires=" in url or "X-Amz-Expires=600" in url


@pytest.mark.asyncio
async def test_make_client_logs_error(monkeypatch, caplog):
    class FailingCtx:
        async def __aenter__(self):
            raise BotoCoreError()

        async def __aexit__(self, exc_type, exc, tb):
            return False

    class FakeSession:
        def client(self, *args, **kwargs):
            return FailingCtx()

    monkeypatch.setattr(storage, "_make_client", ORIGINAL_MAKE_CLIENT)
    monkeypatch.setattr(storage.aioboto3, "Session", lambda: FakeSession())
    storage._client = None
    storage._client_ctx = None
    with caplog.at_level(logging.ERROR, logger="s3"):
        with pytest.raises(BotoCoreError):
            await storage._make_client()
    assert "Failed to create S3 client" in caplog.text


class DummyClient:
    def __init__(self):
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True


@pytest.mark.asyncio
async def test_close_client_closes():
    dummy = DummyClient()
    storage._client = await dummy.__aenter__()
    storage._client_ctx = dummy
    await storage.close_client()
    assert dummy.closed
    assert storage._client is None


class FailingClient:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_close_client_ignores_errors(caplog):
    failing = FailingClient()
    storage._client = await failing.__aenter__()
    storage._client_ctx = failing
    with caplog.at_level(logging.ERROR):
        await storage.close_client()
    assert "Failed to close S3 client" in caplog.text
    assert storage._client is None


@pytest.mark.asyncio
async def test_init_storage_closes_existing_client():
    dummy = DummyClient()
    storage._client = await dummy.__aenter__()
    storage._client_ctx = dummy
    await storage.init_storage(Settings(_env_file=None))
    assert dummy.closed
    assert storage._client is None
