from __future__ import annotations

import pytest

from app.db import SessionLocal
from app.services import storage, store
from scripts import kill_orphans, reset_db, set_role


@pytest.fixture
def bucket(monkeypatch):
    keys = ["1/keep.jpg", "1/orphan.jpg", "9/old.png"]
    deleted: list[str] = []

    async def _keys(prefix=""):
        for key in list(keys):
            yield key

    async def _delete(locator):
        deleted.append(locator)
        keys.remove(locator)

    monkeypatch.setattr(storage, "iter_keys", _keys)
    monkeypatch.setattr(storage, "delete_object", _delete)
    return deleted


def _seed_image(url="1/keep.jpg"):
    with SessionLocal() as session:
        store.get_or_create_user(session, "owner-1")
        project = store.create_project(session, "owner-1", "Deck")
        store.create_image(session, "owner-1", project.id, url)


@pytest.mark.asyncio
async def test_sweep_deletes_after_confirmation(bucket, capsys):
    _seed_image()
    report = await kill_orphans.sweep(prompt=lambda _q: "y")
    assert sorted(report.deleted) == ["1/orphan.jpg", "9/old.png"]
    assert report.failed == []
    assert sorted(bucket) == ["1/orphan.jpg", "9/old.png"]
    assert "Found 2 orphaned blobs" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_sweep_cancelled(bucket, capsys):
    _seed_image()
    report = await kill_orphans.sweep(prompt=lambda _q: "")
    assert report.deleted == []
    assert bucket == []
    assert "Operation cancelled." in capsys.readouterr().out


@pytest.mark.asyncio
async def test_sweep_assume_yes(bucket):
    _seed_image()

    def _never(_q):
        raise AssertionError("prompt should not be shown")

    report = await kill_orphans.sweep(assume_yes=True, prompt=_never)
    assert len(report.deleted) == 2


def test_confirmation_is_case_insensitive():
    assert kill_orphans.ask_for_confirmation("?", lambda _q: " Y ")
    assert not kill_orphans.ask_for_confirmation("?", lambda _q: "yes")


def test_set_role_creates_and_updates_user():
    assert set_role.set_role("cli-user", "pro") == "free"
    assert set_role.set_role("cli-user", "admin") == "pro"
    with SessionLocal() as session:
        assert store.get_or_create_user(session, "cli-user").role == "admin"


def test_set_role_rejects_unknown_role():
    with pytest.raises(SystemExit):
        set_role.set_role("cli-user", "gold")


def test_reset_db_deletes_in_dependency_order():
    _seed_image()
    counts = reset_db.reset()
    assert counts == {"votes": 0, "images": 1, "projects": 1, "users": 1}
    assert list(counts) == ["votes", "images", "projects", "users"]
