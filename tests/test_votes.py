from __future__ import annotations

import threading

import pytest
from redis.exceptions import RedisError

from app import dependencies
from app.db import SessionLocal
from app.metrics import votes_recorded_total
from app.services import ledger, store
from app.services.errors import NotFound
from tests.utils.auth import build_auth_headers

OWNER = build_auth_headers("owner-1")
ANON = build_auth_headers(None)


@pytest.fixture
def deck(client):
    project = client.post("/v1/projects", headers=OWNER, json={"name": "Deck"}).json()
    images = [
        client.post(
            f"/v1/projects/{project['id']}/images",
            headers=OWNER,
            json={"image_url": f"https://cdn.test/{i}.jpg"},
        ).json()
        for i in range(2)
    ]
    return project, images


def _vote(client, project_id, image_id, liked, headers=ANON):
    return client.post(
        f"/v1/projects/{project_id}/vote",
        headers=headers,
        json={"image_id": image_id, "liked": liked},
    )


def test_vote_is_recorded(client, deck):
    project, images = deck
    before = votes_recorded_total._value.get()

    resp = _vote(client, project["id"], images[0]["id"], True)
    assert resp.status_code == 201
    body = resp.json()
    assert body["liked"] is True
    assert body["image_id"] == images[0]["id"]
    assert body["project_id"] == project["id"]
    assert votes_recorded_total._value.get() == before + 1


def test_stats_are_reductions(client, deck):
    project, images = deck
    for liked in (True, True, False):
        _vote(client, project["id"], images[0]["id"], liked)
    _vote(client, project["id"], images[1]["id"], False)

    body = client.get(f"/v1/projects/{project['id']}", headers=OWNER).json()
    stats = {img["id"]: img["stats"] for img in body["images"]}
    assert stats[images[0]["id"]] == {"total": 3, "likes": 2, "dislikes": 1}
    assert stats[images[1]["id"]] == {"total": 1, "likes": 0, "dislikes": 1}
    assert body["total_votes"] == 4


def test_signed_in_viewer_can_vote(client, deck):
    project, images = deck
    viewer = build_auth_headers("viewer-1")
    assert _vote(client, project["id"], images[0]["id"], False, viewer).status_code == 201


def test_vote_for_foreign_image(client, deck):
    project, images = deck
    other = client.post(
        "/v1/projects", headers=build_auth_headers("other-1"), json={"name": "Other"}
    ).json()
    resp = _vote(client, other["id"], images[0]["id"], True)
    assert resp.status_code == 404


def test_vote_for_missing_image(client, deck):
    project, _ = deck
    assert _vote(client, project["id"], 999999, True).status_code == 404


def test_vote_bad_body(client, deck):
    project, images = deck
    resp = client.post(
        f"/v1/projects/{project['id']}/vote", headers=ANON, json={"liked": True}
    )
    assert resp.status_code == 400
    resp = _vote(client, project["id"], images[0]["id"], "maybe")
    assert resp.status_code == 400


@pytest.mark.parametrize("liked", [1, 0, "true", "yes", None])
def test_vote_requires_json_boolean(client, deck, liked):
    project, images = deck
    resp = _vote(client, project["id"], images[0]["id"], liked)
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "BAD_REQUEST"

    body = client.get(f"/v1/projects/{project['id']}", headers=OWNER).json()
    assert body["total_votes"] == 0


def test_vote_rate_limit(client, deck, monkeypatch):
    project, images = deck
    monkeypatch.setattr(dependencies.settings, "vote_rate_limit_per_min", 3)
    for _ in range(3):
        assert _vote(client, project["id"], images[0]["id"], True).status_code == 201
    resp = _vote(client, project["id"], images[0]["id"], True)
    assert resp.status_code == 429
    assert resp.json()["detail"]["code"] == "TOO_MANY_REQUESTS"


def test_vote_redis_unavailable(client, deck, monkeypatch):
    class _RedisFail:
        def pipeline(self):
            raise RedisError

    project, images = deck
    monkeypatch.setattr(dependencies, "redis_client", _RedisFail())
    resp = _vote(client, project["id"], images[0]["id"], True)
    assert resp.status_code == 503


def test_ledger_helpers(db):
    store.get_or_create_user(db, "owner-1")
    project = store.create_project(db, "owner-1", "Ledger")
    first = store.create_image(db, "owner-1", project.id, "l/1.jpg")
    second = store.create_image(db, "owner-1", project.id, "l/2.jpg")

    ledger.record_vote(db, project.id, first.id, True)
    ledger.record_vote(db, project.id, first.id, False)

    assert ledger.image_stats(db, first.id) == ledger.VoteStats(2, 1, 1)
    assert ledger.image_stats(db, second.id) == ledger.EMPTY_STATS
    assert ledger.stats_for_images(db, [first.id, second.id]) == {
        first.id: ledger.VoteStats(2, 1, 1),
        second.id: ledger.EMPTY_STATS,
    }
    assert ledger.stats_for_images(db, []) == {}
    assert ledger.project_stats(db, project.id) == {
        first.id: ledger.VoteStats(2, 1, 1),
        second.id: ledger.EMPTY_STATS,
    }

    with pytest.raises(NotFound):
        ledger.record_vote(db, project.id + 1, first.id, True)


def test_concurrent_votes_are_both_counted(deck):
    project, images = deck
    image_id = images[0]["id"]
    barrier = threading.Barrier(2, timeout=5)
    errors = []

    def _cast(liked):
        try:
            barrier.wait()
            with SessionLocal() as session:
                ledger.record_vote(session, project["id"], image_id, liked)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=_cast, args=(liked,)) for liked in (True, False)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)

    assert errors == []
    with SessionLocal() as session:
        assert ledger.image_stats(session, image_id) == ledger.VoteStats(2, 1, 1)
