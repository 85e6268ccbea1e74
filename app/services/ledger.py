"""Vote ledger.

Votes are append-only facts. There is no server-side voter identity, so the
ledger accepts every well-formed vote for a matching project/image pair;
at-most-one-per-viewer is enforced by the viewer's own voted-set
(``app.services.scheduler``). Aggregates are reductions over the live rows at
read time, never stored counters.
"""
from __future__ import annotations

import logging
from typing import Iterable, NamedTuple

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.metrics import votes_recorded_total
from app.models import Image, Vote
from app.services.errors import NotFound, StorageUnavailable

logger = logging.getLogger(__name__)


class VoteStats(NamedTuple):
    total: int
    likes: int
    dislikes: int


EMPTY_STATS = VoteStats(total=0, likes=0, dislikes=0)


def record_vote(db: Session, project_id: int, image_id: int, liked: bool) -> Vote:
    image = db.execute(
        select(Image.id).where(Image.id == image_id, Image.project_id == project_id)
    ).scalar_one_or_none()
    if image is None:
        raise NotFound("Image not found")

    vote = Vote(image_id=image_id, project_id=project_id, liked=bool(liked))
    db.add(vote)
    try:
        db.commit()
    except IntegrityError as exc:
        # image removed between the check and the insert
        db.rollback()
        raise NotFound("Image not found") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to record vote for image %s", image_id)
        raise StorageUnavailable("Failed to record vote") from exc
    db.refresh(vote)
    votes_recorded_total.inc()
    return vote


def _likes():
    return func.coalesce(func.sum(case((Vote.liked.is_(True), 1), else_=0)), 0)


def _dislikes():
    return func.coalesce(func.sum(case((Vote.liked.is_(False), 1), else_=0)), 0)


def image_stats(db: Session, image_id: int) -> VoteStats:
    likes, dislikes = db.execute(
        select(_likes(), _dislikes()).where(Vote.image_id == image_id)
    ).one()
    return VoteStats(total=likes + dislikes, likes=likes, dislikes=dislikes)


def stats_for_images(db: Session, image_ids: Iterable[int]) -> dict[int, VoteStats]:
    """Stats keyed by image id; images without votes map to zero stats."""
    ids = list(image_ids)
    if not ids:
        return {}
    rows = db.execute(
        select(Vote.image_id, _likes(), _dislikes())
        .where(Vote.image_id.in_(ids))
        .group_by(Vote.image_id)
    ).all()
    stats = {image_id: EMPTY_STATS for image_id in ids}
    for image_id, likes, dislikes in rows:
        stats[image_id] = VoteStats(total=likes + dislikes, likes=likes, dislikes=dislikes)
    return stats


def project_stats(db: Session, project_id: int) -> dict[int, VoteStats]:
    image_ids = db.execute(
        select(Image.id).where(Image.project_id == project_id).order_by(Image.id)
    ).scalars()
    return stats_for_images(db, image_ids)


__all__ = [
    "VoteStats",
    "EMPTY_STATS",
    "record_vote",
    "image_stats",
    "stats_for_images",
    "project_stats",
]
