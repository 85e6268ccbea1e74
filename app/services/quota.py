"""Role resolution and creation limits.

Limits per role:
- free: 3 projects, 10 images per project
- pro / admin: unlimited

The checks are read-then-decide: two concurrent creations can both pass and
overshoot the limit by at most (parallelism - 1). Limits apply at creation
time only, so excess left behind by a role downgrade is kept.
"""
from __future__ import annotations

import logging
import math
from contextlib import contextmanager
from typing import Iterator, Literal, NamedTuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import ROLES, Image, Project, User
from app.services.errors import StorageUnavailable

logger = logging.getLogger(__name__)

Role = Literal["free", "pro", "admin"]
DEFAULT_ROLE: Role = "free"


class UsagePolicy(NamedTuple):
    max_projects: float
    max_images_per_project: float


ROLE_LIMITS: dict[str, UsagePolicy] = {
    "free": UsagePolicy(max_projects=3, max_images_per_project=10),
    "pro": UsagePolicy(max_projects=math.inf, max_images_per_project=math.inf),
    "admin": UsagePolicy(max_projects=math.inf, max_images_per_project=math.inf),
}


def role_limits(role: str) -> UsagePolicy:
    return ROLE_LIMITS.get(role, ROLE_LIMITS[DEFAULT_ROLE])


def resolve_role(db: Session, user_id: str | None) -> Role:
    """Return the role claim for ``user_id``; ``free`` whenever it cannot be resolved."""
    if not user_id:
        return DEFAULT_ROLE
    try:
        role = db.execute(select(User.role).where(User.id == user_id)).scalar_one_or_none()
    except (SQLAlchemyError, LookupError):
        logger.exception("Role lookup failed for user %s, falling back to free", user_id)
        db.rollback()
        return DEFAULT_ROLE
    if role not in ROLES:
        if role is not None:
            logger.warning("Unknown role %r for user %s", role, user_id)
        return DEFAULT_ROLE
    return role


def is_admin(db: Session, user_id: str | None) -> bool:
    return resolve_role(db, user_id) == "admin"


@contextmanager
def _reading(db: Session, what: str) -> Iterator[None]:
    """Report a failed quota read as ``StorageUnavailable``."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to read %s", what)
        raise StorageUnavailable(f"Failed to read {what}") from exc


def count_projects(db: Session, user_id: str) -> int:
    with _reading(db, "project count"):
        return db.execute(
            select(func.count(Project.id)).where(Project.user_id == user_id)
        ).scalar_one()


def count_images(db: Session, project_id: int) -> int:
    with _reading(db, "image count"):
        return db.execute(
            select(func.count(Image.id)).where(Image.project_id == project_id)
        ).scalar_one()


def can_create_project(db: Session, user_id: str) -> bool:
    with _reading(db, "user"):
        user = db.get(User, user_id)
    if user is None:
        return False
    limits = role_limits(resolve_role(db, user_id))
    return count_projects(db, user_id) < limits.max_projects


def can_add_image(db: Session, project_id: int) -> bool:
    with _reading(db, "project"):
        project = db.get(Project, project_id)
    if project is None:
        return False
    limits = role_limits(resolve_role(db, project.user_id))
    return count_images(db, project_id) < limits.max_images_per_project


def _limit_value(value: float) -> int | None:
    return None if math.isinf(value) else int(value)


def usage_summary(db: Session, user_id: str) -> dict:
    """Project count, image count per project and role of ``user_id``."""
    with _reading(db, "usage"):
        rows = db.execute(
            select(Project.id, func.count(Image.id))
            .outerjoin(Image, Image.project_id == Project.id)
            .where(Project.user_id == user_id)
            .group_by(Project.id)
        ).all()
    role = resolve_role(db, user_id)
    limits = role_limits(role)
    return {
        "project_count": len(rows),
        "images_per_project": {str(pid): count for pid, count in rows},
        "role": role,
        "limits": {
            "max_projects": _limit_value(limits.max_projects),
            "max_images_per_project": _limit_value(limits.max_images_per_project),
        },
    }


__all__ = [
    "Role",
    "UsagePolicy",
    "ROLE_LIMITS",
    "role_limits",
    "resolve_role",
    "is_admin",
    "count_projects",
    "count_images",
    "can_create_project",
    "can_add_image",
    "usage_summary",
]
