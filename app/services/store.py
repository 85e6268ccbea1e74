"""Create, find and delete Users, Projects, Images and Votes.

Deletion never relies on database cascades. Rows are removed child-first
(votes, images, project, user) inside one transaction. Image locators are
captured before the transaction commits and returned to the caller, which
hands them to ``app.services.reclamation`` once the commit succeeded.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import Settings
from app.db import atomic
from app.metrics import cascade_delete_total, quota_reject_total
from app.models import ROLES, Image, Project, User, Vote
from app.services import ledger
from app.services.errors import (
    Forbidden,
    InvalidInput,
    NotFound,
    QuotaExceeded,
    StorageUnavailable,
)
from app.services.quota import (
    can_add_image,
    can_create_project,
    is_admin,
    resolve_role,
    role_limits,
)

settings = Settings()
logger = logging.getLogger(__name__)

PREVIEW_IMAGES = 4
MAX_NAME_LENGTH = 200


# --- users -----------------------------------------------------------------


def get_or_create_user(db: Session, user_id: str, username: str | None = None) -> User:
    """Return the user row, creating it on first authenticated access."""
    user = db.get(User, user_id)
    if user is not None:
        return user
    role = "admin" if user_id in settings.admin_user_ids else "free"
    db.add(User(id=user_id, username=username or user_id, role=role))
    try:
        db.commit()
    except IntegrityError:
        # concurrent first access already inserted the row
        db.rollback()
    user = db.get(User, user_id)
    if user is None:
        raise StorageUnavailable("Failed to create user")
    logger.info("Created user %s with role %s", user_id, user.role)
    return user


def update_role(db: Session, actor_id: str, user_id: str, role: str) -> User:
    if not is_admin(db, actor_id):
        raise Forbidden("Admin role required")
    if role not in ROLES:
        raise InvalidInput("Invalid role. Must be one of: free, pro, admin")
    with atomic(db, "update user role"):
        user = db.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        user.role = role
    db.refresh(user)
    logger.info("Admin %s updated user %s role to %s", actor_id, user_id, role)
    return user


def delete_user(db: Session, actor_id: str, user_id: str) -> list[str]:
    """Delete a user with all projects, images and votes.

    Returns the storage locators of the removed images.
    """
    with atomic(db, "delete user"):
        target = db.execute(
            select(User).where(User.id == user_id).with_for_update()
        ).scalar_one_or_none()
        if target is None:
            raise NotFound("User not found")
        if actor_id != user_id and not is_admin(db, actor_id):
            raise Forbidden("Cannot delete other user")
        if target.role == "admin":
            raise Forbidden("Cannot delete admin user")

        project_ids = db.execute(
            select(Project.id).where(Project.user_id == user_id).order_by(Project.id)
        ).scalars().all()
        locators: list[str] = []
        for project_id in project_ids:
            locators.extend(_delete_project_rows(db, project_id))
        result = db.execute(
            delete(User)
            .where(User.id == user_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFound("User not found")
    db.expunge_all()
    cascade_delete_total.labels("user").inc()
    logger.info(
        "User %s deleted by %s: %d projects, %d images",
        user_id,
        actor_id,
        len(project_ids),
        len(locators),
        extra={"user_id": user_id},
    )
    return locators


def list_users(db: Session, actor_id: str) -> list[dict[str, Any]]:
    if not is_admin(db, actor_id):
        raise Forbidden("Admin role required")
    users = db.execute(select(User).order_by(User.created_at.desc(), User.id)).scalars().all()
    result = []
    for user in users:
        projects = _projects_for(db, user.id)
        result.append(
            {
                "id": user.id,
                "username": user.username,
                "role": user.role,
                "created_at": user.created_at,
                "project_count": len(projects),
                "projects": [_project_summary(db, p, preview=None) for p in projects],
            }
        )
    return result


# --- projects --------------------------------------------------------------


def _clean_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidInput("Valid project name is required")
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidInput(f"Project name must be at most {MAX_NAME_LENGTH} characters")
    return name


def _load_project(db: Session, project_id: int, *, lock: bool = False) -> Project | None:
    stmt = select(Project).where(Project.id == project_id)
    if lock:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalar_one_or_none()


def _ensure_owner_or_admin(db: Session, actor_id: str | None, project: Project) -> None:
    if actor_id is not None and project.user_id == actor_id:
        return
    if is_admin(db, actor_id):
        return
    raise Forbidden("You do not own this project")


def create_project(db: Session, actor_id: str, name: Any) -> Project:
    name = _clean_name(name)
    if not can_create_project(db, actor_id):
        role = resolve_role(db, actor_id)
        quota_reject_total.labels("project").inc()
        raise QuotaExceeded(
            "You have reached your project limit.",
            role=role,
            limit=int(role_limits(role).max_projects),
        )
    with atomic(db, "create project"):
        project = Project(name=name, user_id=actor_id)
        db.add(project)
    db.refresh(project)
    logger.info(
        "User %s created project %s",
        actor_id,
        project.id,
        extra={"user_id": actor_id, "project_id": project.id},
    )
    return project


def rename_project(db: Session, actor_id: str, project_id: int, name: Any) -> Project:
    name = _clean_name(name)
    with atomic(db, "rename project"):
        project = _load_project(db, project_id)
        if project is None:
            raise NotFound("Project not found")
        _ensure_owner_or_admin(db, actor_id, project)
        project.name = name
    db.refresh(project)
    return project


def _delete_project_rows(db: Session, project_id: int) -> list[str]:
    image_ids = select(Image.id).where(Image.project_id == project_id)
    locators = list(
        db.execute(
            select(Image.url).where(Image.project_id == project_id).order_by(Image.id)
        ).scalars()
    )
    db.execute(
        delete(Vote)
        .where(or_(Vote.image_id.in_(image_ids), Vote.project_id == project_id))
        .execution_options(synchronize_session=False)
    )
    db.execute(
        delete(Image)
        .where(Image.project_id == project_id)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(
        delete(Project)
        .where(Project.id == project_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        # a concurrent delete got there first
        raise NotFound("Project not found")
    return locators


def delete_project(db: Session, actor_id: str, project_id: int) -> list[str]:
    """Delete votes, images and the project in one transaction.

    Returns the storage locators of the removed images.
    """
    with atomic(db, "delete project"):
        project = _load_project(db, project_id, lock=True)
        if project is None:
            raise NotFound("Project not found")
        _ensure_owner_or_admin(db, actor_id, project)
        owner_id = project.user_id
        locators = _delete_project_rows(db, project_id)
    db.expunge_all()
    cascade_delete_total.labels("project").inc()
    logger.info(
        "Project %s (owner %s) deleted by %s with %d images",
        project_id,
        owner_id,
        actor_id,
        len(locators),
        extra={"user_id": actor_id, "project_id": project_id},
    )
    return locators


def record_view(db: Session, actor_id: str | None, project_id: int) -> int:
    """Increment the view counter unless the viewer owns the project."""
    with atomic(db, "record view"):
        project = _load_project(db, project_id)
        if project is None:
            raise NotFound("Project not found")
        if actor_id is not None and project.user_id == actor_id:
            return project.view_count
        db.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(view_count=Project.view_count + 1)
            .execution_options(synchronize_session=False)
        )
    return db.execute(
        select(Project.view_count).where(Project.id == project_id)
    ).scalar_one()


def reset_votes(db: Session, actor_id: str, project_id: int) -> int:
    with atomic(db, "reset votes"):
        project = _load_project(db, project_id)
        if project is None:
            raise NotFound("Project not found")
        _ensure_owner_or_admin(db, actor_id, project)
        result = db.execute(
            delete(Vote)
            .where(Vote.project_id == project_id)
            .execution_options(synchronize_session=False)
        )
    logger.info("Votes of project %s reset by %s (%d rows)", project_id, actor_id, result.rowcount)
    return result.rowcount


def _projects_for(db: Session, user_id: str) -> list[Project]:
    return db.execute(
        select(Project)
        .where(Project.user_id == user_id)
        .order_by(Project.created_at.desc(), Project.id.desc())
    ).scalars().all()


def _images_for(db: Session, project_id: int) -> list[Image]:
    return db.execute(
        select(Image)
        .where(Image.project_id == project_id)
        .order_by(Image.created_at, Image.id)
    ).scalars().all()


def _image_with_stats(image: Image, stats: ledger.VoteStats) -> dict[str, Any]:
    return {
        "id": image.id,
        "url": image.url,
        "created_at": image.created_at,
        "updated_at": image.updated_at,
        "stats": stats._asdict(),
    }


def _project_summary(db: Session, project: Project, *, preview: int | None) -> dict[str, Any]:
    images = _images_for(db, project.id)
    stats = ledger.stats_for_images(db, [img.id for img in images])
    shown = images if preview is None else images[:preview]
    return {
        "id": project.id,
        "name": project.name,
        "user_id": project.user_id,
        "created_at": project.created_at,
        "view_count": project.view_count,
        "total_images": len(images),
        "total_votes": sum(s.total for s in stats.values()),
        "images": [_image_with_stats(img, stats[img.id]) for img in shown],
    }


def list_projects(db: Session, actor_id: str, owner_id: str | None = None) -> list[dict[str, Any]]:
    """Projects of ``owner_id`` (admin only) or of the actor, newest first."""
    if owner_id is not None and owner_id != actor_id:
        if not is_admin(db, actor_id):
            raise Forbidden("Admin role required")
    else:
        owner_id = actor_id
    return [
        _project_summary(db, project, preview=PREVIEW_IMAGES)
        for project in _projects_for(db, owner_id)
    ]


def get_project_view(db: Session, actor_id: str | None, project_id: int) -> dict[str, Any]:
    """Full stats for the owner or an admin; ids and urls for everyone else."""
    project = _load_project(db, project_id)
    if project is None:
        raise NotFound("Project not found")
    full_access = actor_id is not None and (
        project.user_id == actor_id or is_admin(db, actor_id)
    )
    if full_access:
        return _project_summary(db, project, preview=None)
    images = _images_for(db, project_id)
    return {
        "id": project.id,
        "name": project.name,
        "total_images": len(images),
        "images": [{"id": img.id, "url": img.url} for img in images],
    }


# --- images ----------------------------------------------------------------


def all_image_locators(db: Session) -> set[str]:
    """Every locator currently referenced by an image row."""
    return set(db.execute(select(Image.url)).scalars())


def _clean_locator(url: Any) -> str:
    if not isinstance(url, str) or not url.strip():
        raise InvalidInput("Image URL is required")
    return url.strip()


def _ensure_unreferenced(db: Session, url: str) -> None:
    taken = db.execute(select(Image.id).where(Image.url == url).limit(1)).scalar_one_or_none()
    if taken is not None:
        raise InvalidInput("Image URL is already in use")


def _flush_image(db: Session, url: str) -> None:
    """Flush a pending image write; the unique locator index decides races."""
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        _ensure_unreferenced(db, url)
        # the project vanished between the ownership check and the insert
        raise NotFound("Project not found") from exc


def _owned_project(db: Session, actor_id: str, project_id: int) -> Project:
    project = _load_project(db, project_id)
    if project is None or project.user_id != actor_id:
        raise NotFound("Project not found")
    return project


def list_images(db: Session, actor_id: str, project_id: int) -> list[Image]:
    _owned_project(db, actor_id, project_id)
    return db.execute(
        select(Image)
        .where(Image.project_id == project_id)
        .order_by(Image.created_at.desc(), Image.id.desc())
    ).scalars().all()


def ensure_can_add_image(db: Session, actor_id: str, project_id: int) -> Project:
    """Ownership and quota precondition for adding (or uploading) an image."""
    project = _owned_project(db, actor_id, project_id)
    if not can_add_image(db, project_id):
        role = resolve_role(db, actor_id)
        quota_reject_total.labels("image").inc()
        raise QuotaExceeded(
            "You have reached your image limit for this project.",
            role=role,
            limit=int(role_limits(role).max_images_per_project),
        )
    return project


def create_image(db: Session, actor_id: str, project_id: int, url: Any) -> Image:
    url = _clean_locator(url)
    ensure_can_add_image(db, actor_id, project_id)
    _ensure_unreferenced(db, url)
    with atomic(db, "create image"):
        image = Image(project_id=project_id, url=url)
        db.add(image)
        _flush_image(db, url)
    db.refresh(image)
    return image


def _owned_image(db: Session, actor_id: str, project_id: int, image_id: int) -> Image:
    image = db.execute(
        select(Image)
        .join(Project, Project.id == Image.project_id)
        .where(
            Image.id == image_id,
            Image.project_id == project_id,
            Project.user_id == actor_id,
        )
    ).scalar_one_or_none()
    if image is None:
        raise NotFound("Image not found")
    return image


def replace_image(
    db: Session, actor_id: str, project_id: int, image_id: int, url: Any
) -> tuple[Image, str | None]:
    """Point the image at a new blob.

    Returns the updated image and the previous locator, which the caller
    must reclaim (``None`` when unchanged).
    """
    url = _clean_locator(url)
    with atomic(db, "replace image"):
        image = _owned_image(db, actor_id, project_id, image_id)
        old_url = image.url
        if old_url != url:
            _ensure_unreferenced(db, url)
            image.url = url
            _flush_image(db, url)
    db.refresh(image)
    return image, (old_url if old_url != url else None)


def delete_image(db: Session, actor_id: str, project_id: int, image_id: int) -> str:
    """Delete one image and its votes; returns its locator."""
    with atomic(db, "delete image"):
        image = _owned_image(db, actor_id, project_id, image_id)
        locator = image.url
        db.execute(
            delete(Vote)
            .where(Vote.image_id == image_id)
            .execution_options(synchronize_session=False)
        )
        db.execute(
            delete(Image)
            .where(Image.id == image_id)
            .execution_options(synchronize_session=False)
        )
    db.expunge_all()
    cascade_delete_total.labels("image").inc()
    logger.info(
        "Image %s of project %s deleted by %s",
        image_id,
        project_id,
        actor_id,
        extra={"project_id": project_id, "image_id": image_id},
    )
    return locator


__all__ = [
    "get_or_create_user",
    "update_role",
    "delete_user",
    "list_users",
    "create_project",
    "rename_project",
    "delete_project",
    "record_view",
    "reset_votes",
    "list_projects",
    "get_project_view",
    "all_image_locators",
    "list_images",
    "ensure_can_add_image",
    "create_image",
    "replace_image",
    "delete_image",
]
