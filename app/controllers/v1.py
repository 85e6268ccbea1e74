from fastapi import APIRouter

from . import images, projects, users, votes

router = APIRouter(prefix="/v1")
router.include_router(projects.router)
router.include_router(images.router)
router.include_router(votes.router)
router.include_router(users.router)
