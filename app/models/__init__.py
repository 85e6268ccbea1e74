from .base import Base
from .error_code import ErrorCode
from .user import ROLES, User
from .project import Project
from .image import Image
from .vote import Vote

__all__ = [
    "Base",
    "ErrorCode",
    "ROLES",
    "User",
    "Project",
    "Image",
    "Vote",
]
