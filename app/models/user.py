from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, String

from app.models.base import Base

ROLES = ("free", "pro", "admin")


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    username = Column(String(128))
    role = Column(
        Enum(*ROLES, name="user_role", native_enum=False),
        nullable=False,
        default="free",
        server_default="free",
    )
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


__all__ = ["User", "ROLES"]
