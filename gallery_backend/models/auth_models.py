"""
Authentication tables:
- User: one row per (auth_provider, provider_user_id) among live accounts
- AuthToken: the single live session of a user

Deleted accounts are tombstoned (deleted_at set, PII cleared), never removed,
so the partial unique index only covers live rows.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import relationship

from gallery_backend.db import Base, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    display_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    avatar_url = Column(String(1024), nullable=True)

    auth_provider = Column(String(32), nullable=False)
    provider_user_id = Column(String(255), nullable=False)

    last_login_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    auth_token = relationship("AuthToken", uselist=False, back_populates="user")

    __table_args__ = (
        Index(
            "uq_users_live_provider_identity",
            "auth_provider",
            "provider_user_id",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class AuthToken(Base):
    __tablename__ = "auth_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    access_token = Column(String(1024), nullable=False, index=True)
    refresh_token = Column(String(1024), nullable=False, unique=True)
    token_type = Column(String(16), nullable=False, default="Bearer")

    expires_at = Column(DateTime, nullable=False)
    refresh_expires_at = Column(DateTime, nullable=False)

    device_info = Column(String(512), nullable=True)
    ip_address = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="auth_token")


__all__ = ["User", "AuthToken"]
