# breachwatch/db/models.py
from __future__ import annotations

import datetime as dt
from typing import Any

import sqlalchemy as sa
from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# ---------- Base with naming convention ----------
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


class Base(DeclarativeBase):
    __abstract__ = True
    metadata = sa.MetaData(naming_convention=NAMING_CONVENTION)


class Subscriber(Base):
    __tablename__ = "subscribers"
    __table_args__ = (sa.UniqueConstraint("primary_email"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    primary_email: Mapped[str] = mapped_column(String(320), nullable=False)
    primary_sha1: Mapped[str] = mapped_column(String(40), nullable=False)
    primary_verification_token: Mapped[str] = mapped_column(String(64), nullable=False)
    primary_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    fxa_access_token: Mapped[str | None] = mapped_column(Text)
    fxa_refresh_token: Mapped[str | None] = mapped_column(Text)
    fxa_profile_json: Mapped[str | None] = mapped_column(Text)
    signup_language: Mapped[str | None] = mapped_column(String(255))
    # NULL until the pilot hash list has been consulted
    onremovallist: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    removal_optout: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    def to_session(self) -> dict[str, Any]:
        """JSON-safe snapshot cached in the session cookie; never carries tokens."""
        return {
            "id": self.id,
            "primary_email": self.primary_email,
            "signup_language": self.signup_language,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"Subscriber(id={self.id!r}, primary_email={self.primary_email!r})"
