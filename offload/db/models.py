"""Attachment records kept for each media object."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Attachment(Base):
    """Metadata document for one media object."""

    __tablename__ = "attachments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    path: Mapped[str] = mapped_column(String(1024), nullable=False, index=True)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    sizes: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    backup_sizes: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    original_image: Mapped[str | None] = mapped_column(String(255), nullable=True)
    private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    transcoded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    filesize: Mapped[int | None] = mapped_column(Integer, nullable=True)
    width: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    height: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
