"""SQLAlchemy models for cast storage.

Two tables:
- casts: one row per cast, keyed by the cast hash
- cast_tags: one row per (cast, tag) pair, explicit hashtags, implicit
  mentions and suggested tags alike
"""
from datetime import datetime
from typing import Optional
from sqlalchemy import (
    String, Integer, BigInteger, Text, DateTime, ForeignKey, JSON, Boolean,
    UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class Cast(Base):
    """Normalized cast record."""
    __tablename__ = "casts"

    hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    thread_hash: Mapped[str] = mapped_column(String(66), index=True)
    parent_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    author_fid: Mapped[int] = mapped_column(BigInteger, index=True)
    author_username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    author_display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    author_pfp_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    author_pfp_verified: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    text: Mapped[str] = mapped_column(Text)
    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    mentions: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    replies_count: Mapped[int] = mapped_column(Integer, default=0)
    reactions_count: Mapped[int] = mapped_column(Integer, default=0)
    recasts_count: Mapped[int] = mapped_column(Integer, default=0)
    watches_count: Mapped[int] = mapped_column(Integer, default=0)
    parent_author_fid: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    parent_author_username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)

    # Legacy identifiers, only written when upstream still sends them
    hash_v1: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    thread_hash_v1: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    parent_hash_v1: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)


class CastTag(Base):
    """Tag attached to a cast."""
    __tablename__ = "cast_tags"

    id: Mapped[int] = mapped_column(primary_key=True)
    cast_hash: Mapped[str] = mapped_column(ForeignKey("casts.hash"), index=True)
    tag: Mapped[str] = mapped_column(String(255))
    implicit: Mapped[bool] = mapped_column(Boolean, default=False)  # True for vocabulary mentions
    gpt: Mapped[bool] = mapped_column(Boolean, default=False)  # True for suggester output
    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("cast_hash", "tag", name="uq_cast_tag"),
    )


Index("ix_casts_published_at", Cast.published_at)
Index("ix_cast_tags_tag_published", CastTag.tag, CastTag.published_at)
