"""SQLAlchemy models for the Blog service.

Defines three tables:
- posts: Post rows with version stamp and soft-delete marker.
- post_tags: Many-to-many tag association owned by the post.
- comments: Threaded comments, tombstoned on delete.

No ORM relationships are declared; rows are loaded explicitly by id in `repo.py`.
"""

from datetime import datetime

from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text


Base = declarative_base()


class PostRow(Base):
    """Post entity row.

    Attributes:
        id: Opaque string primary key (uuid4 hex).
        author_id: Subject id of the author.
        title: Post title (<= 200 chars).
        body: Post text.
        status: Moderation state name.
        version: Optimistic-concurrency stamp.
        likes_count: Reader likes, incremented atomically.
        rejection_reason: Reason given by the last rejection.
        created_at / updated_at: UTC timestamps.
        deleted_at: Soft-delete marker; NULL for live posts.
    """

    __tablename__ = "posts"
    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    author_id: Mapped[str] = mapped_column(String(64), index=True)
    title: Mapped[str] = mapped_column(String(200))
    body: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), index=True)
    version: Mapped[int] = mapped_column(Integer, default=0)
    likes_count: Mapped[int] = mapped_column(Integer, default=0)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_posts_created_id", "created_at", "id"),)


class PostTagRow(Base):
    """Tag association; (post_id, tag) is unique."""

    __tablename__ = "post_tags"
    post_id: Mapped[str] = mapped_column(ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True)
    tag: Mapped[str] = mapped_column(String(50), primary_key=True, index=True)


class CommentRow(Base):
    """Comment entity row; parent_comment_id references a comment on the same post."""

    __tablename__ = "comments"
    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    post_id: Mapped[str] = mapped_column(ForeignKey("posts.id", ondelete="CASCADE"), index=True)
    author_id: Mapped[str] = mapped_column(String(64))
    body: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20))
    parent_comment_id: Mapped[str | None] = mapped_column(ForeignKey("comments.id"), nullable=True)
    parent_tombstoned: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_comments_post_created_id", "post_id", "created_at", "id"),)
