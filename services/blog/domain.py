"""Entity model for the blog core.

Plain frozen dataclasses for Post and Comment, their status enums, and the
pure validation predicates services call before touching storage.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from .errors import FieldError, InvariantViolation

TITLE_MAX_LEN = 200
COMMENT_MAX_LEN = 1000
TAG_MAX_LEN = 50
EXCERPT_LEN = 200

_WS = re.compile(r"\s+")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class PostStatus(str, Enum):
    DRAFT = "Draft"
    PENDING_REVIEW = "PendingReview"
    PUBLISHED = "Published"
    REJECTED = "Rejected"
    ARCHIVED = "Archived"


class CommentStatus(str, Enum):
    PENDING_REVIEW = "PendingReview"
    VISIBLE = "Visible"
    HIDDEN = "Hidden"


@dataclass(frozen=True)
class Post:
    """A publishable piece of content authored by one user.

    Attributes:
        id: Opaque identifier, immutable after creation.
        author_id: Reference to the author (not owned).
        title: Non-empty, at most 200 characters.
        body: Non-empty text.
        status: Current moderation state.
        tags: Normalized tag set.
        version: Optimistic-concurrency stamp, +1 per successful mutation.
        likes_count: Reader likes; does not take part in versioning.
        rejection_reason: Reason recorded by the last rejection, if any.
        deleted_at: Set once the post is deleted (tombstone).
    """

    id: str
    author_id: str
    title: str
    body: str
    status: PostStatus
    tags: frozenset[str]
    version: int
    created_at: datetime
    updated_at: datetime
    likes_count: int = 0
    rejection_reason: Optional[str] = None
    deleted_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.status is PostStatus.PUBLISHED and not is_publishable(self):
            raise InvariantViolation(
                f"post {self.id}: a Published post needs a non-empty body and at least one tag"
            )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def excerpt(self) -> str:
        if len(self.body) <= EXCERPT_LEN:
            return self.body
        return self.body[:EXCERPT_LEN] + "..."

    def evolve(self, **changes) -> "Post":
        """Return a copy with `changes` applied; invariants are re-checked."""
        return replace(self, **changes)


@dataclass(frozen=True)
class Comment:
    """A reply attached to a post, optionally threaded under another comment.

    `parent_tombstoned` is set when the parent was deleted: the reference is
    kept (it still points at a comment on the same post) but the parent's
    content is gone.
    """

    id: str
    post_id: str
    author_id: str
    body: str
    status: CommentStatus
    created_at: datetime
    parent_comment_id: Optional[str] = None
    parent_tombstoned: bool = False
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.parent_comment_id is not None and self.parent_comment_id == self.id:
            raise InvariantViolation(f"comment {self.id} cannot be its own parent")

    @property
    def is_tombstone(self) -> bool:
        return self.deleted_at is not None

    def redacted(self) -> "Comment":
        """Tombstones keep their place in the thread but not their content."""
        if not self.is_tombstone:
            return self
        return replace(self, body="", author_id="")


@dataclass(frozen=True)
class PostPatch:
    """Partial update for a post; None means "leave unchanged"."""
    title: Optional[str] = None
    body: Optional[str] = None
    tags: Optional[frozenset[str]] = field(default=None)

    def is_empty(self) -> bool:
        return self.title is None and self.body is None and self.tags is None


def normalize_tag(raw: str) -> str:
    return _WS.sub("-", raw.strip().lower())


def normalize_tags(tags: Iterable[str] | None) -> frozenset[str]:
    """Lowercase, trim and dash-join tags; blanks are dropped."""
    if not tags:
        return frozenset()
    return frozenset(t for t in (normalize_tag(raw) for raw in tags) if t)


def validate_post_fields(
    title: Optional[str],
    body: Optional[str],
    tags: Optional[Iterable[str]],
) -> list[FieldError]:
    """Check post fields and return every failure; None fields are skipped."""
    errors: list[FieldError] = []
    if title is not None:
        if not title.strip():
            errors.append(FieldError("title", "must not be blank"))
        elif len(title.strip()) > TITLE_MAX_LEN:
            errors.append(FieldError("title", f"must be at most {TITLE_MAX_LEN} characters"))
    if body is not None and not body.strip():
        errors.append(FieldError("body", "must not be blank"))
    if tags is not None:
        for tag in normalize_tags(tags):
            if len(tag) > TAG_MAX_LEN:
                errors.append(FieldError("tags", f"tag '{tag[:20]}...' is longer than {TAG_MAX_LEN} characters"))
    return errors


def validate_comment_body(body: Optional[str]) -> list[FieldError]:
    if body is None or not body.strip():
        return [FieldError("body", "must not be blank")]
    if len(body) > COMMENT_MAX_LEN:
        return [FieldError("body", f"must be at most {COMMENT_MAX_LEN} characters")]
    return []


def is_publishable(post: Post) -> bool:
    return bool(post.body and post.body.strip()) and len(post.tags) > 0


def is_editable(post: Post) -> bool:
    return not post.is_deleted and post.status is not PostStatus.ARCHIVED


def can_accept_comment(post: Post, require_published: bool = False) -> bool:
    """Comments are allowed once a post has left Draft and until it is archived."""
    if post.is_deleted:
        return False
    if require_published:
        return post.status is PostStatus.PUBLISHED
    return post.status not in (PostStatus.DRAFT, PostStatus.ARCHIVED)


def is_visible_to(post: Post, viewer_id: Optional[str] = None, privileged: bool = False) -> bool:
    """Published posts are public; others only for their author or a privileged viewer."""
    if post.is_deleted:
        return False
    if post.status is PostStatus.PUBLISHED or privileged:
        return True
    return viewer_id is not None and viewer_id == post.author_id
