"""Blog schemas: request payloads and response bodies for posts and comments."""

from datetime import datetime
from pydantic import BaseModel, Field
from typing import List, Literal, Optional


class PostCreate(BaseModel):
    """Payload for creating a new post (the author comes from the bearer token)."""
    title: str = Field(min_length=1, max_length=200)
    body: str = Field(min_length=1)
    tags: List[str] = []


class PostUpdate(BaseModel):
    """Partial post edit guarded by the version the client last saw."""
    expected_version: int = Field(ge=0)
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    body: Optional[str] = Field(default=None, min_length=1)
    tags: Optional[List[str]] = None


class VersionedAction(BaseModel):
    """Author-driven state move (submit / resubmit)."""
    expected_version: int = Field(ge=0)


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)


class CommentCreate(BaseModel):
    """Payload for a new comment, optionally replying to another comment."""
    body: str = Field(min_length=1, max_length=1000)
    parent_comment_id: Optional[str] = None


class CommentEdit(BaseModel):
    body: str = Field(min_length=1, max_length=1000)


class ModerationDecisionRequest(BaseModel):
    decision: Literal["approve", "reject", "takedown"]


class PostOut(BaseModel):
    """Full post representation."""
    id: str
    author_id: str
    title: str
    body: str
    status: str
    tags: List[str] = []
    version: int
    likes_count: int = 0
    rejection_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PostListItem(BaseModel):
    """Post as shown in listings: excerpt instead of body, plus counters."""
    id: str
    author_id: str
    title: str
    excerpt: str
    status: str
    tags: List[str] = []
    likes_count: int = 0
    comments_count: int = 0
    created_at: datetime


class PostPageOut(BaseModel):
    items: List[PostListItem]
    total: int
    offset: int
    limit: int
    has_next: bool
    has_prev: bool


class CommentOut(BaseModel):
    """A comment; tombstones carry no author or body."""
    id: str
    post_id: str
    author_id: Optional[str] = None
    body: str
    status: str
    parent_comment_id: Optional[str] = None
    parent_tombstoned: bool = False
    deleted: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None


class LikesOut(BaseModel):
    likes_count: int


class DeletedOut(BaseModel):
    deleted: bool = True
    comments_affected: int = 0


class FieldErrorOut(BaseModel):
    field: str
    message: str


class ErrorOut(BaseModel):
    """Error body returned for every typed failure of the core."""
    error: str
    detail: str
    errors: List[FieldErrorOut] = []
    request_id: Optional[str] = None
