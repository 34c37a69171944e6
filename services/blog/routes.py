# services/blog/routes.py
"""HTTP surface of the blog service: one endpoint per core operation.

Typed core errors are rendered by `blog_error_handler`; authorization
(who may call what) is decided here, visibility rules live in the services.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from packages.common.auth import MODERATOR_ROLE, User, get_current_user, get_optional_user
from packages.common.logging import get_request_id
from packages.common.rbac import is_privileged, require_owner_or_moderator, require_roles
from packages.common.tracing import audit_event
from packages.schemas.blog import (
    CommentCreate,
    CommentEdit,
    CommentOut,
    DeletedOut,
    ErrorOut,
    FieldErrorOut,
    LikesOut,
    ModerationDecisionRequest,
    PostCreate,
    PostListItem,
    PostOut,
    PostPageOut,
    PostUpdate,
    RejectRequest,
    VersionedAction,
)
from .comments import CommentService
from .domain import Comment, CommentStatus, Post, PostPatch, PostStatus
from .errors import BlogError, NotFound, ValidationError
from .posts import PostService
from .queries import PageRequest, PostFilter, PostPage, QueryEngine

log = logging.getLogger(__name__)

router = APIRouter()
require_moderator = require_roles(MODERATOR_ROLE)


def get_post_service(request: Request) -> PostService:
    return request.app.state.posts


def get_comment_service(request: Request) -> CommentService:
    return request.app.state.comments


def get_query_engine(request: Request) -> QueryEngine:
    return request.app.state.queries


def _post_out(post: Post) -> PostOut:
    return PostOut(
        id=post.id,
        author_id=post.author_id,
        title=post.title,
        body=post.body,
        status=post.status.value,
        tags=sorted(post.tags),
        version=post.version,
        likes_count=post.likes_count,
        rejection_reason=post.rejection_reason,
        created_at=post.created_at,
        updated_at=post.updated_at,
    )


def _page_out(page: PostPage) -> PostPageOut:
    return PostPageOut(
        items=[
            PostListItem(
                id=s.post.id,
                author_id=s.post.author_id,
                title=s.post.title,
                excerpt=s.excerpt,
                status=s.post.status.value,
                tags=sorted(s.post.tags),
                likes_count=s.post.likes_count,
                comments_count=s.comments_count,
                created_at=s.post.created_at,
            )
            for s in page.items
        ],
        total=page.total,
        offset=page.offset,
        limit=page.limit,
        has_next=page.has_next,
        has_prev=page.has_prev,
    )


def _comment_out(comment: Comment) -> CommentOut:
    return CommentOut(
        id=comment.id,
        post_id=comment.post_id,
        author_id=comment.author_id or None,
        body=comment.body,
        status=comment.status.value,
        parent_comment_id=comment.parent_comment_id,
        parent_tombstoned=comment.parent_tombstoned,
        deleted=comment.is_tombstone,
        created_at=comment.created_at,
        updated_at=comment.updated_at,
    )


async def blog_error_handler(request: Request, exc: BlogError) -> JSONResponse:
    """Render a typed core failure as `ErrorOut` with its mapped status code."""
    if exc.status_code >= 500:
        log.warning("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    else:
        log.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    body = ErrorOut(error=type(exc).__name__, detail=exc.message, request_id=get_request_id())
    if isinstance(exc, ValidationError):
        body.errors = [FieldErrorOut(field=e.field, message=e.message) for e in exc.errors]
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BlogError, blog_error_handler)


# ---------- infra ----------

@router.get("/healthz", tags=["infra"])
def healthz(request: Request) -> dict[str, str]:
    return {"status": "ok", "env": request.app.state.settings.ENV}


@router.get("/metrics", tags=["infra"])
def metrics() -> PlainTextResponse:
    data = generate_latest()
    return PlainTextResponse(data.decode("utf-8"), media_type=CONTENT_TYPE_LATEST)


# ---------- posts ----------

@router.get("/posts", response_model=PostPageOut, tags=["posts"])
async def list_posts(
    status_: Optional[PostStatus] = Query(default=None, alias="status"),
    tag: Optional[str] = None,
    author_id: Optional[str] = None,
    q: Optional[str] = Query(default=None, max_length=200),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=10, ge=1, le=100),
    user: Optional[User] = Depends(get_optional_user),
    queries: QueryEngine = Depends(get_query_engine),
) -> PostPageOut:
    """List posts newest first; anonymous and non-moderator callers only see Published ones."""
    page = await queries.list_posts(
        PostFilter(status=status_, tag=tag, author_id=author_id, q=q),
        PageRequest(offset=offset, limit=limit),
        privileged=is_privileged(user),
    )
    return _page_out(page)


@router.post("/posts", response_model=PostOut, status_code=status.HTTP_201_CREATED, tags=["posts"])
async def create_post(
    payload: PostCreate,
    user: User = Depends(get_current_user),
    posts: PostService = Depends(get_post_service),
) -> PostOut:
    post = await posts.create_post(user.sub, payload.title, payload.body, payload.tags)
    return _post_out(post)


@router.get("/posts/{post_id}", response_model=PostOut, tags=["posts"])
async def read_post(
    post_id: str,
    user: Optional[User] = Depends(get_optional_user),
    posts: PostService = Depends(get_post_service),
) -> PostOut:
    """Return the post; raises 404 if it does not exist or the caller may not see it."""
    post = await posts.get_post(post_id, user.sub if user else None, is_privileged(user))
    return _post_out(post)


async def _owned_post(posts: PostService, post_id: str, user: User) -> Post:
    post = await posts.get_post(post_id, user.sub, is_privileged(user))
    require_owner_or_moderator(user, post.author_id)
    return post


@router.patch("/posts/{post_id}", response_model=PostOut, tags=["posts"])
async def update_post(
    post_id: str,
    payload: PostUpdate,
    user: User = Depends(get_current_user),
    posts: PostService = Depends(get_post_service),
) -> PostOut:
    await _owned_post(posts, post_id, user)
    patch = PostPatch(
        title=payload.title,
        body=payload.body,
        tags=frozenset(payload.tags) if payload.tags is not None else None,
    )
    post = await posts.update_post(post_id, payload.expected_version, patch)
    return _post_out(post)


@router.delete("/posts/{post_id}", response_model=DeletedOut, tags=["posts"])
async def delete_post(
    post_id: str,
    user: User = Depends(get_current_user),
    posts: PostService = Depends(get_post_service),
) -> DeletedOut:
    await _owned_post(posts, post_id, user)
    affected = await posts.delete_post(post_id)
    audit_event(user.sub, "deleted", f"post:{post_id}", comments=affected)
    return DeletedOut(comments_affected=affected)


@router.post("/posts/{post_id}/submit", response_model=PostOut, tags=["moderation"])
async def submit_post(
    post_id: str,
    payload: VersionedAction,
    user: User = Depends(get_current_user),
    posts: PostService = Depends(get_post_service),
) -> PostOut:
    await _owned_post(posts, post_id, user)
    post = await posts.submit_for_review(post_id, payload.expected_version)
    audit_event(user.sub, "submitted", f"post:{post_id}", version=post.version)
    return _post_out(post)


@router.post("/posts/{post_id}/resubmit", response_model=PostOut, tags=["moderation"])
async def resubmit_post(
    post_id: str,
    payload: VersionedAction,
    user: User = Depends(get_current_user),
    posts: PostService = Depends(get_post_service),
) -> PostOut:
    await _owned_post(posts, post_id, user)
    post = await posts.resubmit(post_id, payload.expected_version)
    audit_event(user.sub, "resubmitted", f"post:{post_id}", version=post.version)
    return _post_out(post)


@router.post("/posts/{post_id}/approve", response_model=PostOut, tags=["moderation"])
async def approve_post(
    post_id: str,
    user: User = Depends(require_moderator),
    posts: PostService = Depends(get_post_service),
) -> PostOut:
    post = await posts.approve(post_id)
    audit_event(user.sub, "approved", f"post:{post_id}", version=post.version)
    return _post_out(post)


@router.post("/posts/{post_id}/reject", response_model=PostOut, tags=["moderation"])
async def reject_post(
    post_id: str,
    payload: RejectRequest,
    user: User = Depends(require_moderator),
    posts: PostService = Depends(get_post_service),
) -> PostOut:
    post = await posts.reject(post_id, payload.reason)
    audit_event(user.sub, "rejected", f"post:{post_id}", version=post.version, reason=payload.reason)
    return _post_out(post)


@router.post("/posts/{post_id}/archive", response_model=PostOut, tags=["moderation"])
async def archive_post(
    post_id: str,
    user: User = Depends(require_moderator),
    posts: PostService = Depends(get_post_service),
) -> PostOut:
    post = await posts.archive(post_id)
    audit_event(user.sub, "archived", f"post:{post_id}", version=post.version)
    return _post_out(post)


@router.post("/posts/{post_id}/likes", response_model=LikesOut, tags=["posts"])
async def like_post(post_id: str, posts: PostService = Depends(get_post_service)) -> LikesOut:
    return LikesOut(likes_count=await posts.like_post(post_id))


# ---------- comments ----------

@router.get("/posts/{post_id}/comments", response_model=List[CommentOut], tags=["comments"])
async def list_comments(
    post_id: str,
    include_hidden: bool = False,
    user: Optional[User] = Depends(get_optional_user),
    posts: PostService = Depends(get_post_service),
    comments: CommentService = Depends(get_comment_service),
) -> List[CommentOut]:
    """Comments of a visible post, oldest first; hidden ones only for moderators."""
    privileged = is_privileged(user)
    await posts.get_post(post_id, user.sub if user else None, privileged)
    stream = comments.list_comments(post_id, only_visible=not (include_hidden and privileged))
    return [_comment_out(c) async for c in stream]


@router.post(
    "/posts/{post_id}/comments",
    response_model=CommentOut,
    status_code=status.HTTP_201_CREATED,
    tags=["comments"],
)
async def add_comment(
    post_id: str,
    payload: CommentCreate,
    user: User = Depends(get_current_user),
    posts: PostService = Depends(get_post_service),
    comments: CommentService = Depends(get_comment_service),
) -> CommentOut:
    await posts.get_post(post_id, user.sub, is_privileged(user))
    comment = await comments.add_comment(post_id, user.sub, payload.body, payload.parent_comment_id)
    return _comment_out(comment)


def _may_see_comment(comment: Comment, user: Optional[User]) -> bool:
    if comment.status is CommentStatus.VISIBLE or is_privileged(user):
        return True
    return user is not None and not comment.is_tombstone and comment.author_id == user.sub


@router.get("/comments/{comment_id}", response_model=CommentOut, tags=["comments"])
async def read_comment(
    comment_id: str,
    user: Optional[User] = Depends(get_optional_user),
    posts: PostService = Depends(get_post_service),
    comments: CommentService = Depends(get_comment_service),
) -> CommentOut:
    """Return one comment; 404 unless the caller may see both it and its post."""
    comment = await comments.get_comment(comment_id)
    if not _may_see_comment(comment, user):
        raise NotFound(f"comment {comment_id} not found")
    try:
        await posts.get_post(comment.post_id, user.sub if user else None, is_privileged(user))
    except NotFound:
        raise NotFound(f"comment {comment_id} not found") from None
    return _comment_out(comment)


async def _owned_comment(comments: CommentService, comment_id: str, user: User) -> Comment:
    comment = await comments.get_comment(comment_id)
    if comment.is_tombstone:
        raise NotFound(f"comment {comment_id} not found")
    require_owner_or_moderator(user, comment.author_id)
    return comment


@router.patch("/comments/{comment_id}", response_model=CommentOut, tags=["comments"])
async def edit_comment(
    comment_id: str,
    payload: CommentEdit,
    user: User = Depends(get_current_user),
    comments: CommentService = Depends(get_comment_service),
) -> CommentOut:
    await _owned_comment(comments, comment_id, user)
    return _comment_out(await comments.edit_comment(comment_id, payload.body))


@router.post("/comments/{comment_id}/moderation", response_model=CommentOut, tags=["moderation"])
async def moderate_comment(
    comment_id: str,
    payload: ModerationDecisionRequest,
    user: User = Depends(require_moderator),
    comments: CommentService = Depends(get_comment_service),
) -> CommentOut:
    comment = await comments.moderate_comment(comment_id, payload.decision)
    audit_event(user.sub, f"comment.{payload.decision}", f"comment:{comment_id}", status=comment.status.value)
    return _comment_out(comment)


@router.delete("/comments/{comment_id}", response_model=DeletedOut, tags=["comments"])
async def delete_comment(
    comment_id: str,
    user: User = Depends(get_current_user),
    comments: CommentService = Depends(get_comment_service),
) -> DeletedOut:
    await _owned_comment(comments, comment_id, user)
    children = await comments.delete_comment(comment_id)
    audit_event(user.sub, "deleted", f"comment:{comment_id}", replies=children)
    return DeletedOut(comments_affected=children)
