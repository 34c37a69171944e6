"""Query/filter engine for post listings. Read-only."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from . import repo
from .domain import Post, PostStatus, normalize_tag
from .errors import FieldError, ValidationError

log = logging.getLogger(__name__)

MAX_LIMIT = 100


@dataclass(frozen=True)
class PostFilter:
    """Listing filter; `status` is only honoured for privileged callers."""
    status: Optional[PostStatus] = None
    tag: Optional[str] = None
    author_id: Optional[str] = None
    q: Optional[str] = None


@dataclass(frozen=True)
class PageRequest:
    offset: int = 0
    limit: int = 10


@dataclass(frozen=True)
class PostSummary:
    post: Post
    comments_count: int

    @property
    def excerpt(self) -> str:
        return self.post.excerpt


@dataclass(frozen=True)
class PostPage:
    items: list[PostSummary]
    total: int
    offset: int
    limit: int

    @property
    def has_next(self) -> bool:
        return self.offset + len(self.items) < self.total

    @property
    def has_prev(self) -> bool:
        return self.offset > 0


class QueryEngine:
    """Paginated, filtered post listings ordered newest first (id ascending on ties)."""

    def __init__(self, storage: repo.Storage, max_page_size: int = MAX_LIMIT) -> None:
        self._storage = storage
        self._max_limit = min(max_page_size, MAX_LIMIT)

    def _check_page(self, page: PageRequest) -> None:
        errors = []
        if page.offset < 0:
            errors.append(FieldError("offset", "must be >= 0"))
        if not 1 <= page.limit <= self._max_limit:
            errors.append(FieldError("limit", f"must be between 1 and {self._max_limit}"))
        if errors:
            raise ValidationError(errors)

    async def list_posts(
        self,
        filter: Optional[PostFilter] = None,
        page: Optional[PageRequest] = None,
        privileged: bool = False,
        timeout: Optional[float] = None,
    ) -> PostPage:
        """Return one page of posts matching `filter`.

        Non-privileged callers only ever see Published posts, whatever status
        they asked for.
        """
        filter = filter or PostFilter()
        page = page or PageRequest()
        self._check_page(page)

        if privileged:
            status = PostStatus(filter.status).value if filter.status is not None else None
        else:
            status = PostStatus.PUBLISHED.value
        tag = normalize_tag(filter.tag) if filter.tag else None
        q = filter.q.strip() if filter.q else None
        log.debug("listing posts status=%s tag=%s author=%s q=%r page=%s", status, tag, filter.author_id, q, page)

        async def _tx(session):
            posts, total = await repo.select_posts(
                session,
                status=status,
                tag=tag or None,
                author_id=filter.author_id,
                q=q or None,
                offset=page.offset,
                limit=page.limit,
            )
            counts = await repo.count_visible_comments(session, [p.id for p in posts])
            return PostPage(
                items=[PostSummary(post=p, comments_count=counts[p.id]) for p in posts],
                total=total,
                offset=page.offset,
                limit=page.limit,
            )

        return await self._storage.read(_tx, timeout)
