"""Repository layer for Blog service.

Provides the `Storage` collaborator (engine, transaction boundary, deadline and
error translation) and explicit data-access helpers that take an active
AsyncSession and return plain `Post` / `Comment` values.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional, TypeVar

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from packages.common.metrics import mark_storage_error
from .domain import Comment, CommentStatus, Post, PostStatus
from .errors import StorageFailure, Timeout
from .models import Base, CommentRow, PostRow, PostTagRow

log = logging.getLogger(__name__)

T = TypeVar("T")


class Storage:
    """Owns the async engine and runs units of work inside one transaction.

    `write` shields the unit of work from caller cancellation (it completes or
    rolls back on its own deadline); `read` stays cancellable.
    """

    def __init__(self, dsn: str, default_timeout: float = 5.0, echo: bool = False) -> None:
        self.engine = create_async_engine(dsn, echo=echo)
        self.sessions = async_sessionmaker(self.engine, expire_on_commit=False)
        self.default_timeout = default_timeout

    async def init_db(self) -> None:
        """Create database schema if it doesn't exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Begin a transaction; commit on clean exit, roll back on any exception."""
        async with self.sessions() as session:
            async with session.begin():
                yield session

    async def write(self, work: Callable[[AsyncSession], Awaitable[T]], timeout: Optional[float] = None) -> T:
        return await asyncio.shield(self._run(work, timeout))

    async def read(self, work: Callable[[AsyncSession], Awaitable[T]], timeout: Optional[float] = None) -> T:
        return await self._run(work, timeout)

    async def _run(self, work: Callable[[AsyncSession], Awaitable[T]], timeout: Optional[float]) -> T:
        deadline = self.default_timeout if timeout is None else timeout

        async def _unit() -> T:
            async with self.transaction() as session:
                return await work(session)

        try:
            return await asyncio.wait_for(_unit(), deadline)
        except asyncio.TimeoutError:
            mark_storage_error("timeout")
            log.warning("storage call exceeded %.3fs deadline; rolled back", deadline)
            raise Timeout(f"storage call exceeded {deadline}s") from None
        except SQLAlchemyError as exc:
            mark_storage_error("failure")
            log.error("storage failure: %s", exc.__class__.__name__, exc_info=True)
            raise StorageFailure(f"storage unavailable: {exc.__class__.__name__}") from exc


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _to_post(row: PostRow, tags: Iterable[str]) -> Post:
    return Post(
        id=row.id,
        author_id=row.author_id,
        title=row.title,
        body=row.body,
        status=PostStatus(row.status),
        tags=frozenset(tags),
        version=row.version,
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
        likes_count=row.likes_count or 0,
        rejection_reason=row.rejection_reason,
        deleted_at=_utc(row.deleted_at),
    )


def _to_comment(row: CommentRow) -> Comment:
    return Comment(
        id=row.id,
        post_id=row.post_id,
        author_id=row.author_id,
        body=row.body,
        status=CommentStatus(row.status),
        created_at=_utc(row.created_at),
        parent_comment_id=row.parent_comment_id,
        parent_tombstoned=bool(row.parent_tombstoned),
        updated_at=_utc(row.updated_at),
        deleted_at=_utc(row.deleted_at),
    )


# ---------- posts ----------

async def insert_post(session: AsyncSession, post: Post) -> Post:
    """Insert a post row together with its tag rows."""
    session.add(
        PostRow(
            id=post.id,
            author_id=post.author_id,
            title=post.title,
            body=post.body,
            status=post.status.value,
            version=post.version,
            likes_count=post.likes_count,
            rejection_reason=post.rejection_reason,
            created_at=post.created_at,
            updated_at=post.updated_at,
        )
    )
    session.add_all(PostTagRow(post_id=post.id, tag=t) for t in sorted(post.tags))
    await session.flush()
    return post


async def load_tags(session: AsyncSession, post_ids: list[str]) -> dict[str, frozenset[str]]:
    """Return tags keyed by post id; posts without tags map to an empty set."""
    found: dict[str, set[str]] = {pid: set() for pid in post_ids}
    if not post_ids:
        return {}
    res = await session.execute(select(PostTagRow.post_id, PostTagRow.tag).where(PostTagRow.post_id.in_(post_ids)))
    for pid, tag in res:
        found[pid].add(tag)
    return {pid: frozenset(tags) for pid, tags in found.items()}


async def get_post(session: AsyncSession, post_id: str, include_deleted: bool = False) -> Post | None:
    """Fetch a single post by id, tags included.

    Returns:
        The Post if found (and live, unless `include_deleted`); otherwise None.
    """
    q = select(PostRow).where(PostRow.id == post_id)
    if not include_deleted:
        q = q.where(PostRow.deleted_at.is_(None))
    row = (await session.execute(q)).scalar_one_or_none()
    if row is None:
        return None
    tags = await load_tags(session, [row.id])
    return _to_post(row, tags[row.id])


async def replace_tags(session: AsyncSession, post_id: str, tags: frozenset[str]) -> None:
    await session.execute(delete(PostTagRow).where(PostTagRow.post_id == post_id))
    session.add_all(PostTagRow(post_id=post_id, tag=t) for t in sorted(tags))
    await session.flush()


async def compare_and_set_post(session: AsyncSession, post: Post, expected_version: int) -> bool:
    """Write `post` only if the stored version still equals `expected_version`.

    The stored version becomes `post.version`. Tags are rewritten in the same
    transaction when the row update wins.

    Returns:
        True if exactly one row was updated.
    """
    res = await session.execute(
        update(PostRow)
        .where(
            PostRow.id == post.id,
            PostRow.version == expected_version,
            PostRow.deleted_at.is_(None),
        )
        .values(
            title=post.title,
            body=post.body,
            status=post.status.value,
            rejection_reason=post.rejection_reason,
            updated_at=post.updated_at,
            version=post.version,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        return False
    await replace_tags(session, post.id, post.tags)
    return True


async def increment_likes(session: AsyncSession, post_id: str) -> int | None:
    """Atomically add one like to a live Published post; None if it is not one."""
    res = await session.execute(
        update(PostRow)
        .where(
            PostRow.id == post_id,
            PostRow.status == PostStatus.PUBLISHED.value,
            PostRow.deleted_at.is_(None),
        )
        .values(likes_count=PostRow.likes_count + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        return None
    return (await session.execute(select(PostRow.likes_count).where(PostRow.id == post_id))).scalar_one()


async def soft_delete_post(session: AsyncSession, post_id: str, now: datetime) -> bool:
    res = await session.execute(
        update(PostRow)
        .where(PostRow.id == post_id, PostRow.deleted_at.is_(None))
        .values(deleted_at=now, updated_at=now, version=PostRow.version + 1)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def hard_delete_post(session: AsyncSession, post_id: str) -> int:
    """Remove a post with its comments and tags; returns the number of comments removed."""
    removed = await session.execute(delete(CommentRow).where(CommentRow.post_id == post_id))
    await session.execute(delete(PostTagRow).where(PostTagRow.post_id == post_id))
    await session.execute(delete(PostRow).where(PostRow.id == post_id))
    return removed.rowcount


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _post_filter_clauses(status: Optional[str], tag: Optional[str], author_id: Optional[str], q: Optional[str]) -> list:
    clauses = [PostRow.deleted_at.is_(None)]
    if status is not None:
        clauses.append(PostRow.status == status)
    if author_id is not None:
        clauses.append(PostRow.author_id == author_id)
    if tag is not None:
        clauses.append(
            PostRow.id.in_(select(PostTagRow.post_id).where(PostTagRow.tag == tag))
        )
    if q:
        pattern = "%" + _escape_like(q.lower()) + "%"
        clauses.append(
            or_(
                func.lower(PostRow.title).like(pattern, escape="\\"),
                func.lower(PostRow.body).like(pattern, escape="\\"),
            )
        )
    return clauses


async def select_posts(
    session: AsyncSession,
    status: Optional[str] = None,
    tag: Optional[str] = None,
    author_id: Optional[str] = None,
    q: Optional[str] = None,
    offset: int = 0,
    limit: int = 10,
) -> tuple[list[Post], int]:
    """Return one page of posts (newest first, id ascending on ties) and the total match count."""
    clauses = _post_filter_clauses(status, tag, author_id, q)
    total = (await session.execute(select(func.count()).select_from(PostRow).where(*clauses))).scalar_one()
    res = await session.execute(
        select(PostRow)
        .where(*clauses)
        .order_by(PostRow.created_at.desc(), PostRow.id.asc())
        .offset(offset)
        .limit(limit)
    )
    rows = list(res.scalars())
    tags = await load_tags(session, [r.id for r in rows])
    return [_to_post(r, tags[r.id]) for r in rows], total


async def count_visible_comments(session: AsyncSession, post_ids: list[str]) -> dict[str, int]:
    if not post_ids:
        return {}
    res = await session.execute(
        select(CommentRow.post_id, func.count())
        .where(
            CommentRow.post_id.in_(post_ids),
            CommentRow.status == CommentStatus.VISIBLE.value,
            CommentRow.deleted_at.is_(None),
        )
        .group_by(CommentRow.post_id)
    )
    counts = {pid: 0 for pid in post_ids}
    counts.update({pid: n for pid, n in res})
    return counts


# ---------- comments ----------

async def insert_comment(session: AsyncSession, comment: Comment) -> Comment:
    session.add(
        CommentRow(
            id=comment.id,
            post_id=comment.post_id,
            author_id=comment.author_id,
            body=comment.body,
            status=comment.status.value,
            parent_comment_id=comment.parent_comment_id,
            parent_tombstoned=comment.parent_tombstoned,
            created_at=comment.created_at,
        )
    )
    await session.flush()
    return comment


async def get_comment(session: AsyncSession, comment_id: str) -> Comment | None:
    res = await session.execute(select(CommentRow).where(CommentRow.id == comment_id))
    row = res.scalar_one_or_none()
    return _to_comment(row) if row is not None else None


async def set_comment_status(
    session: AsyncSession,
    comment_id: str,
    expected: CommentStatus,
    new: CommentStatus,
) -> bool:
    """Move a live comment from `expected` to `new`; False if someone moved it first."""
    res = await session.execute(
        update(CommentRow)
        .where(
            CommentRow.id == comment_id,
            CommentRow.status == expected.value,
            CommentRow.deleted_at.is_(None),
        )
        .values(status=new.value)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def set_comment_body(session: AsyncSession, comment_id: str, body: str, now: datetime) -> bool:
    res = await session.execute(
        update(CommentRow)
        .where(
            CommentRow.id == comment_id,
            CommentRow.deleted_at.is_(None),
            CommentRow.status != CommentStatus.HIDDEN.value,
        )
        .values(body=body, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def tombstone_comment(session: AsyncSession, comment_id: str, now: datetime) -> int | None:
    """Hide a live comment, mark it deleted and flag its direct children.

    Returns:
        The number of children whose parent became a tombstone, or None when
        the comment was missing or already deleted.
    """
    res = await session.execute(
        update(CommentRow)
        .where(CommentRow.id == comment_id, CommentRow.deleted_at.is_(None))
        .values(status=CommentStatus.HIDDEN.value, deleted_at=now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        return None
    children = await session.execute(
        update(CommentRow)
        .where(CommentRow.parent_comment_id == comment_id)
        .values(parent_tombstoned=True)
        .execution_options(synchronize_session=False)
    )
    return children.rowcount


async def hide_post_comments(session: AsyncSession, post_id: str, now: datetime) -> int:
    """Hide and tombstone every comment of a post; returns the number of rows touched."""
    res = await session.execute(
        update(CommentRow)
        .where(CommentRow.post_id == post_id)
        .values(
            status=CommentStatus.HIDDEN.value,
            deleted_at=func.coalesce(CommentRow.deleted_at, now),
            parent_tombstoned=CommentRow.parent_comment_id.is_not(None),
        )
        .execution_options(synchronize_session=False)
    )
    return res.rowcount


async def comments_after(
    session: AsyncSession,
    post_id: str,
    only_visible: bool,
    after: Optional[tuple[datetime, str]],
    limit: int,
) -> list[Comment]:
    """One keyset batch of a post's comments in (created_at, id) order."""
    q = select(CommentRow).where(CommentRow.post_id == post_id)
    if only_visible:
        q = q.where(CommentRow.status == CommentStatus.VISIBLE.value, CommentRow.deleted_at.is_(None))
    if after is not None:
        ts, cid = after
        q = q.where(
            or_(
                CommentRow.created_at > ts,
                and_(CommentRow.created_at == ts, CommentRow.id > cid),
            )
        )
    q = q.order_by(CommentRow.created_at.asc(), CommentRow.id.asc()).limit(limit)
    res = await session.execute(q)
    return [_to_comment(r) for r in res.scalars()]
