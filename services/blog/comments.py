"""Comment service: threaded replies, moderation, tombstoning and lazy listing."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

from packages.common.config import Settings
from packages.common.metrics import mark_comment_transition
from . import repo
from .domain import (
    Comment,
    CommentStatus,
    can_accept_comment,
    new_id,
    utcnow,
    validate_comment_body,
)
from .errors import ConflictError, FieldError, IllegalTransition, NotFound, ValidationError
from .moderation import CommentDecision, comment_transition

log = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


class CommentStream:
    """Lazy, finite, restartable view over one post's comments.

    Each `async for` starts from the beginning and pulls keyset batches of
    `batch_size` rows ordered by (created_at, id). Tombstones come back with
    their content redacted.
    """

    def __init__(
        self,
        storage: repo.Storage,
        post_id: str,
        only_visible: bool,
        batch_size: int = DEFAULT_BATCH_SIZE,
        timeout: Optional[float] = None,
    ) -> None:
        self._storage = storage
        self.post_id = post_id
        self.only_visible = only_visible
        self.batch_size = batch_size
        self._timeout = timeout

    def __aiter__(self) -> AsyncIterator[Comment]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Comment]:
        after: Optional[tuple[datetime, str]] = None
        first = True
        while True:
            async def _batch(session, after=after, check_post=first):
                if check_post and await repo.get_post(session, self.post_id, include_deleted=True) is None:
                    raise NotFound(f"post {self.post_id} not found")
                return await repo.comments_after(session, self.post_id, self.only_visible, after, self.batch_size)

            batch = await self._storage.read(_batch, self._timeout)
            first = False
            for comment in batch:
                yield comment.redacted()
            if len(batch) < self.batch_size:
                return
            last = batch[-1]
            after = (last.created_at, last.id)

    async def to_list(self) -> list[Comment]:
        return [c async for c in self]


class CommentService:
    """Orchestrates comment creation, moderation and deletion."""

    def __init__(
        self,
        storage: repo.Storage,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = new_id,
    ) -> None:
        self._storage = storage
        self._settings = settings
        self._clock = clock
        self._new_id = id_factory

    async def add_comment(
        self,
        post_id: str,
        author_id: str,
        body: str,
        parent_comment_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Comment:
        """Attach a comment (optionally a reply) to a post.

        Raises:
            ValidationError: blank or oversized body, missing author.
            NotFound: post absent, or parent absent/deleted/on another post.
            IllegalTransition: the post does not accept comments in its state.
        """
        log.debug("adding comment to post %s (parent=%s)", post_id, parent_comment_id)
        errors = validate_comment_body(body)
        if not author_id:
            errors.append(FieldError("author_id", "must not be blank"))
        if errors:
            raise ValidationError(errors)

        initial = CommentStatus.VISIBLE if self._settings.COMMENTS_AUTO_APPROVE else CommentStatus.PENDING_REVIEW
        require_published = self._settings.COMMENTS_REQUIRE_PUBLISHED
        now = self._clock()

        async def _tx(session):
            post = await repo.get_post(session, post_id)
            if post is None:
                raise NotFound(f"post {post_id} not found")
            if not can_accept_comment(post, require_published):
                raise IllegalTransition(f"post {post_id} is {post.status.value} and does not accept comments")
            if parent_comment_id is not None:
                parent = await repo.get_comment(session, parent_comment_id)
                if parent is None or parent.post_id != post_id or parent.is_tombstone:
                    raise NotFound(f"parent comment {parent_comment_id} not found on post {post_id}")
            comment = Comment(
                id=self._new_id(),
                post_id=post_id,
                author_id=author_id,
                body=body,
                status=initial,
                created_at=now,
                parent_comment_id=parent_comment_id,
            )
            return await repo.insert_comment(session, comment)

        comment = await self._storage.write(_tx, timeout)
        log.info("comment %s added to post %s as %s", comment.id, post_id, comment.status.value)
        return comment

    async def get_comment(self, comment_id: str, timeout: Optional[float] = None) -> Comment:
        async def _tx(session):
            return await repo.get_comment(session, comment_id)

        comment = await self._storage.read(_tx, timeout)
        if comment is None:
            raise NotFound(f"comment {comment_id} not found")
        return comment.redacted()

    async def moderate_comment(
        self,
        comment_id: str,
        decision: CommentDecision | str,
        timeout: Optional[float] = None,
    ) -> Comment:
        """Apply a moderation decision (approve, reject, takedown)."""
        try:
            decision = CommentDecision(decision)
        except ValueError:
            raise ValidationError([FieldError("decision", f"unknown decision {decision!r}")]) from None

        async def _tx(session):
            current = await repo.get_comment(session, comment_id)
            if current is None or current.is_tombstone:
                raise NotFound(f"comment {comment_id} not found")
            target = comment_transition(current.status, decision)
            if not await repo.set_comment_status(session, comment_id, current.status, target):
                raise ConflictError(f"comment {comment_id} was moderated concurrently")
            return replace(current, status=target)

        comment = await self._storage.write(_tx, timeout)
        mark_comment_transition(decision.value)
        log.info("comment %s: %s -> %s", comment_id, decision.value, comment.status.value)
        return comment

    async def edit_comment(self, comment_id: str, body: str, timeout: Optional[float] = None) -> Comment:
        """Replace the body of a live comment that has not been hidden."""
        errors = validate_comment_body(body)
        if errors:
            raise ValidationError(errors)
        now = self._clock()

        async def _tx(session):
            current = await repo.get_comment(session, comment_id)
            if current is None or current.is_tombstone:
                raise NotFound(f"comment {comment_id} not found")
            if current.status is CommentStatus.HIDDEN:
                raise IllegalTransition(f"comment {comment_id} is hidden and cannot be edited")
            if not await repo.set_comment_body(session, comment_id, body, now):
                raise ConflictError(f"comment {comment_id} changed concurrently")
            return replace(current, body=body, updated_at=now)

        comment = await self._storage.write(_tx, timeout)
        log.info("comment %s edited", comment_id)
        return comment

    async def delete_comment(self, comment_id: str, timeout: Optional[float] = None) -> int:
        """Tombstone a comment; its replies stay in place and are flagged.

        Returns:
            The number of direct replies whose parent became a tombstone.
        """
        now = self._clock()

        async def _tx(session):
            children = await repo.tombstone_comment(session, comment_id, now)
            if children is None:
                raise NotFound(f"comment {comment_id} not found")
            return children

        children = await self._storage.write(_tx, timeout)
        mark_comment_transition("delete")
        log.info("comment %s deleted, %s replies flagged", comment_id, children)
        return children

    def list_comments(
        self,
        post_id: str,
        only_visible: bool = True,
        batch_size: int = DEFAULT_BATCH_SIZE,
        timeout: Optional[float] = None,
    ) -> CommentStream:
        """Return a restartable async stream of the post's comments, oldest first."""
        if batch_size < 1:
            raise ValidationError([FieldError("batch_size", "must be positive")])
        return CommentStream(self._storage, post_id, only_visible, batch_size, timeout)
