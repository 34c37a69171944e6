"""Post service: creation, versioned edits, moderation moves, deletion and likes.

Every mutation runs as one `Storage.write` unit of work, so the post row, its
tag rows and any cascaded comment rows commit or roll back together.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from packages.common.config import Settings
from packages.common.metrics import mark_conflict, mark_post_transition
from . import repo
from .domain import (
    Post,
    PostPatch,
    PostStatus,
    is_editable,
    is_publishable,
    is_visible_to,
    new_id,
    normalize_tags,
    utcnow,
    validate_post_fields,
)
from .errors import ConflictError, FieldError, IllegalTransition, InvariantViolation, NotFound, ValidationError
from .moderation import PostAction, post_transition

log = logging.getLogger(__name__)


def _not_found(post_id: str) -> NotFound:
    return NotFound(f"post {post_id} not found")


def _conflict(post_id: str, expected: int, actual: Optional[int] = None) -> ConflictError:
    mark_conflict()
    if actual is None:
        return ConflictError(f"post {post_id} changed concurrently (expected version {expected})")
    return ConflictError(f"post {post_id} is at version {actual}, expected {expected}")


class PostService:
    """Orchestrates the post lifecycle on top of the storage collaborator."""

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

    async def create_post(
        self,
        author_id: str,
        title: str,
        body: str,
        tags: Iterable[str] | None = None,
        timeout: Optional[float] = None,
    ) -> Post:
        """Create a Draft post owned by `author_id`.

        Raises:
            ValidationError: blank/oversized title, blank body, bad tags or no author.
        """
        log.debug("creating post author=%s title=%r", author_id, title)
        tags = list(tags or [])
        errors = validate_post_fields(title, body, tags)
        if not author_id:
            errors.append(FieldError("author_id", "must not be blank"))
        if errors:
            raise ValidationError(errors)

        now = self._clock()
        post = Post(
            id=self._new_id(),
            author_id=author_id,
            title=title.strip(),
            body=body,
            status=PostStatus.DRAFT,
            tags=normalize_tags(tags),
            version=0,
            created_at=now,
            updated_at=now,
        )

        async def _tx(session):
            return await repo.insert_post(session, post)

        created = await self._storage.write(_tx, timeout)
        log.info("post %s created by %s", created.id, author_id)
        return created

    async def update_post(
        self,
        post_id: str,
        expected_version: int,
        patch: PostPatch,
        timeout: Optional[float] = None,
    ) -> Post:
        """Apply `patch` if the stored version equals `expected_version`.

        Raises:
            NotFound, IllegalTransition (archived), ConflictError (stale version),
            ValidationError, InvariantViolation (Published post losing its tags).
        """
        log.debug("updating post %s at version %s", post_id, expected_version)
        if patch.is_empty():
            raise ValidationError([FieldError("patch", "no fields to update")])
        errors = validate_post_fields(patch.title, patch.body, patch.tags)
        if errors:
            raise ValidationError(errors)

        now = self._clock()

        async def _tx(session):
            current = await repo.get_post(session, post_id)
            if current is None:
                raise _not_found(post_id)
            if not is_editable(current):
                raise IllegalTransition(f"post {post_id} is {current.status.value} and cannot be edited")
            if current.version != expected_version:
                raise _conflict(post_id, expected_version, current.version)
            changes = {"version": expected_version + 1, "updated_at": now}
            if patch.title is not None:
                changes["title"] = patch.title.strip()
            if patch.body is not None:
                changes["body"] = patch.body
            if patch.tags is not None:
                changes["tags"] = normalize_tags(patch.tags)
            updated = current.evolve(**changes)
            if not await repo.compare_and_set_post(session, updated, expected_version):
                raise _conflict(post_id, expected_version)
            return updated

        post = await self._storage.write(_tx, timeout)
        log.info("post %s updated to version %s", post_id, post.version)
        return post

    async def submit_for_review(self, post_id: str, expected_version: int, timeout: Optional[float] = None) -> Post:
        return await self._transition(post_id, PostAction.SUBMIT, expected_version, timeout)

    async def resubmit(self, post_id: str, expected_version: int, timeout: Optional[float] = None) -> Post:
        """Send a Rejected post back to Draft; the rejection reason is cleared."""
        return await self._transition(post_id, PostAction.RESUBMIT, expected_version, timeout)

    async def approve(self, post_id: str, timeout: Optional[float] = None) -> Post:
        return await self._transition(post_id, PostAction.APPROVE, None, timeout)

    async def reject(self, post_id: str, reason: str, timeout: Optional[float] = None) -> Post:
        if not reason or not reason.strip():
            raise ValidationError([FieldError("reason", "must not be blank")])
        return await self._transition(post_id, PostAction.REJECT, None, timeout, reason=reason.strip())

    async def archive(self, post_id: str, timeout: Optional[float] = None) -> Post:
        return await self._transition(post_id, PostAction.ARCHIVE, None, timeout)

    async def _transition(
        self,
        post_id: str,
        action: PostAction,
        expected_version: Optional[int],
        timeout: Optional[float],
        reason: Optional[str] = None,
    ) -> Post:
        log.debug("post %s: %s requested", post_id, action.value)
        now = self._clock()

        async def _tx(session):
            current = await repo.get_post(session, post_id)
            if current is None:
                raise _not_found(post_id)
            if expected_version is not None and current.version != expected_version:
                raise _conflict(post_id, expected_version, current.version)
            target = post_transition(current.status, action)
            if target is PostStatus.PUBLISHED and not is_publishable(current):
                raise InvariantViolation(f"post {post_id} needs a body and at least one tag to be published")
            changes = {"status": target, "version": current.version + 1, "updated_at": now}
            if action is PostAction.REJECT:
                changes["rejection_reason"] = reason
            elif action is PostAction.RESUBMIT:
                changes["rejection_reason"] = None
            updated = current.evolve(**changes)
            if not await repo.compare_and_set_post(session, updated, current.version):
                raise _conflict(post_id, current.version)
            return updated

        post = await self._storage.write(_tx, timeout)
        mark_post_transition(action.value)
        log.info("post %s: %s -> %s (version %s)", post_id, action.value, post.status.value, post.version)
        return post

    async def get_post(
        self,
        post_id: str,
        viewer_id: Optional[str] = None,
        privileged: bool = False,
        timeout: Optional[float] = None,
    ) -> Post:
        """Return the post if `viewer_id`/`privileged` may see it.

        Invisible posts raise NotFound so their existence is not disclosed.
        """
        async def _tx(session):
            return await repo.get_post(session, post_id)

        post = await self._storage.read(_tx, timeout)
        if post is None or not is_visible_to(post, viewer_id, privileged):
            raise _not_found(post_id)
        return post

    async def delete_post(self, post_id: str, timeout: Optional[float] = None) -> int:
        """Delete a post and cascade to its comments.

        In "soft" mode the post is tombstoned and every comment becomes Hidden;
        in "hard" mode comment, tag and post rows are removed.

        Returns:
            The number of comments affected.
        """
        mode = self._settings.POST_DELETE_MODE
        log.debug("deleting post %s (%s)", post_id, mode)
        now = self._clock()

        async def _tx(session):
            if await repo.get_post(session, post_id) is None:
                raise _not_found(post_id)
            if mode == "hard":
                return await repo.hard_delete_post(session, post_id)
            affected = await repo.hide_post_comments(session, post_id, now)
            if not await repo.soft_delete_post(session, post_id, now):
                raise _not_found(post_id)
            return affected

        affected = await self._storage.write(_tx, timeout)
        mark_post_transition("delete")
        log.info("post %s deleted (%s), %s comments cascaded", post_id, mode, affected)
        return affected

    async def like_post(self, post_id: str, timeout: Optional[float] = None) -> int:
        """Add one like to a Published post and return the new count."""
        async def _tx(session):
            count = await repo.increment_likes(session, post_id)
            if count is None:
                if await repo.get_post(session, post_id) is None:
                    raise _not_found(post_id)
                raise IllegalTransition(f"post {post_id} is not published")
            return count

        count = await self._storage.write(_tx, timeout)
        log.debug("post %s likes=%s", post_id, count)
        return count
