"""Moderation state machine for posts and comments.

- `POST_TRANSITIONS` / `COMMENT_TRANSITIONS`: the legal-move tables.
- `post_transition` / `comment_transition`: return the target state or raise
  `IllegalTransition`.
Archived posts and Hidden comments are terminal.
"""

from __future__ import annotations

from enum import Enum

from .domain import CommentStatus, PostStatus
from .errors import IllegalTransition


class PostAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    ARCHIVE = "archive"
    RESUBMIT = "resubmit"


class CommentDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    TAKEDOWN = "takedown"


# (current, action) -> next
POST_TRANSITIONS: dict[tuple[PostStatus, PostAction], PostStatus] = {
    (PostStatus.DRAFT, PostAction.SUBMIT): PostStatus.PENDING_REVIEW,
    (PostStatus.PENDING_REVIEW, PostAction.APPROVE): PostStatus.PUBLISHED,
    (PostStatus.PENDING_REVIEW, PostAction.REJECT): PostStatus.REJECTED,
    (PostStatus.PUBLISHED, PostAction.ARCHIVE): PostStatus.ARCHIVED,
    (PostStatus.REJECTED, PostAction.RESUBMIT): PostStatus.DRAFT,
}

COMMENT_TRANSITIONS: dict[tuple[CommentStatus, CommentDecision], CommentStatus] = {
    (CommentStatus.PENDING_REVIEW, CommentDecision.APPROVE): CommentStatus.VISIBLE,
    (CommentStatus.PENDING_REVIEW, CommentDecision.REJECT): CommentStatus.HIDDEN,
    (CommentStatus.VISIBLE, CommentDecision.TAKEDOWN): CommentStatus.HIDDEN,
}


def post_transition(current: PostStatus, action: PostAction) -> PostStatus:
    """Return the post state `action` leads to from `current`.

    Raises:
        IllegalTransition: the pair is not in `POST_TRANSITIONS`.
    """
    nxt = POST_TRANSITIONS.get((PostStatus(current), PostAction(action)))
    if nxt is None:
        raise IllegalTransition(f"cannot {PostAction(action).value} a post in state {PostStatus(current).value}")
    return nxt


def comment_transition(current: CommentStatus, decision: CommentDecision) -> CommentStatus:
    """Return the comment state `decision` leads to from `current`.

    Raises:
        IllegalTransition: the pair is not in `COMMENT_TRANSITIONS`.
    """
    nxt = COMMENT_TRANSITIONS.get((CommentStatus(current), CommentDecision(decision)))
    if nxt is None:
        raise IllegalTransition(
            f"cannot {CommentDecision(decision).value} a comment in state {CommentStatus(current).value}"
        )
    return nxt


def allowed_post_actions(current: PostStatus) -> list[PostAction]:
    return [action for (state, action) in POST_TRANSITIONS if state is PostStatus(current)]


def is_terminal(state: PostStatus | CommentStatus) -> bool:
    if isinstance(state, PostStatus):
        return not allowed_post_actions(state)
    return not any(s is state for (s, _) in COMMENT_TRANSITIONS)
