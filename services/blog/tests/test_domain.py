"""Tests for the entity model predicates and the moderation state machine."""

import itertools
from datetime import datetime, timezone

import pytest

from services.blog.domain import (
    Comment,
    CommentStatus,
    Post,
    PostStatus,
    can_accept_comment,
    is_editable,
    is_publishable,
    is_visible_to,
    normalize_tags,
    validate_comment_body,
    validate_post_fields,
)
from services.blog.errors import IllegalTransition, InvariantViolation
from services.blog.moderation import (
    COMMENT_TRANSITIONS,
    POST_TRANSITIONS,
    CommentDecision,
    PostAction,
    allowed_post_actions,
    comment_transition,
    is_terminal,
    post_transition,
)

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_post(**overrides) -> Post:
    fields = dict(
        id="p1",
        author_id="alice",
        title="Hello",
        body="World",
        status=PostStatus.DRAFT,
        tags=frozenset({"intro"}),
        version=0,
        created_at=NOW,
        updated_at=NOW,
    )
    fields.update(overrides)
    return Post(**fields)


def test_normalize_tags_lowercases_trims_and_drops_blanks() -> None:
    assert normalize_tags([" Intro ", "Python  Tips", "", "INTRO"]) == frozenset({"intro", "python-tips"})
    assert normalize_tags(None) == frozenset()


def test_validate_post_fields_aggregates_every_failure() -> None:
    errors = validate_post_fields("   ", "", ["x" * 51])
    assert {e.field for e in errors} == {"title", "body", "tags"}
    assert validate_post_fields("t" * 201, "body", [])[0].field == "title"
    assert validate_post_fields("ok", "ok", ["fine"]) == []
    # length is checked on the trimmed title that gets stored
    assert validate_post_fields("  " + "t" * 200, "body", []) == []
    # None means "not supplied" for partial updates
    assert validate_post_fields(None, None, None) == []


def test_validate_comment_body_limits() -> None:
    assert validate_comment_body("x" * 1000) == []
    assert validate_comment_body("x" * 1001)[0].field == "body"
    assert validate_comment_body("  ")[0].message == "must not be blank"


def test_published_post_without_tags_cannot_be_constructed() -> None:
    with pytest.raises(InvariantViolation):
        make_post(status=PostStatus.PUBLISHED, tags=frozenset())
    published = make_post(status=PostStatus.PUBLISHED)
    assert is_publishable(published)
    with pytest.raises(InvariantViolation):
        published.evolve(tags=frozenset())


def test_editable_and_comment_predicates() -> None:
    assert is_editable(make_post())
    assert not is_editable(make_post(status=PostStatus.ARCHIVED))
    assert not is_editable(make_post(deleted_at=NOW))

    assert not can_accept_comment(make_post(status=PostStatus.DRAFT))
    assert can_accept_comment(make_post(status=PostStatus.PENDING_REVIEW))
    assert can_accept_comment(make_post(status=PostStatus.PUBLISHED))
    assert not can_accept_comment(make_post(status=PostStatus.ARCHIVED))
    assert not can_accept_comment(make_post(status=PostStatus.PENDING_REVIEW), require_published=True)


def test_visibility_predicate() -> None:
    draft = make_post()
    assert not is_visible_to(draft)
    assert not is_visible_to(draft, viewer_id="bob")
    assert is_visible_to(draft, viewer_id="alice")
    assert is_visible_to(draft, privileged=True)
    assert is_visible_to(make_post(status=PostStatus.PUBLISHED))
    assert not is_visible_to(make_post(status=PostStatus.PUBLISHED, deleted_at=NOW), privileged=True)


def test_excerpt_truncates_long_bodies() -> None:
    assert make_post(body="short").excerpt == "short"
    excerpt = make_post(body="a" * 250).excerpt
    assert len(excerpt) == 203
    assert excerpt.endswith("...")


def test_comment_cannot_be_its_own_parent() -> None:
    with pytest.raises(InvariantViolation):
        Comment(
            id="c1",
            post_id="p1",
            author_id="bob",
            body="hi",
            status=CommentStatus.PENDING_REVIEW,
            created_at=NOW,
            parent_comment_id="c1",
        )


def test_tombstone_is_redacted() -> None:
    c = Comment(id="c1", post_id="p1", author_id="bob", body="hi", status=CommentStatus.HIDDEN, created_at=NOW, deleted_at=NOW)
    red = c.redacted()
    assert red.body == "" and red.author_id == ""
    assert red.id == "c1" and red.post_id == "p1"


@pytest.mark.parametrize(
    "current,action,expected",
    [
        (PostStatus.DRAFT, PostAction.SUBMIT, PostStatus.PENDING_REVIEW),
        (PostStatus.PENDING_REVIEW, PostAction.APPROVE, PostStatus.PUBLISHED),
        (PostStatus.PENDING_REVIEW, PostAction.REJECT, PostStatus.REJECTED),
        (PostStatus.PUBLISHED, PostAction.ARCHIVE, PostStatus.ARCHIVED),
        (PostStatus.REJECTED, PostAction.RESUBMIT, PostStatus.DRAFT),
    ],
)
def test_legal_post_transitions(current, action, expected) -> None:
    assert post_transition(current, action) is expected


def test_every_other_post_transition_is_illegal() -> None:
    for current, action in itertools.product(PostStatus, PostAction):
        if (current, action) in POST_TRANSITIONS:
            continue
        with pytest.raises(IllegalTransition):
            post_transition(current, action)


def test_comment_transitions() -> None:
    assert comment_transition(CommentStatus.PENDING_REVIEW, CommentDecision.APPROVE) is CommentStatus.VISIBLE
    assert comment_transition(CommentStatus.PENDING_REVIEW, CommentDecision.REJECT) is CommentStatus.HIDDEN
    assert comment_transition(CommentStatus.VISIBLE, CommentDecision.TAKEDOWN) is CommentStatus.HIDDEN
    for current, decision in itertools.product(CommentStatus, CommentDecision):
        if (current, decision) in COMMENT_TRANSITIONS:
            continue
        with pytest.raises(IllegalTransition):
            comment_transition(current, decision)


def test_terminal_states() -> None:
    assert is_terminal(PostStatus.ARCHIVED)
    assert is_terminal(CommentStatus.HIDDEN)
    assert not is_terminal(PostStatus.DRAFT)
    assert not is_terminal(CommentStatus.VISIBLE)
    assert allowed_post_actions(PostStatus.PENDING_REVIEW) == [PostAction.APPROVE, PostAction.REJECT]
