"""Tests for the Post service lifecycle, optimistic concurrency and cascades."""

import asyncio

import pytest

from services.blog import repo
from services.blog.domain import CommentStatus, PostPatch, PostStatus
from services.blog.errors import (
    ConflictError,
    IllegalTransition,
    InvariantViolation,
    NotFound,
    StorageFailure,
    Timeout,
    ValidationError,
)
from services.blog.posts import PostService
from services.blog.comments import CommentService
from services.blog.moderation import CommentDecision


@pytest.mark.asyncio
async def test_draft_submit_approve_scenario(posts) -> None:
    """Draft -> PendingReview -> Published bumps the version twice and keeps tags."""
    post = await posts.create_post("alice", "Hello", "World", ["intro"])
    assert post.status is PostStatus.DRAFT
    assert post.version == 0

    submitted = await posts.submit_for_review(post.id, post.version)
    assert submitted.status is PostStatus.PENDING_REVIEW

    published = await posts.approve(post.id)
    assert published.status is PostStatus.PUBLISHED
    assert published.version == post.version + 2
    assert published.tags == frozenset({"intro"})

    stored = await posts.get_post(post.id)
    assert stored.status is PostStatus.PUBLISHED
    assert stored.version == 2
    assert stored.tags == frozenset({"intro"})
    assert stored.body == "World"


@pytest.mark.asyncio
async def test_create_post_rejects_invalid_fields(posts) -> None:
    with pytest.raises(ValidationError) as err:
        await posts.create_post("alice", " ", "", ["ok"])
    assert {e.field for e in err.value.errors} == {"title", "body"}

    with pytest.raises(ValidationError):
        await posts.create_post("", "Title", "Body", [])


@pytest.mark.asyncio
async def test_tags_are_normalized_on_create(posts) -> None:
    post = await posts.create_post("alice", "Hello", "World", ["  Intro", "Deep Dive", "intro"])
    assert post.tags == frozenset({"intro", "deep-dive"})


@pytest.mark.asyncio
async def test_same_expected_version_only_one_update_wins(posts) -> None:
    post = await posts.create_post("alice", "Hello", "World", ["intro"])

    first = await posts.update_post(post.id, post.version, PostPatch(title="First"))
    assert first.version == post.version + 1

    with pytest.raises(ConflictError):
        await posts.update_post(post.id, post.version, PostPatch(title="Second"))

    stored = await posts.get_post(post.id, viewer_id="alice")
    assert stored.title == "First"
    assert stored.version == 1


@pytest.mark.asyncio
async def test_compare_and_set_refuses_stale_version(storage, posts) -> None:
    post = await posts.create_post("alice", "Hello", "World", ["intro"])
    await posts.update_post(post.id, 0, PostPatch(body="Newer"))

    async def _stale_write(session):
        return await repo.compare_and_set_post(session, post.evolve(title="Lost", version=1), expected_version=0)

    assert await storage.write(_stale_write) is False
    stored = await posts.get_post(post.id, privileged=True)
    assert stored.title == "Hello"
    assert stored.body == "Newer"


@pytest.mark.asyncio
async def test_concurrent_updates_with_same_version(posts) -> None:
    post = await posts.create_post("alice", "Hello", "World", ["intro"])

    results = await asyncio.gather(
        posts.update_post(post.id, 0, PostPatch(title="A")),
        posts.update_post(post.id, 0, PostPatch(title="B")),
        return_exceptions=True,
    )
    assert sorted(type(r).__name__ for r in results) == ["ConflictError", "Post"]

    winner = next(r for r in results if not isinstance(r, Exception))
    stored = await posts.get_post(post.id, viewer_id="alice")
    assert stored.title == winner.title
    assert stored.version == 1


@pytest.mark.asyncio
async def test_update_replaces_tags_atomically(posts) -> None:
    post = await posts.create_post("alice", "Hello", "World", ["intro", "old"])
    updated = await posts.update_post(post.id, 0, PostPatch(tags=frozenset({"New", "intro"})))
    assert updated.tags == frozenset({"new", "intro"})
    stored = await posts.get_post(post.id, viewer_id="alice")
    assert stored.tags == frozenset({"new", "intro"})


@pytest.mark.asyncio
async def test_update_errors(posts, publish) -> None:
    with pytest.raises(NotFound):
        await posts.update_post("missing", 0, PostPatch(title="x"))

    post = await posts.create_post("alice", "Hello", "World", ["intro"])
    with pytest.raises(ValidationError):
        await posts.update_post(post.id, 0, PostPatch())
    with pytest.raises(ValidationError):
        await posts.update_post(post.id, 0, PostPatch(title="t" * 201))

    published = await publish()
    with pytest.raises(InvariantViolation):
        await posts.update_post(published.id, published.version, PostPatch(tags=frozenset()))
    stored = await posts.get_post(published.id)
    assert stored.tags == frozenset({"intro"})
    assert stored.version == published.version


@pytest.mark.asyncio
async def test_archived_post_is_immutable(posts, publish) -> None:
    published = await publish()
    archived = await posts.archive(published.id)
    assert archived.status is PostStatus.ARCHIVED
    with pytest.raises(IllegalTransition):
        await posts.update_post(published.id, archived.version, PostPatch(title="Changed"))


@pytest.mark.asyncio
async def test_archive_twice_fails_without_side_effects(posts, publish) -> None:
    published = await publish()
    archived = await posts.archive(published.id)
    assert archived.version == published.version + 1

    with pytest.raises(IllegalTransition):
        await posts.archive(published.id)

    stored = await posts.get_post(published.id, privileged=True)
    assert stored.status is PostStatus.ARCHIVED
    assert stored.version == archived.version


@pytest.mark.asyncio
async def test_approve_requires_tags(posts) -> None:
    post = await posts.create_post("alice", "Untagged", "Body", [])
    await posts.submit_for_review(post.id, 0)
    with pytest.raises(InvariantViolation):
        await posts.approve(post.id)
    stored = await posts.get_post(post.id, privileged=True)
    assert stored.status is PostStatus.PENDING_REVIEW
    assert stored.version == 1


@pytest.mark.asyncio
async def test_reject_and_resubmit(posts) -> None:
    post = await posts.create_post("alice", "Hello", "World", ["intro"])
    await posts.submit_for_review(post.id, 0)

    with pytest.raises(ValidationError):
        await posts.reject(post.id, "  ")

    rejected = await posts.reject(post.id, "needs sources")
    assert rejected.status is PostStatus.REJECTED
    assert rejected.rejection_reason == "needs sources"

    with pytest.raises(IllegalTransition):
        await posts.approve(post.id)

    draft = await posts.resubmit(post.id, rejected.version)
    assert draft.status is PostStatus.DRAFT
    assert draft.rejection_reason is None
    assert draft.version == 3


@pytest.mark.asyncio
async def test_submit_with_stale_version_conflicts(posts) -> None:
    post = await posts.create_post("alice", "Hello", "World", ["intro"])
    await posts.update_post(post.id, 0, PostPatch(body="Edited"))
    with pytest.raises(ConflictError):
        await posts.submit_for_review(post.id, 0)
    with pytest.raises(NotFound):
        await posts.approve("missing")


@pytest.mark.asyncio
async def test_get_post_visibility(posts, publish) -> None:
    draft = await posts.create_post("alice", "Draft", "Body", ["intro"])
    assert (await posts.get_post(draft.id, viewer_id="alice")).id == draft.id
    assert (await posts.get_post(draft.id, privileged=True)).id == draft.id
    with pytest.raises(NotFound):
        await posts.get_post(draft.id)
    with pytest.raises(NotFound):
        await posts.get_post(draft.id, viewer_id="bob")

    published = await publish()
    assert (await posts.get_post(published.id)).id == published.id


@pytest.mark.asyncio
async def test_likes_only_on_published_posts(posts, publish) -> None:
    draft = await posts.create_post("alice", "Draft", "Body", ["intro"])
    with pytest.raises(IllegalTransition):
        await posts.like_post(draft.id)
    with pytest.raises(NotFound):
        await posts.like_post("missing")

    published = await publish()
    assert await posts.like_post(published.id) == 1
    assert await posts.like_post(published.id) == 2
    stored = await posts.get_post(published.id)
    assert stored.likes_count == 2
    assert stored.version == published.version


async def _thread(comments: CommentService, post_id: str):
    parent = await comments.add_comment(post_id, "bob", "parent")
    child_a = await comments.add_comment(post_id, "carol", "child a", parent.id)
    child_b = await comments.add_comment(post_id, "dave", "child b", parent.id)
    for c in (parent, child_a, child_b):
        await comments.moderate_comment(c.id, CommentDecision.APPROVE)
    return parent, child_a, child_b


@pytest.mark.asyncio
async def test_soft_delete_cascades_to_comment_thread(posts, comments, publish) -> None:
    published = await publish()
    parent, child_a, child_b = await _thread(comments, published.id)
    assert len(await comments.list_comments(published.id).to_list()) == 3

    affected = await posts.delete_post(published.id)
    assert affected == 3

    with pytest.raises(NotFound):
        await posts.get_post(published.id, privileged=True)
    assert await comments.list_comments(published.id, only_visible=True).to_list() == []

    remaining = await comments.list_comments(published.id, only_visible=False).to_list()
    assert {c.id for c in remaining} == {parent.id, child_a.id, child_b.id}
    for c in remaining:
        assert c.status is CommentStatus.HIDDEN
        assert c.is_tombstone
    for child in (child_a.id, child_b.id):
        stored = await comments.get_comment(child)
        assert stored.parent_comment_id == parent.id
        assert (await comments.get_comment(stored.parent_comment_id)).post_id == stored.post_id

    with pytest.raises(NotFound):
        await posts.delete_post(published.id)


@pytest.mark.asyncio
async def test_hard_delete_removes_rows(storage, settings, clock, comments, publish) -> None:
    hard = PostService(storage, settings.model_copy(update={"POST_DELETE_MODE": "hard"}), clock=clock)
    published = await publish()
    parent, child_a, _ = await _thread(comments, published.id)

    assert await hard.delete_post(published.id) == 3
    with pytest.raises(NotFound):
        await comments.get_comment(parent.id)
    with pytest.raises(NotFound):
        await comments.get_comment(child_a.id)
    with pytest.raises(NotFound):
        await comments.list_comments(published.id).to_list()


@pytest.mark.asyncio
async def test_storage_timeout_rolls_back(storage, posts) -> None:
    post = await posts.create_post("alice", "Hello", "World", ["intro"])

    async def _slow(session):
        await repo.compare_and_set_post(session, post.evolve(title="Slow", version=1), expected_version=0)
        await asyncio.sleep(1)

    with pytest.raises(Timeout):
        await storage.write(_slow, timeout=0.05)

    stored = await posts.get_post(post.id, viewer_id="alice")
    assert stored.title == "Hello"
    assert stored.version == 0


@pytest.mark.asyncio
async def test_unreachable_store_surfaces_storage_failure(tmp_path, settings) -> None:
    broken = repo.Storage(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'dir' / 'blog.db'}", default_timeout=2.0)
    service = PostService(broken, settings)
    try:
        with pytest.raises(StorageFailure):
            await service.create_post("alice", "Hello", "World", ["intro"])
    finally:
        await broken.dispose()


@pytest.mark.asyncio
async def test_cancelled_write_still_commits(storage, posts) -> None:
    post = await posts.create_post("alice", "Hello", "World", ["intro"])

    async def _slow_rename(session):
        await asyncio.sleep(0.1)
        return await repo.compare_and_set_post(session, post.evolve(title="Done", version=1), expected_version=0)

    task = asyncio.create_task(storage.write(_slow_rename))
    await asyncio.sleep(0.02)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    for _ in range(50):
        stored = await posts.get_post(post.id, viewer_id="alice")
        if stored.version == 1:
            break
        await asyncio.sleep(0.02)
    assert stored.title == "Done"
    assert stored.version == 1


@pytest.mark.asyncio
async def test_cancelled_read_rolls_back(storage, posts) -> None:
    post = await posts.create_post("alice", "Hello", "World", ["intro"])

    async def _slow_read(session):
        await repo.compare_and_set_post(session, post.evolve(title="Never", version=1), expected_version=0)
        await asyncio.sleep(1)

    task = asyncio.create_task(storage.read(_slow_read))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    stored = await posts.get_post(post.id, viewer_id="alice")
    assert stored.title == "Hello"
    assert stored.version == 0
