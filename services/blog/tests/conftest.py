"""Shared fixtures for Blog service tests: a temp SQLite database per test,
a deterministic clock, and services wired against them."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from packages.common.config import Settings
from services.blog.comments import CommentService
from services.blog.posts import PostService
from services.blog.queries import QueryEngine
from services.blog.repo import Storage


class StepClock:
    """Returns a strictly increasing UTC time, one `step` per call."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc), step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        self.now += self.step
        return self.now


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        POSTGRES_DSN=f"sqlite+aiosqlite:///{tmp_path / 'blog.db'}",
        STORAGE_TIMEOUT_SEC=5.0,
        COMMENTS_AUTO_APPROVE=False,
        COMMENTS_REQUIRE_PUBLISHED=False,
        POST_DELETE_MODE="soft",
    )


@pytest_asyncio.fixture
async def storage(settings):
    s = Storage(settings.POSTGRES_DSN, default_timeout=settings.STORAGE_TIMEOUT_SEC)
    await s.init_db()
    yield s
    await s.dispose()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def posts(storage, settings, clock) -> PostService:
    return PostService(storage, settings, clock=clock)


@pytest.fixture
def comments(storage, settings, clock) -> CommentService:
    return CommentService(storage, settings, clock=clock)


@pytest.fixture
def queries(storage) -> QueryEngine:
    return QueryEngine(storage)


@pytest.fixture
def publish(posts):
    """Factory: create a post and move it to Published."""
    async def _publish(author="alice", title="Hello", body="World", tags=("intro",)):
        post = await posts.create_post(author, title, body, list(tags))
        await posts.submit_for_review(post.id, post.version)
        return await posts.approve(post.id)

    return _publish
