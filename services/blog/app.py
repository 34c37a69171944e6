"""Blog service FastAPI application.

Builds the storage collaborator and the services once, hangs them on
`app.state`, attaches tracing middleware, includes the blog routes and
initializes the database schema on startup.
"""

from typing import Optional

from fastapi import FastAPI
from packages.common.config import Settings, get_settings
from packages.common.logging import configure_logging
from packages.common.tracing import trace_middleware
from .comments import CommentService
from .posts import PostService
from .queries import QueryEngine
from .repo import Storage
from .routes import register_error_handlers, router as blog_router


def create_app(settings: Optional[Settings] = None, storage: Optional[Storage] = None) -> FastAPI:
    """Wire settings, storage and services into a FastAPI app.

    Args:
        settings: Explicit settings; defaults to the cached env-derived ones.
        storage: Pre-built storage collaborator (tests pass their own).
    """
    settings = settings or get_settings()
    storage = storage or Storage(settings.POSTGRES_DSN, default_timeout=settings.STORAGE_TIMEOUT_SEC)

    app = FastAPI(title="Blog Service", version="1.0.0")
    app.state.settings = settings
    app.state.storage = storage
    app.state.posts = PostService(storage, settings)
    app.state.comments = CommentService(storage, settings)
    app.state.queries = QueryEngine(storage, max_page_size=settings.MAX_PAGE_SIZE)

    app.middleware("http")(trace_middleware)
    app.include_router(blog_router)
    register_error_handlers(app)

    @app.on_event("startup")
    async def _init() -> None:
        """Initialize logging and the database schema at application startup."""
        configure_logging(settings.LOG_LEVEL)
        await storage.init_db()

    @app.on_event("shutdown")
    async def _close() -> None:
        await storage.dispose()

    return app


app = create_app()
