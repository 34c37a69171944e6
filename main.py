"""Blog backend entrypoint.

- `serve`: run the blog service under uvicorn
- `init-db`: create the schema against the configured DSN and exit
- `print-config`: log the effective settings (secrets masked)
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging

import uvicorn
from dotenv import load_dotenv

from packages.common.config import Settings, get_settings
from packages.common.logging import configure_logging
from services.blog.repo import Storage

load_dotenv(".env.production")
load_dotenv(".env", override=True)

log = logging.getLogger("blog")


def _masked(settings: Settings) -> dict:
    data = settings.model_dump()
    if data.get("JWT_PUBLIC_KEY"):
        data["JWT_PUBLIC_KEY"] = "***"
    return data


async def _init_db(settings: Settings) -> None:
    storage = Storage(settings.POSTGRES_DSN, default_timeout=settings.STORAGE_TIMEOUT_SEC)
    try:
        await storage.init_db()
    finally:
        await storage.dispose()


def main() -> None:
    """Main CLI entrypoint: parse args and dispatch the chosen mode."""
    ap = argparse.ArgumentParser(prog="blog", description="Blog backend entrypoint")
    ap.add_argument("--mode", choices=["serve", "init-db", "print-config"], default="serve")
    ap.add_argument("--host", default="0.0.0.0")
    ap.add_argument("--port", type=int, default=8000)
    ap.add_argument("--reload", action="store_true", help="Reload on code changes (dev only)")
    args = ap.parse_args()

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    if args.mode == "print-config":
        log.info(json.dumps(_masked(settings), ensure_ascii=False, default=str))
        return
    if args.mode == "init-db":
        asyncio.run(_init_db(settings))
        log.info("schema ready")
        return

    uvicorn.run("services.blog.app:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
