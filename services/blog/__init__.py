# services/blog/__init__.py
"""Blog service package: explicit exports only, no import-time side effects."""

__all__ = ["domain", "moderation", "models", "repo", "posts", "comments", "queries", "routes", "app"]
