# services/__init__.py
"""Service packages; each one is a deployable FastAPI app."""

__all__ = ["blog"]
