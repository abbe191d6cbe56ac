"""REST read API for kubeingest.

Exposes:
    create_app -- FastAPI application factory.
    build_app  -- Alias for create_app (used by kubeingest.app bootstrap).
"""

from kubeingest.api.app import AuthorizeHook, create_app

build_app = create_app

__all__ = ["AuthorizeHook", "build_app", "create_app"]
