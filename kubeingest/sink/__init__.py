"""Downstream catalog sinks.

Exports:
    CatalogSink          -- Abstract base for all sink implementations.
    InMemoryCatalogSink  -- Dict-backed sink used by tests and ``kubeingest once``.
    HttpCatalogSink      -- JSON POST of each delta to a catalog endpoint.
    build_sink           -- Factory used by the application bootstrap.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import structlog

from kubeingest.sink.base import CatalogSink
from kubeingest.sink.http import HttpCatalogSink
from kubeingest.sink.memory import InMemoryCatalogSink

if TYPE_CHECKING:
    from kubeingest.models.config import SinkConfig

_log = structlog.get_logger(component="sink")

__all__ = [
    "CatalogSink",
    "HttpCatalogSink",
    "InMemoryCatalogSink",
    "build_sink",
]


def build_sink(config: SinkConfig) -> CatalogSink:
    """Build the catalog sink.

    HTTP when ``config.url`` is set, otherwise in-memory. The bearer token is
    read from the environment variable named by ``config.token_ref``; an
    empty value sends no Authorization header.
    """
    if not config.url:
        _log.info("memory_sink_enabled")
        return InMemoryCatalogSink()

    headers: dict[str, str] = {}
    if config.token_ref:
        token = os.environ.get(config.token_ref, "")
        if token:
            headers["Authorization"] = f"Bearer {token}"
        else:
            _log.warning("sink_token_missing", token_ref=config.token_ref)
    _log.info("http_sink_enabled", url=config.url)
    return HttpCatalogSink(url=config.url, headers=headers, timeout=config.timeout_seconds)
