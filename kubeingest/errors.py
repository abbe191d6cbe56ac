"""Error taxonomy for the ingestion pipeline.

Every error carries the narrowest scope it applies to. The scheduler turns
errors into ``CycleError`` records instead of letting them escape a cycle:

    resource < kind < cluster < cycle
"""

from __future__ import annotations

from enum import StrEnum


class ErrorScope(StrEnum):
    """Unit of work an error is contained to."""

    RESOURCE = "resource"
    KIND = "kind"
    CLUSTER = "cluster"
    CYCLE = "cycle"


class IngestionError(Exception):
    """Base class for all ingestion errors."""

    scope: ErrorScope = ErrorScope.CYCLE

    def __init__(self, message: str, subject: str = "") -> None:
        super().__init__(message)
        self.subject = subject


class ConfigError(IngestionError):
    """A cluster or kind definition is malformed. The affected scope is skipped."""

    scope = ErrorScope.KIND

    def __init__(self, message: str, subject: str = "", scope: ErrorScope = ErrorScope.KIND) -> None:
        super().__init__(message, subject)
        self.scope = scope


class FetchError(IngestionError):
    """Listing one kind from one cluster failed (network, timeout, API error)."""

    scope = ErrorScope.KIND


class ValidationError(IngestionError):
    """A single resource is malformed and is dropped from the batch."""

    scope = ErrorScope.RESOURCE


class SinkError(IngestionError):
    """The downstream sink rejected or did not receive a delta."""

    scope = ErrorScope.CLUSTER


class CycleFatalError(IngestionError):
    """The whole tick cannot produce consistent output (e.g. no cluster resolvable)."""

    scope = ErrorScope.CYCLE
