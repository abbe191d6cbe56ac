"""Catalog sink interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from kubeingest.models.entities import EntityDelta


class CatalogSink(ABC):
    """Abstract base class for downstream catalog sinks.

    ``apply`` must be idempotent: the scheduler re-delivers a delta whose
    previous delivery failed.
    """

    @property
    @abstractmethod
    def sink_name(self) -> str:
        """Short identifier used in logs."""

    @abstractmethod
    async def apply(self, delta: EntityDelta) -> None:
        """Apply *delta* fully or raise SinkError. Partial application is not allowed."""
