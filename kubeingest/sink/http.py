"""HTTP catalog sink.

POSTs each delta as JSON to a catalog ingestion endpoint. The body is
``EntityDelta.to_dict()``: ``cluster``, ``added``, ``updated`` (full
entities) and ``removed`` (entity ids).
"""

from __future__ import annotations

import httpx
import structlog

from kubeingest.errors import SinkError
from kubeingest.models.entities import EntityDelta
from kubeingest.sink.base import CatalogSink

_log = structlog.get_logger(component="sink.http")


class HttpCatalogSink(CatalogSink):
    """Delivers deltas by POSTing a JSON payload to a configurable URL.

    Args:
        url:     Full endpoint URL.
        headers: Optional extra headers (e.g. Authorization).
        timeout: HTTP request timeout in seconds. Defaults to 30.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
    ) -> None:
        if not url:
            raise ValueError("Sink url must not be empty")
        self._url = url
        self._headers = headers or {}
        self._timeout = timeout

    @property
    def sink_name(self) -> str:
        return "http"

    async def apply(self, delta: EntityDelta) -> None:
        """POST *delta* to the configured endpoint.

        Raises:
            SinkError: non-2xx response, timeout or transport error.
        """
        request_headers = {
            "Content-Type": "application/json",
            **self._headers,
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=delta.to_dict(), headers=request_headers)
        except httpx.TimeoutException as exc:
            _log.warning("sink_request_timeout", cluster=delta.cluster, url=self._url)
            raise SinkError(f"sink request to {self._url} timed out", subject=delta.cluster) from exc
        except httpx.HTTPError as exc:
            _log.warning("sink_http_error", cluster=delta.cluster, error=str(exc))
            raise SinkError(f"sink request to {self._url} failed: {exc}", subject=delta.cluster) from exc

        if not response.is_success:
            _log.warning(
                "sink_non_2xx_response",
                cluster=delta.cluster,
                status_code=response.status_code,
                body=response.text[:200],
            )
            raise SinkError(f"sink responded {response.status_code}", subject=delta.cluster)
        _log.debug("delta_delivered", cluster=delta.cluster, **delta.summary())
