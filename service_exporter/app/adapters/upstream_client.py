"""
Upstream query client for the exporter.
"""

from typing import Optional
import asyncio
import time

import httpx

from shared.logging import get_logger
from shared.errors import UpstreamError, UpstreamTimeout
from shared.metrics import MetricsCollector

from ..registry.client_registry import ClientEntry


DEFAULT_TIMEOUT_SECONDS = 20.0
_MAX_LOGGED_BODY = 2048


class UpstreamClient:
    """Executes a stored query against a client's upstream endpoint.

    One attempt per call, no retries. The response body is returned exactly as
    received.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        *,
        client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.timeout = timeout
        self.logger = get_logger("exporter.upstream_client")
        self.metrics = metrics
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def execute(self, query: str, entry: ClientEntry, *, client_id: str = "") -> bytes:
        """POST ``{"query": query}`` to ``entry.url`` and return the raw body."""
        headers = {"Content-Type": "application/json"}
        headers.update(entry.auth_headers())

        start_time = time.time()
        try:
            # httpx applies its timeout per phase; the deadline covers the whole call.
            response = await asyncio.wait_for(
                self._client.post(
                    entry.url,
                    json={"query": query},
                    headers=headers,
                    timeout=self.timeout,
                ),
                self.timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            self.logger.error(
                "Upstream query timed out",
                url=entry.url,
                timeout_seconds=self.timeout,
                error=str(exc),
            )
            raise UpstreamTimeout(
                details={"url": entry.url, "timeout_seconds": self.timeout}
            ) from exc
        except httpx.HTTPError as exc:
            self.logger.error("Upstream request failed", url=entry.url, error=str(exc))
            raise UpstreamError(details={"url": entry.url, "error": str(exc)}) from exc
        finally:
            if self.metrics:
                self.metrics.observe_histogram(
                    "upstream_request_duration_seconds",
                    time.time() - start_time,
                    client_id=client_id or "unknown",
                )

        if not response.is_success:
            body = response.text[:_MAX_LOGGED_BODY]
            self.logger.error(
                "Upstream query returned error status",
                url=entry.url,
                status_code=response.status_code,
                response=body,
            )
            raise UpstreamError(
                details={"url": entry.url, "status_code": response.status_code, "body": body}
            )

        self.logger.debug(
            "Upstream query executed",
            url=entry.url,
            status_code=response.status_code,
            bytes=len(response.content),
        )
        return response.content

    async def close(self):
        await self._client.aclose()
