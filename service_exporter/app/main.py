"""
Query cache exporter service.
"""

from datetime import datetime
from typing import Dict, Optional

from fastapi import Request, Response
from fastapi.responses import PlainTextResponse

from shared.base_service import BaseService
from shared.config import ExporterConfig, get_config
from shared.errors import ExporterError
from shared.logging import configure_logging, get_logger
from shared.metrics import MetricsCollector

from .adapters.upstream_client import UpstreamClient
from .caching.cache_store import CacheStore, FileCacheStore
from .domain.dispatcher import QueryDispatcher
from .queries.query_loader import QueryLoader
from .registry.client_registry import ClientRegistry


SERVICE_NAME = "exporter"


class ExporterService(BaseService):
    """Caching front for upstream query endpoints."""

    def __init__(
        self,
        config: Optional[ExporterConfig] = None,
        *,
        registry: Optional[ClientRegistry] = None,
        store: Optional[CacheStore] = None,
        upstream_client: Optional[UpstreamClient] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        super().__init__(SERVICE_NAME, config, metrics=metrics)

        self.registry = registry or ClientRegistry.from_file(self.config.graphql_config_path)
        self.store = store or FileCacheStore(self.config.cache_dir)
        if isinstance(self.store, FileCacheStore):
            self.store.ensure_namespaces(self.registry.client_ids())

        self.query_loader = QueryLoader(self.config.queries_dir, self.config.query_suffix)
        self.upstream_client = upstream_client or UpstreamClient(
            self.config.upstream_timeout_seconds,
            metrics=self.metrics,
        )
        self.dispatcher = QueryDispatcher(
            self.registry,
            self.query_loader,
            self.upstream_client,
            self.store,
            default_lifetime=self.config.cache_lifetime,
            metrics=self.metrics,
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.upstream_client.close()

        self._setup_exporter_routes()

        self.app.state.exporter_service = self

    def _setup_exporter_routes(self):
        """Set up exporter routes."""

        @self.app.get("/", response_class=PlainTextResponse)
        async def root():
            """Basic information about the exporter."""
            return (
                "Query cache exporter for Prometheus.\n"
                "Exporter metrics available at /metrics.\n"
                "Querying available at /queries/<client>/<query>.\n\n"
                f"Copyright (c) {datetime.now():%Y}\n"
            )

        @self.app.get("/queries")
        @self.app.get("/queries/{query_path:path}")
        async def query(request: Request):
            """Serve a cached query result, refreshing it from upstream when stale."""
            result = await self.dispatcher.dispatch(request.url.path)
            return Response(
                content=result.payload,
                media_type=self.config.response_media_type,
                headers={"X-Cache": result.outcome.value},
            )

    async def _check_dependencies(self) -> Dict[str, str]:
        return {
            "clients": str(len(self.registry)),
            "cache_store": type(self.store).__name__,
        }


def create_app(config: Optional[ExporterConfig] = None, **components):
    """Create exporter application."""
    service = ExporterService(config, **components)
    return service.app


def main() -> None:
    """Console entry point."""
    config = get_config()
    configure_logging(SERVICE_NAME, config.log_level)
    logger = get_logger(f"{SERVICE_NAME}.main")
    logger.info(
        "Env config",
        listen_addr=config.listen_addr,
        config_path=config.graphql_config_path,
        cache_minutes=config.cache_minutes,
        cache_dir=config.cache_dir,
        queries_dir=config.queries_dir,
    )

    try:
        service = ExporterService(config)
    except ExporterError as exc:
        logger.critical("Startup failed", code=exc.code, message=exc.message, details=exc.details)
        raise SystemExit(1) from exc

    service.run()


if __name__ == "__main__":
    main()
