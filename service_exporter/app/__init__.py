"""
Query Cache Exporter service package.

The exporter fronts upstream query endpoints with a freshness-based cache:

- app.main: FastAPI app, routes, and service wiring.
- app.registry: Client registry loaded from the JSON config file.
- app.queries: Loader for stored query text.
- app.adapters: HTTP client for upstream query execution.
- app.caching: Cache stores and per-key reader/writer locks.
- app.domain: Cache keys and the request dispatcher.
"""
