"""Query Cache Exporter service."""
