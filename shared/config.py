"""
Shared configuration management for the Query Cache Exporter.
"""

from datetime import timedelta
from typing import Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExporterConfig(BaseSettings):
    """Process-wide settings, read from ``EXPORTER_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="EXPORTER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Listener
    listen_addr: str = Field(default="0.0.0.0:9199")
    tls_cert_file: str = Field(default="")
    tls_key_file: str = Field(default="")

    # Client registry
    graphql_config_path: str = Field(default="/config.json")

    # Cache
    cache_minutes: int = Field(default=60, ge=0)
    cache_dir: str = Field(default="/tmp/query-caches")
    queries_dir: str = Field(default="queries")
    query_suffix: str = Field(default=".gql")

    # Upstream
    upstream_timeout_seconds: float = Field(default=20.0, gt=0)

    # Responses
    response_media_type: str = Field(default="application/json")

    @property
    def cache_lifetime(self) -> timedelta:
        """Default lifetime applied to clients without their own."""
        return timedelta(minutes=self.cache_minutes)

    @property
    def tls_enabled(self) -> bool:
        return bool(self.tls_cert_file and self.tls_key_file)

    def listen_host_port(self) -> Tuple[str, int]:
        """Split ``listen_addr`` into host and port."""
        host, _, port = self.listen_addr.rpartition(":")
        return host or "0.0.0.0", int(port)


def get_config(**overrides) -> ExporterConfig:
    """Get exporter configuration, applying explicit overrides over the environment."""
    return ExporterConfig(**overrides)
