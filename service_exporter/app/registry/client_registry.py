"""
Client registry: upstream connection parameters per client identifier.
"""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shared.errors import ConfigError, NotFound
from shared.logging import get_logger

from ..domain.cache_key import is_valid_segment


class ClientEntry(BaseModel):
    """Connection parameters for one upstream client.

    Field aliases match the ``queryPaths`` entries of the JSON config file.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    url: str
    auth_header_name: str = Field(default="", alias="authKey")
    auth_header_value: str = Field(default="", alias="authValue")
    cache_minutes: int = Field(default=0, alias="cacheMinutes", ge=0)

    @field_validator("url")
    @classmethod
    def _absolute_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if not value or not parsed.scheme or not parsed.netloc:
            raise ValueError("url must be an absolute URL")
        return value

    @property
    def cache_lifetime(self) -> Optional[timedelta]:
        """Client override, or None when the global default applies."""
        if self.cache_minutes <= 0:
            return None
        return timedelta(minutes=self.cache_minutes)

    def auth_headers(self) -> Dict[str, str]:
        """Headers to attach to upstream requests (empty without auth)."""
        if not self.auth_header_name:
            return {}
        return {self.auth_header_name: self.auth_header_value}

    def resolve_lifetime(self, default: timedelta) -> timedelta:
        return self.cache_lifetime or default


class ClientRegistry:
    """Read-only mapping of client identifier to ``ClientEntry``.

    Built once at startup; the underlying mapping is never mutated afterwards,
    so lookups need no locking.
    """

    def __init__(self, clients: Mapping[str, ClientEntry]):
        for client_id in clients:
            if not is_valid_segment(client_id):
                raise ConfigError(
                    f"Invalid client identifier: {client_id!r}",
                    details={"client_id": client_id},
                )
        self._clients: Mapping[str, ClientEntry] = MappingProxyType(dict(clients))

    @classmethod
    def from_dict(cls, payload: Any) -> "ClientRegistry":
        """Build from the decoded ``{"queryPaths": {...}}`` document."""
        if not isinstance(payload, dict) or not isinstance(payload.get("queryPaths"), dict):
            raise ConfigError("Config must contain a 'queryPaths' object")

        clients: Dict[str, ClientEntry] = {}
        for client_id, raw in payload["queryPaths"].items():
            try:
                clients[client_id] = ClientEntry.model_validate(raw)
            except ValidationError as exc:
                raise ConfigError(
                    f"Invalid configuration for client {client_id!r}",
                    details={"client_id": client_id, "error": str(exc)},
                ) from exc
        return cls(clients)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ClientRegistry":
        """Load the registry from a JSON config file. Raises ``ConfigError``."""
        config_path = Path(path)
        logger = get_logger("exporter.registry")
        try:
            with config_path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except OSError as exc:
            raise ConfigError(
                f"Cannot read config file {config_path}",
                details={"path": str(config_path), "error": str(exc)},
            ) from exc
        except ValueError as exc:
            raise ConfigError(
                f"Cannot decode config file {config_path}",
                details={"path": str(config_path), "error": str(exc)},
            ) from exc

        registry = cls.from_dict(payload)
        logger.info(
            "Loaded client configurations",
            path=str(config_path),
            count=len(registry),
            clients=registry.client_ids(),
        )
        return registry

    def lookup(self, client_id: str) -> Optional[ClientEntry]:
        return self._clients.get(client_id)

    def require(self, client_id: str) -> ClientEntry:
        """Return the entry for ``client_id`` or raise ``NotFound``."""
        entry = self._clients.get(client_id)
        if entry is None:
            raise NotFound(
                f"Config not provided for client: {client_id}",
                details={"client_id": client_id},
            )
        return entry

    def client_ids(self) -> List[str]:
        return sorted(self._clients)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    def __iter__(self) -> Iterator[str]:
        return iter(self._clients)
