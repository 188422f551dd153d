"""
Loads stored query text for a (client, query name) pair.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Union

from shared.errors import NotFound, StoreIOError
from shared.logging import get_logger

from ..domain.cache_key import CacheKey


DEFAULT_QUERY_SUFFIX = ".gql"


class QueryLoader:
    """
    Resolves query files under a fixed root: ``<root>/<client>/<query><suffix>``.

    Identifiers are validated by ``CacheKey`` before a path is built, and the
    resolved path is checked to stay under the root, so no input can read
    outside of it.
    """

    def __init__(self, queries_dir: Union[str, Path], suffix: str = DEFAULT_QUERY_SUFFIX):
        self._root = Path(queries_dir).resolve()
        self._suffix = suffix
        self.logger = get_logger("exporter.query_loader")

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: CacheKey) -> Path:
        """Return the query file path for ``key``."""
        candidate = (self._root / key.client_id / f"{key.query_name}{self._suffix}").resolve()
        if not candidate.is_relative_to(self._root):
            raise NotFound("Query not found", details={"key": str(key), "reason": "outside query root"})
        return candidate

    async def load(self, client_id: str, query_name: str) -> str:
        """Return the query text. Raises ``BadRequest``, ``NotFound`` or ``StoreIOError``."""
        key = CacheKey(client_id=client_id, query_name=query_name)
        path = self.path_for(key)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError as exc:
            raise NotFound(
                "Query not found",
                details={"key": str(key), "path": str(path)},
            ) from exc
        except (OSError, UnicodeDecodeError) as exc:
            self.logger.error("Failed to read query file", path=str(path), error=str(exc))
            raise StoreIOError(
                "Failed to read query file",
                details={"key": str(key), "path": str(path), "error": str(exc)},
            ) from exc
