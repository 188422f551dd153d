"""
Cache key derivation from inbound request paths.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from shared.errors import BadRequest


QUERIES_PREFIX = "queries"

_SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def is_valid_segment(segment: str) -> bool:
    """Return True when ``segment`` is safe to use as a storage path component."""
    if not segment or ".." in segment:
        return False
    return bool(_SEGMENT_PATTERN.match(segment))


def validate_segment(segment: str, *, field: str) -> str:
    if not is_valid_segment(segment):
        raise BadRequest(details={"field": field, "value": segment})
    return segment


@dataclass(frozen=True)
class CacheKey:
    """Identifies one stored query and its cache slot."""

    client_id: str
    query_name: str

    def __post_init__(self) -> None:
        validate_segment(self.client_id, field="client_id")
        validate_segment(self.query_name, field="query_name")

    def __str__(self) -> str:
        return f"{self.client_id}/{self.query_name}"

    @classmethod
    def from_path(cls, path: str) -> "CacheKey":
        """Parse ``/queries/<client>/<query>``.

        Any other shape (missing or extra segments, trailing slash, empty or
        escaping segments) raises ``BadRequest``.
        """
        parts = path.split("/")
        if len(parts) != 4 or parts[0] != "" or parts[1] != QUERIES_PREFIX:
            raise BadRequest(details={"path": path, "reason": "expected /queries/<client>/<query>"})
        return cls(client_id=parts[2], query_name=parts[3])
