"""
Unit tests for the query loader.
"""

import os

import pytest

from service_exporter.app.domain.cache_key import CacheKey
from service_exporter.app.queries.query_loader import QueryLoader
from shared.errors import BadRequest, NotFound, StoreIOError


@pytest.fixture
def queries_dir(tmp_path):
    root = tmp_path / "queries"
    (root / "billing").mkdir(parents=True)
    (root / "billing" / "invoices.gql").write_text("{ invoices { id total } }", encoding="utf-8")
    (tmp_path / "secret.gql").write_text("top secret", encoding="utf-8")
    return root


class TestQueryLoader:
    """Test cases for QueryLoader."""

    @pytest.mark.asyncio
    async def test_load_returns_query_text(self, queries_dir):
        loader = QueryLoader(queries_dir)

        query = await loader.load("billing", "invoices")

        assert query == "{ invoices { id total } }"

    @pytest.mark.asyncio
    async def test_custom_suffix(self, queries_dir):
        (queries_dir / "billing" / "invoices.graphql").write_text("{ other }", encoding="utf-8")
        loader = QueryLoader(queries_dir, suffix=".graphql")

        assert await loader.load("billing", "invoices") == "{ other }"

    @pytest.mark.asyncio
    async def test_missing_query_raises_not_found(self, queries_dir):
        loader = QueryLoader(queries_dir)

        with pytest.raises(NotFound) as exc_info:
            await loader.load("billing", "payments")

        assert exc_info.value.message == "Query not found"

    @pytest.mark.asyncio
    async def test_missing_client_directory_raises_not_found(self, queries_dir):
        loader = QueryLoader(queries_dir)

        with pytest.raises(NotFound):
            await loader.load("inventory", "invoices")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("client_id,query_name", [
        ("billing", "../../etc/passwd"),
        ("billing", ".."),
        ("billing", "../secret"),
        ("..", "secret"),
        ("billing", "/etc/passwd"),
    ])
    async def test_path_escape_rejected_before_filesystem_access(
        self, queries_dir, monkeypatch, client_id, query_name
    ):
        loader = QueryLoader(queries_dir)

        def _fail(*args, **kwargs):
            raise AssertionError("filesystem accessed")

        monkeypatch.setattr("pathlib.Path.read_text", _fail)

        with pytest.raises(BadRequest):
            await loader.load(client_id, query_name)

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
    def test_symlink_outside_root_is_not_resolved(self, queries_dir, tmp_path):
        os.symlink(tmp_path / "secret.gql", queries_dir / "billing" / "leak.gql")
        loader = QueryLoader(queries_dir)

        with pytest.raises(NotFound):
            loader.path_for(CacheKey("billing", "leak"))

    def test_path_for_stays_under_root(self, queries_dir):
        loader = QueryLoader(queries_dir)

        path = loader.path_for(CacheKey("billing", "invoices"))

        assert path == (queries_dir / "billing" / "invoices.gql").resolve()
        assert path.is_relative_to(loader.root)

    @pytest.mark.asyncio
    async def test_unreadable_query_raises_store_io_error(self, queries_dir):
        (queries_dir / "billing" / "broken.gql").mkdir()
        loader = QueryLoader(queries_dir)

        with pytest.raises(StoreIOError):
            await loader.load("billing", "broken")
