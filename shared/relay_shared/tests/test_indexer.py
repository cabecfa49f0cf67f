"""Tests for the Elasticsearch indexer."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from relay_shared.errors import IndexingError
from relay_shared.indexer import INDEX_MAPPINGS, SearchIndexer
from relay_shared.models import Message


@pytest.fixture
def es_client():
    """Mocked AsyncElasticsearch client."""
    client = MagicMock()
    client.indices.exists = AsyncMock(return_value=False)
    client.indices.create = AsyncMock()
    client.index = AsyncMock(return_value={"result": "created"})
    client.cluster.health = AsyncMock(return_value={"status": "green"})
    client.close = AsyncMock()
    return client


@pytest.fixture
def indexer(es_client):
    return SearchIndexer("http://localhost:9200", "data-index", client=es_client)


class TestSearchIndexer:
    """Test SearchIndexer."""

    @pytest.mark.asyncio
    async def test_builds_client_from_settings(self):
        """Test a client is created when none is injected."""
        indexer = SearchIndexer("http://localhost:9200", "data-index", username="elastic", password="changeme")
        assert indexer.client is not None
        assert indexer.index_name == "data-index"
        await indexer.close()

    @pytest.mark.asyncio
    async def test_initialize_creates_missing_index(self, indexer, es_client):
        """Test the index is created with its mapping."""
        await indexer.initialize()

        es_client.indices.create.assert_awaited_once_with(index="data-index", mappings=INDEX_MAPPINGS)
        assert INDEX_MAPPINGS["properties"]["id"] == {"type": "keyword"}

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, indexer, es_client):
        """Test an existing index is left alone."""
        es_client.indices.exists.return_value = True

        await indexer.initialize()

        es_client.indices.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_initialize_failure(self, indexer, es_client):
        es_client.indices.exists.side_effect = ConnectionError("refused")

        with pytest.raises(IndexingError):
            await indexer.initialize()

    @pytest.mark.asyncio
    async def test_index_uses_message_id(self, indexer, es_client):
        """Test messages are stored under their id."""
        message = Message(id="m1", content={"a": 1}, timestamp=1, update_timestamp=2)

        await indexer.index(message)

        es_client.index.assert_awaited_once_with(
            index="data-index",
            id="m1",
            document={"id": "m1", "content": {"a": 1}, "timestamp": 1, "updateTimestamp": 2},
        )

    @pytest.mark.asyncio
    async def test_index_failure_raises_indexing_error(self, indexer, es_client):
        es_client.index.side_effect = RuntimeError("mapping conflict")

        with pytest.raises(IndexingError):
            await indexer.index(Message(id="m1"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,expected", [("green", True), ("yellow", True), ("red", False)])
    async def test_health_by_cluster_status(self, indexer, es_client, status, expected):
        """Test only a red cluster counts as unhealthy."""
        es_client.cluster.health.return_value = {"status": status}
        assert await indexer.health() is expected

    @pytest.mark.asyncio
    async def test_health_unreachable(self, indexer, es_client):
        es_client.cluster.health.side_effect = ConnectionError("refused")
        assert await indexer.health() is False

    @pytest.mark.asyncio
    async def test_close(self, indexer, es_client):
        await indexer.close()
        es_client.close.assert_awaited_once()
