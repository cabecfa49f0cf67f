"""Elasticsearch indexing for relayed messages."""

from typing import Any, Dict, Optional, Protocol

from elasticsearch import AsyncElasticsearch

from .errors import IndexingError
from .logging import get_logger, mask_url
from .models import Message

logger = get_logger(__name__)

INDEX_MAPPINGS: Dict[str, Any] = {
    "properties": {
        "id": {"type": "keyword"},
        "content": {"type": "object"},
        "timestamp": {"type": "date"},
    }
}


class Indexer(Protocol):
    """Search indexing collaborator used by the relay jobs."""

    async def initialize(self) -> None: ...

    async def index(self, message: Message) -> None: ...

    async def health(self) -> bool: ...

    async def close(self) -> None: ...


class SearchIndexer:
    """Stores relay messages as documents in an Elasticsearch index."""

    def __init__(
        self,
        node: str,
        index_name: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        request_timeout: float = 10.0,
        client: Optional[AsyncElasticsearch] = None,
    ):
        """
        Initialize the indexer.

        Args:
            node: Elasticsearch node URL
            index_name: Target index
            username: Basic auth user; auth is only used when set
            password: Basic auth password
            request_timeout: Per-request timeout in seconds
            client: Preconfigured client, mainly for tests
        """
        self.node = node
        self.index_name = index_name
        if client is None:
            basic_auth = (username, password or "") if username else None
            client = AsyncElasticsearch(
                node,
                basic_auth=basic_auth,
                request_timeout=request_timeout,
            )
        self.client = client

    async def initialize(self) -> None:
        """
        Create the index with its mapping unless it already exists.

        Raises:
            IndexingError: If Elasticsearch cannot be reached or refuses the index
        """
        try:
            exists = await self.client.indices.exists(index=self.index_name)
            if not exists:
                await self.client.indices.create(index=self.index_name, mappings=INDEX_MAPPINGS)
                logger.info("Created search index", index=self.index_name)
        except Exception as e:
            logger.error(
                "Failed to initialize Elasticsearch",
                node=mask_url(self.node),
                index=self.index_name,
                error=str(e),
            )
            raise IndexingError(f"Failed to initialize index {self.index_name}: {e}") from e

    async def index(self, message: Message) -> None:
        """
        Index a message, using its id as the document id.

        Raises:
            IndexingError: If the document could not be stored
        """
        try:
            response = await self.client.index(
                index=self.index_name,
                id=message.id,
                document=message.to_wire(),
            )
        except Exception as e:
            logger.error(f"Failed to index message {message.id}: {e}")
            raise IndexingError(f"Failed to index message {message.id}: {e}") from e

        logger.debug("Indexed message", message_id=message.id, result=response.get("result"))

    async def health(self) -> bool:
        """Return True unless the cluster is unreachable or its status is red."""
        try:
            response = await self.client.cluster.health()
            return response.get("status") != "red"
        except Exception as e:
            logger.error("Elasticsearch health check failed", error=str(e))
            return False

    async def close(self) -> None:
        try:
            await self.client.close()
        except Exception as e:
            logger.warning("Error closing Elasticsearch client", error=str(e))
