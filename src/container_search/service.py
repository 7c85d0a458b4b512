"""Entry point used by game adapters.

Wires serialization, embedding, storage, indexing and search together and
exposes the small surface event handlers call into: container changed,
container destroyed, search and shutdown. Every call returns immediately;
results are delivered through futures.
"""

import concurrent.futures
import threading
from typing import Any, Sequence

from loguru import logger

from container_search.config import ContainerSearchConfig
from container_search.embedding import (
    EmbeddingService,
    TaskType,
    create_embedding_service,
    embedding_metadata,
)
from container_search.indexer import ContainerIndexer
from container_search.items import Item, item_from_dict
from container_search.logging_setup import configure_logging
from container_search.models import (
    ContainerLocations,
    LocationData,
    SearchResult,
    SerializedItem,
    StorageStats,
)
from container_search.query import expand_query
from container_search.runtime import BackgroundLoop
from container_search.scoring import SearchConfig, hybrid_rerank
from container_search.serializer import ItemSerializer
from container_search.storage import VectorStorage, create_vector_storage
from container_search.tag_providers import register_vanilla_providers
from container_search.tags import TagProviderRegistry

CLOSE_TIMEOUT_SECONDS = 10.0


class ContainerSearchService:
    """Semantic search over the contents of indexed containers."""

    def __init__(
        self,
        embedding: EmbeddingService,
        storage: VectorStorage,
        serializer: ItemSerializer,
        indexer: ContainerIndexer,
        search_config: SearchConfig | None = None,
        owns_runtime: bool = False,
    ):
        """Initialize service from already-built components.

        Args:
            embedding: Embedding service shared with the indexer
            storage: Vector storage shared with the indexer
            serializer: Serializer for raw container contents
            indexer: Background indexer; its loop also runs searches
            search_config: Search configuration (uses defaults if None)
            owns_runtime: Stop the indexer's loop on shutdown
        """
        self.embedding = embedding
        self.storage = storage
        self.serializer = serializer
        self.indexer = indexer
        self.search_config = search_config or SearchConfig()
        self.runtime = indexer.runtime
        self._owns_runtime = owns_runtime
        self._shutdown_lock = threading.Lock()
        self._is_shutdown = False

    @classmethod
    def from_config(
        cls, config: ContainerSearchConfig, configure_logs: bool = False
    ) -> "ContainerSearchService":
        """Build every component from configuration and initialize storage.

        Storage is bound to the configured embedding model; vectors written by
        a different provider or model are purged so they get re-indexed.

        Args:
            config: Validated configuration
            configure_logs: Replace the loguru sinks with one at `config.log_level`

        Example:
            >>> from container_search.config import load_config
            >>> service = ContainerSearchService.from_config(load_config("default"))
        """
        if configure_logs:
            configure_logging(config.log_level)

        registry = TagProviderRegistry()
        if config.serialization.vanilla_tags:
            register_vanilla_providers(registry)
        serializer = ItemSerializer(registry, max_depth=config.serialization.max_depth)

        embedding = create_embedding_service(config.embedding)
        storage = create_vector_storage(config.storage)

        runtime = BackgroundLoop(config.indexing.worker_threads)
        runtime.submit(storage.initialize()).result()
        runtime.submit(storage.ensure_provider(embedding_metadata(embedding))).result()

        indexer = ContainerIndexer(embedding, storage, config.indexing, runtime=runtime)
        logger.info(
            f"Container search ready (embedding={config.embedding.provider}, "
            f"storage={storage.provider_name})"
        )
        return cls(
            embedding=embedding,
            storage=storage,
            serializer=serializer,
            indexer=indexer,
            search_config=config.search,
            owns_runtime=True,
        )

    @property
    def registry(self) -> TagProviderRegistry:
        return self.serializer.registry

    def schedule_index(
        self, locations: ContainerLocations, items: Sequence[SerializedItem]
    ) -> None:
        """Queue already-serialized items for indexing (fire-and-forget)."""
        self.indexer.schedule_index(locations, items)

    def on_container_changed(
        self,
        locations: ContainerLocations,
        raw_items: Sequence[Item | dict[str, Any] | None],
    ) -> None:
        """Serialize a container's current contents and queue them for indexing.

        Args:
            locations: Block positions of the container
            raw_items: Items per slot, as `Item` objects or raw mappings (None for empty)
        """
        items = [item_from_dict(raw) if isinstance(raw, dict) else raw for raw in raw_items]
        serialized = self.serializer.serialize(items)
        logger.debug(
            f"Container at {locations.primary_location} changed: {len(serialized)} items"
        )
        self.indexer.schedule_index(locations, serialized)

    def on_container_destroyed(self, location: LocationData) -> None:
        """Remove a destroyed container (any of its block positions) from the index."""
        self.indexer.schedule_delete(location)

    def search(
        self, query_text: str, limit: int | None = None, world: str | None = None
    ) -> "concurrent.futures.Future[list[SearchResult]]":
        """Search indexed containers.

        Args:
            query_text: Natural language query
            limit: Maximum number of results (capped at `max_limit`)
            world: Restrict results to one world

        Returns:
            Future resolving to results sorted by descending score

        Raises:
            ValueError: If the query is blank or the limit is not positive
        """
        if query_text is None or not query_text.strip():
            raise ValueError("query_text must be a non-empty string")
        if limit is None:
            limit = self.search_config.default_limit
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        limit = min(limit, self.search_config.max_limit)
        return self.runtime.submit(self._search(query_text, limit, world))

    async def _search(self, query_text: str, limit: int, world: str | None) -> list[SearchResult]:
        expanded = expand_query(query_text)
        query_vector = await self.embedding.embed(expanded, TaskType.RETRIEVAL_QUERY)
        candidates = await self.storage.search(
            query_vector, limit * self.search_config.candidate_multiplier, world=world
        )
        reranked = hybrid_rerank(
            candidates,
            query_text,
            expanded,
            keyword_boost_weight=self.search_config.keyword_boost_weight,
        )
        results = [r for r in reranked[:limit] if r.score >= self.search_config.min_score]
        logger.debug(
            f"Search {query_text!r} (expanded {expanded!r}): "
            f"{len(candidates)} candidates, {len(results)} results"
        )
        return results

    def stats(self) -> "concurrent.futures.Future[StorageStats]":
        return self.runtime.submit(self.storage.stats())

    def purge_all(self) -> "concurrent.futures.Future[None]":
        return self.runtime.submit(self.storage.purge_all())

    def shutdown(self) -> None:
        """Stop indexing, close providers and stop the loop. Idempotent."""
        with self._shutdown_lock:
            if self._is_shutdown:
                return
            self._is_shutdown = True

        self.indexer.shutdown()
        if self.runtime.is_running:
            for resource in (self.embedding, self.storage):
                try:
                    self.runtime.submit(resource.close()).result(timeout=CLOSE_TIMEOUT_SECONDS)
                except Exception as e:
                    logger.warning(f"Error closing {type(resource).__name__}: {e}")
        if self._owns_runtime:
            self.runtime.stop()

    def __enter__(self) -> "ContainerSearchService":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
