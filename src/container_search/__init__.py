"""Semantic search over the contents of storage containers.

This package indexes container inventories (chests, shulker boxes, bundles)
into a vector store and answers natural-language queries with hybrid
semantic + keyword ranking. Game adapters call into `ContainerSearchService`;
everything else is a replaceable component.

Architecture:
    - models: Pydantic schemas for locations, container paths, chunks, results
    - tags / tag_providers: Copy-on-write tag provider registry and vanilla providers
    - serializer: Items to embedding text and storage JSON (flat and tree)
    - embedding: Local, OpenAI and Gemini embedding services with LRU caching
    - storage: Local Parquet and Pinecone vector storage
    - indexer: Debounced, cancel-and-replace background indexing
    - scoring / query: BM25 hybrid re-ranking and query expansion

Usage:
    >>> from container_search import ContainerSearchService, load_config
    >>> service = ContainerSearchService.from_config(load_config("default"))
    >>> service.search("diamond sword").result()
"""

__version__ = "0.1.0"

from container_search.config import ContainerSearchConfig, load_config
from container_search.models import (
    ContainerLocations,
    ContainerNode,
    ContainerPath,
    LocationData,
    SearchResult,
    SerializedItem,
)
from container_search.service import ContainerSearchService

__all__ = [
    "ContainerLocations",
    "ContainerNode",
    "ContainerPath",
    "ContainerSearchConfig",
    "ContainerSearchService",
    "LocationData",
    "SearchResult",
    "SerializedItem",
    "load_config",
]
