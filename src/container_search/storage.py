"""Vector storage for indexed container chunks.

Provides a unified interface over:
- A local embedded store persisted to Parquet (default)
- A hosted Pinecone index

Both keep a position map so any block of a multi-block container resolves
to the primary location the container is indexed under.
"""

import asyncio
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import numpy as np
from loguru import logger
from pydantic import BaseModel, ValidationError

from container_search.errors import ContainerPathError, StorageError
from container_search.models import (
    ContainerChunk,
    ContainerLocations,
    ContainerPath,
    LocationData,
    ProviderMetadata,
    SearchResult,
    StorageStats,
)

PREVIEW_LENGTH = 100


class StorageConfig(BaseModel):
    """Vector storage configuration.

    Attributes:
        provider: "local" or "pinecone"
        path: Directory for the local store
        index_name: Pinecone index name
        namespace: Optional Pinecone namespace
        api_key: API key for the hosted service
    """

    provider: str = "local"
    path: str = "data/container_index"
    index_name: str = "container-search"
    namespace: str | None = None
    api_key: str | None = None


def make_preview(text: str) -> str:
    if len(text) <= PREVIEW_LENGTH:
        return text
    return text[:PREVIEW_LENGTH] + "..."


def cosine_similarity(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine similarity of every row of `matrix` against `query`.

    Zero vectors score 0.
    """
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms > 0, dots / norms, 0.0)
    return scores


class PositionMap:
    """Maps every block position to the container it belongs to."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._primary_of: dict[LocationData, LocationData] = {}
        self._members: dict[LocationData, tuple[LocationData, ...]] = {}

    def register(self, locations: ContainerLocations) -> None:
        primary = locations.primary_location
        with self._lock:
            for position in locations.all_locations:
                self._primary_of[position] = primary
            self._members[primary] = locations.all_locations

    def primary_of(self, position: LocationData) -> LocationData | None:
        return self._primary_of.get(position)

    def members_of(self, primary: LocationData) -> tuple[LocationData, ...]:
        return self._members.get(primary, (primary,))

    def remove(self, primary: LocationData) -> None:
        with self._lock:
            for position in self._members.pop(primary, (primary,)):
                if self._primary_of.get(position) == primary:
                    del self._primary_of[position]

    def clear(self) -> None:
        with self._lock:
            self._primary_of.clear()
            self._members.clear()

    def items(self) -> list[tuple[LocationData, LocationData]]:
        with self._lock:
            return list(self._primary_of.items())

    def __len__(self) -> int:
        return len(self._members)


class VectorStorage(ABC):
    """Abstract base class for vector storage implementations."""

    provider_name = "abstract"

    def __init__(self) -> None:
        self.positions = PositionMap()
        self.provider_metadata: ProviderMetadata | None = None

    async def initialize(self) -> None:
        """Prepare the backend (create files, connect, load state)."""

    async def ensure_provider(self, metadata: ProviderMetadata) -> bool:
        """Bind the store to the embedding provider that writes to it.

        The provider behind the stored vectors is persisted with the store.
        When it differs from `metadata` every stored vector is purged, so
        containers are re-indexed with the new model on their next change.

        Args:
            metadata: Provider, model and dimension of the active embedding service

        Returns:
            True if stored vectors were purged
        """
        stored = await self._load_provider_metadata()
        purged = False
        if stored is not None and stored != metadata:
            logger.warning(
                f"Embedding provider changed from {stored.describe()} to "
                f"{metadata.describe()}; purging {self.provider_name} storage for re-indexing"
            )
            await self.purge_all()
            purged = True
        self.provider_metadata = metadata
        if stored != metadata:
            await self._save_provider_metadata(metadata)
        return purged

    async def _load_provider_metadata(self) -> ProviderMetadata | None:
        """Hook for backends that persist provider metadata."""
        return None

    async def _save_provider_metadata(self, metadata: ProviderMetadata) -> None:
        """Hook for backends that persist provider metadata."""

    def _check_dimensions(self, chunks: list[ContainerChunk]) -> None:
        if self.provider_metadata is None:
            return
        expected = self.provider_metadata.dimension
        for chunk in chunks:
            if len(chunk.embedding) != expected:
                raise StorageError(
                    f"Chunk {chunk.chunk_index} of {chunk.location.key} has "
                    f"{len(chunk.embedding)} dimensions, store expects {expected}"
                )

    async def register_container_positions(self, locations: ContainerLocations) -> None:
        """Record which primary location every block of a container maps to.

        Registering the same container again is a no-op.
        """
        primary = locations.primary_location
        if (
            self.positions.primary_of(primary) == primary
            and self.positions.members_of(primary) == locations.all_locations
        ):
            return
        self.positions.register(locations)
        await self._persist_positions(locations)

    async def get_primary_location(self, position: LocationData) -> LocationData | None:
        return self.positions.primary_of(position)

    async def get_all_positions(self, primary: LocationData) -> tuple[LocationData, ...]:
        return self.positions.members_of(primary)

    async def _persist_positions(self, locations: ContainerLocations) -> None:
        """Hook for backends that persist the position map."""

    @abstractmethod
    async def index_chunks(self, chunks: list[ContainerChunk]) -> None:
        """Store chunks, replacing every existing chunk of each location in the batch.

        Args:
            chunks: Chunks to store (may span several locations)

        Raises:
            StorageError: For backend failures
        """
        ...

    @abstractmethod
    async def delete(self, location: LocationData) -> None:
        """Remove all chunks and position mappings of a container."""
        ...

    @abstractmethod
    async def search(
        self, query_vector: list[float], limit: int, world: str | None = None
    ) -> list[SearchResult]:
        """Find the containers most similar to the query vector.

        Args:
            query_vector: Embedded query
            limit: Maximum number of containers to return
            world: Restrict results to one world

        Returns:
            Best chunk per container, ordered by descending cosine similarity
        """
        ...

    @abstractmethod
    async def stats(self) -> StorageStats: ...

    @abstractmethod
    async def purge_all(self) -> None:
        """Remove every chunk and position mapping."""
        ...

    async def close(self) -> None:
        """Release backend resources."""


def _path_to_json(path: ContainerPath | None) -> str:
    return path.to_json() if path is not None and not path.is_root() else ""


def _path_from_json(text: str | None) -> ContainerPath | None:
    if not text:
        return None
    try:
        return ContainerPath.from_json(text)
    except ContainerPathError as e:
        logger.warning(f"Ignoring stored container path: {e}")
        return None


CHUNK_COLUMNS = [
    "location",
    "chunk_index",
    "text",
    "embedding",
    "timestamp",
    "storage_json",
    "container_path",
]

POSITION_COLUMNS = ["position", "primary"]


class LocalVectorStorage(VectorStorage):
    """Embedded vector store persisted to Parquet with file locking.

    All chunks are kept in memory for brute-force cosine search and written
    back to `chunks.parquet` after every mutation. The position map lives
    in `positions.parquet`. Writes are serialized through a `FileLock` so
    several processes can share one directory safely.
    """

    provider_name = "local"

    def __init__(self, base_path: Path | str):
        """Initialize local storage.

        Args:
            base_path: Directory holding the Parquet files
        """
        super().__init__()
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.chunks_path = self.base_path / "chunks.parquet"
        self.positions_path = self.base_path / "positions.parquet"
        self.provider_path = self.base_path / "provider.json"
        self.lock_path = self.base_path / ".container_index.lock"
        self._state_lock = threading.Lock()
        self._chunks: dict[LocationData, list[ContainerChunk]] = {}

    async def initialize(self) -> None:
        await asyncio.to_thread(self._load)
        logger.info(
            f"Local vector storage ready at {self.base_path} "
            f"({len(self._chunks)} containers, {len(self.positions)} position groups)"
        )

    def _load(self) -> None:
        import pandas as pd

        if self.chunks_path.exists():
            df = pd.read_parquet(self.chunks_path, engine="pyarrow")
            chunks: dict[LocationData, list[ContainerChunk]] = {}
            for _, row in df.iterrows():
                location = LocationData.from_key(row["location"])
                chunks.setdefault(location, []).append(
                    ContainerChunk(
                        location=location,
                        chunk_index=int(row["chunk_index"]),
                        text=row["text"],
                        # Parquet returns numpy arrays for list columns
                        embedding=[float(v) for v in row["embedding"]],
                        timestamp=int(row["timestamp"]),
                        storage_json=row["storage_json"],
                        container_path=_path_from_json(row["container_path"]),
                    )
                )
            with self._state_lock:
                self._chunks = chunks

        if self.positions_path.exists():
            df = pd.read_parquet(self.positions_path, engine="pyarrow")
            groups: dict[LocationData, list[LocationData]] = {}
            for _, row in df.iterrows():
                primary = LocationData.from_key(row["primary"])
                groups.setdefault(primary, []).append(LocationData.from_key(row["position"]))
            for primary, members in groups.items():
                if primary not in members:
                    members.append(primary)
                self.positions.register(ContainerLocations.multi(primary, members))

    def _write_chunks(self) -> None:
        import pandas as pd
        from filelock import FileLock

        # snapshot while holding the file lock
        with FileLock(self.lock_path, timeout=30):
            with self._state_lock:
                records = [
                    {
                        "location": chunk.location.key,
                        "chunk_index": chunk.chunk_index,
                        "text": chunk.text,
                        "embedding": chunk.embedding,
                        "timestamp": chunk.timestamp,
                        "storage_json": chunk.storage_json,
                        "container_path": _path_to_json(chunk.container_path),
                    }
                    for location_chunks in self._chunks.values()
                    for chunk in location_chunks
                ]
            df = pd.DataFrame(records, columns=CHUNK_COLUMNS)
            df.to_parquet(self.chunks_path, engine="pyarrow", compression="snappy", index=False)

    def _write_positions(self) -> None:
        import pandas as pd
        from filelock import FileLock

        with FileLock(self.lock_path, timeout=30):
            records = [
                {"position": position.key, "primary": primary.key}
                for position, primary in self.positions.items()
            ]
            df = pd.DataFrame(records, columns=POSITION_COLUMNS)
            df.to_parquet(self.positions_path, engine="pyarrow", compression="snappy", index=False)

    async def _persist_positions(self, locations: ContainerLocations) -> None:
        await asyncio.to_thread(self._write_positions)

    def _read_provider(self) -> ProviderMetadata | None:
        if not self.provider_path.exists():
            return None
        try:
            return ProviderMetadata.model_validate_json(self.provider_path.read_text())
        except ValidationError as e:
            raise StorageError(f"Invalid provider metadata in {self.provider_path}: {e}") from e

    def _write_provider(self, metadata: ProviderMetadata) -> None:
        from filelock import FileLock

        with FileLock(self.lock_path, timeout=30):
            self.provider_path.write_text(metadata.model_dump_json(indent=2))

    async def _load_provider_metadata(self) -> ProviderMetadata | None:
        return await asyncio.to_thread(self._read_provider)

    async def _save_provider_metadata(self, metadata: ProviderMetadata) -> None:
        try:
            await asyncio.to_thread(self._write_provider, metadata)
        except OSError as e:
            raise StorageError(f"Failed to persist provider metadata: {e}") from e
        logger.debug(f"Local vector storage bound to {metadata.describe()}")

    def stored_dimensions(self) -> set[int]:
        with self._state_lock:
            return {
                len(chunk.embedding)
                for location_chunks in self._chunks.values()
                for chunk in location_chunks
            }

    async def ensure_provider(self, metadata: ProviderMetadata) -> bool:
        # stores written before provider metadata existed carry no record
        if not self.provider_path.exists() and self.stored_dimensions() - {metadata.dimension}:
            logger.warning(
                f"Stored vectors at {self.base_path} do not match {metadata.describe()}; "
                "purging for re-indexing"
            )
            await self.purge_all()
            await super().ensure_provider(metadata)
            return True
        return await super().ensure_provider(metadata)

    async def index_chunks(self, chunks: list[ContainerChunk]) -> None:
        if not chunks:
            return
        self._check_dimensions(chunks)

        grouped: dict[LocationData, list[ContainerChunk]] = {}
        for chunk in chunks:
            grouped.setdefault(chunk.location, []).append(chunk)

        with self._state_lock:
            for location, location_chunks in grouped.items():
                self._chunks[location] = sorted(location_chunks, key=lambda c: c.chunk_index)

        try:
            await asyncio.to_thread(self._write_chunks)
        except OSError as e:
            raise StorageError(f"Failed to persist chunks to {self.chunks_path}: {e}") from e

        logger.debug(f"Stored {len(chunks)} chunks for {len(grouped)} containers")

    async def delete(self, location: LocationData) -> None:
        with self._state_lock:
            removed = self._chunks.pop(location, None)
        self.positions.remove(location)
        try:
            if removed is not None:
                await asyncio.to_thread(self._write_chunks)
            await asyncio.to_thread(self._write_positions)
        except OSError as e:
            raise StorageError(f"Failed to persist deletion of {location.key}: {e}") from e

    def _snapshot(self, world: str | None) -> list[ContainerChunk]:
        with self._state_lock:
            return [
                chunk
                for location, location_chunks in self._chunks.items()
                if world is None or location.world == world
                for chunk in location_chunks
            ]

    async def search(
        self, query_vector: list[float], limit: int, world: str | None = None
    ) -> list[SearchResult]:
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")

        candidates = self._snapshot(world)
        if not candidates:
            return []

        query = np.asarray(query_vector, dtype=np.float32)
        dimension = query.shape[0]
        matching = [chunk for chunk in candidates if len(chunk.embedding) == dimension]
        if len(matching) < len(candidates):
            other = sorted({len(c.embedding) for c in candidates} - {dimension})
            if not matching:
                raise StorageError(
                    f"Query has {dimension} dimensions, stored vectors have "
                    f"{', '.join(str(d) for d in other)}"
                )
            logger.warning(
                f"Skipping {len(candidates) - len(matching)} stored chunks with "
                f"{other} dimensions (query has {dimension}); re-index to include them"
            )
            candidates = matching

        matrix = np.asarray([chunk.embedding for chunk in candidates], dtype=np.float32)
        scores = cosine_similarity(matrix, query)

        best: dict[LocationData, tuple[float, ContainerChunk]] = {}
        for chunk, score in zip(candidates, scores.tolist(), strict=True):
            current = best.get(chunk.location)
            if current is None or score > current[0]:
                best[chunk.location] = (score, chunk)

        ranked = sorted(best.values(), key=lambda pair: pair[0], reverse=True)[:limit]
        return [
            SearchResult(
                location=chunk.location,
                all_locations=self.positions.members_of(chunk.location),
                score=score,
                preview=make_preview(chunk.text),
                full_content=chunk.storage_json,
                container_path=chunk.container_path,
            )
            for score, chunk in ranked
        ]

    async def stats(self) -> StorageStats:
        with self._state_lock:
            total_chunks = sum(len(c) for c in self._chunks.values())
            total_containers = len(self._chunks)
        files = (self.chunks_path, self.positions_path)
        size_bytes = sum(p.stat().st_size for p in files if p.exists())
        return StorageStats(
            total_chunks=total_chunks,
            total_containers=total_containers,
            provider=self.provider_name,
            storage_size_mb=size_bytes / (1024 * 1024),
        )

    async def purge_all(self) -> None:
        with self._state_lock:
            self._chunks.clear()
        self.positions.clear()
        await asyncio.to_thread(self._write_chunks)
        await asyncio.to_thread(self._write_positions)
        logger.info(f"Purged local vector storage at {self.base_path}")


def _vector_id(location: LocationData, chunk_index: int) -> str:
    return f"{location.key}#{chunk_index}"


POSITION_ID_PREFIX = "position:"
PROVIDER_RECORD_ID = "provider"
FETCH_BATCH_SIZE = 100


def _position_id(position: LocationData) -> str:
    return f"{POSITION_ID_PREFIX}{position.key}"


class PineconeVectorStorage(VectorStorage):
    """Pinecone vector storage implementation.

    Vector ids are `world:x,y,z#chunk_index`, so every chunk of a container
    can be found by id prefix. The position map and the provider metadata
    are stored as marker records in a separate `<namespace>-meta` namespace,
    one `position:world:x,y,z` record per block, so every process sharing
    the index resolves secondary blocks to the same container. The Pinecone
    client is synchronous; calls run in worker threads.
    """

    provider_name = "pinecone"

    # Pinecone returns several chunks per container; over-fetch before collapsing
    OVERFETCH = 4

    def __init__(
        self,
        index_name: str,
        api_key: str,
        namespace: str | None = None,
        index: Any = None,
    ):
        """Initialize Pinecone index client.

        Args:
            index_name: Name of Pinecone index
            api_key: Pinecone API key
            namespace: Optional namespace for multi-tenancy
            index: Pre-built index handle (used by tests)
        """
        super().__init__()
        self.index_name = index_name
        self.namespace = namespace or ""
        self.meta_namespace = f"{self.namespace}-meta" if self.namespace else "meta"
        if index is None:
            from pinecone import Pinecone

            index = Pinecone(api_key=api_key).Index(index_name)
        self.index = index
        self._dimension: int | None = None

    def _index_dimension(self) -> int:
        if self._dimension is None:
            self._dimension = int(self.index.describe_index_stats().dimension)
        return self._dimension

    def _marker_values(self) -> list[float]:
        # dense vectors must not be all zeros
        return [1.0] + [0.0] * (self._index_dimension() - 1)

    def _list_ids(self, prefix: str, namespace: str) -> list[str]:
        ids: list[str] = []
        for page in self.index.list(prefix=prefix, namespace=namespace):
            ids.extend(page)
        return ids

    def _fetch_metadata(self, ids: list[str]) -> dict[str, dict[str, Any]]:
        found: dict[str, dict[str, Any]] = {}
        for start in range(0, len(ids), FETCH_BATCH_SIZE):
            response = self.index.fetch(
                ids=ids[start : start + FETCH_BATCH_SIZE], namespace=self.meta_namespace
            )
            for vector_id, vector in response.vectors.items():
                found[vector_id] = dict(vector.metadata or {})
        return found

    @staticmethod
    def _locations_from_marker(metadata: dict[str, Any]) -> ContainerLocations:
        primary = LocationData.from_key(metadata["primary"])
        members = [LocationData.from_key(key) for key in metadata.get("members", ())]
        if primary not in members:
            members.append(primary)
        return ContainerLocations.multi(primary, members)

    def _load_positions(self) -> None:
        self._index_dimension()
        ids = self._list_ids(POSITION_ID_PREFIX, self.meta_namespace)
        for metadata in self._fetch_metadata(ids).values():
            self.positions.register(self._locations_from_marker(metadata))

    async def initialize(self) -> None:
        try:
            await asyncio.to_thread(self._load_positions)
        except Exception as e:
            raise StorageError(f"Failed to load positions from {self.index_name!r}: {e}") from e
        logger.info(
            f"Pinecone storage ready on {self.index_name!r} "
            f"({self._dimension} dimensions, {len(self.positions)} position groups)"
        )

    def _write_position_markers(self, locations: ContainerLocations) -> None:
        values = self._marker_values()
        primary = locations.primary_location
        members = [position.key for position in locations.all_locations]
        vectors = [
            {
                "id": _position_id(position),
                "values": values,
                "metadata": {"position": position.key, "primary": primary.key, "members": members},
            }
            for position in locations.all_locations
        ]
        self.index.upsert(vectors=vectors, namespace=self.meta_namespace)

    async def _persist_positions(self, locations: ContainerLocations) -> None:
        try:
            await asyncio.to_thread(self._write_position_markers, locations)
        except Exception as e:
            raise StorageError(
                f"Failed to store positions of {locations.primary_location.key}: {e}"
            ) from e

    async def get_primary_location(self, position: LocationData) -> LocationData | None:
        primary = self.positions.primary_of(position)
        if primary is not None:
            return primary
        # another process may have registered the container
        marker_id = _position_id(position)
        try:
            found = await asyncio.to_thread(self._fetch_metadata, [marker_id])
        except Exception as e:
            raise StorageError(f"Failed to resolve position {position.key}: {e}") from e
        if marker_id not in found:
            return None
        locations = self._locations_from_marker(found[marker_id])
        self.positions.register(locations)
        return locations.primary_location

    async def get_all_positions(self, primary: LocationData) -> tuple[LocationData, ...]:
        await self.get_primary_location(primary)
        return self.positions.members_of(primary)

    def _read_provider(self) -> ProviderMetadata | None:
        found = self._fetch_metadata([PROVIDER_RECORD_ID])
        if PROVIDER_RECORD_ID not in found:
            return None
        metadata = found[PROVIDER_RECORD_ID]
        return ProviderMetadata(
            provider=metadata["provider"],
            model=metadata["model"],
            # Pinecone stores numbers as floats
            dimension=int(metadata["dimension"]),
        )

    async def _load_provider_metadata(self) -> ProviderMetadata | None:
        try:
            return await asyncio.to_thread(self._read_provider)
        except (KeyError, ValidationError) as e:
            raise StorageError(f"Invalid provider record in {self.index_name!r}: {e}") from e

    def _write_provider(self, metadata: ProviderMetadata) -> None:
        self.index.upsert(
            vectors=[
                {
                    "id": PROVIDER_RECORD_ID,
                    "values": self._marker_values(),
                    "metadata": metadata.model_dump(),
                }
            ],
            namespace=self.meta_namespace,
        )

    async def _save_provider_metadata(self, metadata: ProviderMetadata) -> None:
        try:
            await asyncio.to_thread(self._write_provider, metadata)
        except Exception as e:
            raise StorageError(f"Failed to store provider metadata: {e}") from e

    async def ensure_provider(self, metadata: ProviderMetadata) -> bool:
        dimension = await asyncio.to_thread(self._index_dimension)
        if dimension != metadata.dimension:
            raise StorageError(
                f"Pinecone index {self.index_name!r} has {dimension} dimensions, "
                f"{metadata.describe()} produces {metadata.dimension}"
            )
        return await super().ensure_provider(metadata)

    def _delete_location(self, location: LocationData) -> None:
        ids = self._list_ids(f"{location.key}#", self.namespace)
        if ids:
            self.index.delete(ids=ids, namespace=self.namespace)

    def _to_vector(self, chunk: ContainerChunk) -> dict[str, Any]:
        return {
            "id": _vector_id(chunk.location, chunk.chunk_index),
            "values": chunk.embedding,
            "metadata": {
                "location": chunk.location.key,
                "world": chunk.location.world,
                "chunk_index": chunk.chunk_index,
                "text": chunk.text,
                "storage_json": chunk.storage_json,
                "timestamp": chunk.timestamp,
                "container_path": _path_to_json(chunk.container_path),
                "all_locations": [
                    loc.key for loc in self.positions.members_of(chunk.location)
                ],
            },
        }

    def _replace(self, grouped: dict[LocationData, list[ContainerChunk]]) -> None:
        vectors = []
        for location, location_chunks in grouped.items():
            self._delete_location(location)
            vectors.extend(self._to_vector(chunk) for chunk in location_chunks)
        self.index.upsert(vectors=vectors, namespace=self.namespace)

    async def index_chunks(self, chunks: list[ContainerChunk]) -> None:
        if not chunks:
            return
        self._check_dimensions(chunks)
        grouped: dict[LocationData, list[ContainerChunk]] = {}
        for chunk in chunks:
            grouped.setdefault(chunk.location, []).append(chunk)
        try:
            await asyncio.to_thread(self._replace, grouped)
        except Exception as e:
            raise StorageError(f"Pinecone upsert failed: {e}") from e

    async def delete(self, location: LocationData) -> None:
        members = await self.get_all_positions(location)
        try:
            await asyncio.to_thread(self._delete_location, location)
            await asyncio.to_thread(
                self.index.delete,
                ids=[_position_id(position) for position in members],
                namespace=self.meta_namespace,
            )
        except Exception as e:
            raise StorageError(f"Pinecone delete failed for {location.key}: {e}") from e
        self.positions.remove(location)

    def _match_to_result(self, match: Any) -> SearchResult:
        metadata = match.metadata
        location = LocationData.from_key(metadata["location"])
        all_locations = tuple(LocationData.from_key(k) for k in metadata.get("all_locations", ()))
        return SearchResult(
            location=location,
            all_locations=all_locations or self.positions.members_of(location),
            # Pinecone sometimes returns 1.00000036 due to float precision
            score=min(1.0, max(0.0, match.score)),
            preview=make_preview(metadata.get("text", "")),
            full_content=metadata.get("storage_json"),
            container_path=_path_from_json(metadata.get("container_path")),
        )

    async def search(
        self, query_vector: list[float], limit: int, world: str | None = None
    ) -> list[SearchResult]:
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        query_filter = {"world": {"$eq": world}} if world is not None else None
        response = await asyncio.to_thread(
            self.index.query,
            vector=query_vector,
            top_k=limit * self.OVERFETCH,
            namespace=self.namespace,
            filter=query_filter,
            include_metadata=True,
            include_values=False,
        )

        best: dict[LocationData, SearchResult] = {}
        for match in response.matches:
            result = self._match_to_result(match)
            current = best.get(result.location)
            if current is None or result.score > current.score:
                best[result.location] = result
        return sorted(best.values(), key=lambda r: r.score, reverse=True)[:limit]

    async def stats(self) -> StorageStats:
        stats = await asyncio.to_thread(self.index.describe_index_stats)
        summary = (getattr(stats, "namespaces", None) or {}).get(self.namespace)
        return StorageStats(
            total_chunks=summary.vector_count if summary is not None else 0,
            total_containers=len(self.positions),
            provider=self.provider_name,
        )

    def _delete_position_markers(self) -> None:
        ids = self._list_ids(POSITION_ID_PREFIX, self.meta_namespace)
        for start in range(0, len(ids), 1000):
            self.index.delete(ids=ids[start : start + 1000], namespace=self.meta_namespace)

    async def purge_all(self) -> None:
        await asyncio.to_thread(self.index.delete, delete_all=True, namespace=self.namespace)
        await asyncio.to_thread(self._delete_position_markers)
        self.positions.clear()
        logger.info(f"Purged Pinecone index {self.index_name!r}")


def create_vector_storage(config: StorageConfig) -> VectorStorage:
    """Factory function to create a storage backend from config.

    Unknown providers, and Pinecone without an API key, fall back to the
    local store with a warning.
    """
    provider = config.provider.lower()
    if provider == "pinecone":
        if config.api_key:
            return PineconeVectorStorage(
                index_name=config.index_name,
                api_key=config.api_key,
                namespace=config.namespace,
            )
        logger.warning("No Pinecone API key configured, using local vector storage")
    elif provider != "local":
        logger.warning(f"Unknown storage provider {config.provider!r}, using local storage")
    return LocalVectorStorage(Path(config.path))
