"""Unit tests for Pinecone storage with a mocked index."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from container_search.errors import StorageError
from container_search.models import (
    ContainerChunk,
    ContainerLocations,
    ContainerNode,
    ContainerPath,
    LocationData,
    ProviderMetadata,
)
from container_search.storage import (
    LocalVectorStorage,
    PineconeVectorStorage,
    StorageConfig,
    create_vector_storage,
)

PRIMARY = LocationData.of("overworld", 0, 64, 0)
SECONDARY = LocationData.of("overworld", 1, 64, 0)


@pytest.fixture
def index() -> MagicMock:
    mock = MagicMock()
    mock.list.return_value = iter([])
    mock.fetch.return_value = SimpleNamespace(vectors={})
    mock.describe_index_stats.return_value = SimpleNamespace(dimension=3, namespaces={})
    return mock


@pytest.fixture
def storage(index) -> PineconeVectorStorage:
    return PineconeVectorStorage(
        index_name="test-index", api_key="test", namespace="tests", index=index
    )


def chunk(location: LocationData, index: int, text: str, path=None) -> ContainerChunk:
    return ContainerChunk(
        location=location,
        chunk_index=index,
        text=text,
        embedding=[0.1, 0.2, 0.3],
        timestamp=1_700_000_000_000,
        storage_json=f'{{"name": "{text}"}}',
        container_path=path,
    )


def match(location: LocationData, score: float, text: str = "stone", **metadata):
    return SimpleNamespace(
        score=score,
        metadata={"location": location.key, "text": text, "storage_json": "{}", **metadata},
    )


class TestPineconeIndexing:
    """Tests for upserting chunks."""

    @pytest.mark.asyncio
    async def test_replaces_existing_chunks(self, storage, index):
        """Existing vectors of the container are deleted before the upsert."""
        index.list.return_value = iter([[f"{PRIMARY.key}#0", f"{PRIMARY.key}#1"]])

        await storage.index_chunks([chunk(PRIMARY, 0, "stone")])

        index.list.assert_called_once_with(prefix=f"{PRIMARY.key}#", namespace="tests")
        index.delete.assert_called_once_with(
            ids=[f"{PRIMARY.key}#0", f"{PRIMARY.key}#1"], namespace="tests"
        )
        vectors = index.upsert.call_args.kwargs["vectors"]
        assert [v["id"] for v in vectors] == [f"{PRIMARY.key}#0"]

    @pytest.mark.asyncio
    async def test_metadata(self, storage, index):
        path = ContainerPath.ROOT.push(ContainerNode(container_type="bundle", slot_index=3))
        await storage.register_container_positions(
            ContainerLocations.multi(PRIMARY, [PRIMARY, SECONDARY])
        )

        await storage.index_chunks([chunk(PRIMARY, 0, "gem", path)])

        metadata = index.upsert.call_args.kwargs["vectors"][0]["metadata"]
        assert metadata["location"] == PRIMARY.key
        assert metadata["world"] == "overworld"
        assert metadata["text"] == "gem"
        assert ContainerPath.from_json(metadata["container_path"]) == path
        assert metadata["all_locations"] == [PRIMARY.key, SECONDARY.key]
        index.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_batch_is_noop(self, storage, index):
        await storage.index_chunks([])
        index.upsert.assert_not_called()

    @pytest.mark.asyncio
    async def test_client_errors_wrapped(self, storage, index):
        index.upsert.side_effect = RuntimeError("503 Service Unavailable")
        with pytest.raises(StorageError, match="503"):
            await storage.index_chunks([chunk(PRIMARY, 0, "stone")])


class TestPineconeSearch:
    """Tests for querying and collapsing matches."""

    @pytest.mark.asyncio
    async def test_best_chunk_per_container(self, storage, index):
        other = LocationData.of("overworld", 9, 64, 9)
        index.query.return_value = SimpleNamespace(
            matches=[
                match(PRIMARY, 0.9, "diamond sword"),
                match(other, 0.8),
                match(PRIMARY, 0.7, "stone"),
            ]
        )

        results = await storage.search([0.1, 0.2, 0.3], limit=5)

        assert [r.location for r in results] == [PRIMARY, other]
        assert results[0].preview == "diamond sword"
        assert index.query.call_args.kwargs["top_k"] == 5 * PineconeVectorStorage.OVERFETCH
        assert index.query.call_args.kwargs["filter"] is None

    @pytest.mark.asyncio
    async def test_world_filter_and_limit(self, storage, index):
        index.query.return_value = SimpleNamespace(
            matches=[match(PRIMARY, 0.9), match(LocationData.of("overworld", 9, 64, 9), 0.8)]
        )

        results = await storage.search([0.1, 0.2, 0.3], limit=1, world="overworld")

        assert len(results) == 1
        assert index.query.call_args.kwargs["filter"] == {"world": {"$eq": "overworld"}}

    @pytest.mark.asyncio
    async def test_score_clamped_and_locations_restored(self, storage, index):
        index.query.return_value = SimpleNamespace(
            matches=[match(PRIMARY, 1.00000036, all_locations=[PRIMARY.key, SECONDARY.key])]
        )

        [result] = await storage.search([0.1, 0.2, 0.3], limit=1)

        assert result.score == 1.0
        assert result.all_locations == (PRIMARY, SECONDARY)
        assert result.container_path is None

    @pytest.mark.asyncio
    async def test_invalid_limit(self, storage):
        with pytest.raises(ValueError):
            await storage.search([0.1], limit=0)


class TestPineconeMaintenance:
    @pytest.mark.asyncio
    async def test_delete_removes_vectors_and_positions(self, storage, index):
        await storage.register_container_positions(
            ContainerLocations.multi(PRIMARY, [PRIMARY, SECONDARY])
        )
        index.list.return_value = iter([[f"{PRIMARY.key}#0"]])

        await storage.delete(PRIMARY)

        index.delete.assert_any_call(ids=[f"{PRIMARY.key}#0"], namespace="tests")
        index.delete.assert_any_call(
            ids=[f"position:{PRIMARY.key}", f"position:{SECONDARY.key}"], namespace="tests-meta"
        )
        assert await storage.get_primary_location(SECONDARY) is None

    @pytest.mark.asyncio
    async def test_stats(self, storage, index):
        index.describe_index_stats.return_value = SimpleNamespace(
            dimension=3,
            namespaces={
                "tests": SimpleNamespace(vector_count=42),
                "tests-meta": SimpleNamespace(vector_count=7),
            },
        )
        stats = await storage.stats()
        assert stats.total_chunks == 42
        assert stats.provider == "pinecone"

    @pytest.mark.asyncio
    async def test_purge_all(self, storage, index):
        await storage.register_container_positions(ContainerLocations.single(PRIMARY))
        await storage.purge_all()
        index.delete.assert_called_once_with(delete_all=True, namespace="tests")
        assert await storage.get_primary_location(PRIMARY) is None


class TestCreateVectorStorage:
    """Tests for the storage factory."""

    def test_local(self, tmp_path):
        storage = create_vector_storage(StorageConfig(path=str(tmp_path / "idx")))
        assert isinstance(storage, LocalVectorStorage)
        assert storage.base_path == tmp_path / "idx"

    def test_pinecone_without_key_falls_back(self, tmp_path):
        config = StorageConfig(provider="pinecone", path=str(tmp_path), api_key=None)
        assert isinstance(create_vector_storage(config), LocalVectorStorage)

    def test_unknown_provider_falls_back(self, tmp_path):
        config = StorageConfig(provider="qdrant", path=str(tmp_path))
        assert isinstance(create_vector_storage(config), LocalVectorStorage)

    def test_pinecone_with_key(self, monkeypatch):
        client = MagicMock()
        monkeypatch.setattr("pinecone.Pinecone", client)

        storage = create_vector_storage(
            StorageConfig(provider="pinecone", api_key="pc-key", index_name="chests")
        )

        assert isinstance(storage, PineconeVectorStorage)
        client.assert_called_once_with(api_key="pc-key")
        client.return_value.Index.assert_called_once_with("chests")


class FakePineconeIndex:
    """In-memory index handle with Pinecone's list/fetch/upsert/delete surface."""

    def __init__(self, dimension: int = 3):
        self.dimension = dimension
        self.records: dict[str, dict[str, SimpleNamespace]] = {}

    def upsert(self, vectors, namespace=""):
        records = self.records.setdefault(namespace, {})
        for vector in vectors:
            records[vector["id"]] = SimpleNamespace(
                id=vector["id"], values=vector["values"], metadata=vector["metadata"]
            )

    def list(self, prefix="", namespace=""):
        ids = sorted(i for i in self.records.get(namespace, {}) if i.startswith(prefix))
        if ids:
            yield ids

    def fetch(self, ids, namespace=""):
        records = self.records.get(namespace, {})
        return SimpleNamespace(vectors={i: records[i] for i in ids if i in records})

    def delete(self, ids=None, delete_all=False, namespace=""):
        if delete_all:
            self.records.pop(namespace, None)
            return
        for vector_id in ids:
            self.records.get(namespace, {}).pop(vector_id, None)

    def describe_index_stats(self):
        return SimpleNamespace(
            dimension=self.dimension,
            namespaces={
                name: SimpleNamespace(vector_count=len(records))
                for name, records in self.records.items()
            },
        )

    def ids(self, namespace: str) -> list[str]:
        return sorted(self.records.get(namespace, {}))


def open_storage(index: FakePineconeIndex) -> PineconeVectorStorage:
    return PineconeVectorStorage(
        index_name="shared", api_key="test", namespace="tests", index=index
    )


NOMIC = ProviderMetadata(provider="local", model="nomic-ai/nomic-embed-text-v1.5", dimension=3)


class TestPineconeSharedPositions:
    """Position mappings survive restarts and are shared between processes."""

    @pytest.mark.asyncio
    async def test_positions_restored_after_restart(self):
        index = FakePineconeIndex()
        first = open_storage(index)
        await first.initialize()
        await first.register_container_positions(
            ContainerLocations.multi(PRIMARY, [PRIMARY, SECONDARY])
        )

        second = open_storage(index)
        await second.initialize()

        assert await second.get_primary_location(SECONDARY) == PRIMARY
        assert await second.get_all_positions(PRIMARY) == (PRIMARY, SECONDARY)
        assert len(second.positions) == 1

    @pytest.mark.asyncio
    async def test_position_registered_by_other_process_resolves(self):
        index = FakePineconeIndex()
        reader = open_storage(index)
        await reader.initialize()

        writer = open_storage(index)
        await writer.register_container_positions(
            ContainerLocations.multi(PRIMARY, [PRIMARY, SECONDARY])
        )

        assert await reader.get_primary_location(SECONDARY) == PRIMARY
        assert await reader.get_primary_location(LocationData.of("overworld", 7, 7, 7)) is None

    @pytest.mark.asyncio
    async def test_destroyed_double_chest_removed_after_restart(self):
        """Breaking the secondary half after a restart removes the container's vectors."""
        index = FakePineconeIndex()
        first = open_storage(index)
        await first.initialize()
        await first.register_container_positions(
            ContainerLocations.multi(PRIMARY, [PRIMARY, SECONDARY])
        )
        await first.index_chunks([chunk(PRIMARY, 0, "stone"), chunk(PRIMARY, 1, "gem")])

        second = open_storage(index)
        await second.initialize()
        primary = await second.get_primary_location(SECONDARY)
        await second.delete(primary)

        assert index.ids("tests") == []
        assert index.ids("tests-meta") == []
        third = open_storage(index)
        await third.initialize()
        assert await third.get_primary_location(SECONDARY) is None

    @pytest.mark.asyncio
    async def test_markers_kept_out_of_chunk_namespace(self):
        index = FakePineconeIndex()
        storage = open_storage(index)
        await storage.register_container_positions(
            ContainerLocations.multi(PRIMARY, [PRIMARY, SECONDARY])
        )
        await storage.index_chunks([chunk(PRIMARY, 0, "stone")])

        assert index.ids("tests") == [f"{PRIMARY.key}#0"]
        assert index.ids("tests-meta") == [f"position:{PRIMARY.key}", f"position:{SECONDARY.key}"]
        assert (await storage.stats()).total_chunks == 1

    @pytest.mark.asyncio
    async def test_purge_all_clears_markers(self):
        index = FakePineconeIndex()
        storage = open_storage(index)
        await storage.register_container_positions(ContainerLocations.single(PRIMARY))
        await storage.index_chunks([chunk(PRIMARY, 0, "stone")])

        await storage.purge_all()

        assert index.ids("tests") == []
        assert index.ids("tests-meta") == []
        assert await open_storage(index).get_primary_location(PRIMARY) is None


class TestPineconeProviderMetadata:
    """Tests for binding the index to an embedding model."""

    @pytest.mark.asyncio
    async def test_first_binding_recorded(self):
        index = FakePineconeIndex()
        storage = open_storage(index)
        await storage.initialize()

        assert await storage.ensure_provider(NOMIC) is False
        assert index.records["tests-meta"]["provider"].metadata["model"] == NOMIC.model

    @pytest.mark.asyncio
    async def test_model_change_purges(self):
        index = FakePineconeIndex()
        first = open_storage(index)
        await first.ensure_provider(NOMIC)
        await first.register_container_positions(ContainerLocations.single(PRIMARY))
        await first.index_chunks([chunk(PRIMARY, 0, "stone")])

        other_model = ProviderMetadata(provider="openai", model="text-embedding-3", dimension=3)
        second = open_storage(index)
        await second.initialize()

        assert await second.ensure_provider(other_model) is True
        assert index.ids("tests") == []
        assert index.ids("tests-meta") == ["provider"]
        assert index.records["tests-meta"]["provider"].metadata["provider"] == "openai"

    @pytest.mark.asyncio
    async def test_same_model_after_restart_keeps_vectors(self):
        index = FakePineconeIndex()
        await open_storage(index).ensure_provider(NOMIC)
        await open_storage(index).index_chunks([chunk(PRIMARY, 0, "stone")])

        assert await open_storage(index).ensure_provider(NOMIC) is False
        assert index.ids("tests") == [f"{PRIMARY.key}#0"]

    @pytest.mark.asyncio
    async def test_index_dimension_mismatch(self):
        storage = open_storage(FakePineconeIndex(dimension=1536))
        with pytest.raises(StorageError, match="1536 dimensions"):
            await storage.ensure_provider(NOMIC)
