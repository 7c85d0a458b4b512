"""Pytest configuration for test discovery and shared fixtures.

This file ensures that:
- `src/` is importable
- Tests get a deterministic, offline embedding service
"""

from __future__ import annotations

import hashlib
import sys
from pathlib import Path

import pytest

# Ensure src directory is in path for imports
repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from container_search.embedding import TaskType  # noqa: E402
from container_search.models import (  # noqa: E402
    ContainerLocations,
    LocationData,
    SerializedItem,
)

HASH_DIMENSIONS = 1024


class HashingEmbedding:
    """Bag-of-words embedding: each token increments one hashed dimension.

    Texts sharing words get a positive cosine similarity, texts sharing
    none score zero. Calls are recorded for assertions.
    """

    def __init__(self, dimension: int = HASH_DIMENSIONS):
        self._dimension = dimension
        self.calls: list[tuple[str, TaskType]] = []
        self.closed = False

    @property
    def dimension(self) -> int:
        return self._dimension

    def vector_for(self, text: str) -> list[float]:
        vector = [0.0] * self._dimension
        for token in text.lower().replace("#", " ").split():
            digest = hashlib.md5(token.encode()).digest()
            vector[int.from_bytes(digest[:4], "big") % self._dimension] += 1.0
        return vector

    async def embed(self, text: str, task_type: TaskType) -> list[float]:
        self.calls.append((text, task_type))
        return self.vector_for(text)

    async def embed_batch(self, texts: list[str], task_type: TaskType) -> list[list[float]]:
        return [await self.embed(text, task_type) for text in texts]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def hashing_embedding() -> HashingEmbedding:
    return HashingEmbedding()


@pytest.fixture
def location() -> LocationData:
    return LocationData(world="overworld", x=10, y=64, z=-5)


@pytest.fixture
def single_locations(location: LocationData) -> ContainerLocations:
    return ContainerLocations.single(location)


def make_serialized(text: str, slot: int = 0) -> SerializedItem:
    """Build a SerializedItem with minimal storage JSON for the given text."""
    return SerializedItem(
        embedding_text=text,
        storage_json=f'{{"name": "{text}", "slot": {slot}}}',
    )
