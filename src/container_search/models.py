"""Pydantic models for container indexing and search data structures.

Every value flowing between the serializer, the indexer and the storage
backends is one of these immutable schemas. Validation happens at
construction so malformed locations or out-of-range scores fail fast.
"""

import json
from functools import total_ordering
from typing import Any, ClassVar, Iterator

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from container_search.errors import ContainerPathError

DEFAULT_CONTAINER_TYPE = "container"


@total_ordering
class LocationData(BaseModel):
    """Opaque block position used as the primary key of an indexed container.

    Attributes:
        world: World identifier (non-empty)
        x: Block X coordinate
        y: Block Y coordinate
        z: Block Z coordinate
    """

    model_config = ConfigDict(frozen=True)

    world: str
    x: int
    y: int
    z: int

    @field_validator("world")
    @classmethod
    def validate_world(cls, v: str) -> str:
        """Reject blank world identifiers."""
        if not v or not v.strip():
            raise ValueError("world must be a non-empty identifier")
        return v

    @classmethod
    def of(cls, world: str, x: int, y: int, z: int) -> "LocationData":
        return cls(world=world, x=x, y=y, z=z)

    @classmethod
    def from_key(cls, key: str) -> "LocationData":
        """Parse a `world:x,y,z` key produced by `key`."""
        world, sep, coords = key.rpartition(":")
        parts = coords.split(",")
        if not sep or len(parts) != 3:
            raise ValueError(f"Invalid location key: {key!r}")
        x, y, z = (int(p) for p in parts)
        return cls(world=world, x=x, y=y, z=z)

    @property
    def key(self) -> str:
        return f"{self.world}:{self.x},{self.y},{self.z}"

    def coordinates(self) -> str:
        return f"({self.x}, {self.y}, {self.z})"

    def _order_key(self) -> tuple[str, int, int, int]:
        return (self.world, self.x, self.y, self.z)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, LocationData):
            return NotImplemented
        return self._order_key() < other._order_key()

    def __str__(self) -> str:
        return self.key


class ContainerLocations(BaseModel):
    """All block positions of one logical container.

    Single chests have one position; double chests have two. The primary
    location is the key under which the container is indexed.
    """

    model_config = ConfigDict(frozen=True)

    primary_location: LocationData
    all_locations: tuple[LocationData, ...]

    @model_validator(mode="after")
    def validate_primary_included(self) -> "ContainerLocations":
        if not self.all_locations:
            raise ValueError("all_locations must not be empty")
        if self.primary_location not in self.all_locations:
            raise ValueError(
                f"primary_location {self.primary_location.key} missing from all_locations"
            )
        return self

    @classmethod
    def single(cls, location: LocationData) -> "ContainerLocations":
        return cls(primary_location=location, all_locations=(location,))

    @classmethod
    def multi(
        cls, primary: LocationData, locations: list[LocationData] | tuple[LocationData, ...]
    ) -> "ContainerLocations":
        return cls(primary_location=primary, all_locations=tuple(locations))

    @property
    def is_multi_block(self) -> bool:
        return len(self.all_locations) > 1

    def contains_position(self, location: LocationData) -> bool:
        return location in self.all_locations


def _double_chest_order(location: LocationData) -> tuple[int, int, int, str]:
    return (location.x, location.z, location.y, location.world)


def resolve_double_chest_locations(a: LocationData, b: LocationData) -> ContainerLocations:
    """Build the locations of a double chest with a deterministic primary half.

    The primary is the half with the smallest X, then the smallest Z, then
    the smallest Y, so both halves always resolve to the same key regardless
    of which one the caller saw first.
    """
    if a == b:
        return ContainerLocations.single(a)
    ordered = sorted((a, b), key=_double_chest_order)
    return ContainerLocations.multi(ordered[0], ordered)


class SerializedItem(BaseModel):
    """Embeddable and storable representation of one item stack.

    Attributes:
        embedding_text: Lower-cased natural-language text sent to the embedding model
        storage_json: Structured JSON persisted next to the vector
    """

    model_config = ConfigDict(frozen=True)

    embedding_text: str
    storage_json: str


def _title_words(value: str) -> str:
    return " ".join(word.capitalize() for word in value.replace("_", " ").split())


def format_container_type(container_type: str | None) -> str:
    if not container_type:
        return "Container"
    lowered = container_type.lower()
    if lowered in ("shulker_box", "shulker"):
        return "Shulker Box"
    return _title_words(lowered)


class ContainerNode(BaseModel):
    """One level of container nesting.

    Path nodes only carry the descriptive fields. Nodes produced by the
    tree builder additionally hold the serialized leaves found at that
    level and one child node per nested container.

    Attributes:
        container_type: Container type tag (e.g. "shulker_box", "bundle")
        color: Optional dye color (e.g. "red", "light_blue")
        custom_name: Optional player-assigned name
        slot_index: Slot of this container inside its parent
        children: Nested container nodes
        items: Serialized items directly inside this node
    """

    model_config = ConfigDict(frozen=True)

    container_type: str = DEFAULT_CONTAINER_TYPE
    color: str | None = None
    custom_name: str | None = None
    slot_index: int = Field(default=0, ge=0)
    children: tuple["ContainerNode", ...] = ()
    items: tuple[SerializedItem, ...] = ()

    def with_child(self, child: "ContainerNode") -> "ContainerNode":
        return self.model_copy(update={"children": self.children + (child,)})

    def with_item(self, item: SerializedItem) -> "ContainerNode":
        return self.model_copy(update={"items": self.items + (item,)})

    def descriptor(self) -> "ContainerNode":
        """Return this node stripped of its children and items."""
        return ContainerNode(
            container_type=self.container_type,
            color=self.color,
            custom_name=self.custom_name,
            slot_index=self.slot_index,
        )

    def display_name(self) -> str:
        """Render as "Red Shulker Box (slot 12)"."""
        parts = []
        if self.color:
            parts.append(_title_words(self.color))
        parts.append(self.custom_name or format_container_type(self.container_type))
        return f"{' '.join(parts)} (slot {self.slot_index})"

    def flatten_with_paths(
        self, _trail: tuple["ContainerNode", ...] = ()
    ) -> Iterator[tuple[SerializedItem, tuple["ContainerNode", ...]]]:
        """Yield every leaf item together with the chain of nodes above it."""
        trail = _trail + (self,)
        for item in self.items:
            yield item, trail
        for child in self.children:
            yield from child.flatten_with_paths(trail)

    def leaf_items(self) -> list[SerializedItem]:
        return [item for item, _ in self.flatten_with_paths()]


ContainerNode.model_rebuild()


class ContainerPath(BaseModel):
    """Immutable chain of containers, ordered from outermost to innermost."""

    model_config = ConfigDict(frozen=True)

    ROOT: ClassVar["ContainerPath"]

    nodes: tuple[ContainerNode, ...] = ()

    def push(self, node: ContainerNode) -> "ContainerPath":
        return ContainerPath(nodes=self.nodes + (node.descriptor(),))

    def depth(self) -> int:
        return len(self.nodes)

    def is_root(self) -> bool:
        return not self.nodes

    def innermost(self) -> ContainerNode | None:
        return self.nodes[-1] if self.nodes else None

    def to_display_string(self) -> str:
        """Human readable breadcrumb, empty for the root path.

        Example:
            >>> path.to_display_string()
            'in Red Shulker Box (slot 12) in Bundle (slot 5)'
        """
        if not self.nodes:
            return ""
        return " ".join(f"in {node.display_name()}" for node in self.nodes)

    def to_json(self) -> str:
        encoded = []
        for node in self.nodes:
            obj: dict[str, Any] = {"containerType": node.container_type}
            if node.color is not None:
                obj["color"] = node.color
            if node.custom_name is not None:
                obj["customName"] = node.custom_name
            obj["slotIndex"] = node.slot_index
            encoded.append(obj)
        return json.dumps(encoded)

    @classmethod
    def from_legacy_strings(cls, names: list[str]) -> "ContainerPath":
        return cls(
            nodes=tuple(
                ContainerNode(custom_name=name, slot_index=i) for i, name in enumerate(names)
            )
        )

    @classmethod
    def from_json(cls, text: str | None) -> "ContainerPath":
        """Decode either the rich object format or the legacy string format.

        Raises:
            ContainerPathError: If the text is not JSON, not an array, or
                contains elements that are neither strings nor objects
        """
        if text is None or not text.strip() or text.strip() == "[]":
            return cls.ROOT
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError as e:
            raise ContainerPathError(f"Invalid container path JSON: {e}") from e
        if not isinstance(decoded, list):
            raise ContainerPathError(
                f"Container path must be a JSON array, got {type(decoded).__name__}"
            )
        if not decoded:
            return cls.ROOT

        nodes = []
        for i, element in enumerate(decoded):
            if isinstance(element, str):
                nodes.append(ContainerNode(custom_name=element, slot_index=i))
            elif isinstance(element, dict):
                nodes.append(_node_from_dict(element))
            else:
                raise ContainerPathError(
                    f"Unsupported container path element at index {i}: {element!r}"
                )
        return cls(nodes=tuple(nodes))


ContainerPath.ROOT = ContainerPath()


def _node_from_dict(obj: dict[str, Any]) -> ContainerNode:
    # "type"/"slot" are the keys written by the older nested-container format
    container_type = obj.get("containerType") or obj.get("type") or DEFAULT_CONTAINER_TYPE
    slot = obj.get("slotIndex", obj.get("slot", 0))
    try:
        slot_index = max(0, int(slot))
    except (TypeError, ValueError):
        slot_index = 0
    return ContainerNode(
        container_type=str(container_type),
        color=obj.get("color"),
        custom_name=obj.get("customName"),
        slot_index=slot_index,
    )


class ContainerChunk(BaseModel):
    """One embedded unit of a container's contents, ready for storage.

    Attributes:
        location: Primary location of the owning container
        chunk_index: Position of this chunk within the container
        text: Normalized embedding text
        embedding: Embedding vector
        timestamp: Creation time in epoch milliseconds
        storage_json: Structured item JSON for display and keyword scoring
        container_path: Nesting path of the item (None for top level)
    """

    model_config = ConfigDict(frozen=True)

    location: LocationData
    chunk_index: int = Field(ge=0)
    text: str
    embedding: list[float] = Field(min_length=1)
    timestamp: int = Field(ge=0)
    storage_json: str
    container_path: ContainerPath | None = None


class SearchResult(BaseModel):
    """A single container match with its relevance score.

    Attributes:
        location: Primary location of the matched container
        all_locations: Every block position of the container
        score: Relevance score, clamped to [0, 1]
        preview: Short text preview of the best chunk
        full_content: Structured content used for keyword scoring
        container_path: Nesting path of the best matching item
    """

    model_config = ConfigDict(frozen=True)

    location: LocationData
    all_locations: tuple[LocationData, ...] = ()
    score: float
    preview: str
    full_content: str | None = None
    container_path: ContainerPath | None = None

    @field_validator("score")
    @classmethod
    def clamp_score(cls, v: float) -> float:
        # Cosine similarity may overshoot 1.0 slightly due to float precision
        return min(1.0, max(0.0, v))

    @model_validator(mode="before")
    @classmethod
    def default_all_locations(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("all_locations") and data.get("location"):
            data = {**data, "all_locations": (data["location"],)}
        return data

    def with_score(self, score: float) -> "SearchResult":
        return self.model_copy(update={"score": min(1.0, max(0.0, score))})


class StorageStats(BaseModel):
    """Statistics about a vector storage backend.

    Attributes:
        total_chunks: Number of stored chunks
        total_containers: Number of distinct indexed containers
        provider: Backend identifier
        storage_size_mb: Approximate on-disk size in MB
    """

    total_chunks: int = Field(ge=0)
    total_containers: int = Field(ge=0)
    provider: str
    storage_size_mb: float = Field(default=0.0, ge=0.0)


class ProviderMetadata(BaseModel):
    """Embedding provider that produced the vectors held by a store.

    Vectors from different models live in different spaces, so a store
    whose metadata differs from the active provider must be re-indexed.

    Attributes:
        provider: Embedding provider identifier ("local", "openai", ...)
        model: Model identifier
        dimension: Vector dimensionality
    """

    model_config = ConfigDict(frozen=True)

    provider: str = Field(min_length=1)
    model: str = Field(min_length=1)
    dimension: int = Field(gt=0)

    def describe(self) -> str:
        return f"{self.provider}/{self.model} ({self.dimension}d)"
