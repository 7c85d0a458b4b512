"""Serialize container inventories into embeddable and storable units.

Both the flat and the tree form are produced by the same walk, so they
always contain the same serialized items.
"""

import json
from typing import Any, Iterator, Sequence

from loguru import logger

from container_search.errors import ContainerPathError
from container_search.items import Item
from container_search.models import ContainerNode, ContainerPath, SerializedItem
from container_search.tags import TagProviderRegistry

DEFAULT_MAX_DEPTH = 10
ROOT_NODE_TYPE = "inventory"


def format_material_name(material: str) -> str:
    """Format a material identifier for display.

    Example:
        >>> format_material_name("BIRCH_PLANKS")
        'Birch Planks'
    """
    words = material.lower().replace(":", "_").split("_")
    return " ".join(word.capitalize() for word in words if word)


def _shulker_color(material: str) -> str | None:
    upper = material.upper()
    if upper.endswith("_SHULKER_BOX"):
        return upper.removesuffix("_SHULKER_BOX").lower()
    return None


def extract_container_path(storage_json: str) -> ContainerPath:
    """Read the container path stored in a serialized item's JSON.

    Malformed JSON falls back to the root path.
    """
    try:
        decoded = json.loads(storage_json)
    except json.JSONDecodeError as e:
        logger.warning(f"Could not parse storage JSON for container path: {e}")
        return ContainerPath.ROOT
    if isinstance(decoded, list):
        decoded = decoded[0] if decoded else {}
    if not isinstance(decoded, dict) or "container_path" not in decoded:
        return ContainerPath.ROOT
    try:
        return ContainerPath.from_json(json.dumps(decoded["container_path"]))
    except ContainerPathError as e:
        logger.warning(f"Invalid container path in storage JSON: {e}")
        return ContainerPath.ROOT


class ItemSerializer:
    """Turns item lists into `SerializedItem`s using a tag provider registry."""

    def __init__(self, registry: TagProviderRegistry, max_depth: int = DEFAULT_MAX_DEPTH):
        """Initialize serializer.

        Args:
            registry: Tag providers consulted for every item
            max_depth: Maximum container nesting to descend into
        """
        if max_depth < 0:
            raise ValueError(f"max_depth must be non-negative, got {max_depth}")
        self.registry = registry
        self.max_depth = max_depth

    def serialize(self, items: Sequence[Item | None]) -> list[SerializedItem]:
        """Serialize items into a flat list, containers before their contents."""
        return [serialized for serialized, _ in self._walk(items, ContainerPath.ROOT, 0)]

    def serialize_tree(self, items: Sequence[Item | None]) -> ContainerNode:
        """Serialize items into a tree rooted at an `inventory` node.

        Each item is a leaf of the node it sits in; every container item with
        contents additionally owns a child node holding those contents.
        """
        root = ContainerNode(container_type=ROOT_NODE_TYPE)
        return self._build_node(root, items, ContainerPath.ROOT, 0)

    def _build_node(
        self,
        node: ContainerNode,
        items: Sequence[Item | None],
        path: ContainerPath,
        depth: int,
    ) -> ContainerNode:
        for slot, item in enumerate(items):
            if item is None:
                continue
            node = node.with_item(self._serialize_one(item, slot, path))
            if self._descends(item, depth):
                child = self._container_node(item, slot)
                child = self._build_node(child, item.contents, path.push(child), depth + 1)
                node = node.with_child(child)
        return node

    def _walk(
        self, items: Sequence[Item | None], path: ContainerPath, depth: int
    ) -> Iterator[tuple[SerializedItem, ContainerPath]]:
        for slot, item in enumerate(items):
            # empty slots keep their index so slot numbers match the inventory
            if item is None:
                continue
            yield self._serialize_one(item, slot, path), path
            if self._descends(item, depth):
                nested_path = path.push(self._container_node(item, slot))
                yield from self._walk(item.contents, nested_path, depth + 1)

    def _descends(self, item: Item, depth: int) -> bool:
        if not item.contents:
            return False
        if depth >= self.max_depth:
            logger.debug(f"Not descending into {item.material}: nesting depth {depth} reached")
            return False
        return True

    def _container_node(self, item: Item, slot: int) -> ContainerNode:
        return ContainerNode(
            container_type=item.container_type or "container",
            color=_shulker_color(item.material),
            custom_name=item.custom_name,
            slot_index=slot,
        )

    def _serialize_one(self, item: Item, slot: int, path: ContainerPath) -> SerializedItem:
        tags = sorted(self.registry.collect_tags(item))
        return SerializedItem(
            embedding_text=self.embedding_text(item, tags),
            storage_json=self.storage_json(item, slot, path, tags),
        )

    @staticmethod
    def embedding_text(item: Item, tags: Sequence[str]) -> str:
        text = format_material_name(item.material)
        for tag in tags:
            text += f" #{tag}"
        return text.lower()

    @staticmethod
    def storage_json(item: Item, slot: int, path: ContainerPath, tags: Sequence[str]) -> str:
        name = format_material_name(item.material)
        record: dict[str, Any] = {
            "name": name,
            "material": item.material,
            "amount": item.amount,
            "slot": slot,
            "display_name": item.display_name or item.custom_name or name,
        }
        if item.custom_name is not None:
            record["custom_name"] = item.custom_name
        if item.enchantments:
            record["enchantments"] = [
                {"enchantment": key, "level": level} for key, level in item.enchantments.items()
            ]
        if tags:
            record["tags"] = list(tags)
        if item.lore:
            record["lore"] = list(item.lore)
        if item.durability is not None:
            record["durability"] = {
                "current": item.durability.current,
                "max": item.durability.maximum,
                "percent": item.durability.percent,
            }
        if item.rarity is not None:
            record["rarity"] = item.rarity
        if item.unbreakable:
            record["unbreakable"] = True
        record["material_type"] = "block" if item.is_block else "item"
        if not path.is_root():
            record["container_path"] = json.loads(path.to_json())
        return json.dumps(record)
