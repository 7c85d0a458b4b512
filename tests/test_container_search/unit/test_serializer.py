"""Unit tests for ItemSerializer and container path extraction."""

import json
from collections import Counter

import pytest

from container_search.items import DurabilityInfo, ItemStack, item_from_dict
from container_search.models import ContainerNode, ContainerPath
from container_search.serializer import (
    ItemSerializer,
    extract_container_path,
    format_material_name,
)
from container_search.tag_providers import weapon_tags
from container_search.tags import TagProviderRegistry


@pytest.fixture
def serializer() -> ItemSerializer:
    return ItemSerializer(TagProviderRegistry([weapon_tags]))


def shulker(color: str, contents, custom_name=None) -> ItemStack:
    return ItemStack(
        material=f"{color.upper()}_SHULKER_BOX",
        container_type="shulker_box",
        custom_name=custom_name,
        contents=tuple(contents),
    )


class TestFormatting:
    """Tests for material name formatting."""

    @pytest.mark.parametrize(
        "material,expected",
        [
            ("BIRCH_PLANKS", "Birch Planks"),
            ("diamond_sword", "Diamond Sword"),
            ("minecraft:oak_log", "Minecraft Oak Log"),
            ("STONE", "Stone"),
        ],
    )
    def test_format_material_name(self, material, expected):
        assert format_material_name(material) == expected


class TestSerialize:
    """Tests for the flat serialization form."""

    def test_embedding_text_lowercase_with_sorted_tags(self, serializer):
        [serialized] = serializer.serialize([ItemStack(material="DIAMOND_SWORD")])
        assert serialized.embedding_text == (
            "diamond sword #combat #diamond #melee #sword #weapon"
        )

    def test_item_without_tags(self, serializer):
        [serialized] = serializer.serialize([ItemStack(material="BIRCH_PLANKS", amount=64)])
        assert serialized.embedding_text == "birch planks"
        record = json.loads(serialized.storage_json)
        assert record["name"] == "Birch Planks"
        assert record["amount"] == 64
        assert record["material_type"] == "item"
        assert "tags" not in record
        assert "container_path" not in record

    def test_storage_json_fields(self, serializer):
        item = ItemStack(
            material="DIAMOND_SWORD",
            custom_name="Excalibur",
            lore=("Pulled from stone",),
            enchantments={"sharpness": 5},
            durability=DurabilityInfo(current=780, maximum=1561),
            rarity="epic",
            unbreakable=True,
        )
        [serialized] = serializer.serialize([item])
        record = json.loads(serialized.storage_json)

        assert record["display_name"] == "Excalibur"
        assert record["custom_name"] == "Excalibur"
        assert record["enchantments"] == [{"enchantment": "sharpness", "level": 5}]
        assert record["lore"] == ["Pulled from stone"]
        assert record["durability"] == {"current": 780, "max": 1561, "percent": 50}
        assert record["rarity"] == "epic"
        assert record["unbreakable"] is True
        assert "weapon" in record["tags"]

    def test_empty_slots_keep_index(self, serializer):
        items = [None, ItemStack(material="STONE"), None, ItemStack(material="DIRT")]
        slots = [json.loads(s.storage_json)["slot"] for s in serializer.serialize(items)]
        assert slots == [1, 3]

    def test_nested_containers(self, serializer):
        """Contents follow their container and carry the container path."""
        inner = ItemStack(material="IRON_SWORD")
        items = [ItemStack(material="STONE"), shulker("red", [None, inner])]

        serialized = serializer.serialize(items)
        assert [s.embedding_text.split(" #")[0] for s in serialized] == [
            "stone",
            "red shulker box",
            "iron sword",
        ]

        path = extract_container_path(serialized[2].storage_json)
        assert path.depth() == 1
        assert path.nodes[0] == ContainerNode(
            container_type="shulker_box", color="red", slot_index=1
        )
        assert json.loads(serialized[2].storage_json)["slot"] == 1
        assert extract_container_path(serialized[1].storage_json).is_root()

    def test_double_nesting_display(self, serializer):
        bundle = ItemStack(
            material="BUNDLE",
            container_type="bundle",
            custom_name="Gems",
            contents=(ItemStack(material="EMERALD"),),
        )
        items = [None] * 12 + [shulker("light_blue", [bundle])]
        emerald = serializer.serialize(items)[-1]
        path = extract_container_path(emerald.storage_json)
        assert path.to_display_string() == "in Light Blue Shulker Box (slot 12) in Gems (slot 0)"

    def test_max_depth_limits_descent(self):
        serializer = ItemSerializer(TagProviderRegistry(), max_depth=1)
        deepest = ItemStack(material="DIAMOND")
        middle = shulker("red", [deepest])
        outer = shulker("blue", [middle])

        texts = [s.embedding_text for s in serializer.serialize([outer])]
        assert texts == ["blue shulker box", "red shulker box"]

    def test_negative_depth_rejected(self):
        with pytest.raises(ValueError):
            ItemSerializer(TagProviderRegistry(), max_depth=-1)

    def test_serialize_raw_dicts(self, serializer):
        """Items adapted from raw mappings serialize like native ones."""
        raw = {
            "material": "WHITE_SHULKER_BOX",
            "contents": [
                None,
                {"material": "GOLDEN_SWORD", "durability": {"current": 5, "max": 32}},
            ],
        }
        serialized = serializer.serialize([item_from_dict(raw)])
        assert len(serialized) == 2
        record = json.loads(serialized[1].storage_json)
        assert record["durability"]["percent"] == 16
        assert record["container_path"][0]["color"] == "white"


class TestSerializeTree:
    """Tests for the tree serialization form."""

    def test_tree_matches_flat(self, serializer):
        """The tree's leaves are the same multiset as the flat list."""
        items = [
            ItemStack(material="STONE"),
            shulker(
                "red",
                [ItemStack(material="IRON_SWORD"), shulker("blue", [ItemStack(material="DIRT")])],
            ),
            None,
            ItemStack(material="STONE"),
        ]
        flat = serializer.serialize(items)
        tree = serializer.serialize_tree(items)

        assert Counter(s.storage_json for s in tree.leaf_items()) == Counter(
            s.storage_json for s in flat
        )

    def test_tree_structure(self, serializer):
        items = [shulker("red", [ItemStack(material="IRON_SWORD")])]
        tree = serializer.serialize_tree(items)

        assert tree.container_type == "inventory"
        assert len(tree.items) == 1
        [child] = tree.children
        assert child.container_type == "shulker_box"
        assert child.color == "red"
        assert child.slot_index == 0
        assert [s.embedding_text.split(" #")[0] for s in child.items] == ["iron sword"]

    def test_empty_inventory(self, serializer):
        tree = serializer.serialize_tree([None, None])
        assert tree.items == ()
        assert tree.children == ()
        assert serializer.serialize([]) == []


class TestExtractContainerPath:
    """Tests for reading paths back out of storage JSON."""

    def test_array_wrapped_record(self):
        node = {"containerType": "bundle", "slotIndex": 2}
        record = [{"name": "Stone", "container_path": [node]}]
        path = extract_container_path(json.dumps(record))
        assert path.nodes[0].container_type == "bundle"
        assert path.nodes[0].slot_index == 2

    def test_legacy_string_path(self):
        path = extract_container_path(json.dumps({"container_path": ["Tools"]}))
        assert path == ContainerPath.from_legacy_strings(["Tools"])

    @pytest.mark.parametrize(
        "storage_json",
        ["not json", "[]", '{"name": "Stone"}', '{"container_path": [42]}', '"text"'],
    )
    def test_fallback_to_root(self, storage_json):
        assert extract_container_path(storage_json) is ContainerPath.ROOT
