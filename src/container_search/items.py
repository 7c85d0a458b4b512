"""Narrow item capability consumed by tag providers and the serializer.

Game adapters translate their native item stacks into objects satisfying
`Item`. Nothing downstream ever needs the native type back.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence, runtime_checkable


@dataclass(frozen=True)
class DurabilityInfo:
    """Remaining durability of a damageable item."""

    current: int
    maximum: int

    def __post_init__(self) -> None:
        if self.maximum <= 0:
            raise ValueError(f"maximum durability must be positive, got {self.maximum}")
        if not 0 <= self.current <= self.maximum:
            raise ValueError(f"current durability {self.current} outside [0, {self.maximum}]")

    @property
    def percent(self) -> int:
        return round(self.current * 100 / self.maximum)


@runtime_checkable
class Item(Protocol):
    """Read-only view of an item stack."""

    @property
    def material(self) -> str: ...

    @property
    def amount(self) -> int: ...

    @property
    def display_name(self) -> str | None: ...

    @property
    def custom_name(self) -> str | None: ...

    @property
    def lore(self) -> Sequence[str]: ...

    @property
    def enchantments(self) -> dict[str, int]: ...

    @property
    def durability(self) -> DurabilityInfo | None: ...

    @property
    def container_type(self) -> str | None: ...

    @property
    def contents(self) -> Sequence["Item | None"]: ...

    @property
    def is_block(self) -> bool: ...

    @property
    def rarity(self) -> str | None: ...

    @property
    def unbreakable(self) -> bool: ...


@dataclass(frozen=True)
class ItemStack:
    """Plain value implementation of `Item`.

    Attributes:
        material: Material identifier (e.g. "DIAMOND_SWORD")
        amount: Stack size
        display_name: Name shown in game, if different from the material
        custom_name: Player-assigned name (anvil rename)
        lore: Lore lines
        enchantments: Enchantment key to level
        durability: Remaining durability for damageable items
        container_type: "shulker_box", "bundle", ... when the item holds items
        contents: Items held inside, with None for empty slots
        is_block: Whether the material is a placeable block
        rarity: Rarity label
        unbreakable: Unbreakable flag
    """

    material: str
    amount: int = 1
    display_name: str | None = None
    custom_name: str | None = None
    lore: tuple[str, ...] = ()
    enchantments: dict[str, int] = field(default_factory=dict)
    durability: DurabilityInfo | None = None
    container_type: str | None = None
    contents: tuple["Item | None", ...] = ()
    is_block: bool = False
    rarity: str | None = None
    unbreakable: bool = False

    def __post_init__(self) -> None:
        if not self.material:
            raise ValueError("material must be non-empty")
        if self.amount < 1:
            raise ValueError(f"amount must be positive, got {self.amount}")


def _infer_container_type(material: str) -> str | None:
    upper = material.upper()
    if upper.endswith("SHULKER_BOX"):
        return "shulker_box"
    if upper.endswith("BUNDLE"):
        return "bundle"
    return None


def item_from_dict(raw: dict[str, Any] | None) -> ItemStack | None:
    """Adapt a raw item mapping (as sent by game adapters) into an `ItemStack`.

    Recognized keys mirror the `ItemStack` attributes. `durability` may be a
    mapping with `current` and `max`. `contents` is a list of raw items and
    implies a container type inferred from the material when none is given.

    Args:
        raw: Raw item mapping, or None for an empty slot

    Returns:
        The adapted item, or None for an empty slot
    """
    if raw is None:
        return None

    material = str(raw["material"])
    contents = tuple(item_from_dict(child) for child in raw.get("contents") or ())
    container_type = raw.get("container_type")
    if container_type is None:
        container_type = _infer_container_type(material) if contents else None

    durability = None
    if raw.get("durability"):
        durability = DurabilityInfo(
            current=int(raw["durability"]["current"]),
            maximum=int(raw["durability"]["max"]),
        )

    return ItemStack(
        material=material,
        amount=int(raw.get("amount", 1)),
        display_name=raw.get("display_name"),
        custom_name=raw.get("custom_name"),
        lore=tuple(raw.get("lore") or ()),
        enchantments={str(k): int(v) for k, v in (raw.get("enchantments") or {}).items()},
        durability=durability,
        container_type=container_type,
        contents=contents,
        is_block=bool(raw.get("is_block", False)),
        rarity=raw.get("rarity"),
        unbreakable=bool(raw.get("unbreakable", False)),
    )
