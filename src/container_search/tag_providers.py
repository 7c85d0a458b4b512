"""Built-in tag providers for vanilla item materials.

Each provider inspects the material identifier (and, for enchantments and
storage items, the item capabilities) and returns a set of lower-case tags.
"""

from container_search.items import Item
from container_search.tags import TagProviderRegistry

VANILLA_COLORS = (
    "light_blue",
    "light_gray",
    "white",
    "orange",
    "magenta",
    "yellow",
    "lime",
    "pink",
    "gray",
    "cyan",
    "purple",
    "blue",
    "brown",
    "green",
    "red",
    "black",
)

WOOD_TYPES = {
    "SPRUCE": "spruce",
    "BIRCH": "birch",
    "JUNGLE": "jungle",
    "ACACIA": "acacia",
    "DARK_OAK": "darkoak",
    "MANGROVE": "mangrove",
    "CHERRY": "cherry",
    "BAMBOO": "bamboo",
}

GEMS = {
    "DIAMOND",
    "EMERALD",
    "AMETHYST_SHARD",
    "LAPIS_LAZULI",
    "PRISMARINE_SHARD",
    "PRISMARINE_CRYSTALS",
    "QUARTZ",
    "NETHER_QUARTZ",
}

MINERALS = (
    "DIAMOND",
    "EMERALD",
    "GOLD",
    "IRON",
    "COPPER",
    "NETHERITE",
    "LAPIS",
    "REDSTONE",
    "QUARTZ",
    "AMETHYST",
)

# suffix -> tags, shared by the weapon and tool providers
TOOL_SUFFIXES = {
    "_PICKAXE": ("tool", "pickaxe", "mining", "breaking"),
    "_SHOVEL": ("tool", "shovel", "digging", "breaking"),
    "_HOE": ("tool", "hoe", "farming", "tilling"),
}

ARMOR_SUFFIXES = {
    "_HELMET": ("armor", "helmet", "headgear", "head", "wearable"),
    "_CHESTPLATE": ("armor", "chestplate", "chest", "body", "wearable"),
    "_LEGGINGS": ("armor", "leggings", "pants", "legs", "wearable"),
    "_BOOTS": ("armor", "boots", "footwear", "feet", "wearable"),
}

SIMPLE_WEAPONS = {
    "BOW": ("weapon", "bow", "ranged", "projectile", "combat"),
    "CROSSBOW": ("weapon", "crossbow", "ranged", "projectile", "combat"),
    "TRIDENT": ("weapon", "trident", "melee", "ranged", "throwable", "combat"),
    "MACE": ("weapon", "mace", "melee", "combat", "heavyhitter"),
    "SHIELD": ("weapon", "shield", "defense", "combat", "blocking"),
    "SNOWBALL": ("weapon", "throwable", "projectile"),
    "EGG": ("weapon", "throwable", "projectile"),
    "ENDER_PEARL": ("throwable", "teleport", "projectile"),
    "WIND_CHARGE": ("weapon", "throwable", "projectile", "knockback"),
    "FIREWORK_ROCKET": ("ammo", "firework", "projectile", "elytra"),
}

SIMPLE_TOOLS = {
    "SHEARS": ("tool", "shears", "shearing", "harvesting"),
    "FLINT_AND_STEEL": ("tool", "flintandsteel", "fire", "igniter"),
    "FISHING_ROD": ("tool", "fishingrod", "fishing", "catching"),
    "CARROT_ON_A_STICK": ("tool", "riding", "control"),
    "WARPED_FUNGUS_ON_A_STICK": ("tool", "riding", "control"),
    "LEAD": ("tool", "lead", "leash", "mob"),
    "NAME_TAG": ("tool", "nametag", "naming", "mob"),
    "BRUSH": ("tool", "brush", "archaeology", "excavation"),
    "SPYGLASS": ("tool", "spyglass", "zoom", "scouting"),
    "CLOCK": ("tool", "clock", "time"),
    "COMPASS": ("tool", "compass", "navigation"),
    "RECOVERY_COMPASS": ("tool", "compass", "navigation", "recovery", "death"),
    "BONE_MEAL": ("tool", "bonemeal", "farming", "growth"),
    "WRITABLE_BOOK": ("tool", "book", "writing"),
    "WRITTEN_BOOK": ("tool", "book", "writing"),
}


def _tier_tags(upper: str) -> set[str]:
    """Material tier of a tool, weapon or armor piece."""
    if "NETHERITE" in upper:
        return {"netherite"}
    if "DIAMOND" in upper:
        return {"diamond"}
    if "IRON" in upper:
        return {"iron"}
    if "CHAINMAIL" in upper:
        return {"chainmail"}
    if "GOLD" in upper:
        return {"gold", "golden"}
    if "LEATHER" in upper:
        return {"leather"}
    if "STONE" in upper:
        return {"stone"}
    if "WOOD" in upper:
        return {"wood", "wooden"}
    return set()


def _is_axe(upper: str) -> bool:
    return upper.endswith("_AXE") and "PICKAXE" not in upper


def weapon_tags(item: Item) -> set[str]:
    upper = item.material.upper()
    tags = set(SIMPLE_WEAPONS.get(upper, ()))
    if upper.endswith("_SWORD"):
        tags |= {"weapon", "sword", "melee", "combat"} | _tier_tags(upper)
    if _is_axe(upper):
        tags |= {"weapon", "axe", "melee", "combat"} | _tier_tags(upper)
    if "ARROW" in upper:
        tags |= {"ammo", "ammunition", "projectile", "combat"}
        if upper == "SPECTRAL_ARROW":
            tags.add("spectral")
        elif upper == "TIPPED_ARROW":
            tags |= {"tipped", "potion"}
    return tags


def tool_tags(item: Item) -> set[str]:
    upper = item.material.upper()
    tags = set(SIMPLE_TOOLS.get(upper, ()))
    for suffix, suffix_tags in TOOL_SUFFIXES.items():
        if upper.endswith(suffix):
            tags |= set(suffix_tags) | _tier_tags(upper)
    if _is_axe(upper):
        tags |= {"tool", "axe", "woodcutting", "chopping", "breaking"} | _tier_tags(upper)
    if "MAP" in upper:
        tags |= {"tool", "map", "navigation"}
        if upper == "FILLED_MAP":
            tags.add("filled")
    if "BUCKET" in upper:
        tags |= {"tool", "bucket", "container"}
        contents = upper.removesuffix("_BUCKET").lower()
        if upper in ("WATER_BUCKET", "LAVA_BUCKET", "MILK_BUCKET"):
            tags.add(contents)
        elif upper == "POWDER_SNOW_BUCKET":
            tags.add("powdersnow")
        elif "FISH_BUCKET" in upper or upper in ("AXOLOTL_BUCKET", "TADPOLE_BUCKET"):
            tags |= {"mobbucket", "mob"}
    return tags


def armor_tags(item: Item) -> set[str]:
    upper = item.material.upper()
    tags: set[str] = set()
    for suffix, suffix_tags in ARMOR_SUFFIXES.items():
        if upper.endswith(suffix):
            tags |= set(suffix_tags) | _tier_tags(upper)
    if upper == "TURTLE_HELMET":
        tags |= {"turtle", "waterbreathing"}
    if upper == "ELYTRA":
        tags |= {"armor", "elytra", "wings", "chest", "wearable", "flying", "gliding"}
    if "_HORSE_ARMOR" in upper:
        tags |= {"armor", "horsearmor", "horse", "mount", "pet"} | _tier_tags(upper)
    if upper == "WOLF_ARMOR":
        tags |= {"armor", "wolfarmor", "wolf", "pet"}
    if upper.startswith("LEATHER_"):
        tags |= {"leather", "dyeable"}
    if upper.startswith("CHAINMAIL_"):
        tags |= {"chainmail", "chain"}
    if "_HEAD" in upper or "_SKULL" in upper:
        tags |= {"head", "headgear", "wearable", "decorative"}
        for mob in ("SKELETON", "ZOMBIE", "CREEPER", "WITHER", "DRAGON", "PIGLIN", "PLAYER"):
            if mob in upper:
                tags.add(mob.lower())
                break
    if upper == "CARVED_PUMPKIN":
        tags |= {"head", "headgear", "wearable", "pumpkin", "enderman"}
    return tags


def enchantment_tags(item: Item) -> set[str]:
    """`enchanted` plus every enchantment key and `key_level` pair."""
    tags: set[str] = set()
    for key, level in item.enchantments.items():
        tags |= {"enchanted", key, f"{key}_{level}"}
    return tags


def mineral_tags(item: Item) -> set[str]:
    upper = item.material.upper()
    tags: set[str] = set()
    if upper.endswith("_ORE") or upper == "ANCIENT_DEBRIS":
        tags |= {"ore", "mineral", "mineable"}
    if upper.startswith("RAW_"):
        tags |= {"raw", "mineral", "smeltable"}
    if upper.endswith("_INGOT"):
        tags |= {"ingot", "mineral", "metal", "refined"}
    if upper.endswith("_NUGGET"):
        tags |= {"nugget", "mineral", "metal"}
    if upper in GEMS:
        tags |= {"gem", "mineral", "precious"}
    for mineral in MINERALS:
        if mineral in upper:
            tags |= {mineral.lower(), "mineral"}
    if "COAL" in upper and "CHARCOAL" not in upper:
        tags |= {"coal", "mineral"}
    if upper.endswith("_BLOCK") and (
        "COAL" in upper or "RAW_" in upper or any(m in upper for m in MINERALS)
    ):
        tags |= {"mineralblock", "storage"}
    return tags


def storage_tags(item: Item) -> set[str]:
    upper = item.material.upper()
    tags: set[str] = set()
    if item.container_type == "bundle" or upper == "BUNDLE":
        tags |= {"bundle", "storage", "container"}
    if item.container_type == "shulker_box" or "SHULKER_BOX" in upper:
        tags |= {"shulkerbox", "storage", "container"}
    if "CHEST" in upper:
        tags |= {"chest", "storage"}
    if "BARREL" in upper:
        tags |= {"barrel", "storage"}
    return tags


def block_color_tags(item: Item) -> set[str]:
    upper = item.material.upper()
    # two-word colors are listed first so "LIGHT_BLUE_WOOL" is not tagged "blue"
    for color in VANILLA_COLORS:
        if upper.startswith(color.upper() + "_"):
            return {color}
    return set()


def redstone_tags(item: Item) -> set[str]:
    upper = item.material.upper()
    markers = ("REDSTONE", "POWERED", "COMPARATOR", "REPEATER")
    return {marker.lower() for marker in markers if marker in upper}


def block_material_tags(item: Item) -> set[str]:
    upper = item.material.upper()
    tags: set[str] = set()
    if "GLASS" in upper:
        tags.add("glass")
        if "PANE" in upper:
            tags.add("pane")
    if "WOOL" in upper:
        tags |= {"wool", "soft"}
    if "CONCRETE" in upper:
        tags.add("concrete")
        if "POWDER" in upper:
            tags.add("powder")
    if "TERRACOTTA" in upper:
        tags |= {"terracotta", "clay"}
        if "GLAZED" in upper:
            tags.add("glazed")
    if "CANDLE" in upper:
        tags |= {"candle", "lightsource"}
    if "CARPET" in upper:
        tags |= {"carpet", "flooring"}
    if "BED" in upper and "BEDROCK" not in upper:
        tags |= {"bed", "furniture"}
    if "BANNER" in upper:
        tags |= {"banner", "decorative"}
    if "SHULKER" in upper:
        tags |= {"shulker", "storage", "container"}
    if "OAK" in upper and "DARK_OAK" not in upper:
        tags |= {"oak", "wood"}
    for marker, wood in WOOD_TYPES.items():
        if marker in upper:
            tags |= {wood, "wood"}
    for stem in ("CRIMSON", "WARPED"):
        if stem in upper:
            tags |= {stem.lower(), "netherstem"}
    if "STONE" in upper and not any(s in upper for s in ("REDSTONE", "GLOWSTONE", "SANDSTONE")):
        tags.add("stone")
    if "COBBLESTONE" in upper:
        tags |= {"cobblestone", "cobble"}
    if "DEEPSLATE" in upper:
        tags.add("deepslate")
    if "BRICK" in upper:
        tags.add("brick")
    if "SANDSTONE" in upper:
        tags.add("sandstone")
    if "_ORE" in upper:
        tags |= {"ore", "mineable"}
    return tags


VANILLA_PROVIDERS = (
    weapon_tags,
    tool_tags,
    armor_tags,
    enchantment_tags,
    mineral_tags,
    storage_tags,
    block_color_tags,
    redstone_tags,
    block_material_tags,
)


def register_vanilla_providers(registry: TagProviderRegistry) -> TagProviderRegistry:
    """Install every built-in provider into the registry, in a fixed order."""
    for provider in VANILLA_PROVIDERS:
        registry.register(provider)
    return registry
