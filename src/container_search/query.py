"""Query expansion for broad single-word searches.

"diamond" also looks for diamond tools and ores, "tools" for every tool
type, "pick" for "pickaxe". Multi-word queries and queries naming a
specific item are left alone.
"""

MATERIAL_EXPANSIONS = {
    "diamond": [
        "diamond pickaxe", "diamond sword", "diamond axe", "diamond shovel", "diamond hoe",
        "diamond helmet", "diamond chestplate", "diamond leggings", "diamond boots",
        "diamond ore", "diamond block", "deepslate diamond ore",
    ],
    "iron": [
        "iron pickaxe", "iron sword", "iron axe", "iron shovel", "iron hoe", "iron helmet",
        "iron chestplate", "iron leggings", "iron boots", "iron ore", "iron ingot",
        "iron block", "raw iron", "deepslate iron ore",
    ],
    "gold": [
        "gold pickaxe", "gold sword", "gold axe", "gold shovel", "gold hoe", "gold helmet",
        "gold chestplate", "gold leggings", "gold boots", "gold ore", "gold ingot",
        "gold block", "raw gold", "deepslate gold ore",
    ],
    "netherite": [
        "netherite pickaxe", "netherite sword", "netherite axe", "netherite shovel",
        "netherite hoe", "netherite helmet", "netherite chestplate", "netherite leggings",
        "netherite boots", "netherite ingot", "netherite scrap",
    ],
    "stone": [
        "stone pickaxe", "stone sword", "stone axe", "stone shovel", "stone hoe",
        "cobblestone", "stone", "andesite", "diorite", "granite",
    ],
    "wood": [
        "wooden pickaxe", "wooden sword", "wooden axe", "wooden shovel", "wooden hoe",
        "oak log", "birch log", "spruce log", "jungle log", "acacia log", "dark oak log",
        "oak planks", "birch planks", "spruce planks",
    ],
}  # fmt: skip

CATEGORY_EXPANSIONS = {
    "tools": ["pickaxe", "axe", "shovel", "hoe", "sword"],
    "armor": ["helmet", "chestplate", "leggings", "boots"],
    "weapons": ["sword", "bow", "crossbow", "trident", "axe"],
    "food": [
        "bread", "cooked beef", "cooked porkchop", "apple", "golden apple", "carrot",
        "potato", "baked potato",
    ],
    "ores": [
        "iron ore", "gold ore", "diamond ore", "emerald ore", "coal ore", "copper ore",
        "lapis ore", "redstone ore",
    ],
    "blocks": ["stone", "dirt", "cobblestone", "planks", "log", "wool"],
    "redstone": [
        "redstone", "repeater", "comparator", "piston", "observer", "hopper", "dropper",
        "dispenser",
    ],
}  # fmt: skip

SYNONYMS = {
    "pick": ["pickaxe"],
    "sword": ["blade"],
    "helmet": ["cap", "hat"],
    "chestplate": ["tunic", "chest armor"],
    "leggings": ["pants", "leg armor"],
    "boots": ["shoes"],
}

SPECIFIC_ITEM_MARKERS = (
    "pickaxe",
    "sword",
    "axe",
    "shovel",
    "hoe",
    "helmet",
    "chestplate",
    "leggings",
    "boots",
    "ingot",
    "ore",
    "block",
    "planks",
    "log",
    "book",
)


def singularize(word: str) -> str:
    """Naive plural stripping: berries -> berry, axes -> axe, diamonds -> diamond."""
    if word.endswith("ies"):
        return word[:-3] + "y"
    if word.endswith("es"):
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def is_specific_item(query: str) -> bool:
    return any(marker in query for marker in SPECIFIC_ITEM_MARKERS)


def expand_query(query: str) -> str:
    """Expand a broad query with related terms.

    Returns the lower-cased query followed by its singular form and every
    material, category and synonym expansion, without duplicates.

    Example:
        >>> expand_query("Pick")
        'pick pickaxe'
    """
    normalized = query.lower().strip()
    if len(normalized.split()) > 1 or is_specific_item(normalized):
        return normalized

    terms = [normalized]
    singular = singularize(normalized)
    if singular != normalized:
        terms.append(singular)

    for token in (normalized, singular):
        for table in (MATERIAL_EXPANSIONS, CATEGORY_EXPANSIONS, SYNONYMS):
            terms.extend(table.get(token, ()))

    # dict preserves first-seen order
    return " ".join(dict.fromkeys(terms))
