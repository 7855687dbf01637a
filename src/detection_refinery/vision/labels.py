"""Label utilities (normalization, keyword tables, category lookups).

Vision-provider labels are open-ended free text, so every lookup here is a
deliberately loose, deterministic substring heuristic over small data tables.
"""

from __future__ import annotations

from typing import Literal

FilterClass = Literal["objects_of_interest", "objects_to_ignore", "default"]

DEFAULT_OBJECTS_OF_INTEREST: tuple[str, ...] = (
    # Jewelry & accessories
    "watch", "ring", "necklace", "bracelet", "earring", "pendant", "brooch", "tie", "bow",
    # Electronics
    "phone", "laptop", "tablet", "camera", "headphone", "speaker", "charger", "keyboard",
    "mouse", "monitor", "tv", "remote", "smartphone", "iphone", "android", "ipad", "macbook",
    "pc", "gaming", "console", "playstation", "xbox", "nintendo", "drone",
    # Clothing & apparel
    "jacket", "shirt", "dress", "pants", "jeans", "sweater", "blouse", "skirt", "coat", "suit",
    "hoodie", "cardigan", "blazer", "vest", "shorts", "tank", "polo", "tunic", "romper",
    "jumpsuit",
    # Footwear
    "shoe", "boot", "sneaker", "sandal", "heel", "loafer", "slipper", "flip", "flop",
    "moccasin", "oxford", "pump", "stiletto", "wedge",
    # Bags
    "bag", "purse", "handbag", "backpack", "wallet", "clutch", "tote", "messenger",
    # Books & media
    "book", "magazine", "newspaper", "notebook", "journal", "textbook", "novel", "manual",
    "guide", "comic", "manga", "dictionary", "encyclopedia", "atlas", "calendar", "planner",
    "diary",
    # Home goods
    "lamp", "mirror", "vase", "decoration", "artwork", "painting", "sculpture", "plant", "pot",
    "frame", "clock", "candle",
    # Sports & recreation
    "ball", "racket", "club", "bat", "helmet", "equipment", "gear", "golf", "tennis",
    "baseball", "football", "basketball", "soccer", "hockey", "ski", "snowboard", "bike",
    "bicycle", "skateboard", "fitness", "yoga", "mat", "dumbbell", "weight", "treadmill",
    "exercise",
    # Toys & games
    "toy", "game", "puzzle", "doll", "action figure", "lego", "board game", "card game",
    "video game", "stuffed animal", "teddy bear", "robot", "model", "kit", "building",
    "construction",
    # Kitchen & appliances
    "kitchen", "appliance", "microwave", "toaster", "blender", "mixer", "coffee maker",
    "kettle", "pan", "dish", "plate", "bowl", "cup", "mug", "glass", "cutlery", "knife",
    "fork", "spoon",
    # Tools & hardware
    "tool", "hammer", "screwdriver", "wrench", "pliers", "drill", "saw", "level",
    "tape measure", "hardware", "screw", "nail", "bolt", "nut", "bracket", "hinge", "lock",
)  # fmt: skip

DEFAULT_OBJECTS_TO_IGNORE: tuple[str, ...] = (
    # Body parts
    "sleeve", "arm", "hand", "finger", "wrist", "forearm", "elbow", "shoulder", "leg", "foot",
    "toe", "ankle", "knee", "thigh", "calf", "face", "eye", "nose", "mouth", "ear", "cheek",
    "chin", "forehead", "hair", "beard", "mustache", "neck", "chest", "back", "stomach",
    "waist", "hip", "buttock", "person", "body", "skin",
    # Furniture & surfaces
    "table", "desk", "chair", "furniture", "surface", "background", "counter", "shelf",
    "cabinet", "drawer", "nightstand", "ottoman", "bench", "stool", "couch", "sofa", "bed",
    "dresser", "wardrobe", "closet", "bookshelf", "sideboard", "buffet",
    # Environment
    "wall", "floor", "ceiling", "sky", "ground", "grass", "tree", "leaf", "branch", "flower",
    "plant", "bush", "shrub", "water", "ocean", "sea", "lake", "river", "pond", "pool",
    "fountain", "mountain", "hill", "valley", "rock", "stone", "boulder", "cliff", "building",
    "house", "home", "office", "room", "door", "window", "roof", "chimney",
    # Generic terms
    "clothing", "garment", "textile", "fabric", "material", "object", "item", "thing",
    "product", "fashion", "pattern", "design", "color", "texture", "shape", "size", "style",
)  # fmt: skip

# Catalog category inference, checked in order (first match wins).
_CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Clothing", (
        "shirt", "pants", "dress", "jacket", "sweater", "jeans", "blouse", "skirt", "coat",
        "suit", "hoodie", "cardigan", "blazer", "vest", "shorts", "tank", "polo", "tunic",
        "romper", "jumpsuit", "sleeve", "collar", "button", "zipper", "pocket", "fabric",
        "textile", "garment", "apparel",
    )),
    ("Shoes", (
        "shoe", "boot", "sneaker", "sandal", "heel", "loafer", "slipper", "flip", "flop",
        "moccasin", "oxford", "pump", "stiletto", "wedge",
    )),
    ("Accessories", (
        "bag", "purse", "handbag", "backpack", "watch", "timepiece", "ring", "necklace",
        "bracelet", "earring", "belt", "scarf", "hat", "cap", "gloves", "sunglasses", "wallet",
        "clutch", "tote", "messenger", "jewelry", "accessory", "pendant", "brooch", "tie", "bow",
    )),
    ("Electronics", (
        "phone", "laptop", "tablet", "camera", "headphone", "speaker", "charger", "computer",
        "keyboard", "mouse", "monitor", "tv", "remote", "smartphone", "iphone", "android",
        "ipad", "macbook", "pc", "gaming", "console", "playstation", "xbox", "nintendo",
        "drone", "bluetooth", "wireless",
    )),
    ("Books", (
        "book", "magazine", "newspaper", "notebook", "journal", "textbook", "novel", "manual",
        "guide", "comic", "manga", "dictionary", "encyclopedia", "atlas", "calendar",
        "planner", "diary",
    )),
    ("Body Part", (
        "arm", "hand", "finger", "wrist", "forearm", "elbow", "shoulder", "face", "neck",
        "person", "skin",
    )),
    ("Furniture", (
        "furniture", "chair", "table", "couch", "sofa", "bed", "dresser", "desk", "shelf",
        "cabinet", "drawer", "nightstand", "ottoman", "bench", "stool",
    )),
    ("Home", (
        "lamp", "mirror", "vase", "decoration", "artwork", "painting", "sculpture", "plant",
        "pot", "frame", "clock", "candle",
    )),
    ("Sports", (
        "ball", "racket", "club", "bat", "helmet", "equipment", "gear", "golf", "tennis",
        "baseball", "football", "basketball", "soccer", "hockey", "ski", "snowboard", "bike",
        "bicycle", "skateboard", "fitness", "yoga", "mat", "dumbbell", "weight", "treadmill",
        "exercise",
    )),
    ("Toys", ("toy", "game", "puzzle", "doll", "lego", "teddy")),
    ("Kitchen", (
        "kitchen", "utensil", "plate", "bowl", "cup", "mug", "glass", "bottle", "appliance",
        "microwave", "oven", "kettle", "toaster", "blender",
    )),
    ("Tools", (
        "tool", "hardware", "screwdriver", "hammer", "wrench", "pliers", "drill", "saw",
        "scissors", "clamp",
    )),
)  # fmt: skip

_CATEGORY_PRIORITY: dict[str, float] = {
    "accessories": 0.9,
    "jewelry": 0.95,
    "electronics": 0.8,
    "books": 0.7,
    "clothing": 0.6,
    "furniture": 0.4,
    "body part": 0.2,
    "other": 0.5,
}

SPECIFIC_CATEGORIES = frozenset(
    {"electronics", "accessories", "books", "sports", "beauty", "health", "toys"}
)
GENERIC_CATEGORIES = frozenset({"other", "background", "clothing", "furniture"})

# parent category -> child categories it typically contains
_CATEGORY_HIERARCHY: dict[str, tuple[str, ...]] = {
    "clothing": ("accessories", "jewelry"),
    "body part": ("accessories", "jewelry"),
    "furniture": ("electronics", "books", "accessories"),
    "electronics": ("accessories",),
    "books": ("accessories",),
}


def _norm(s: str) -> str:
    cleaned = (
        s.strip().lower().replace("-", " ").replace("_", " ").replace("/", " ").replace(",", " ")
    )
    return " ".join(cleaned.split())


def norm_category(category: str) -> str:
    """Normalize a free-text category for table lookups."""
    return _norm(category)


def matches_any(name: str, keywords: tuple[str, ...] | list[str]) -> bool:
    """Return True if any keyword appears as a substring of the normalized name."""
    raw = _norm(name)
    if not raw:
        return False
    return any(kn and kn in raw for kn in (_norm(k) for k in keywords))


def categorize_item(name: str) -> str:
    """Infer a catalog category from a free-text label, "Other" if nothing matches."""
    for category, keywords in _CATEGORY_KEYWORDS:
        if matches_any(name, keywords):
            return category
    return "Other"


def category_priority(category: str) -> float:
    """Ranking weight of a catalog category (higher means more valuable to keep)."""
    return _CATEGORY_PRIORITY.get(_norm(category), 0.5)


def category_relationship_weight(parent_category: str, child_category: str) -> float:
    """Confidence multiplier for a parent category that typically holds the child category."""
    parent = _norm(parent_category)
    child = _norm(child_category)
    if child in _CATEGORY_HIERARCHY.get(parent, ()):
        if parent == "clothing":
            return 1.1
        if parent == "body part":
            return 1.15
        return 1.2
    return 1.0
