"""
keyword_expansion.py — static lookup tables used by the relevance filters.

EXPANSIONS maps a keyword token to the concept words a label detector tends
to return for photos of that product. "blanket" photos come back labelled
"textile", "linens", "comfort"…, rarely "blanket" itself, so the image stage
compares labels against the expansion of every keyword token.

DENYLIST is the strict text filter's list of product categories that share
words with home-textile searches but are not what the user wants, and
PASS_THROUGH the words that forgive a denied word placed right before them.
"""
from __future__ import annotations

EXPANSIONS: dict[str, tuple[str, ...]] = {
    # Home textiles
    "blanket":  ("blanket", "throw", "textile", "linens", "bedding", "bed sheet", "fleece", "wool", "quilt", "comfort", "duvet"),
    "throw":    ("throw", "blanket", "textile", "linens", "fleece", "wool"),
    "sherpa":   ("sherpa", "fleece", "fur", "wool", "textile", "blanket", "plush"),
    "fleece":   ("fleece", "textile", "wool", "plush", "blanket", "polar fleece"),
    "quilt":    ("quilt", "patchwork", "textile", "bedding", "linens", "bed sheet"),
    "pillow":   ("pillow", "cushion", "throw pillow", "textile", "bedding"),
    "cushion":  ("cushion", "pillow", "throw pillow", "textile", "furniture"),
    "towel":    ("towel", "textile", "linens", "bathroom"),
    "curtain":  ("curtain", "window covering", "window treatment", "drapery", "textile"),
    "rug":      ("rug", "carpet", "flooring", "mat", "textile"),
    "carpet":   ("carpet", "rug", "flooring", "textile"),
    # Apparel
    "hoodie":   ("hoodie", "sweatshirt", "hood", "outerwear", "clothing", "sleeve"),
    "jacket":   ("jacket", "coat", "outerwear", "clothing", "sleeve"),
    "dress":    ("dress", "day dress", "gown", "clothing", "fashion"),
    "shoes":    ("shoe", "footwear", "sneakers", "boot", "sandal"),
    "sneakers": ("sneakers", "shoe", "footwear", "sportswear"),
    "hat":      ("hat", "cap", "headgear", "fashion accessory"),
    # Pets
    "dog":      ("dog", "pet", "canine", "pet supply", "animal", "puppy"),
    "cat":      ("cat", "pet", "feline", "pet supply", "animal", "kitten"),
    "pet":      ("pet", "dog", "cat", "pet supply", "animal"),
    # Home & kitchen
    "lamp":     ("lamp", "light", "lighting", "light fixture", "lampshade"),
    "mug":      ("mug", "cup", "drinkware", "tableware", "coffee cup"),
    "bottle":   ("bottle", "water bottle", "drinkware", "flask"),
    "candle":   ("candle", "wax", "candle holder", "home decor"),
    "vase":     ("vase", "flowerpot", "home decor", "ceramic"),
    # Electronics & accessories
    "phone":    ("phone", "mobile phone", "smartphone", "gadget", "communication device"),
    "case":     ("case", "cover", "mobile phone case", "bag"),
    "charger":  ("charger", "cable", "adapter", "electronics", "power supply"),
    "earbuds":  ("earbuds", "headphones", "earphone", "audio equipment", "headset"),
    "watch":    ("watch", "wristwatch", "clock", "smartwatch", "strap"),
    "bag":      ("bag", "handbag", "backpack", "luggage", "tote bag"),
    "backpack": ("backpack", "bag", "luggage", "travel"),
    "jewelry":  ("jewelry", "jewellery", "necklace", "bracelet", "earrings", "ring"),
    "necklace": ("necklace", "jewellery", "pendant", "chain", "jewelry"),
    "toy":      ("toy", "plush", "stuffed toy", "game", "play"),
}

DENYLIST: tuple[str, ...] = (
    # Clothing
    "hoodie", "sweatshirt", "jacket", "coat", "sweater", "shirt", "pants", "joggers",
    "pullover", "cardigan", "vest", "shorts", "leggings", "dress", "skirt",
    # Footwear
    "shoes", "sneakers", "boots", "slippers", "sandals", "loafers",
    # Pets
    "dog", "cat", "pet", "puppy", "kitten",
    # Baby / kids
    "baby", "infant", "toddler", "kids", "children",
    # Home items that share textile words
    "pillow", "cushion", "mat", "rug", "carpet", "curtain", "towel",
    # Bedding
    "sheet", "duvet", "comforter", "quilt cover",
    # Accessories
    "scarf", "shawl", "gloves", "mittens", "hat", "beanie",
)

# A denied word directly followed by one of these still names a throw or blanket
# ("dog throw", "baby blanket"), so the strict filter lets it through.
PASS_THROUGH: tuple[str, ...] = ("blanket", "throw")

MIN_TOKEN_LEN = 3


def keyword_tokens(keyword: str) -> list[str]:
    """
    Lower-cased whitespace tokens, dropping anything of two characters or fewer.
    A keyword made only of short tokens ("tv", "3d") keeps them all instead of
    collapsing to nothing.
    """
    raw = [t for t in (keyword or "").lower().split() if t]
    tokens = [t for t in raw if len(t) >= MIN_TOKEN_LEN]
    return tokens or raw


def expand(token: str) -> tuple[str, ...]:
    token = token.lower()
    if token in EXPANSIONS:
        return EXPANSIONS[token]
    # naive plural fallback: "blankets" → "blanket"
    if token.endswith("s") and token[:-1] in EXPANSIONS:
        return EXPANSIONS[token[:-1]]
    return ()


def expected_labels(keyword: str) -> set[str]:
    """Raw keyword tokens plus every expansion of them."""
    expected: set[str] = set()
    for token in keyword_tokens(keyword):
        expected.add(token)
        expected.update(expand(token))
    return expected
