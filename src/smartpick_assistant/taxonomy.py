"""Closed product-type and color vocabularies with the matching and guardrail rules built on them."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from smartpick_assistant.text import normalize_text


_TYPE_GROUPS: dict[str, tuple[str, ...]] = {
    "bag": ("bag", "handbag", "tote", "sling", "backpack", "purse", "clutch", "satchel", "wallet"),
    "shoes": ("shoe", "shoes", "sneaker", "sneakers", "footwear", "sandals", "boots", "heels"),
    "dress": ("dress", "gown", "frock", "kurti"),
    "top": ("top", "shirt", "blouse", "tshirt", "tee"),
    "watch": ("watch", "smartwatch"),
    "phone": (
        "phone",
        "smartphone",
        "mobile",
        "iphone",
        "android",
        "cellphone",
        "oneplus",
        "samsung",
        "xiaomi",
        "realme",
    ),
    "laptop": ("laptop", "notebook", "ultrabook", "macbook", "chromebook"),
    "headphones": ("headphone", "headphones", "earphone", "earphones", "earbuds", "headset", "airpods", "tws"),
    "tablet": ("tablet", "ipad", "tab"),
    "camera": ("camera", "dslr", "mirrorless", "action cam", "gopro", "camcorder"),
    "tv": ("tv", "television", "smart tv", "oled", "qled", "led tv"),
    "beauty": (
        "lipstick",
        "foundation",
        "serum",
        "moisturizer",
        "sunscreen",
        "perfume",
        "fragrance",
        "makeup",
        "cosmetic",
    ),
    "home": ("blender", "mixer", "vacuum", "air fryer", "microwave", "refrigerator", "washing machine", "appliance"),
    "fitness": ("dumbbell", "yoga mat", "treadmill", "exercise bike", "kettlebell", "resistance band", "gym equipment"),
    "person": ("person", "face", "selfie", "portrait", "human"),
}

_TYPE_QUERY_HINTS: dict[str, str] = {
    "bag": "handbag purse tote sling backpack bag for women",
    "shoes": "shoe shoes sneakers footwear",
    "phone": "smartphone mobile phone",
    "top": "top shirt blouse tshirt",
    "dress": "dress gown frock",
    "watch": "watch smartwatch",
    "laptop": "laptop notebook ultrabook macbook",
    "headphones": "headphones earbuds earphones headset tws",
    "tablet": "tablet ipad android tab",
    "camera": "camera dslr mirrorless action cam",
    "tv": "smart tv oled qled television",
    "beauty": "beauty skincare makeup serum lipstick",
    "home": "home appliance kitchen appliance",
    "fitness": "fitness gym equipment dumbbell yoga mat",
}

_COLOR_GROUPS: dict[str, tuple[str, ...]] = {
    "white": ("white", "offwhite", "ivory", "cream", "beige"),
    "black": ("black", "charcoal", "jetblack"),
    "red": ("red", "maroon", "burgundy", "crimson", "wine"),
    "blue": ("blue", "navy", "skyblue", "teal", "cyan"),
    "green": ("green", "olive", "mint", "emerald", "sea green", "seagreen"),
    "yellow": ("yellow", "mustard", "gold"),
    "pink": ("pink", "rose", "fuchsia", "magenta"),
    "purple": ("purple", "violet", "lavender"),
    "orange": ("orange", "peach", "coral"),
    "brown": ("brown", "tan", "khaki", "camel"),
    "grey": ("grey", "gray", "silver"),
}

_GENERIC_LABELS = frozenset(
    {"product", "products", "item", "items", "object", "objects", "general", "unknown", "other", "misc"}
)

_EXTRA_APPAREL_KEYWORDS = ("kurta", "tunic", "sweater", "cardigan", "hoodie", "jacket")

_EXTRA_NON_APPAREL_TERMS = (
    "protein",
    "whey",
    "supplement",
    "powder",
    "mass gainer",
    "laptop",
    "camera",
    "headphone",
    "earbuds",
    "charger",
    "tablet",
)

_ACCESSORY_BLOCKLIST: dict[str, tuple[str, ...]] = {
    "phone": ("phone case", "cover", "tempered", "screen guard", "protector", "back cover", "charger cable"),
    "laptop": ("laptop sleeve", "laptop bag", "keyboard cover", "stand", "dock", "adapter"),
    "tablet": ("tablet case", "flip cover", "stylus", "screen guard"),
    "headphones": ("ear tips", "audio cable", "replacement pad"),
    "camera": ("tripod", "camera bag", "sd card", "memory card", "lens cap", "camera strap"),
    "watch": ("watch strap", "band", "screen protector"),
}

# Vision category labels that imply a type when no subtype is given.
_CATEGORY_TYPE_HINTS: dict[str, str] = {
    "bags": "bag",
    "footwear": "shoes",
    "gadgets": "phone",
    "apparel": "top",
}

_ACCESSORY_GUARDED_TYPES = frozenset({"laptop", "headphones", "tablet", "camera", "tv", "watch"})
_APPAREL_TYPES = frozenset({"top", "dress"})

_MEN_RE = re.compile(r"\bmen\b|\bmens\b|\bman\b")
_WOMEN_RE = re.compile(r"\bwomen\b|\bwomens\b|\bladies\b|\bgirls\b")


def _freeze(groups: Mapping[str, tuple[str, ...]]) -> Mapping[str, tuple[str, ...]]:
    return MappingProxyType({key: tuple(values) for key, values in groups.items()})


def _contains_any(hay: str, terms: tuple[str, ...] | list[str]) -> bool:
    return any(term in hay for term in terms)


@dataclass(frozen=True)
class Taxonomy:
    """Read-only vocabulary tables.

    Iteration order of ``types`` and ``colors`` is the match priority: when several
    groups match a text by substring, the first group wins.
    """

    types: Mapping[str, tuple[str, ...]]
    colors: Mapping[str, tuple[str, ...]]
    type_query_hints: Mapping[str, str]
    generic_labels: frozenset[str]
    accessory_blocklist: Mapping[str, tuple[str, ...]]
    category_type_hints: Mapping[str, str]
    apparel_keywords: tuple[str, ...] = field(default=())
    non_apparel_terms: tuple[str, ...] = field(default=())

    @classmethod
    def default(cls) -> "Taxonomy":
        apparel = _TYPE_GROUPS["top"] + _TYPE_GROUPS["dress"] + _EXTRA_APPAREL_KEYWORDS
        non_apparel: tuple[str, ...] = ()
        for key in ("phone", "laptop", "headphones", "tablet", "camera", "tv", "watch"):
            non_apparel += _TYPE_GROUPS[key]
        non_apparel += _EXTRA_NON_APPAREL_TERMS
        return cls(
            types=_freeze(_TYPE_GROUPS),
            colors=_freeze(_COLOR_GROUPS),
            type_query_hints=MappingProxyType(dict(_TYPE_QUERY_HINTS)),
            generic_labels=_GENERIC_LABELS,
            accessory_blocklist=_freeze(_ACCESSORY_BLOCKLIST),
            category_type_hints=MappingProxyType(dict(_CATEGORY_TYPE_HINTS)),
            apparel_keywords=apparel,
            non_apparel_terms=non_apparel,
        )

    # -- labels -----------------------------------------------------------

    def is_generic_label(self, value: object) -> bool:
        return normalize_text(value) in self.generic_labels

    def sanitize_vision_label(self, value: object) -> str:
        """Return the trimmed label, or ``""`` when it is a generic placeholder such as "product"."""
        if self.is_generic_label(value):
            return ""
        return str(value or "").strip()

    # -- canonicalization -------------------------------------------------

    def aliases_for_type(self, type_key: str) -> tuple[str, ...]:
        return self.types.get(type_key) or (type_key,)

    def aliases_for_color(self, color_key: str) -> tuple[str, ...]:
        return self.colors.get(color_key) or (color_key,)

    def query_hint(self, type_key: str) -> str:
        return self.type_query_hints.get(type_key) or type_key

    def canonicalize_type(self, value: object) -> str:
        token = normalize_text(value)
        if not token or token in self.generic_labels:
            return ""
        if token in self.types:
            return token
        for type_key, aliases in self.types.items():
            if token in aliases:
                return type_key
        for type_key, aliases in self.types.items():
            if _contains_any(token, aliases):
                return type_key
        return ""

    def canonicalize_color(self, value: object) -> str:
        token = normalize_text(value)
        if not token:
            return ""
        if token in self.colors:
            return token
        for color_key, aliases in self.colors.items():
            if _contains_any(token, aliases):
                return color_key
        return ""

    def detect_requested_type(self, search_query: str, include_keywords: list[str] | None = None) -> str:
        return self.canonicalize_type(" ".join([search_query or "", *(include_keywords or [])]))

    def detect_requested_color(self, search_query: str, include_keywords: list[str] | None = None) -> str:
        hay = normalize_text(" ".join([search_query or "", *(include_keywords or [])]))
        for color_key, aliases in self.colors.items():
            if _contains_any(hay, aliases):
                return color_key
        return ""

    def type_from_category(self, category: str) -> str:
        return self.category_type_hints.get(category, category)

    # -- scoring adjustments ----------------------------------------------

    def has_type_match(self, hay: str, requested_type: str) -> bool:
        return _contains_any(hay, self.aliases_for_type(requested_type))

    def has_color_match(self, hay: str, requested_color: str) -> bool:
        if not requested_color:
            return False
        return _contains_any(hay, self.aliases_for_color(requested_color))

    def type_match_score(self, hay: str, requested_type: str) -> int:
        """-28 when the requested type is absent, else +20 minus 10 per other type also present."""
        if not requested_type:
            return 0
        if not self.has_type_match(hay, requested_type):
            return -28
        penalty = 0
        for type_key, aliases in self.types.items():
            if type_key != requested_type and _contains_any(hay, aliases):
                penalty -= 10
        return 20 + penalty

    def color_match_score(self, hay: str, requested_color: str) -> int:
        if not requested_color:
            return 0
        if not self.has_color_match(hay, requested_color):
            return -15
        penalty = 0
        for color_key, aliases in self.colors.items():
            if color_key != requested_color and _contains_any(hay, aliases):
                penalty -= 6
        return 14 + penalty

    # -- guardrail --------------------------------------------------------

    def passes_strong_type_guard(self, hay: str, requested_type: str) -> bool:
        """Category disambiguation over a product's normalized searchable text.

        Plain substring matching lets "phone case" pass as a phone and a floral
        top pass as a bag; each branch below rejects one such family.
        """
        if not requested_type:
            return True
        if not self.has_type_match(hay, requested_type):
            return False

        dress_words = self.types.get("dress", ())
        top_words = self.types.get("top", ())

        if requested_type in ("bag", "shoes"):
            own_words = self.types.get(requested_type, ())
            has_own_word = _contains_any(hay, own_words)
            only_apparel = _contains_any(hay, top_words + dress_words) and not has_own_word
            return has_own_word and not only_apparel

        if requested_type == "phone":
            has_phone_word = _contains_any(hay, self.types.get("phone", ()))
            other_words = top_words + dress_words + self.types.get("bag", ())
            only_other = _contains_any(hay, other_words) and not has_phone_word
            return has_phone_word and not only_other

        if requested_type in _ACCESSORY_GUARDED_TYPES:
            accessory_terms = self.accessory_blocklist.get(requested_type, ())
            if any(normalize_text(term) in hay for term in accessory_terms):
                return False

        if requested_type in _APPAREL_TYPES:
            if not _contains_any(hay, self.apparel_keywords):
                return False
            if _contains_any(hay, self.non_apparel_terms):
                return False
            if _MEN_RE.search(hay) and not _WOMEN_RE.search(hay):
                return False
            if requested_type == "dress" and not _contains_any(hay, dress_words):
                return False

        return True


DEFAULT_TAXONOMY = Taxonomy.default()
