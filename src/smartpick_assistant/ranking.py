"""Placeholder filtering, re-ranking, calibrated scoring and confidence thresholds."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable
from urllib.parse import quote

from smartpick_assistant.products import DisplayProduct, normalize_product_for_display
from smartpick_assistant.taxonomy import DEFAULT_TAXONOMY, Taxonomy
from smartpick_assistant.text import normalize_text, sanitize_recommendation_query


MIN_SCORE = 8
MAX_SCORE = 96

TEXT_THRESHOLD = 28
STRICT_UNRELIABLE_THRESHOLD = 62
STRICT_RELIABLE_THRESHOLD = 50
RELAXED_UNRELIABLE_THRESHOLD = 45
RELAXED_RELIABLE_THRESHOLD = 30
STRONG_TYPE_FLOOR = 20
EMERGENCY_FLOOR = 18
PLAIN_RECOVERY_FLOOR = 12

MARKETPLACE_FALLBACK_REASON = "Direct marketplace search fallback"

_GENERIC_TITLES = frozenset({"product", "item", "unknown product", "fallback result"})

# (platform, search URL template, fixed score)
_MARKETPLACES = (
    ("Amazon", "https://www.amazon.in/s?k={query}", 55),
    ("Flipkart", "https://www.flipkart.com/search?q={query}", 52),
    ("Myntra", "https://www.myntra.com/{query}", 50),
)


def is_placeholder_product(product: DisplayProduct, *, strict: bool = True) -> bool:
    """True for rows with no real commerce signal.

    Non-strict mode only drops unnamed or generic rows; strict mode also drops rows
    with no image, URL or price, and short query-echo titles without image or price.
    """
    title = normalize_text(product.title)
    if not title or title in _GENERIC_TITLES:
        return True
    if normalize_text(product.source_reason) == "fallback result":
        return True
    if not strict:
        return False

    has_image = bool(product.image)
    has_price = product.price > 0
    if not (has_image or product.url or has_price):
        return True
    if len(title.split(" ")) <= 2 and not has_image and not has_price:
        return True
    return False


def rerank_recommendations(
    products: list[DisplayProduct],
    *,
    search_query: str,
    include_keywords: list[str] | None = None,
    exclude_keywords: list[str] | None = None,
    taxonomy: Taxonomy = DEFAULT_TAXONOMY,
) -> list[DisplayProduct]:
    """Stable sort by a working relevance score; ``ai_score`` is left untouched."""
    include_keywords = include_keywords or []
    requested_type = taxonomy.detect_requested_type(search_query, include_keywords)
    requested_color = taxonomy.detect_requested_color(search_query, include_keywords)

    include: list[str] = []
    for value in [*include_keywords, *(search_query or "").split()]:
        token = normalize_text(value)
        if len(token) > 2 and token not in include:
            include.append(token)
    exclude = list(dict.fromkeys(token for token in map(normalize_text, exclude_keywords or []) if token))

    def working_score(product: DisplayProduct) -> float:
        hay = product.search_text
        score = product.ai_score
        for token in include:
            if token in hay:
                score += 8 if len(token) > 6 else 5
        for token in exclude:
            if token in hay:
                score -= 12
        score += taxonomy.type_match_score(hay, requested_type)
        score += taxonomy.color_match_score(hay, requested_color)
        return score

    return sorted(products, key=working_score, reverse=True)


def compute_calibrated_match_score(
    product: DisplayProduct,
    *,
    requested_type: str,
    requested_color: str,
    taxonomy: Taxonomy = DEFAULT_TAXONOMY,
) -> int:
    hay = product.search_text
    score = 28

    if requested_type:
        score += 30 if taxonomy.passes_strong_type_guard(hay, requested_type) else -28
    else:
        score += 6

    if requested_color:
        score += 16 if taxonomy.has_color_match(hay, requested_color) else -10
    else:
        score += 4

    if product.image:
        score += 7
    if product.price > 0:
        score += 5
    if product.rating >= 4:
        score += 5
    if "fallback result" in normalize_text(product.source_reason):
        score -= 18

    return max(MIN_SCORE, min(MAX_SCORE, round(score)))


def score_products(
    products: Iterable[DisplayProduct],
    *,
    requested_type: str,
    requested_color: str,
    taxonomy: Taxonomy = DEFAULT_TAXONOMY,
) -> list[DisplayProduct]:
    return [
        replace(
            product,
            ai_score=float(
                compute_calibrated_match_score(
                    product,
                    requested_type=requested_type,
                    requested_color=requested_color,
                    taxonomy=taxonomy,
                )
            ),
        )
        for product in products
    ]


def filter_by_requested_type(
    products: list[DisplayProduct], requested_type: str, taxonomy: Taxonomy = DEFAULT_TAXONOMY
) -> list[DisplayProduct]:
    if not requested_type:
        return list(products)
    return [product for product in products if taxonomy.has_type_match(product.search_text, requested_type)]


def filter_by_strong_type_guard(
    products: list[DisplayProduct], requested_type: str, taxonomy: Taxonomy = DEFAULT_TAXONOMY
) -> list[DisplayProduct]:
    return [product for product in products if taxonomy.passes_strong_type_guard(product.search_text, requested_type)]


def prefer_color_matches(
    products: list[DisplayProduct], requested_color: str, taxonomy: Taxonomy = DEFAULT_TAXONOMY
) -> list[DisplayProduct]:
    """Keep color matches when there are any; otherwise return the input unchanged."""
    if not requested_color:
        return list(products)
    matched = [product for product in products if taxonomy.has_color_match(product.search_text, requested_color)]
    return matched or list(products)


def select_confidence_threshold(*, has_image: bool, strict: bool, reliable: bool) -> int:
    if not has_image:
        return TEXT_THRESHOLD
    if strict:
        return STRICT_RELIABLE_THRESHOLD if reliable else STRICT_UNRELIABLE_THRESHOLD
    return RELAXED_RELIABLE_THRESHOLD if reliable else RELAXED_UNRELIABLE_THRESHOLD


def filter_low_confidence_results(
    products: list[DisplayProduct],
    requested_type: str,
    min_score: float,
    taxonomy: Taxonomy = DEFAULT_TAXONOMY,
) -> list[DisplayProduct]:
    """Drop items under ``min_score``; a strong type match only needs ``STRONG_TYPE_FLOOR``."""
    kept: list[DisplayProduct] = []
    for product in products:
        score = product.ai_score
        if requested_type and score >= STRONG_TYPE_FLOOR:
            if taxonomy.passes_strong_type_guard(product.search_text, requested_type):
                kept.append(product)
                continue
        if score >= min_score:
            kept.append(product)
    return kept


def build_platform_search_fallback_products(
    *, query: str, requested_type: str = "", detected_color: str = ""
) -> list[DisplayProduct]:
    """Zero-price cards that open a live marketplace search for the query."""
    tokens: list[str] = []
    seen: set[str] = set()
    for token in " ".join(part for part in (query, detected_color, requested_type) if part).split():
        key = normalize_text(token)
        if key in seen:
            continue
        seen.add(key)
        tokens.append(token)

    safe_query = sanitize_recommendation_query(" ".join(tokens))
    if not safe_query:
        return []

    encoded = quote(safe_query, safe="")
    cards: list[DisplayProduct] = []
    for platform, template, score in _MARKETPLACES:
        cards.append(
            normalize_product_for_display(
                {
                    "id": f"fallback-{platform.lower()}-{encoded}",
                    "title": safe_query,
                    "platform": platform,
                    "url": template.format(query=encoded),
                    "image": "",
                    "price": 0,
                    "originalPrice": 0,
                    "rating": 0,
                    "reviews": 0,
                    "aiScore": score,
                    "aiReason": MARKETPLACE_FALLBACK_REASON,
                    "features": [f"Opens live search results on {platform}"],
                    "is_marketplace_fallback": True,
                }
            )
        )
    return cards
