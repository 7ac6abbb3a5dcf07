"""Maps heterogeneous upstream product payloads onto one display schema."""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field
from typing import Any

from smartpick_assistant.text import normalize_text, pick_first


DEFAULT_PLATFORM = "SmartPick"
DEFAULT_CURRENCY = "INR"

_NON_NUMERIC_RE = re.compile(r"[^0-9.]")

_TITLE_KEYS = (
    "title",
    "product_title",
    "productTitle",
    "name",
    "product_name",
    "productName",
    "display_name",
    "displayName",
    "item_name",
    "itemName",
)

_IMAGE_KEYS = (
    "image",
    "product_photo",
    "productPhoto",
    "image_url",
    "imageUrl",
    "imageURL",
    "thumbnail_url",
    "thumbnailUrl",
    "thumbnail",
    "product_thumbnail",
    "productThumbnail",
    "thumb",
    "main_image",
    "mainImage",
    "primary_image",
    "primaryImage",
    "image_link",
    "imageLink",
    "img",
)

_IMAGE_COLLECTION_KEYS = ("images", "image_urls", "imageUrls", "gallery", "photos", "media")

_MEDIA_OBJECT_KEYS = ("url", "src", "href", "link", "image", "image_url", "imageUrl", "thumbnail")

_URL_KEYS = (
    "url",
    "link",
    "product_link",
    "productLink",
    "product_url",
    "productUrl",
    "deep_link",
    "deepLink",
    "affiliate_url",
    "affiliateUrl",
    "permalink",
    "web_url",
    "webUrl",
    "landing_page",
    "landingPage",
    "buy_url",
    "buyUrl",
    "offer_page_url",
    "offerPageUrl",
    "redirect_url",
    "redirectUrl",
)

_CURRENT_PRICE_KEYS = (
    "price",
    "product_price",
    "productPrice",
    "extracted_price",
    "extractedPrice",
    "current_price",
    "currentPrice",
    "sale_price",
    "salePrice",
    "offer_price",
    "offerPrice",
    "final_price",
    "finalPrice",
    "discounted_price",
    "discountedPrice",
    "deal_price",
    "dealPrice",
    "special_price",
    "specialPrice",
)

_MRP_KEYS = (
    "originalPrice",
    "original_price",
    "old_price",
    "oldPrice",
    "product_old_price",
    "productOldPrice",
    "mrp",
    "m_r_p",
    "marked_price",
    "markedPrice",
    "max_price",
    "maxPrice",
    "price_mrp",
    "priceMrp",
    "price_before_discount",
    "priceBeforeDiscount",
    "regular_price",
    "regularPrice",
    "list_price",
    "listPrice",
    "strike_price",
    "strikePrice",
    "cross_price",
    "crossPrice",
    "was_price",
    "wasPrice",
    "compare_at_price",
    "compareAtPrice",
)

_DISCOUNT_KEYS = ("discountPercent", "discount_percent", "discountPercentage", "offer_percent", "off_percent")
_OFFER_FLAG_KEYS = ("hasOffer", "has_offer", "onSale", "on_sale")
_RATING_KEYS = ("rating", "stars", "review_rating", "average_rating", "product_rating", "productRating")
_REVIEW_KEYS = (
    "reviews",
    "review_count",
    "ratings_total",
    "rating_count",
    "reviews_count",
    "reviewsCount",
    "total_reviews",
    "totalReviews",
)
_PLATFORM_KEYS = ("platform", "source", "source_name", "sourceName", "store", "marketplace", "vendor", "seller")
_REASON_KEYS = ("aiReason", "reason", "explanation")
_ID_KEYS = ("id", "_id", "asin", "productId", "pid")


@dataclass
class DisplayProduct:
    title: str
    price: float = 0.0
    original_price: float = 0.0
    has_offer: bool = False
    discount_percent: float = 0.0
    rating: float = 0.0
    reviews: float = 0.0
    platform: str = DEFAULT_PLATFORM
    url: str = ""
    image: str = ""
    ai_reason: str = ""
    features: list[str] = field(default_factory=list)
    currency_symbol: str = DEFAULT_CURRENCY
    ai_score: float = 0.0
    category: str = ""
    product_id: str = ""
    is_marketplace_fallback: bool = False
    # Ranking inputs derived from the raw upstream payload, never from synthesized text.
    source_reason: str = ""
    search_text: str = ""

    def to_public(self) -> dict[str, Any]:
        payload = asdict(self)
        payload.pop("search_text", None)
        payload.pop("source_reason", None)
        return payload


def to_number(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) and value > 0 else 0.0
    cleaned = _NON_NUMERIC_RE.sub("", str(value))
    try:
        parsed = float(cleaned)
    except ValueError:
        return 0.0
    return parsed if math.isfinite(parsed) else 0.0


def to_percent(value: Any) -> float:
    return max(0.0, min(100.0, to_number(value)))


def _first_present(source: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = source.get(key)
        if value is not None:
            return value
    return None


def pick_first_media_value(value: Any) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (list, tuple)):
        for item in value:
            resolved = pick_first_media_value(item)
            if resolved:
                return resolved
        return ""
    if isinstance(value, dict):
        return pick_first(*(value.get(key) for key in _MEDIA_OBJECT_KEYS))
    return ""


def resolve_product_image(source: dict[str, Any]) -> str:
    direct = pick_first(*(source.get(key) for key in _IMAGE_KEYS if isinstance(source.get(key), (str, int))))
    if direct:
        return direct
    for key in _IMAGE_COLLECTION_KEYS:
        resolved = pick_first_media_value(source.get(key))
        if resolved:
            return resolved
    return ""


def resolve_product_url(source: dict[str, Any]) -> str:
    direct = pick_first(*(source.get(key) for key in _URL_KEYS if isinstance(source.get(key), str)))
    if direct:
        return direct
    urls = source.get("urls")
    if isinstance(urls, dict):
        return pick_first(urls.get("product"), urls.get("web"), urls.get("buy"))
    return ""


def resolve_title(source: dict[str, Any]) -> str:
    return pick_first(*(source.get(key) for key in _TITLE_KEYS))


def resolve_platform(source: dict[str, Any]) -> str:
    return pick_first(*(source.get(key) for key in _PLATFORM_KEYS if not isinstance(source.get(key), (dict, list))))


def extract_pricing(source: dict[str, Any]) -> tuple[float, float]:
    """Return ``(current_price, mrp)``; the pair is swapped when the MRP is below the price."""
    current = next((value for value in (to_number(source.get(key)) for key in _CURRENT_PRICE_KEYS) if value > 0), 0.0)
    mrp = next((value for value in (to_number(source.get(key)) for key in _MRP_KEYS) if value > 0), 0.0)

    all_prices = sorted(
        {to_number(source.get(key)) for key in _CURRENT_PRICE_KEYS + _MRP_KEYS} - {0.0}
    )
    if not current and all_prices:
        current = all_prices[0]
    if not mrp and len(all_prices) > 1:
        mrp = all_prices[-1]
    if current > 0 and 0 < mrp < current:
        current, mrp = mrp, current
    return current, max(mrp, 0.0)


def unwrap_candidate(candidate: Any) -> dict[str, Any]:
    if not isinstance(candidate, dict):
        return {}
    nested = candidate.get("product")
    if isinstance(nested, dict):
        return nested
    return candidate


def identity_key(candidate: Any) -> str:
    source = unwrap_candidate(candidate)
    price, _mrp = extract_pricing(source)
    price_text = f"{price:.2f}" if price else ""
    return normalize_text(
        "|".join([resolve_title(source), resolve_platform(source), price_text, resolve_product_url(source)])
    )


def product_search_text(source: dict[str, Any]) -> str:
    features = source.get("features")
    feature_text = [str(value) for value in features] if isinstance(features, list) else []
    return normalize_text(
        " ".join(
            [
                resolve_title(source),
                str(source.get("category") or ""),
                resolve_platform(source),
                pick_first(*(source.get(key) for key in _REASON_KEYS)),
                *feature_text,
            ]
        )
    )


def is_generic_ai_reason(value: Any) -> bool:
    text = normalize_text(value)
    if not text:
        return True
    return "popular product" in text or "matching your search" in text or text == "fallback result"


def build_dynamic_ai_reason(*, title: str, price: float, rating: float, platform: str) -> str:
    title = title or "this product"
    platform = platform or "online store"
    if rating >= 4.3 and price > 0:
        return f"{title} is a strong pick on {platform} with high rating and competitive pricing."
    if rating >= 4.0:
        return f"{title} stands out on {platform} due to consistently good customer ratings."
    if price > 0:
        return f"{title} is a relevant option on {platform} in this price range."
    return f"{title} is a relevant match on {platform} for your request."


def build_dynamic_features(
    *, rating: float, reviews: float, price: float, original_price: float, platform: str
) -> list[str]:
    features: list[str] = []
    if rating >= 4.0:
        features.append(f"Rated {rating:.1f} by customers")
    if reviews > 0:
        features.append(f"{int(reviews):,} customer reviews")
    if original_price > 0 and price > 0 and original_price > price:
        features.append("Discounted compared to original price")
    if platform:
        features.append(f"Available on {platform}")
    return features[:3]


def _safe_rating(value: Any) -> float:
    try:
        rating = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(rating) or rating <= 0:
        return 0.0
    return min(5.0, rating)


def normalize_product_for_display(candidate: Any) -> DisplayProduct:
    source = unwrap_candidate(candidate)

    title = resolve_title(source) or "Product"
    price, original_price = extract_pricing(source)

    explicit_discount = to_percent(_first_present(source, _DISCOUNT_KEYS))
    if not original_price and price > 0 and 0 < explicit_discount < 100:
        derived_mrp = float(round((price * 100) / (100 - explicit_discount)))
        if derived_mrp > price:
            original_price = derived_mrp

    inferred_discount = 0.0
    if original_price > 0 and price > 0:
        inferred_discount = float(round(((original_price - price) / original_price) * 100))
    discount_percent = max(0.0, min(100.0, explicit_discount or inferred_discount))

    has_offer = (
        any(bool(source.get(key)) for key in _OFFER_FLAG_KEYS)
        or discount_percent > 0
        or (original_price > price > 0)
    )

    rating = _safe_rating(_first_present(source, _RATING_KEYS))
    reviews = to_number(_first_present(source, _REVIEW_KEYS))
    platform = resolve_platform(source) or DEFAULT_PLATFORM

    source_reason = pick_first(*(source.get(key) for key in _REASON_KEYS))
    if is_generic_ai_reason(source_reason):
        ai_reason = build_dynamic_ai_reason(title=title, price=price, rating=rating, platform=platform)
    else:
        ai_reason = source_reason

    raw_features = source.get("features")
    features = [str(value).strip() for value in raw_features if str(value or "").strip()] if isinstance(
        raw_features, list
    ) else []
    if not features:
        features = build_dynamic_features(
            rating=rating,
            reviews=reviews,
            price=price,
            original_price=original_price,
            platform=platform,
        )

    currency = pick_first(source.get("currencySymbol"), source.get("currency_symbol"), source.get("currency"))

    return DisplayProduct(
        title=title,
        price=price,
        original_price=original_price,
        has_offer=has_offer,
        discount_percent=discount_percent,
        rating=rating,
        reviews=reviews,
        platform=platform,
        url=resolve_product_url(source),
        image=resolve_product_image(source),
        ai_reason=ai_reason,
        features=features[:3],
        currency_symbol=currency or DEFAULT_CURRENCY,
        ai_score=to_number(pick_first(source.get("aiScore"), source.get("ai_score"))),
        category=str(source.get("category") or "").strip(),
        product_id=pick_first(*(source.get(key) for key in _ID_KEYS)),
        is_marketplace_fallback=bool(source.get("is_marketplace_fallback")),
        source_reason=source_reason,
        search_text=product_search_text(source),
    )


def build_price_summary(products: list[DisplayProduct]) -> str:
    values = [product.price for product in products if product.price > 0]
    if not values:
        return ""
    low, high = min(values), max(values)
    if low == high:
        return f"Price around INR {round(low)}."
    return f"Price range INR {round(low)} to INR {round(high)}."
