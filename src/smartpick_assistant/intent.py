"""Builds the shopping intent for one query, optionally augmented by the vision backend."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any

from smartpick_assistant.backend_client import BackendClient, search_by_image
from smartpick_assistant.errors import ErrorKind, UpstreamError
from smartpick_assistant.groq_utils import VisionFallback
from smartpick_assistant.taxonomy import DEFAULT_TAXONOMY, Taxonomy
from smartpick_assistant.text import build_token_list, normalize_text, sanitize_search_query
from smartpick_assistant.vision import (
    DetectedItem,
    VisionSignals,
    build_vision_summary,
    flatten_detected_matches,
    normalize_detected_items,
    read_vision_attributes,
)


_LOGGER = logging.getLogger(__name__)

DEFAULT_TEXT_QUERY = "shopping product"
LOW_CONFIDENCE = 0.65
GENERIC_LABELS_DIAGNOSTIC = "Vision returned generic labels only."


@dataclass
class IntentMeta:
    required_type: str = ""
    detected_color: str = ""
    gender: str = ""
    style: str = ""
    pattern: str = ""
    material: str = ""
    sleeve: str = ""
    neckline: str = ""
    fit: str = ""
    category: str = ""
    diagnostics_message: str = ""
    error_code: str = ""
    confidence: float = 0.0
    provider_used: str = "backend-vision"
    non_product_image: bool = False

    @property
    def error_kind(self) -> ErrorKind:
        return ErrorKind.from_code(self.error_code)


@dataclass
class ShoppingIntent:
    assistant_reply: str
    search_query: str
    include_keywords: list[str]
    exclude_keywords: list[str]
    confidence: float
    meta: IntentMeta
    detected_items: list[DetectedItem] = field(default_factory=list)
    vision_products: list[dict[str, Any]] = field(default_factory=list)


def _backend_confidence(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def build_shopping_intent(
    client: BackendClient,
    *,
    query: str,
    image_data_url: str | None = None,
    strict_category: bool = True,
    top_k: int = 24,
    vision_path: str = "/vision/search-by-image",
    taxonomy: Taxonomy = DEFAULT_TAXONOMY,
) -> ShoppingIntent:
    has_image = bool(image_data_url)
    cleaned_query = (query or "").strip()
    default_query = "" if has_image else DEFAULT_TEXT_QUERY

    intent = ShoppingIntent(
        assistant_reply="",
        search_query=cleaned_query or default_query,
        include_keywords=[],
        exclude_keywords=[],
        confidence=0.75 if cleaned_query else 0.6,
        meta=IntentMeta(),
    )
    intent.meta.confidence = intent.confidence
    if not has_image:
        return intent

    try:
        response = search_by_image(
            client,
            image_data_url=image_data_url or "",
            text_hint=cleaned_query,
            top_k=top_k,
            strict_category=strict_category,
            path=vision_path,
        )
    except UpstreamError as exc:
        _LOGGER.warning("Backend vision intent failed: %s", exc)
        if exc.is_network_failure:
            intent.meta.error_code = ErrorKind.MISSING_SERVER.value
            intent.meta.diagnostics_message = "Vision API is unreachable at the configured backend URL."
        else:
            intent.meta.error_code = ErrorKind.VISION_ERROR.value
            intent.meta.diagnostics_message = "Vision analysis failed; using query fallback."
        return intent

    if response is None:
        return intent

    detected_items = normalize_detected_items(response.get("detected_items"))
    attrs = read_vision_attributes(detected_items[0] if detected_items else None)

    category = taxonomy.sanitize_vision_label(attrs["category"])
    required_type = taxonomy.sanitize_vision_label(attrs["subtype"]) or category
    meta = intent.meta
    meta.category = category
    meta.required_type = required_type
    meta.detected_color = attrs["color"]
    meta.gender = attrs["gender"]
    meta.style = attrs["style"]
    meta.pattern = attrs["pattern"]
    meta.material = attrs["material"]
    meta.sleeve = attrs["sleeve"]
    meta.neckline = attrs["neckline"]
    meta.fit = attrs["fit"]
    meta.non_product_image = taxonomy.canonicalize_type(required_type) == "person"

    query_parts = [meta.detected_color, meta.gender, meta.pattern, meta.material, required_type, cleaned_query]
    intent.search_query = sanitize_search_query(" ".join(part for part in query_parts if part) or cleaned_query)
    intent.include_keywords = build_token_list(
        [
            meta.detected_color,
            meta.gender,
            required_type,
            meta.pattern,
            meta.material,
            meta.style,
            meta.sleeve,
            meta.neckline,
            meta.fit,
            *intent.search_query.split(" "),
        ]
    )
    intent.assistant_reply = build_vision_summary({**attrs, "category": category, "subtype": required_type})

    has_specific_signal = bool(required_type or meta.detected_color or meta.pattern or meta.material or meta.style)
    backend_confidence = _backend_confidence(response.get("confidence"))
    if backend_confidence is not None:
        intent.confidence = backend_confidence
    else:
        intent.confidence = 0.86 if has_specific_signal else 0.35
    meta.confidence = intent.confidence

    diagnostics = str(response.get("diagnostics") or "").strip()
    if not has_specific_signal:
        diagnostics = " ".join(part for part in (diagnostics, GENERIC_LABELS_DIAGNOSTIC) if part)
    meta.diagnostics_message = diagnostics
    meta.error_code = str(response.get("error_code") or "").strip()
    meta.provider_used = str(response.get("provider") or meta.provider_used).strip()

    intent.detected_items = detected_items
    products = flatten_detected_matches(detected_items)
    if not products and isinstance(response.get("results"), list):
        products = [row for row in response["results"] if isinstance(row, dict)]
    intent.vision_products = products
    return intent


def prune_low_confidence_keywords(keywords: list[str], confidence: float) -> list[str]:
    """Below the confidence bar, keywords of two characters or fewer are treated as noise."""
    if confidence >= LOW_CONFIDENCE:
        return list(keywords)
    return [token for token in keywords if len(str(token or "")) > 2]


def fallback_signals(fallback: VisionFallback, taxonomy: Taxonomy = DEFAULT_TAXONOMY) -> VisionSignals:
    """Signals from the secondary vision model, shaped for ``merge_signals``."""
    return VisionSignals(
        type=taxonomy.canonicalize_type(fallback.type or fallback.category),
        color=taxonomy.canonicalize_color(fallback.color) or normalize_text(fallback.color),
        category=normalize_text(fallback.category),
        gender=normalize_text(fallback.gender),
        pattern=normalize_text(fallback.pattern),
        material=normalize_text(fallback.material),
        style=normalize_text(fallback.style),
        sleeve=normalize_text(fallback.sleeve),
        neckline=normalize_text(fallback.neckline),
        fit=normalize_text(fallback.fit),
    )
