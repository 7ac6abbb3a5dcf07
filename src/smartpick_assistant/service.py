"""Query-resolution service turning a text and/or image request into a ranked product list."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field, replace
import logging
import mimetypes
import os
import time
from typing import Any

from smartpick_assistant import backend_client, groq_utils
from smartpick_assistant.backend_client import BackendClient, BackendConfig
from smartpick_assistant.candidates import (
    CandidateParams,
    build_image_signal_search_query,
    build_plain_recovery_queries,
    build_recommendation_query_candidates,
    build_safe_fallback_query,
)
from smartpick_assistant.errors import GENERIC_CYCLE_FAILURE, UpstreamError, failure_message
from smartpick_assistant.groq_utils import GroqConfig, analyze_image_attributes
from smartpick_assistant.intent import (
    ShoppingIntent,
    build_shopping_intent,
    fallback_signals,
    prune_low_confidence_keywords,
)
from smartpick_assistant.products import DisplayProduct, build_price_summary, normalize_product_for_display
from smartpick_assistant.ranking import (
    EMERGENCY_FLOOR,
    PLAIN_RECOVERY_FLOOR,
    build_platform_search_fallback_products,
    filter_by_requested_type,
    filter_by_strong_type_guard,
    filter_low_confidence_results,
    is_placeholder_product,
    prefer_color_matches,
    rerank_recommendations,
    score_products,
    select_confidence_threshold,
)
from smartpick_assistant.retrieval import (
    IMAGE_FLOW_GROUP_LIMIT,
    TEXT_FLOW_GROUP_LIMIT,
    collect_recommendation_groups,
    get_recommendations,
    merge_recommendations_by_identity,
)
from smartpick_assistant.taxonomy import DEFAULT_TAXONOMY, Taxonomy
from smartpick_assistant.text import (
    build_token_list,
    is_low_value_summary,
    join_words,
    normalize_text,
    normalize_user_text_query,
    sanitize_assistant_summary,
    sanitize_recommendation_query,
)
from smartpick_assistant.vision import (
    VisionSignals,
    derive_vision_signals,
    detected_items_as_dicts,
    is_image_intent_reliable,
    merge_signals,
)


_LOGGER = logging.getLogger(__name__)

PIPELINE_VERSION = "vision-v2.1"

NON_PRODUCT_IMAGE_MESSAGE = (
    "This looks like a face/person photo, not a product photo. "
    "Upload a clear product image (item centered) or add a text hint."
)
NEEDS_HINT_MESSAGE = (
    "I could not reliably detect a specific product from this image. "
    "Add a short hint like 'blue sneaker' or 'pink floral women top' and try again."
)
STRICT_MODE_HINT = " Try turning Strict Match OFF for broader results."

_FROM_ENV = object()


def image_bytes_to_data_url(image_bytes: bytes, filename: str = "", content_type: str = "") -> str:
    if not image_bytes:
        raise ValueError("Uploaded image is empty.")
    mime = (content_type or "").strip() or mimetypes.guess_type(filename or "")[0] or "image/jpeg"
    if not mime.startswith("image/"):
        raise ValueError(f"Unsupported upload type: {mime}")
    return f"data:{mime};base64,{base64.b64encode(image_bytes).decode('ascii')}"


@dataclass
class _Cycle:
    """Mutable state of one resolution; never shared between calls."""

    started: float
    deadline: float
    effective_query: str
    image_data_url: str | None
    image_name: str
    strict: bool
    requested_type: str = ""
    detected_color: str = ""
    final_query: str = ""
    include_keywords: list[str] = field(default_factory=list)
    exclude_keywords: list[str] = field(default_factory=list)
    signals: VisionSignals = field(default_factory=VisionSignals)
    summary: str = ""
    reliability_score: int = 0
    reliable: bool = False
    intent: ShoppingIntent | None = None

    @property
    def has_image(self) -> bool:
        return bool(self.image_data_url)

    @property
    def has_text(self) -> bool:
        return bool(self.effective_query)

    @property
    def strict_image(self) -> bool:
        return self.has_image and self.strict

    def candidate_params(self, *, force_user_query: bool) -> CandidateParams:
        meta = self.intent.meta if self.intent else None
        return CandidateParams(
            final_search_query=self.final_query,
            requested_type=self.requested_type,
            detected_color=self.detected_color,
            gender=self.signals.gender or getattr(meta, "gender", ""),
            pattern=self.signals.pattern or getattr(meta, "pattern", ""),
            material=self.signals.material or getattr(meta, "material", ""),
            style=self.signals.style or getattr(meta, "style", ""),
            include_keywords=self.include_keywords,
            effective_query=self.effective_query,
            image_name=self.image_name,
            has_image=self.has_image,
            force_user_query=force_user_query,
        )


class ShoppingAssistantService:
    def __init__(
        self,
        *,
        backend: BackendClient | None = None,
        groq: Any = _FROM_ENV,
        taxonomy: Taxonomy = DEFAULT_TAXONOMY,
    ) -> None:
        self.backend_cfg = BackendConfig.from_env()
        self.groq_cfg = GroqConfig.from_env()
        self.backend = backend or backend_client.make_client(self.backend_cfg)
        self.groq = groq_utils.make_client(self.groq_cfg) if groq is _FROM_ENV else groq
        self.taxonomy = taxonomy

        self.vision_top_k = self._env_int("SP_VISION_TOP_K", 24)
        self.strict_vision_mode = self._env_bool("SP_STRICT_VISION_MODE", True)
        self.enable_marketplace_fallback = self._env_bool("SP_ENABLE_MARKETPLACE_FALLBACK", True)
        self.resolve_timeout_seconds = self._env_timeout("SP_RESOLVE_TIMEOUT_SECONDS", 90.0)

    @staticmethod
    def _env_timeout(name: str, default: float) -> float:
        raw = os.getenv(name)
        if raw is None or not raw.strip():
            return default
        try:
            value = float(raw)
        except ValueError:
            return default
        return value if value > 0 else default

    @staticmethod
    def _env_int(name: str, default: int) -> int:
        raw = os.getenv(name)
        if raw is None or not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError:
            return default
        return value if value > 0 else default

    @staticmethod
    def _env_bool(name: str, default: bool) -> bool:
        raw = os.getenv(name)
        if raw is None or not raw.strip():
            return default
        return raw.strip().lower() in {"1", "true", "yes", "on"}

    # -- public API ---------------------------------------------------------

    def resolve(
        self,
        *,
        query: str = "",
        image_data_url: str | None = None,
        image_name: str = "",
        strict_mode: bool | None = None,
    ) -> dict[str, Any]:
        """Run one resolution cycle. Only a request with neither text nor image raises (``ValueError``)."""
        effective_query = normalize_user_text_query(query)
        image_data_url = (image_data_url or "").strip() or None
        if not effective_query and not image_data_url:
            raise ValueError("Please enter a search query or upload an image.")

        started = time.monotonic()
        cycle = _Cycle(
            started=started,
            deadline=started + self.resolve_timeout_seconds,
            effective_query=effective_query,
            image_data_url=image_data_url,
            image_name=(image_name or "").strip(),
            strict=self.strict_vision_mode if strict_mode is None else bool(strict_mode),
        )
        try:
            return self._resolve(cycle)
        except Exception:
            _LOGGER.warning("Resolution cycle failed; returning the generic failure message.", exc_info=True)
            return self._payload(cycle, status="error", message=GENERIC_CYCLE_FAILURE)

    def search_by_text(self, *, query: str) -> dict[str, Any]:
        cleaned = (query or "").strip()
        if not cleaned:
            raise ValueError("Please enter a search query.")
        return self.resolve(query=cleaned)

    def search_by_image(
        self,
        *,
        image_bytes: bytes,
        filename: str = "",
        content_type: str = "",
        query: str = "",
        strict_mode: bool | None = None,
    ) -> dict[str, Any]:
        data_url = image_bytes_to_data_url(image_bytes, filename, content_type)
        return self.resolve(query=query, image_data_url=data_url, image_name=filename, strict_mode=strict_mode)

    def stats(self) -> dict[str, Any]:
        return {
            "pipeline_version": PIPELINE_VERSION,
            "backend_base_url": self.backend.base_url,
            "vision_fallback_enabled": self.groq is not None,
            "strict_vision_mode": self.strict_vision_mode,
            "marketplace_fallback_enabled": self.enable_marketplace_fallback,
        }

    # -- resolution cycle ---------------------------------------------------

    def _resolve(self, cycle: _Cycle) -> dict[str, Any]:
        intent = build_shopping_intent(
            self.backend,
            query=cycle.effective_query,
            image_data_url=cycle.image_data_url,
            strict_category=cycle.strict,
            top_k=self.vision_top_k,
            vision_path=self.backend_cfg.vision_search_path,
            taxonomy=self.taxonomy,
        )
        cycle.intent = intent
        cycle.include_keywords = prune_low_confidence_keywords(intent.include_keywords, intent.confidence)
        cycle.exclude_keywords = list(intent.exclude_keywords)

        if intent.meta.non_product_image:
            return self._payload(cycle, status="non_product_image", message=NON_PRODUCT_IMAGE_MESSAGE)

        error_kind = intent.meta.error_kind
        if cycle.has_image and error_kind.backend_offline:
            if not cycle.has_text:
                return self._payload(cycle, status="backend_offline", message=failure_message(error_kind))
            _LOGGER.warning("Vision backend is offline; continuing with the text query only.")
            cycle.image_data_url = None

        self._resolve_signals(cycle, intent)

        if cycle.has_image and self._signals_insufficient(cycle, after_fallback=False):
            self._apply_vision_fallback(cycle)
            if self._signals_insufficient(cycle, after_fallback=True):
                return self._payload(cycle, status="needs_hint", message=NEEDS_HINT_MESSAGE)

        products = self._ranked_results(cycle)
        if not products and cycle.has_image and cycle.requested_type and not cycle.strict_image:
            products = self._emergency_recovery(cycle)
        if not products and cycle.has_image and cycle.requested_type and not cycle.strict_image:
            products = self._plain_recovery(cycle)

        if not products:
            return self._empty_result(cycle)

        message = " ".join(part for part in (self._success_text(cycle, products), build_price_summary(products)) if part)
        return self._payload(cycle, status="ok", message=message, products=products)

    def _resolve_signals(self, cycle: _Cycle, intent: ShoppingIntent) -> None:
        taxonomy = self.taxonomy
        meta = intent.meta

        cycle.final_query = sanitize_recommendation_query(intent.search_query or cycle.effective_query)
        cycle.signals = derive_vision_signals(intent.detected_items, taxonomy) if cycle.has_image else VisionSignals()

        intent_type = "" if taxonomy.is_generic_label(meta.required_type) else taxonomy.canonicalize_type(meta.required_type)
        cycle.requested_type = taxonomy.canonicalize_type(
            cycle.signals.type
            or intent_type
            or taxonomy.detect_requested_type(cycle.final_query, cycle.include_keywords)
        )
        intent_color = taxonomy.canonicalize_color(meta.detected_color)
        if cycle.has_image:
            cycle.detected_color = cycle.signals.color or intent_color
        else:
            cycle.detected_color = intent_color or taxonomy.detect_requested_color(
                cycle.final_query, cycle.include_keywords
            )
        cycle.summary = sanitize_assistant_summary(intent.assistant_reply)

        reliability = is_image_intent_reliable(cycle.requested_type, cycle.detected_color, cycle.signals, meta)
        cycle.reliability_score = reliability.score
        cycle.reliable = reliability.reliable

        if not cycle.final_query:
            cycle.final_query = build_safe_fallback_query(
                requested_type=cycle.requested_type,
                detected_color=cycle.detected_color,
                include_keywords=cycle.include_keywords,
                effective_query=cycle.effective_query,
                taxonomy=taxonomy,
            )

    @staticmethod
    def _signals_insufficient(cycle: _Cycle, *, after_fallback: bool) -> bool:
        """No usable type or color; before the secondary fallback, an unreliable image-only intent also counts."""
        if not cycle.has_image:
            return False
        if not cycle.requested_type and not cycle.detected_color:
            return True
        return not after_fallback and not cycle.has_text and not cycle.reliable

    def _apply_vision_fallback(self, cycle: _Cycle) -> None:
        fallback = analyze_image_attributes(
            self.groq,
            image_data_url=cycle.image_data_url or "",
            text_hint=join_words(cycle.effective_query, cycle.image_name),
            model=self.groq_cfg.vision_model,
        )
        if fallback is None:
            return

        extra = fallback_signals(fallback, self.taxonomy)
        cycle.requested_type = cycle.requested_type or extra.type
        cycle.detected_color = cycle.detected_color or extra.color
        merged_keywords = [normalize_text(value) for value in [*cycle.include_keywords, *fallback.include_keywords]]
        cycle.include_keywords = build_token_list([value for value in merged_keywords if value], max_tokens=10)

        if fallback.search_query:
            cycle.final_query = sanitize_recommendation_query(fallback.search_query) or cycle.final_query
        if not cycle.final_query:
            cycle.final_query = build_image_signal_search_query(
                detected_color=cycle.detected_color,
                requested_type=cycle.requested_type,
                fallback_query=cycle.effective_query,
            )

        detected = join_words(cycle.detected_color, extra.gender, extra.pattern, cycle.requested_type)
        cycle.summary = sanitize_assistant_summary(cycle.summary or f"Detected {detected} from image.")

        current = replace(
            cycle.signals,
            type=cycle.requested_type or cycle.signals.type,
            color=cycle.detected_color or cycle.signals.color,
        )
        cycle.signals = merge_signals([current, extra])

    # -- retrieval and ranking ---------------------------------------------

    def _fetch(self, query: str, deadline: float | None = None) -> list[Any]:
        return get_recommendations(
            self.backend, query, path=self.backend_cfg.recommendations_path, deadline=deadline
        )

    def _collect(self, candidates: list[str], max_groups: int, cycle: _Cycle) -> list[Any]:
        groups = collect_recommendation_groups(
            candidates,
            lambda query: self._fetch(query, cycle.deadline),
            max_groups=max_groups,
            deadline=cycle.deadline,
        )
        return merge_recommendations_by_identity(groups)

    def _retrieve(self, cycle: _Cycle) -> list[Any]:
        if not cycle.has_image:
            candidates = build_recommendation_query_candidates(
                cycle.candidate_params(force_user_query=True), self.taxonomy
            )
            return self._collect(candidates, TEXT_FLOW_GROUP_LIMIT, cycle)

        if cycle.intent and cycle.intent.vision_products:
            return list(cycle.intent.vision_products)

        candidates = build_recommendation_query_candidates(
            cycle.candidate_params(force_user_query=cycle.has_text), self.taxonomy
        )
        products = self._collect(candidates, IMAGE_FLOW_GROUP_LIMIT, cycle)
        if not products and cycle.has_text:
            try:
                products = self._fetch(cycle.effective_query, cycle.deadline)
            except UpstreamError as exc:
                _LOGGER.warning("Text-first rescue query %r failed: %s", cycle.effective_query, exc)
        return products

    def _score_pool(
        self,
        raw: list[Any],
        cycle: _Cycle,
        *,
        strict: bool,
        search_query: str,
    ) -> list[DisplayProduct]:
        products = [normalize_product_for_display(candidate) for candidate in raw]
        products = [product for product in products if not is_placeholder_product(product, strict=strict)]
        ranked = rerank_recommendations(
            products,
            search_query=search_query,
            include_keywords=cycle.include_keywords,
            exclude_keywords=cycle.exclude_keywords,
            taxonomy=self.taxonomy,
        )
        return score_products(
            ranked,
            requested_type=cycle.requested_type,
            requested_color=cycle.detected_color,
            taxonomy=self.taxonomy,
        )

    def _ranked_results(self, cycle: _Cycle) -> list[DisplayProduct]:
        scored = self._score_pool(self._retrieve(cycle), cycle, strict=cycle.strict_image, search_query=cycle.final_query)
        products = filter_by_requested_type(scored, cycle.requested_type, self.taxonomy)

        if cycle.requested_type and cycle.strict_image:
            products = filter_by_strong_type_guard(products, cycle.requested_type, self.taxonomy)
        if not cycle.has_image and cycle.detected_color:
            products = prefer_color_matches(products, cycle.detected_color, self.taxonomy)

        threshold = select_confidence_threshold(
            has_image=cycle.has_image,
            strict=cycle.strict_image,
            reliable=cycle.reliable,
        )
        return filter_low_confidence_results(products, cycle.requested_type, threshold, self.taxonomy)

    def _emergency_recovery(self, cycle: _Cycle) -> list[DisplayProduct]:
        _LOGGER.warning("No confident image matches; retrying with broader %s queries.", cycle.requested_type)
        candidates = build_recommendation_query_candidates(cycle.candidate_params(force_user_query=True), self.taxonomy)
        raw = self._collect(candidates, TEXT_FLOW_GROUP_LIMIT, cycle)
        scored = self._score_pool(raw, cycle, strict=False, search_query=cycle.final_query)
        typed = filter_by_requested_type(scored, cycle.requested_type, self.taxonomy)
        return filter_low_confidence_results(typed, cycle.requested_type, EMERGENCY_FLOOR, self.taxonomy)

    def _plain_recovery(self, cycle: _Cycle) -> list[DisplayProduct]:
        queries = build_plain_recovery_queries(cycle.requested_type, cycle.detected_color, self.taxonomy)
        raw = self._collect(queries, IMAGE_FLOW_GROUP_LIMIT, cycle)
        scored = self._score_pool(
            raw,
            cycle,
            strict=False,
            search_query=join_words(cycle.detected_color, cycle.requested_type),
        )
        typed = filter_by_requested_type(scored, cycle.requested_type, self.taxonomy)
        guarded = filter_by_strong_type_guard(typed, cycle.requested_type, self.taxonomy)
        return filter_low_confidence_results(guarded, cycle.requested_type, PLAIN_RECOVERY_FLOOR, self.taxonomy)

    # -- messages -----------------------------------------------------------

    def _empty_result(self, cycle: _Cycle) -> dict[str, Any]:
        query = cycle.final_query or cycle.effective_query
        if self.enable_marketplace_fallback:
            cards = build_platform_search_fallback_products(
                query=query,
                requested_type=cycle.requested_type,
                detected_color=cycle.detected_color,
            )
            if cards:
                message = f'I found live marketplace options for "{query}". Open any card to view exact products.'
                return self._payload(cycle, status="marketplace_fallback", message=message, products=cards)

        strict_hint = STRICT_MODE_HINT if cycle.strict_image else ""
        if cycle.requested_type and not cycle.has_text:
            message = (
                f"I found the product type, but no matching {cycle.requested_type} products are available right now."
                f"{strict_hint}"
            )
        elif cycle.has_text:
            message = (
                f'I could not find products for "{cycle.effective_query}". '
                f"Try adding brand, price range, or material.{strict_hint}"
            )
        elif not is_low_value_summary(cycle.summary):
            message = cycle.summary
        else:
            message = f"I could not find matching products. Try adding color, style, or brand.{strict_hint}"
        return self._payload(cycle, status="no_match", message=message)

    @staticmethod
    def _success_text(cycle: _Cycle, products: list[DisplayProduct]) -> str:
        if cycle.has_image:
            color_prefix = f"{cycle.detected_color} " if cycle.detected_color else ""
            return f"I found {len(products)} {color_prefix}{cycle.requested_type or 'products'} options similar to your image."
        return f'I found {len(products)} products for "{cycle.final_query}".'

    def _payload(
        self,
        cycle: _Cycle,
        *,
        status: str,
        message: str,
        products: list[DisplayProduct] | None = None,
    ) -> dict[str, Any]:
        products = products or []
        intent = cycle.intent
        return {
            "status": status,
            "message": message,
            "products": [product.to_public() for product in products],
            "meta": {
                "pipeline_version": PIPELINE_VERSION,
                "mode": "image" if cycle.has_image else "text",
                "products_analyzed": len(products),
                "elapsed_ms": max(0, round((time.monotonic() - cycle.started) * 1000)),
                "requested_type": cycle.requested_type,
                "detected_color": cycle.detected_color,
                "search_query": cycle.final_query,
                "reliability_score": cycle.reliability_score,
                "strict_mode": cycle.strict_image,
                "error_code": intent.meta.error_code if intent else "",
                "diagnostics": intent.meta.diagnostics_message if intent else "",
                "assistant_summary": cycle.summary,
                "detected_items": detected_items_as_dicts(intent.detected_items) if intent else [],
            },
        }
