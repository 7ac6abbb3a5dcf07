"""Ordered alternative search strings tried against the recommendation service."""

from __future__ import annotations

from dataclasses import dataclass, field

from smartpick_assistant.taxonomy import DEFAULT_TAXONOMY, Taxonomy
from smartpick_assistant.text import collapse_whitespace, dedupe, join_words, normalize_text, sanitize_recommendation_query


MAX_CANDIDATES = 6
DEFAULT_FALLBACK_SEED = "fashion product"

_GENDER_TOKENS = frozenset({"men", "mens", "man"})
_APPAREL_TYPES = ("top", "dress")


@dataclass
class CandidateParams:
    final_search_query: str
    requested_type: str = ""
    detected_color: str = ""
    gender: str = ""
    pattern: str = ""
    material: str = ""
    style: str = ""
    include_keywords: list[str] = field(default_factory=list)
    effective_query: str = ""
    image_name: str = ""
    has_image: bool = False
    force_user_query: bool = False


def build_safe_fallback_query(
    *,
    requested_type: str,
    detected_color: str,
    include_keywords: list[str] | None,
    effective_query: str,
    taxonomy: Taxonomy = DEFAULT_TAXONOMY,
) -> str:
    clean_seed = sanitize_recommendation_query(effective_query)
    if clean_seed:
        return clean_seed

    type_hint = (taxonomy.query_hint(requested_type) if requested_type else "") or DEFAULT_FALLBACK_SEED
    keyword_hint = " ".join(
        [token for token in (str(value or "").strip() for value in include_keywords or []) if len(token) > 2][:3]
    )
    return join_words(str(detected_color or "").strip(), type_hint, keyword_hint)


def build_expanded_type_query(base_query: str, requested_type: str, taxonomy: Taxonomy = DEFAULT_TAXONOMY) -> str:
    hint = taxonomy.query_hint(requested_type) if requested_type else ""
    return collapse_whitespace(f"{base_query or ''} {hint}")


def build_image_signal_search_query(*, detected_color: str, requested_type: str, fallback_query: str) -> str:
    return join_words(detected_color, requested_type, fallback_query)


def _style_hints(include_keywords: list[str], taxonomy: Taxonomy) -> str:
    person_aliases = set(taxonomy.aliases_for_type("person"))
    tokens = [normalize_text(value) for value in include_keywords]
    tokens = [token for token in tokens if token and token not in _GENDER_TOKENS and token not in person_aliases]
    return " ".join(tokens[:5])


def build_recommendation_query_candidates(params: CandidateParams, taxonomy: Taxonomy = DEFAULT_TAXONOMY) -> list[str]:
    """Return at most six distinct sanitized queries, most promising first."""
    candidates: list[str] = []

    def push(value: str) -> None:
        query = sanitize_recommendation_query(value)
        if query and query not in candidates:
            candidates.append(query)

    requested_type = params.requested_type
    color = params.detected_color

    push(params.final_search_query)
    push(
        build_safe_fallback_query(
            requested_type=requested_type,
            detected_color=color,
            include_keywords=params.include_keywords,
            effective_query=params.effective_query,
            taxonomy=taxonomy,
        )
    )

    if requested_type:
        push(build_expanded_type_query(params.final_search_query, requested_type, taxonomy))
        push(taxonomy.query_hint(requested_type))
        push(requested_type)
        push(join_words(color, requested_type))

    push(join_words(color, params.gender, params.pattern, params.material, params.style, requested_type))

    style_hints = _style_hints(params.include_keywords, taxonomy)
    if requested_type in _APPAREL_TYPES:
        push(join_words(color, "women", requested_type, style_hints))
        push(join_words(color, "women blouse floral top"))
    elif requested_type:
        push(join_words(color, requested_type, style_hints))

    if not params.has_image or not requested_type or params.force_user_query:
        push(params.effective_query)
    if params.has_image:
        push(join_words(requested_type, params.image_name))

    return candidates[:MAX_CANDIDATES]


def build_plain_recovery_queries(requested_type: str, detected_color: str, taxonomy: Taxonomy = DEFAULT_TAXONOMY) -> list[str]:
    """Last-chance queries for image searches: ``color type``, the bare type, then its hint phrase."""
    queries = [join_words(detected_color, requested_type), requested_type, taxonomy.type_query_hints.get(requested_type, "")]
    return dedupe(queries)
