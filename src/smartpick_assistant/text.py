"""Text canonicalization and query sanitization shared across the resolution pipeline."""

from __future__ import annotations

import re
from typing import Any, Iterable


_MATCH_STRIP_RE = re.compile(r"[^a-z0-9\s]")
_WORD_STRIP_RE = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE_RE = re.compile(r"\s+")

# Applied in order; later rules see the output of earlier ones.
_USER_QUERY_REWRITES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bgalaxy\s+a\s*series\b", re.IGNORECASE), "samsung galaxy a series smartphone"),
    (re.compile(r"\bcell\s*phone\b", re.IGNORECASE), "smartphone"),
    (re.compile(r"\bbags\b", re.IGNORECASE), "bag"),
    (re.compile(r"\bshoes\b", re.IGNORECASE), "shoe"),
    (re.compile(r"\bdresses\b", re.IGNORECASE), "dress"),
    (re.compile(r"\btops\b", re.IGNORECASE), "top"),
)

_LEAKED_PROMPT_MARKERS = (
    "assistant_reply",
    "search_query",
    "include_keywords",
    "exclude_keywords",
    "confidence",
    "concise ecommerce phrase",
    "return strict json",
)

_LOW_VALUE_SUMMARIES = {
    "detected product",
    "product detected from image",
    "detected items",
}

MAX_RECOMMENDATION_QUERY_LENGTH = 120
MAX_SEARCH_QUERY_LENGTH = 160
MAX_SUMMARY_LENGTH = 220


def normalize_text(value: Any) -> str:
    """Lowercase, replace everything outside ``[a-z0-9\\s]`` with spaces and collapse whitespace."""
    text = str(value or "").lower()
    text = _MATCH_STRIP_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_word(value: Any) -> str:
    """Like :func:`normalize_text` but keeps hyphens (``t-shirt`` stays one token)."""
    text = str(value or "").lower()
    text = _WORD_STRIP_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def collapse_whitespace(value: Any) -> str:
    return _WHITESPACE_RE.sub(" ", str(value or "")).strip()


def normalize_user_text_query(value: Any) -> str:
    query = str(value or "").strip()
    if not query:
        return ""
    for pattern, replacement in _USER_QUERY_REWRITES:
        query = pattern.sub(replacement, query, count=1)
    return query.strip()


def sanitize_search_query(value: Any, max_len: int = MAX_SEARCH_QUERY_LENGTH) -> str:
    text = re.sub(r"[\r\n]+", " ", str(value or ""))
    return collapse_whitespace(text)[:max_len]


def sanitize_recommendation_query(value: Any) -> str:
    """Return a query safe to send to the recommendation service, or ``""`` when it must be rejected.

    Rejects leaked prompt/JSON markers, path-like strings and anything longer than
    120 characters after whitespace collapse.
    """
    text = collapse_whitespace(value)
    if not text:
        return ""

    # Compared against the raw text: normalize_text would erase the underscores in the markers.
    lowered = text.lower()
    if any(marker in lowered for marker in _LEAKED_PROMPT_MARKERS):
        return ""

    if text.startswith("./") or len(text) > MAX_RECOMMENDATION_QUERY_LENGTH:
        return ""
    return text


def sanitize_assistant_summary(value: Any) -> str:
    text = collapse_whitespace(value)
    if not text:
        return ""

    lowered = text.lower()
    markers = _LEAKED_PROMPT_MARKERS + ("short explanation",)
    hits = [marker for marker in markers if marker in lowered]

    if text.startswith(("{", "[")) and hits:
        return ""
    if len(hits) >= 2:
        return ""
    if "./assistant_reply" in lowered:
        return ""

    cleaned = re.sub(r"^```(?:json)?", "", text, flags=re.IGNORECASE)
    cleaned = re.sub(r"```$", "", cleaned).strip()
    return cleaned[:MAX_SUMMARY_LENGTH]


def is_low_value_summary(value: Any) -> bool:
    normalized = normalize_text(value)
    if not normalized or normalized in _LOW_VALUE_SUMMARIES:
        return True
    return len(normalized) < 18


def pick_first(*values: Any) -> str:
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def dedupe(values: Iterable[Any]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for value in values:
        cleaned = str(value or "").strip()
        if not cleaned:
            continue
        key = cleaned.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(cleaned)
    return out


def build_token_list(values: Iterable[Any], max_tokens: int = 10) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for value in values:
        token = normalize_word(value)
        if not token or token in seen:
            continue
        seen.add(token)
        out.append(token)
        if len(out) >= max_tokens:
            break
    return out


def join_words(*parts: Any) -> str:
    return collapse_whitespace(" ".join(str(part) for part in parts if part))
