"""Turns raw vision-detection payloads into normalized attribute signals."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Iterable

from smartpick_assistant.products import identity_key, resolve_platform, resolve_product_url, resolve_title
from smartpick_assistant.taxonomy import DEFAULT_TAXONOMY, Taxonomy
from smartpick_assistant.text import normalize_text, pick_first


RELIABLE_SIGNAL_COUNT = 2


@dataclass(frozen=True)
class VisionSignals:
    type: str = ""
    color: str = ""
    category: str = ""
    gender: str = ""
    pattern: str = ""
    material: str = ""
    style: str = ""
    sleeve: str = ""
    neckline: str = ""
    fit: str = ""

    def is_empty(self) -> bool:
        return not any(getattr(self, item.name) for item in fields(self))


@dataclass(frozen=True)
class Reliability:
    score: int
    reliable: bool


@dataclass(frozen=True)
class DetectedItem:
    category: str
    subtype: str
    attributes: dict[str, Any]
    matches: list[dict[str, Any]]


def merge_signals(sources: Iterable[VisionSignals]) -> VisionSignals:
    """Fold partial signal bundles in priority order; for each field the first non-empty value wins."""
    merged = VisionSignals()
    for source in sources:
        updates = {
            item.name: getattr(source, item.name)
            for item in fields(VisionSignals)
            if not getattr(merged, item.name) and getattr(source, item.name)
        }
        if updates:
            merged = replace(merged, **updates)
    return merged


def read_vision_attributes(item: DetectedItem | dict[str, Any] | None) -> dict[str, str]:
    """Raw (un-normalized) attribute strings from one detected item, resolving provider key aliases."""
    if isinstance(item, DetectedItem):
        item = {"category": item.category, "subtype": item.subtype, "attributes": item.attributes}
    item = item if isinstance(item, dict) else {}
    attributes = item.get("attributes") if isinstance(item.get("attributes"), dict) else {}
    return {
        "category": pick_first(item.get("category"), attributes.get("category")),
        "subtype": pick_first(item.get("subtype"), attributes.get("subtype"), attributes.get("type")),
        "color": pick_first(attributes.get("color"), attributes.get("primary_color")),
        "gender": pick_first(attributes.get("gender"), attributes.get("target_gender")),
        "pattern": pick_first(attributes.get("pattern"), attributes.get("print")),
        "material": pick_first(attributes.get("material"), attributes.get("fabric")),
        "style": pick_first(attributes.get("style"), attributes.get("occasion")),
        "sleeve": pick_first(attributes.get("sleeve"), attributes.get("sleeve_type")),
        "neckline": pick_first(attributes.get("neckline")),
        "fit": pick_first(attributes.get("fit")),
    }


def derive_vision_signals(
    detected_items: list[DetectedItem] | list[dict[str, Any]] | None,
    taxonomy: Taxonomy = DEFAULT_TAXONOMY,
) -> VisionSignals:
    if not detected_items:
        return VisionSignals()

    attrs = read_vision_attributes(detected_items[0])
    subtype = normalize_text(attrs["subtype"])
    category = normalize_text(attrs["category"])
    if taxonomy.is_generic_label(subtype):
        subtype = ""
    if taxonomy.is_generic_label(category):
        category = ""

    inferred_type = taxonomy.canonicalize_type(subtype or taxonomy.type_from_category(category))

    return VisionSignals(
        type=inferred_type,
        color=taxonomy.canonicalize_color(attrs["color"]),
        category=category,
        gender=normalize_text(attrs["gender"]),
        pattern=normalize_text(attrs["pattern"]),
        material=normalize_text(attrs["material"]),
        style=normalize_text(attrs["style"]),
        sleeve=normalize_text(attrs["sleeve"]),
        neckline=normalize_text(attrs["neckline"]),
        fit=normalize_text(attrs["fit"]),
    )


def is_image_intent_reliable(requested_type: str, detected_color: str, *sources: Any) -> Reliability:
    """Count present signals across ``sources`` (vision signals, intent metadata); two or more is reliable."""

    def present(name: str) -> bool:
        return any(getattr(source, name, "") for source in sources if source is not None)

    checks = [
        bool(requested_type),
        bool(detected_color),
        present("pattern"),
        present("material"),
        present("style"),
        present("gender"),
    ]
    score = sum(1 for check in checks if check)
    return Reliability(score=score, reliable=score >= RELIABLE_SIGNAL_COUNT)


def build_vision_summary(attrs: dict[str, str]) -> str:
    details = [
        attrs.get("color"),
        attrs.get("gender"),
        attrs.get("pattern"),
        attrs.get("material"),
        attrs.get("subtype") or attrs.get("category"),
    ]
    details = [value for value in details if value]
    if not details:
        return ""
    return f"Detected {' '.join(details)}."


def _unwrap_match(entry: Any) -> dict[str, Any] | None:
    if not isinstance(entry, dict):
        return None
    nested = entry.get("product")
    return nested if isinstance(nested, dict) else entry


def normalize_detected_items(items: Any) -> list[DetectedItem]:
    if not isinstance(items, list):
        return []
    out: list[DetectedItem] = []
    for raw in items:
        raw = raw if isinstance(raw, dict) else {}
        matches = raw.get("matches") if isinstance(raw.get("matches"), list) else []
        item = DetectedItem(
            category=str(raw.get("category") or "").strip(),
            subtype=str(raw.get("subtype") or "").strip(),
            attributes=raw.get("attributes") if isinstance(raw.get("attributes"), dict) else {},
            matches=[match for match in (_unwrap_match(entry) for entry in matches) if match],
        )
        if item.matches or item.category or item.subtype:
            out.append(item)
    return out


def flatten_detected_matches(detected_items: list[DetectedItem]) -> list[dict[str, Any]]:
    products: list[dict[str, Any]] = []
    seen: set[str] = set()
    for item in detected_items:
        for product in item.matches:
            key = pick_first(
                product.get("id"),
                product.get("_id"),
                "|".join([resolve_title(product), resolve_platform(product), resolve_product_url(product)]).strip("|"),
            ) or identity_key(product)
            if not key or key in seen:
                continue
            seen.add(key)
            products.append(product)
    return products


def detected_items_as_dicts(detected_items: list[DetectedItem]) -> list[dict[str, Any]]:
    return [
        {"category": item.category, "subtype": item.subtype, "attributes": dict(item.attributes)}
        for item in detected_items
    ]
