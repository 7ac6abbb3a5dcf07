"""Recommendation retrieval: request-shape fallbacks, response normalization and group aggregation."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence

from smartpick_assistant.backend_client import BackendClient
from smartpick_assistant.errors import RetrievalExhaustedError, UpstreamError
from smartpick_assistant.products import identity_key


_LOGGER = logging.getLogger(__name__)

_LIST_KEYS = ("shopping_results", "shoppingResults", "products", "results", "data", "items", "recommendations")

IMAGE_FLOW_GROUP_LIMIT = 2
TEXT_FLOW_GROUP_LIMIT = 3


def normalize_recommendations(data: Any) -> list[Any]:
    """Coerce any supported response shape into a list of candidates."""
    if not data:
        return []
    if isinstance(data, dict):
        nested = data.get("data")
        if nested and nested is not data:
            unwrapped = normalize_recommendations(nested)
            if unwrapped:
                return unwrapped
    if isinstance(data, list):
        return data
    if not isinstance(data, dict):
        return []
    for key in _LIST_KEYS:
        if isinstance(data.get(key), list):
            return data[key]
    if isinstance(data.get("products"), dict):
        return list(data["products"].values())
    return [data]


@dataclass(frozen=True)
class RequestStrategy:
    """One request shape for the recommendation endpoint."""

    method: str
    key: str
    proxyless: bool = False

    @property
    def name(self) -> str:
        suffix = " (no proxy)" if self.proxyless else ""
        return f"{self.method} {self.key}{suffix}"

    def execute(self, client: BackendClient, path: str, query: str) -> list[Any]:
        base_url = client.fallback_base_url if self.proxyless else None
        if self.method == "GET":
            data = client.request_json("GET", path, params={self.key: query}, base_url=base_url)
        else:
            data = client.request_json("POST", path, body={self.key: query}, base_url=base_url)
        return normalize_recommendations(data)


DEFAULT_STRATEGIES: tuple[RequestStrategy, ...] = (
    RequestStrategy("GET", "query"),
    RequestStrategy("GET", "q"),
    RequestStrategy("GET", "search"),
    RequestStrategy("POST", "query"),
    RequestStrategy("POST", "q"),
    RequestStrategy("POST", "search"),
    RequestStrategy("GET", "query", proxyless=True),
    RequestStrategy("POST", "query", proxyless=True),
)


def first_success(
    attempts: Iterable[Callable[[], list[Any]]],
    *,
    label: str = "",
    deadline: float | None = None,
) -> list[Any]:
    """Run attempts in order and return the first non-empty result.

    Retryable failures move on to the next attempt; any other failure propagates.
    When every attempt failed or came back empty, the last retryable failure is
    raised as :class:`RetrievalExhaustedError`, or ``[]`` is returned if none failed.
    No attempt is started once ``deadline`` (a ``time.monotonic()`` value) has passed.
    """
    last_error: UpstreamError | None = None
    for attempt in attempts:
        if deadline is not None and time.monotonic() >= deadline:
            _LOGGER.warning("Resolution time budget exhausted while querying %r.", label)
            break
        try:
            result = attempt()
        except UpstreamError as exc:
            if not exc.retryable:
                raise
            last_error = exc
            continue
        if result:
            return result

    if last_error is not None:
        raise RetrievalExhaustedError(
            f"All recommendation request shapes failed for {label!r}: {last_error}",
            status=last_error.status,
            path=last_error.path,
        ) from last_error
    return []


def get_recommendations(
    client: BackendClient,
    query: str,
    *,
    path: str = "/recommendations",
    strategies: Sequence[RequestStrategy] = DEFAULT_STRATEGIES,
    deadline: float | None = None,
) -> list[Any]:
    text = str(query or "").strip()
    if not text:
        return []
    return first_success(
        (lambda strategy=strategy: strategy.execute(client, path, text) for strategy in strategies),
        label=text,
        deadline=deadline,
    )


def merge_recommendations_by_identity(groups: Iterable[list[Any]]) -> list[Any]:
    merged: list[Any] = []
    seen: set[str] = set()
    for group in groups:
        for product in group if isinstance(group, list) else []:
            key = identity_key(product)
            if not key or key in seen:
                continue
            seen.add(key)
            merged.append(product)
    return merged


def collect_recommendation_groups(
    candidates: Iterable[str],
    fetch: Callable[[str], list[Any]],
    *,
    max_groups: int,
    deadline: float | None = None,
) -> list[list[Any]]:
    """Query candidates in order until ``max_groups`` non-empty groups are gathered.

    A failing candidate is logged and skipped. ``deadline`` is a ``time.monotonic()``
    value after which no further candidate is issued.
    """
    groups: list[list[Any]] = []
    for candidate in candidates:
        if deadline is not None and time.monotonic() >= deadline:
            _LOGGER.warning("Resolution time budget exhausted before candidate %r.", candidate)
            break
        try:
            results = fetch(candidate)
        except UpstreamError as exc:
            _LOGGER.warning("Recommendation query %r failed: %s", candidate, exc)
            continue
        if results:
            groups.append(results)
        if len(groups) >= max_groups:
            break
    return groups
