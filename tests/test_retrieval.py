import time

import pytest
from fakes import RECOMMENDATIONS_PATH, FakeBackend, product

from smartpick_assistant.errors import RetrievalExhaustedError, UpstreamError
from smartpick_assistant.retrieval import (
    DEFAULT_STRATEGIES,
    RequestStrategy,
    collect_recommendation_groups,
    first_success,
    get_recommendations,
    merge_recommendations_by_identity,
    normalize_recommendations,
)


def test_normalize_recommendations_shapes() -> None:
    rows = [{"title": "A"}]
    assert normalize_recommendations(None) == []
    assert normalize_recommendations(rows) == rows
    assert normalize_recommendations({"data": {"products": rows}}) == rows
    assert normalize_recommendations({"shopping_results": rows}) == rows
    assert normalize_recommendations({"products": {"a": {"title": "A"}}}) == rows
    assert normalize_recommendations({"title": "A"}) == rows


def test_strategy_names_and_order() -> None:
    assert [strategy.name for strategy in DEFAULT_STRATEGIES] == [
        "GET query",
        "GET q",
        "GET search",
        "POST query",
        "POST q",
        "POST search",
        "GET query (no proxy)",
        "POST query (no proxy)",
    ]


def test_proxyless_strategy_targets_fallback_base_url() -> None:
    backend = FakeBackend(recommendations={"products": [{"title": "A"}]})

    rows = RequestStrategy("POST", "query", proxyless=True).execute(backend, RECOMMENDATIONS_PATH, "bag")

    assert rows == [{"title": "A"}]
    assert backend.calls[0]["body"] == {"query": "bag"}
    assert backend.calls[0]["base_url"] == "http://backend.test"


def test_get_recommendations_moves_past_contract_mismatches() -> None:
    replies = iter([UpstreamError("nope", status=404), UpstreamError("nope", status=422), [{"title": "A"}]])

    def recommend(query):
        reply = next(replies)
        if isinstance(reply, Exception):
            raise reply
        return reply

    backend = FakeBackend(recommendations=recommend)

    assert get_recommendations(backend, "bag") == [{"title": "A"}]
    assert len(backend.calls) == 3
    assert backend.calls[2]["params"] == {"search": "bag"}


def test_all_variants_returning_404_exhaust_retrieval() -> None:
    backend = FakeBackend(recommendations=UpstreamError("not found", status=404))

    with pytest.raises(RetrievalExhaustedError):
        get_recommendations(backend, "bag")
    assert len(backend.calls) == len(DEFAULT_STRATEGIES)


def test_non_retryable_failures_propagate_immediately() -> None:
    backend = FakeBackend(recommendations=UpstreamError("server error", status=500))

    with pytest.raises(UpstreamError) as excinfo:
        get_recommendations(backend, "bag")
    assert not isinstance(excinfo.value, RetrievalExhaustedError)
    assert len(backend.calls) == 1


def test_empty_results_everywhere_return_empty_list() -> None:
    backend = FakeBackend(recommendations=[])
    assert get_recommendations(backend, "bag") == []
    assert get_recommendations(backend, "   ") == []
    assert len(backend.calls) == len(DEFAULT_STRATEGIES)


def test_first_success_returns_first_non_empty() -> None:
    assert first_success([lambda: [], lambda: [1], lambda: [2]]) == [1]


def test_merge_by_identity_keeps_first_occurrence() -> None:
    first = [product("Leather Tote", price=1499, platform="Ajio"), product("Canvas Sling", price=699)]
    second = [product("leather tote", price="1,499", platform="AJIO", rating=4.9)]

    merged = merge_recommendations_by_identity([first, second])

    assert [row["title"] for row in merged] == ["Leather Tote", "Canvas Sling"]


def test_collect_groups_skips_failures_and_stops_at_limit() -> None:
    def fetch(query):
        if query == "broken":
            raise RetrievalExhaustedError("all failed", status=404)
        return [] if query == "empty" else [query]

    groups = collect_recommendation_groups(["broken", "empty", "a", "b", "c"], fetch, max_groups=2)

    assert groups == [["a"], ["b"]]


def test_collect_groups_respects_deadline() -> None:
    calls = []

    def fetch(query):
        calls.append(query)
        return [query]

    groups = collect_recommendation_groups(["a", "b"], fetch, max_groups=3, deadline=time.monotonic() - 1)

    assert groups == []
    assert calls == []


def test_get_recommendations_stops_between_shapes_after_deadline() -> None:
    def hang_then_fail(query):
        time.sleep(0.1)
        raise UpstreamError("timed out", status=0)

    backend = FakeBackend(recommendations=hang_then_fail)

    with pytest.raises(RetrievalExhaustedError):
        get_recommendations(backend, "bag", deadline=time.monotonic() + 0.05)
    assert len(backend.calls) == 1


def test_get_recommendations_with_expired_deadline_sends_nothing() -> None:
    backend = FakeBackend(recommendations=[{"title": "A"}])

    assert get_recommendations(backend, "bag", deadline=time.monotonic() - 1) == []
    assert backend.calls == []
