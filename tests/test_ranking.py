from fakes import product

from smartpick_assistant.products import DisplayProduct, normalize_product_for_display
from smartpick_assistant.ranking import (
    MARKETPLACE_FALLBACK_REASON,
    build_platform_search_fallback_products,
    compute_calibrated_match_score,
    filter_by_requested_type,
    filter_low_confidence_results,
    is_placeholder_product,
    prefer_color_matches,
    rerank_recommendations,
    score_products,
    select_confidence_threshold,
)


def _display(title, **extra):
    return normalize_product_for_display(product(title, **extra))


def test_placeholder_detection() -> None:
    assert is_placeholder_product(DisplayProduct(title="Product"))
    assert is_placeholder_product(_display("Blue Canvas Shoes"))
    assert not is_placeholder_product(_display("Blue Canvas Shoes"), strict=False)
    assert is_placeholder_product(_display("Nike Shoes", url="http://shop.test/nike"))
    assert not is_placeholder_product(_display("Nike Shoes", price=2999))
    assert is_placeholder_product(_display("Nike Shoes", price=2999, reason="Fallback result"), strict=False)


def test_calibrated_score_for_strong_match() -> None:
    item = _display("Blue Running Shoes for Men", price=2499, image="http://img.test/a.jpg", rating=4.4)
    assert compute_calibrated_match_score(item, requested_type="shoes", requested_color="blue") == 91


def test_calibrated_score_penalizes_wrong_type_and_color() -> None:
    item = _display("Red Running Trainers")
    assert compute_calibrated_match_score(item, requested_type="shoes", requested_color="blue") == 8


def test_calibrated_score_without_intent() -> None:
    item = _display("Plain Notebook", price=99)
    assert compute_calibrated_match_score(item, requested_type="", requested_color="") == 43


def test_score_products_sets_ai_score() -> None:
    scored = score_products([_display("Blue Shoes", price=10)], requested_type="shoes", requested_color="")
    assert scored[0].ai_score == 67.0


def test_rerank_prefers_type_and_color_matches() -> None:
    products = [
        _display("Red Running Trainers", price=1999),
        _display("Blue Running Shoes", price=2499),
    ]

    ranked = rerank_recommendations(products, search_query="blue running shoe", include_keywords=["running"])

    assert [item.title for item in ranked] == ["Blue Running Shoes", "Red Running Trainers"]


def test_rerank_applies_exclusions() -> None:
    products = [_display("Leather Tote Bag"), _display("Canvas Tote Bag")]

    ranked = rerank_recommendations(products, search_query="tote bag", exclude_keywords=["leather"])

    assert [item.title for item in ranked] == ["Canvas Tote Bag", "Leather Tote Bag"]


def test_type_filter_drops_products_without_aliases() -> None:
    products = [_display("Red Running Trainers"), _display("Blue Sneakers")]
    assert [item.title for item in filter_by_requested_type(products, "shoes")] == ["Blue Sneakers"]
    assert len(filter_by_requested_type(products, "")) == 2


def test_color_preference_falls_back_to_all() -> None:
    products = [_display("Red Sneakers"), _display("Blue Sneakers")]
    assert [item.title for item in prefer_color_matches(products, "blue")] == ["Blue Sneakers"]
    assert len(prefer_color_matches(products, "green")) == 2


def test_threshold_selection() -> None:
    assert select_confidence_threshold(has_image=False, strict=True, reliable=False) == 28
    assert select_confidence_threshold(has_image=True, strict=True, reliable=False) == 62
    assert select_confidence_threshold(has_image=True, strict=True, reliable=True) == 50
    assert select_confidence_threshold(has_image=True, strict=False, reliable=False) == 45
    assert select_confidence_threshold(has_image=True, strict=False, reliable=True) == 30


def test_strong_type_match_is_kept_below_strict_threshold() -> None:
    phone = DisplayProduct(title="Samsung Galaxy A15", ai_score=55, search_text="samsung galaxy a15 smartphone")
    top = DisplayProduct(title="Floral Top", ai_score=55, search_text="floral top")
    weak_phone = DisplayProduct(title="Old Phone", ai_score=19, search_text="old phone")

    kept = filter_low_confidence_results([phone, top, weak_phone], "phone", 62)

    assert kept == [phone]


def test_low_confidence_filter_without_type() -> None:
    keep = DisplayProduct(title="A", ai_score=30)
    drop = DisplayProduct(title="B", ai_score=27)
    assert filter_low_confidence_results([keep, drop], "", 28) == [keep]


def test_marketplace_fallback_cards() -> None:
    cards = build_platform_search_fallback_products(query="blue shoe", requested_type="shoes", detected_color="blue")

    assert [card.platform for card in cards] == ["Amazon", "Flipkart", "Myntra"]
    assert [card.ai_score for card in cards] == [55.0, 52.0, 50.0]
    assert cards[0].url == "https://www.amazon.in/s?k=blue%20shoe%20shoes"
    assert cards[2].url == "https://www.myntra.com/blue%20shoe%20shoes"
    assert all(card.is_marketplace_fallback for card in cards)
    assert all(card.price == 0 for card in cards)
    assert cards[0].ai_reason == MARKETPLACE_FALLBACK_REASON
    assert cards[1].features == ["Opens live search results on Flipkart"]


def test_marketplace_fallback_needs_a_safe_query() -> None:
    assert build_platform_search_fallback_products(query="") == []
    assert build_platform_search_fallback_products(query="search_query") == []
