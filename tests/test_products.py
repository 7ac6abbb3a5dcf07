from smartpick_assistant.products import (
    DisplayProduct,
    build_price_summary,
    extract_pricing,
    identity_key,
    normalize_product_for_display,
    to_number,
)


def test_to_number_handles_currency_strings() -> None:
    assert to_number("₹1,299") == 1299.0
    assert to_number(True) == 0.0
    assert to_number(-5) == 0.0
    assert to_number("n/a") == 0.0


def test_extract_pricing_reads_aliases_and_swaps_inverted_pairs() -> None:
    assert extract_pricing({"price": "₹1,299", "mrp": 1999}) == (1299.0, 1999.0)
    assert extract_pricing({"price": 2000, "mrp": 1500}) == (1500.0, 2000.0)
    assert extract_pricing({"salePrice": 400}) == (400.0, 0.0)


def test_normalize_product_maps_alias_fields() -> None:
    product = normalize_product_for_display(
        {
            "product": {
                "productTitle": "Nike Air",
                "salePrice": 4000,
                "discountPercent": 20,
                "thumbnail": "http://img.test/nike.jpg",
                "link": "http://shop.test/nike",
                "stars": 4.5,
                "reviews_count": 1200,
                "store": "Myntra",
            }
        }
    )

    assert product.title == "Nike Air"
    assert product.price == 4000.0
    assert product.original_price == 5000.0
    assert product.discount_percent == 20.0
    assert product.has_offer is True
    assert product.rating == 4.5
    assert product.reviews == 1200.0
    assert product.platform == "Myntra"
    assert product.url == "http://shop.test/nike"
    assert product.image == "http://img.test/nike.jpg"
    assert product.currency_symbol == "INR"
    assert product.ai_reason == "Nike Air is a strong pick on Myntra with high rating and competitive pricing."
    assert product.features == [
        "Rated 4.5 by customers",
        "1,200 customer reviews",
        "Discounted compared to original price",
    ]


def test_normalize_product_reads_image_collections_and_keeps_specific_reasons() -> None:
    product = normalize_product_for_display(
        {"name": "Canvas Tote", "images": [{"src": "http://img.test/a.jpg"}], "reason": "Matches your canvas tote"}
    )
    assert product.image == "http://img.test/a.jpg"
    assert product.ai_reason == "Matches your canvas tote"
    assert product.platform == "SmartPick"


def test_normalize_product_replaces_generic_reasons() -> None:
    product = normalize_product_for_display({"title": "Desk Lamp", "aiReason": "Popular product matching your search"})
    assert product.ai_reason == "Desk Lamp is a relevant match on SmartPick for your request."


def test_search_text_comes_from_raw_fields() -> None:
    product = normalize_product_for_display({"title": "Leather Tote", "category": "Bags", "platform": "Ajio"})
    assert product.search_text == "leather tote bags ajio"
    assert "search_text" not in product.to_public()
    assert "source_reason" not in product.to_public()


def test_identity_key_ignores_formatting() -> None:
    first = {"title": "Leather Tote", "platform": "Ajio", "price": "1,499"}
    second = {"product": {"title": "leather tote!", "platform": "AJIO", "price": 1499}}
    assert identity_key(first) == identity_key(second)


def test_identity_key_keeps_large_prices_apart() -> None:
    first = {"title": "Gaming Laptop", "platform": "Amazon", "price": 1234567}
    second = {"title": "Gaming Laptop", "platform": "Amazon", "price": 1234568}
    assert identity_key(first) != identity_key(second)
    assert identity_key({"title": "Tote", "price": 10}) == identity_key({"title": "Tote", "price": "10.0"})


def test_price_summary() -> None:
    assert build_price_summary([]) == ""
    assert build_price_summary([DisplayProduct(title="A", price=1299)]) == "Price around INR 1299."
    assert (
        build_price_summary([DisplayProduct(title="A", price=1899), DisplayProduct(title="B", price=799)])
        == "Price range INR 799 to INR 1899."
    )
