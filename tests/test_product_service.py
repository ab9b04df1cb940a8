import pytest

from shopguide.catalog_store import CatalogStore, Product, ProductScore, ProductSource
from shopguide.errors import CatalogStoreError
from shopguide.product_service import ProductService, dedupe_scores, has_next_page


def _product(pid, source=ProductSource.INTENT):
    return Product(id=pid, variant_id="v", title=pid, price="1.00", image_url="", fit_score=0.5, source=source)


def test_first_page_has_unique_products_ranked_desc(products):
    page = products.get_top_products("travel_vlogging", offset=0, limit=3)
    assert [p.id for p in page] == ["p1", "p2", "p3"]
    assert page[0].fit_score == pytest.approx(0.95)
    assert [p.fit_score for p in page] == sorted((p.fit_score for p in page), reverse=True)
    assert all(p.source is ProductSource.INTENT for p in page)


def test_second_page_continues_over_unique_products(products):
    page = products.get_top_products("travel_vlogging", offset=3, limit=3)
    assert [p.id for p in page] == ["p4"]
    assert not has_next_page(page, 3)


def test_page_past_the_end_is_empty(products):
    assert products.get_top_products("travel_vlogging", offset=9, limit=3) == []


def test_result_never_exceeds_limit(products):
    for limit in range(0, 6):
        assert len(products.get_top_products("travel_vlogging", 0, limit)) <= limit


def test_empty_intent_uses_capability_fallback(products, gemini):
    gemini.reply("capabilities", [{"capability_key": "low_light", "weight": 1.0}])
    page = products.get_top_products("home_security", 0, 3, user_message="see in the dark")
    assert [p.id for p in page] == ["p1", "p3"]
    assert all(p.source is ProductSource.CAPABILITY for p in page)
    assert "see in the dark" in gemini.prompts[-1]


def test_unavailable_products_are_dropped(products):
    assert products.get_top_products("wildlife_hunting") == []
    assert products.has_score_rows("wildlife_hunting") is True


def test_store_error_propagates(matcher):
    service = ProductService(CatalogStore(data=["broken"]), matcher)
    with pytest.raises(CatalogStoreError):
        service.get_top_products("travel_vlogging")


def test_alternatives_skip_accessories_and_excluded(products):
    found = products.get_alternatives(limit=3, exclude=["p1"])
    ids = [p.id for p in found]
    assert "p1" not in ids
    assert not any(pid.startswith("acc") for pid in ids)
    assert ids == ["p2", "p5", "p3"]


def test_accessories_and_degraded_store(products, matcher):
    assert [p.id for p in products.get_accessories(limit=2, exclude=["acc1"])] == ["acc2"]
    broken = ProductService(CatalogStore(data=["broken"]), matcher)
    assert broken.get_alternatives() == []
    assert broken.get_accessories() == []
    assert broken.has_score_rows("travel_vlogging") is False


def test_dedupe_keeps_highest_score():
    rows = [ProductScore("a", 0.5), ProductScore("b", 0.7), ProductScore("a", 0.9)]
    assert [(r.product_id, r.fit_score) for r in dedupe_scores(rows)] == [("a", 0.9), ("b", 0.7)]


def test_has_next_page_rules():
    assert has_next_page([_product("a"), _product("b"), _product("c")], 3)
    assert not has_next_page([_product("a"), _product("b")], 3)
    capability_pair = [_product("a", ProductSource.CAPABILITY), _product("b", ProductSource.CAPABILITY)]
    assert not has_next_page(capability_pair, 2)
    assert has_next_page(capability_pair + [_product("c", ProductSource.CAPABILITY)], 3)
