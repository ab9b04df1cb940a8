import pytest

from shopguide.no_product_handler import EXIT_OPTIONS, NoProductHandler, detect_specific_product, polite_decline


@pytest.fixture
def handler(products):
    return NoProductHandler(products)


def test_specific_model_request_offers_popular_alternatives(handler):
    result = handler.handle("travel_vlogging", "Do you have the Sony A7?", None)
    assert result.scenario == "specific_product"
    assert "Sony A7" in result.message
    assert [a["id"] for a in result.alternatives] == ["p1", "p2", "p5"]
    assert {a["relevance"] for a in result.alternatives} == {"Popular choice"}
    assert result.exit_options == EXIT_OPTIONS


def test_intent_with_rows_but_nothing_in_stock(handler):
    result = handler.handle("wildlife_hunting", "birds at the lake", None)
    assert result.scenario == "out_of_stock"
    assert "out of stock" in result.message
    assert len(result.alternatives) == 3


def test_unmatched_need_offers_accessories(handler):
    result = handler.handle("dynamic_bakery_inventory", "count bread loaves", None)
    assert result.scenario == "intent_mismatch"
    assert [a["id"] for a in result.alternatives] == ["acc1", "acc2"]
    assert {a["relevance"] for a in result.alternatives} == {"Helpful accessory"}


def test_anxious_persona_gets_upfront_decline(handler):
    result = handler.handle(None, "count bread loaves", "anxiety_prone")
    assert result.message.startswith("I want to be upfront with you")


def test_detect_specific_product_patterns():
    assert detect_specific_product("looking for a canon eos r5") == "canon eos r5"
    assert detect_specific_product("Nikon Z8 please") == "Nikon Z8"
    assert detect_specific_product("a good camera for birds") is None


def test_unknown_scenario_has_generic_copy():
    assert polite_decline("something_else").startswith("I couldn't find exact matches")
