import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from shopguide.app import app, get_orchestrator
from shopguide.capability_matcher import CapabilityMatcher
from shopguide.catalog_cache import CatalogCache
from shopguide.catalog_store import CatalogStore
from shopguide.commerce_client import CommerceClient
from shopguide.config import BASE_DIR
from shopguide.errors import GenerationError
from shopguide.image_generator import build_image_generator
from shopguide.intent_classifier import IntentClassifier
from shopguide.no_product_handler import NoProductHandler
from shopguide.orchestrator import ShoppingOrchestrator
from shopguide.presentation import Presenter
from shopguide.product_service import ProductService
from shopguide.semantic_validator import SemanticValidator

PROMPTS_DIR = BASE_DIR / "prompts"
REPO_CATALOG = Path(__file__).resolve().parent.parent / "resources" / "catalog.json"

# Prompt markers used to route scripted replies to the right call.
PROMPT_MARKERS = {
    "classify": "Allowed intents:",
    "validate": "shopping category really fits",
    "capabilities": "Extract camera capabilities",
    "present": "already ranked",
    "closing": "placed an order",
}


class FakeGemini:
    """Scripted stand-in for GeminiClient.generate_text.

    Replies are keyed by call kind; dicts/lists are JSON-encoded, exceptions are raised,
    and a kind with no reply raises GenerationError like an unreachable model would.
    """

    def __init__(self):
        self.replies = {}
        self.calls = []
        self.prompts = []

    def reply(self, kind, value):
        self.replies[kind] = value
        return self

    def generate_text(self, prompt, model=None, **kwargs):
        kind = next((name for name, marker in PROMPT_MARKERS.items() if marker in prompt), "unknown")
        self.calls.append(kind)
        self.prompts.append(prompt)
        value = self.replies.get(kind)
        if value is None:
            raise GenerationError(f"no scripted reply for {kind}")
        if isinstance(value, Exception):
            raise value
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return value


def commerce_response(status_code=200, payload=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload if payload is not None else {}
    resp.text = json.dumps(payload or {})
    return resp


def product_row(product_id, title, price="100.00", **extra):
    row = {
        "id": product_id,
        "title": title,
        "variants": [{"id": f"var-{product_id}", "price": price}],
        "images": [{"src": f"https://cdn.test/{product_id}.jpg"}],
    }
    row.update(extra)
    return row


@pytest.fixture
def catalog_data():
    return {
        "intents": [
            {"intent_id": "travel_vlogging", "name": "Travel vlogging", "description": "Filming trips and events"},
            {"intent_id": "sports_action_outdoor", "name": "Sports", "description": "Fast action"},
            {"intent_id": "home_security", "name": "Home security", "description": "Watching a property"},
            {"intent_id": "wildlife_hunting", "name": "Wildlife", "description": "Birds at range"},
            {"intent_id": "accessory_only", "name": "Accessories", "description": "Add-ons"},
        ],
        "capability_dimensions": [
            {"capability_key": "low_light"},
            {"capability_key": "autofocus_reliability"},
            {"capability_key": "portability"},
        ],
        "products": [
            product_row("p1", "Cam One", "1999.00"),
            product_row("p2", "Cam Two", "1499.00"),
            product_row("p3", "Cam Three", "999.00"),
            product_row("p4", "Cam Four", "599.00"),
            product_row("p5", "Cam Five", "2999.00"),
            product_row("p6", "Cam Six", "2399.00", available=False),
            product_row("acc1", "Memory Card", "29.99"),
            product_row("acc2", "Camera Bag", "89.00"),
        ],
        "product_intent_scores": [
            {"intent_id": "travel_vlogging", "product_id": "p1", "fit_score": 0.95},
            {"intent_id": "travel_vlogging", "product_id": "p2", "fit_score": 0.9},
            {"intent_id": "travel_vlogging", "product_id": "p3", "fit_score": 0.85},
            {"intent_id": "travel_vlogging", "product_id": "p1", "fit_score": 0.8},
            {"intent_id": "travel_vlogging", "product_id": "p4", "fit_score": 0.7},
            {"intent_id": "sports_action_outdoor", "product_id": "p5", "fit_score": 0.9},
            {"intent_id": "sports_action_outdoor", "product_id": "p2", "fit_score": 0.6},
            {"intent_id": "wildlife_hunting", "product_id": "p6", "fit_score": 0.9},
            {"intent_id": "accessory_only", "product_id": "acc1", "fit_score": 0.9},
            {"intent_id": "accessory_only", "product_id": "acc2", "fit_score": 0.8},
        ],
        "product_capabilities": [
            {"product_id": "p1", "capability_key": "low_light", "value": 0.9},
            {"product_id": "p1", "capability_key": "autofocus_reliability", "value": 0.8},
            {"product_id": "p3", "capability_key": "low_light", "value": 0.7},
            {"product_id": "p3", "capability_key": "autofocus_reliability", "value": 0.95},
            {"product_id": "p4", "capability_key": "portability", "value": 0.9},
            {"product_id": "p5", "capability_key": "portability", "value": 0.4},
        ],
    }


@pytest.fixture
def store(catalog_data):
    return CatalogStore(data=catalog_data)


@pytest.fixture
def cache(store):
    return CatalogCache(store)


@pytest.fixture
def gemini():
    return FakeGemini()


@pytest.fixture
def matcher(gemini, store, cache):
    return CapabilityMatcher(gemini, store, cache, PROMPTS_DIR)


@pytest.fixture
def products(store, matcher):
    return ProductService(store, matcher)


@pytest.fixture
def commerce_session():
    return MagicMock()


@pytest.fixture
def make_orchestrator(gemini, cache, products, matcher, commerce_session):
    built = []

    def factory(**overrides):
        options = dict(
            classifier=IntentClassifier(gemini, cache, PROMPTS_DIR),
            validator=SemanticValidator(gemini, cache, PROMPTS_DIR),
            products=products,
            matcher=matcher,
            recovery=NoProductHandler(products),
            presenter=Presenter(gemini, PROMPTS_DIR),
            images=build_image_generator("", "", 1.0, True),
            commerce=CommerceClient("shop.test", "token", session=commerce_session),
            image_timeout_sec=5.0,
        )
        options.update(overrides)
        orchestrator = ShoppingOrchestrator(**options)
        built.append(orchestrator)
        return orchestrator

    yield factory
    for orchestrator in built:
        orchestrator.shutdown()


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


@pytest.fixture
def client(orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()
