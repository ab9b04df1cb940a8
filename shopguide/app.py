from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from .capability_matcher import CapabilityMatcher
from .catalog_cache import CatalogCache
from .catalog_store import CatalogStore
from .commerce_client import CommerceClient
from .config import load_settings
from .errors import ClassifierOutputError, ShopguideError
from .gemini_client import GeminiClient
from .image_generator import build_image_generator
from .intent_classifier import IntentClassifier
from .models import ChatRequest, ChatResponse
from .no_product_handler import NoProductHandler
from .orchestrator import ShoppingOrchestrator
from .presentation import Presenter
from .product_service import ProductService
from .semantic_validator import SemanticValidator

BASE_DIR = Path(__file__).resolve().parent

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("shopguide").setLevel(log_level)
logger = logging.getLogger("shopguide.api")

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)

app = FastAPI(title="Shopguide Shopping Assistant")


@lru_cache(maxsize=1)
def get_orchestrator() -> ShoppingOrchestrator:
    """Purpose: Composition root; build every collaborator once per process.
    Inputs/Outputs: No inputs; returns the shared ShoppingOrchestrator.
    Side Effects / State: Reads settings, configures the Gemini SDK, and creates the
        catalog cache and thread pool.
    Dependencies: load_settings and all service constructors.
    Failure Modes: Missing GEMINI_API_KEY raises ValueError on the first request.
    If Removed: The chat route has no orchestrator to call.
    Testing Notes: Override with app.dependency_overrides[get_orchestrator].
    """
    # Wire store -> cache -> services -> orchestrator.
    settings = load_settings()
    gemini = GeminiClient(settings)
    store = CatalogStore(settings.catalog_path)
    cache = CatalogCache(store, ttl_sec=settings.catalog_cache_ttl_sec)
    matcher = CapabilityMatcher(gemini, store, cache, settings.prompts_dir, model=settings.gemini_model_flash)
    products = ProductService(store, matcher)
    orchestrator = ShoppingOrchestrator(
        classifier=IntentClassifier(gemini, cache, settings.prompts_dir, model=settings.gemini_model_flash),
        validator=SemanticValidator(gemini, cache, settings.prompts_dir, model=settings.gemini_model_flash),
        products=products,
        matcher=matcher,
        recovery=NoProductHandler(products),
        presenter=Presenter(gemini, settings.prompts_dir, model=settings.gemini_model_pro),
        images=build_image_generator(
            settings.hf_token,
            settings.hf_image_model,
            settings.image_timeout_sec,
            settings.image_placeholders,
        ),
        commerce=CommerceClient(
            settings.commerce_store_domain,
            settings.commerce_admin_token,
            api_version=settings.commerce_api_version,
            timeout_sec=settings.commerce_timeout_sec,
        ),
        page_size=settings.page_size,
        max_clarification_attempts=settings.max_clarification_attempts,
        image_timeout_sec=settings.image_timeout_sec,
    )
    logger.info("orchestrator_ready env=%s catalog=%s", settings.app_env, settings.catalog_path)
    return orchestrator


@app.on_event("shutdown")
def shutdown_orchestrator() -> None:
    if get_orchestrator.cache_info().currsize:
        get_orchestrator().shutdown()


@app.exception_handler(ShopguideError)
def handle_shopguide_error(request: Request, exc: ShopguideError) -> JSONResponse:
    """Request-fatal failures become an opaque 500; details stay in the logs."""
    if isinstance(exc, ClassifierOutputError):
        logger.error("classifier_output_invalid path=%s raw=%s", request.url.path, exc.raw, exc_info=exc)
    else:
        logger.error("request_failed path=%s error=%s", request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal error"})


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "env": load_settings().app_env}


@app.post("/api/chat", response_model=ChatResponse)
@app.post("/chat", response_model=ChatResponse, include_in_schema=False)
def chat(request: ChatRequest, orchestrator: ShoppingOrchestrator = Depends(get_orchestrator)) -> ChatResponse:
    """Purpose: Handle one chat turn and return a tagged response.
    Inputs/Outputs: Input is ChatRequest; output is one of the six ChatResponse shapes.
    Side Effects / State: None server-side; conversation state round-trips via the client.
    Dependencies: ShoppingOrchestrator.handle.
    Failure Modes: ShopguideError subclasses map to 500 via handle_shopguide_error;
        pydantic validation failures map to 422.
    If Removed: Core chat functionality is unavailable.
    Testing Notes: Use TestClient with a fake orchestrator dependency.
    """
    # Run the turn and return whichever response the steps produced.
    context = orchestrator.handle(request)
    if context.response is None:
        raise ShopguideError("turn finished without a response")
    return context.response
