from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent

# Contract thresholds shared by the orchestrator and its tests.
RECOMMEND_THRESHOLD = 0.70
HIGH_CONFIDENCE = 0.85
MEDIUM_CONFIDENCE = 0.60
SEMANTIC_VALIDATION_FLOOR = 0.5


@dataclass(frozen=True)
class Settings:
    """Configuration container for models, catalog, commerce, and turn limits."""
    gemini_api_key: str
    gemini_model_flash: str
    gemini_model_pro: str
    catalog_path: Path
    prompts_dir: Path
    page_size: int
    max_clarification_attempts: int
    catalog_cache_ttl_sec: float
    image_timeout_sec: float
    image_placeholders: bool
    hf_token: str
    hf_image_model: str
    commerce_store_domain: str
    commerce_admin_token: str
    commerce_api_version: str
    commerce_timeout_sec: float
    app_env: str


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default paths.
    Failure Modes: Invalid numeric env values (PAGE_SIZE, timeouts, TTL) raise ValueError.
    If Removed: App cannot configure models, catalog, or commerce and fails at startup.
    Testing Notes: Verify defaults and overrides via monkeypatched environment variables.
    """
    # Resolve catalog and prompt paths, then build Settings.
    catalog_path = os.getenv("CATALOG_PATH")
    if catalog_path:
        catalog_file = Path(catalog_path)
    else:
        catalog_file = (BASE_DIR / ".." / "resources" / "catalog.json").resolve()

    prompts_path = os.getenv("PROMPTS_DIR")
    prompts_dir = Path(prompts_path) if prompts_path else (BASE_DIR / "prompts").resolve()

    page_size = int(os.getenv("PAGE_SIZE", "3"))
    if page_size <= 0:
        raise ValueError("PAGE_SIZE must be positive")

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model_flash=os.getenv("GEMINI_MODEL_FLASH")
        or os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        gemini_model_pro=os.getenv("GEMINI_MODEL_PRO")
        or os.getenv("GEMINI_MODEL", "gemini-2.5-pro"),
        catalog_path=catalog_file,
        prompts_dir=prompts_dir,
        page_size=page_size,
        max_clarification_attempts=int(os.getenv("MAX_CLARIFICATION_ATTEMPTS", "3")),
        catalog_cache_ttl_sec=float(os.getenv("CATALOG_CACHE_TTL_SEC", "0")),
        image_timeout_sec=float(os.getenv("IMAGE_TIMEOUT_SEC", "20")),
        image_placeholders=_env_bool("IMAGE_PLACEHOLDERS", True),
        hf_token=os.getenv("HUGGING_FACE_ACCESS_TOKEN", ""),
        hf_image_model=os.getenv("HUGGING_FACE_MODEL", "black-forest-labs/FLUX.1-schnell"),
        commerce_store_domain=os.getenv("COMMERCE_STORE_DOMAIN", ""),
        commerce_admin_token=os.getenv("COMMERCE_ADMIN_TOKEN", ""),
        commerce_api_version=os.getenv("COMMERCE_API_VERSION", "2025-10"),
        commerce_timeout_sec=float(os.getenv("COMMERCE_TIMEOUT_SEC", "15")),
        app_env=os.getenv("APP_ENV", "dev"),
    )
