from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

import google.generativeai as genai
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from .config import Settings
from .errors import GenerationError

logger = logging.getLogger("shopguide.gemini")

# Shopping copy never needs more than the high-risk filter.
SAFETY_CATEGORIES = (
    HarmCategory.HARM_CATEGORY_HARASSMENT,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
)
SAFETY_SETTINGS: List[Dict[str, Any]] = [
    {"category": category, "threshold": HarmBlockThreshold.BLOCK_ONLY_HIGH} for category in SAFETY_CATEGORIES
]


class GeminiClient:
    """Single entry point for every prompt the assistant sends to Gemini."""

    def __init__(self, settings: Settings, request_timeout_sec: float = 30.0) -> None:
        """Purpose: Configure the SDK once and keep one GenerativeModel per model name.
        Inputs/Outputs: Input is Settings and a per-call timeout; no return value.
        Side Effects / State: Sets the SDK-global API key.
        Dependencies: google.generativeai; Settings.gemini_api_key and gemini_model_flash.
        Failure Modes: Raises ValueError when GEMINI_API_KEY is empty.
        If Removed: Classification, validation, capability inference and presentation
            have no model to call.
        Testing Notes: Patch shopguide.gemini_client.genai; services take a fake instead.
        """
        # Fail at wiring time rather than on the first chat turn.
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        genai.configure(api_key=settings.gemini_api_key)
        self._timeout = request_timeout_sec
        self._default_model = _normalize_model_name(settings.gemini_model_flash)
        self._models: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def _model_for(self, model: Optional[str]) -> Tuple[str, Any]:
        name = _normalize_model_name(model) or self._default_model
        if not name:
            raise ValueError("Gemini model name is required")
        # Outcome images run on a worker thread, so the cache is shared.
        with self._lock:
            handle = self._models.get(name)
            if handle is None:
                handle = genai.GenerativeModel(name)
                self._models[name] = handle
        return name, handle

    def generate_text(
        self,
        prompt: str,
        model: Optional[str] = None,
        temperature: float = 0.2,
        max_output_tokens: int = 2048,
        json_mode: bool = False,
    ) -> str:
        """Purpose: Send one prompt and return the stripped reply text.
        Inputs/Outputs: Prompt plus optional model override, sampling settings and
            JSON response mode; returns text.
        Side Effects / State: Lazily caches the model handle.
        Dependencies: GenerativeModel.generate_content.
        Failure Modes: SDK errors and blocked or empty replies raise GenerationError so
            each caller chooses its own fallback.
        If Removed: No step can reach the model.
        Testing Notes: tests/test_gemini_client.py patches the SDK module.
        """
        # One call, no retry; callers own degradation.
        name, handle = self._model_for(model)
        config: Dict[str, Any] = {"temperature": temperature, "max_output_tokens": max_output_tokens}
        if json_mode:
            config["response_mime_type"] = "application/json"
        try:
            response = handle.generate_content(
                prompt,
                generation_config=config,
                safety_settings=SAFETY_SETTINGS,
                request_options={"timeout": self._timeout},
            )
        except Exception as exc:
            logger.warning("gemini_call_failed model=%s error=%s", name, exc)
            raise GenerationError(f"{name} call failed: {exc}") from exc
        text = _response_text(response)
        if not text:
            raise GenerationError(f"{name} returned an empty or blocked reply")
        logger.debug("gemini_reply model=%s chars=%s json=%s", name, len(text), json_mode)
        return text


def _response_text(response: Any) -> str:
    # .text raises ValueError when every candidate was blocked.
    try:
        text = response.text
    except ValueError:
        return ""
    return (text or "").strip()


def _normalize_model_name(name: Optional[str]) -> str:
    if not name:
        return ""
    cleaned = name.strip()
    return cleaned[len("models/"):] if cleaned.startswith("models/") else cleaned
