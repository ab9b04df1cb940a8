from __future__ import annotations

import base64
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import quote

import requests

from .errors import GenerationError
from .fallbacks import Strategy, try_in_order

logger = logging.getLogger("shopguide.images")

HF_ENDPOINT = "https://router.huggingface.co/hf-inference/models/{model}"
PLACEHOLDER_URL = "https://via.placeholder.com/400x400/{color}/000000?text={text}"
LOCAL_STRATEGIES = ("placeholder",)


@dataclass(frozen=True)
class ImageVariant:
    variant_id: str
    style: str
    description: str
    color: str


VARIANTS = (
    ImageVariant("a", "realistic product photography shot on white background", "Product focus", "FF6B6B"),
    ImageVariant("b", "lifestyle photography showing product being used in real context", "In use", "4ECDC4"),
    ImageVariant("c", "macro detail photography highlighting key features and technology", "Feature detail", "FFE66D"),
)


@dataclass
class OutcomeContext:
    """What the user wants to achieve, as inferred by the classifier."""
    use_case: str = ""
    desired_outcome: str = ""
    constraints: Dict[str, Any] = field(default_factory=dict)
    visual_preferences: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "OutcomeContext":
        if not isinstance(data, dict):
            return cls()
        constraints = data.get("constraints")
        visual = data.get("visual_preferences")
        return cls(
            use_case=str(data.get("use_case") or "").strip(),
            desired_outcome=str(data.get("desired_outcome") or "").strip(),
            constraints=constraints if isinstance(constraints, dict) else {},
            visual_preferences=visual if isinstance(visual, dict) else {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class GeneratedImage:
    url: str
    variant_id: str
    caption: str
    interpretation: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def build_outcome_prompt(context: OutcomeContext) -> str:
    """Compose a visual prompt from use case, outcome, style, color and up to 3 features."""
    prompt = context.desired_outcome
    if context.use_case:
        prompt = f"{context.use_case}: {prompt}"
    style = context.visual_preferences.get("style")
    if style:
        prompt += f", {style} aesthetic"
    color = context.visual_preferences.get("color")
    if color:
        prompt += f", {color} color palette"
    features = [str(f) for f in (context.constraints.get("features") or []) if f]
    if features:
        prompt += ", showing " + ", ".join(features[:3])
    return prompt


def _caption(variant: ImageVariant, context: OutcomeContext) -> str:
    return f"{variant.description}: {context.use_case or context.desired_outcome or 'your goal'}"


def placeholder_images(context: OutcomeContext) -> List[GeneratedImage]:
    return [
        GeneratedImage(
            url=PLACEHOLDER_URL.format(color=variant.color, text=quote(variant.description)),
            variant_id=variant.variant_id,
            caption=_caption(variant, context),
            interpretation=context.desired_outcome or "Outcome visualization",
        )
        for variant in VARIANTS
    ]


class HuggingFaceImages:
    """Text-to-image through the Hugging Face inference router."""

    def __init__(self, token: str, model: str, timeout_sec: float = 20.0) -> None:
        self._token = token
        self._model = model
        self._timeout = timeout_sec

    def generate(self, context: OutcomeContext) -> List[GeneratedImage]:
        # One deadline covers all three variant requests.
        base = build_outcome_prompt(context)
        deadline = time.monotonic() + self._timeout
        images: List[GeneratedImage] = []
        for variant in VARIANTS:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise GenerationError(f"Hugging Face deadline of {self._timeout}s exceeded")
            prompt = (
                f"{base}, {variant.style}, professional photography, high quality, "
                "sharp focus, no text overlays, no brand logos"
            )
            resp = requests.post(
                HF_ENDPOINT.format(model=self._model),
                headers={"Authorization": f"Bearer {self._token}"},
                json={"inputs": prompt, "parameters": {"width": 512, "height": 512}},
                timeout=remaining,
            )
            if resp.status_code == 503:
                raise GenerationError("Hugging Face model loading/busy (503)")
            resp.raise_for_status()
            encoded = base64.b64encode(resp.content).decode("ascii")
            images.append(
                GeneratedImage(
                    url=f"data:image/jpeg;base64,{encoded}",
                    variant_id=variant.variant_id,
                    caption=_caption(variant, context),
                    interpretation=context.desired_outcome or "Outcome visualization",
                )
            )
        return images


class OutcomeImageGenerator:
    """Runs the configured image strategies in order until one yields all variants."""

    def __init__(self, strategies: Sequence[tuple]) -> None:
        # (name, callable(OutcomeContext) -> List[GeneratedImage]) pairs
        self._strategies: List[tuple] = list(strategies)

    @property
    def strategy_names(self) -> List[str]:
        return [name for name, _ in self._strategies]

    def generate(self, context: OutcomeContext) -> List[GeneratedImage]:
        """Purpose: Produce three outcome visualizations (variants a, b, c).
        Inputs/Outputs: Input is an OutcomeContext; output is a list of GeneratedImage.
        Side Effects / State: Network calls for remote strategies.
        Dependencies: try_in_order over the configured strategies.
        Failure Modes: Raises GenerationError when desired_outcome is empty or every
            strategy fails; the orchestrator then continues with products.
        If Removed: The image_generation response type can never be produced.
        Testing Notes: Placeholder-only generator must return variants a/b/c.
        """
        # Refuse vague contexts, then walk the strategy list.
        if not context.desired_outcome:
            raise GenerationError("No desired outcome to visualize")
        result = try_in_order(
            [
                Strategy(name, _bind(fn, context), accept=lambda images: len(images) == len(VARIANTS))
                for name, fn in self._strategies
            ],
            label="outcome_images",
        )
        if not result.ok:
            raise GenerationError(f"all image strategies failed: {result.errors}")
        logger.info("outcome_images strategy=%s", result.strategy)
        return list(result.value or [])

    def local_images(self, context: OutcomeContext) -> List[GeneratedImage]:
        """Images from the configured strategies that make no network call; [] when none apply."""
        if not context.desired_outcome:
            return []
        result = try_in_order(
            [
                Strategy(name, _bind(fn, context), accept=lambda images: len(images) == len(VARIANTS))
                for name, fn in self._strategies
                if name in LOCAL_STRATEGIES
            ],
            label="outcome_images_local",
        )
        return list(result.value or [])


def _bind(fn: Callable[[OutcomeContext], List[GeneratedImage]], context: OutcomeContext) -> Callable[[], List[GeneratedImage]]:
    return lambda: fn(context)


def build_image_generator(hf_token: str, hf_model: str, timeout_sec: float, placeholders: bool) -> OutcomeImageGenerator:
    strategies: List[tuple] = []
    if hf_token:
        strategies.append(("huggingface", HuggingFaceImages(hf_token, hf_model, timeout_sec).generate))
    if placeholders:
        strategies.append(("placeholder", placeholder_images))
    return OutcomeImageGenerator(strategies)
