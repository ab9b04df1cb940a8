import json
import re
import unicodedata
from typing import Any, Dict, List, Optional

CODE_FENCE_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")
ARRAY_RE = re.compile(r"\[[\s\S]*?\]")


def normalize_text(text: str) -> str:
    """Purpose: Normalize free-form text for stable keyword matching.
    Inputs/Outputs: Input is a raw string; output is a lowercase ASCII-only string with
        diacritics removed and whitespace collapsed.
    Side Effects / State: None; pure function.
    Dependencies: Uses unicodedata and regex; called by persona and semantic checks.
    Failure Modes: Returns an empty string when input is falsy.
    If Removed: Keyword checks miss accented input ("café" vs "cafe") and punctuation.
    Testing Notes: Validate "Café,  Wedding!" normalizes to "cafe wedding".
    """
    # Lowercase, strip diacritics, and collapse punctuation/whitespace.
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    cleaned = re.sub(r"[^a-z0-9\s\-_'$]+", " ", stripped)
    return re.sub(r"\s+", " ", cleaned).strip()


def slugify(text: str, max_length: int = 48) -> str:
    """Lowercase snake_case slug used for synthetic intent ids."""
    slug = re.sub(r"[^a-z0-9]+", "_", normalize_text(text)).strip("_")
    return slug[:max_length].rstrip("_") or "unspecified_need"


def humanize_intent(intent_id: str) -> str:
    # travel_vlogging -> "travel vlogging"
    return (intent_id or "").replace("_", " ").strip()


def extract_json_block(text: str) -> Optional[str]:
    """Purpose: Extract the JSON object block from an arbitrary model string.
    Inputs/Outputs: Input is a raw string; output is JSON substring or None.
    Side Effects / State: None; pure function.
    Dependencies: Prefers a fenced ```json block, then the outermost braces.
    Failure Modes: Returns None if braces are missing or inverted.
    If Removed: Model outputs wrapped in prose or fences cannot be parsed.
    Testing Notes: Provide fenced and unfenced strings with extra text around the JSON.
    """
    # Prefer a fenced block, then fall back to the outermost braces.
    if not text:
        return None
    fenced = CODE_FENCE_RE.search(text)
    if fenced:
        return fenced.group(1)
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1]


def safe_json_loads(text: str) -> Optional[Dict[str, Any]]:
    """Purpose: Parse a JSON object from a model output string safely.
    Inputs/Outputs: Input is raw text; output is a dict or None if parsing fails.
    Side Effects / State: None; pure function.
    Dependencies: Uses extract_json_block and json.loads.
    Failure Modes: Returns None on JSONDecodeError, missing block, or non-object JSON.
    If Removed: Every structured LLM call becomes brittle on malformed output.
    Testing Notes: Validate valid JSON parses and malformed JSON returns None.
    """
    # Parse only the extracted JSON block to avoid non-JSON prefixes/suffixes.
    block = extract_json_block(text)
    if not block:
        return None
    try:
        data = json.loads(block)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def safe_json_array(text: str) -> Optional[List[Any]]:
    """Parse the first JSON array found in model output, or None."""
    if not text:
        return None
    match = ARRAY_RE.search(text)
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, list) else None


def coerce_float(value: Any, default: float = 0.0) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if result != result:  # NaN
        return default
    return result
