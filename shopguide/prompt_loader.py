from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict


@lru_cache(maxsize=32)
def load_prompt(prompt_path: Path) -> str:
    """Purpose: Load a prompt template as UTF-8 text and strip BOM if present.
    Inputs/Outputs: Input is a Path to the template; output is the decoded string.
    Side Effects / State: Reads the filesystem once per path (memoized).
    Dependencies: Uses Path.read_text/read_bytes; used by every generation call.
    Failure Modes: UnicodeDecodeError triggers a tolerant decode; a missing file raises
        FileNotFoundError to the caller.
    If Removed: Classification, validation, and presentation prompts cannot be built.
    Testing Notes: Validate BOM-stripping on a temp file.
    """
    # Read as UTF-8 and fall back to a tolerant decode if needed.
    try:
        return prompt_path.read_text(encoding="utf-8").lstrip("\ufeff")
    except UnicodeDecodeError:
        raw = prompt_path.read_bytes()
        return raw.decode("utf-8", errors="ignore").lstrip("\ufeff")


def render_prompt(prompt_path: Path, values: Dict[str, str]) -> str:
    """Fill <<NAME>> placeholders in a prompt template."""
    prompt = load_prompt(prompt_path)
    for key, value in values.items():
        prompt = prompt.replace(f"<<{key}>>", value)
    return prompt
