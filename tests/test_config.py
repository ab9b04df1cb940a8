from pathlib import Path

import pytest

from shopguide.config import load_settings


def test_defaults(monkeypatch):
    for name in ("PAGE_SIZE", "CATALOG_PATH", "IMAGE_PLACEHOLDERS", "GEMINI_MODEL", "GEMINI_MODEL_FLASH"):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.page_size == 3
    assert settings.max_clarification_attempts == 3
    assert settings.image_placeholders is True
    assert settings.gemini_model_flash == "gemini-2.5-flash"
    assert settings.catalog_path.name == "catalog.json"
    assert (settings.prompts_dir / "intent_classification.txt").exists()


def test_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("PAGE_SIZE", "5")
    monkeypatch.setenv("CATALOG_PATH", str(tmp_path / "c.json"))
    monkeypatch.setenv("IMAGE_PLACEHOLDERS", "off")
    monkeypatch.setenv("COMMERCE_TIMEOUT_SEC", "2.5")
    settings = load_settings()
    assert settings.page_size == 5
    assert settings.catalog_path == Path(tmp_path / "c.json")
    assert settings.image_placeholders is False
    assert settings.commerce_timeout_sec == 2.5


@pytest.mark.parametrize("value", ["0", "-1", "three"])
def test_invalid_page_size(monkeypatch, value):
    monkeypatch.setenv("PAGE_SIZE", value)
    with pytest.raises(ValueError):
        load_settings()
