from __future__ import annotations

from typing import Optional


class ShopguideError(Exception):
    """Base error for the shopping orchestrator."""


class ClassifierOutputError(ShopguideError):
    """Primary classification returned text that could not be parsed as JSON."""

    def __init__(self, message: str, raw: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw = raw or ""


class CatalogStoreError(ShopguideError):
    """Catalog tables could not be read."""


class CommerceError(ShopguideError):
    """Draft-order create/complete call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GenerationError(ShopguideError):
    """Generation service returned nothing usable."""
