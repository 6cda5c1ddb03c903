from __future__ import annotations

from cataloglens.core.config import get_settings
from cataloglens.providers.catalog.base import CatalogProvider
from cataloglens.providers.catalog.fake import FakeCatalogProvider
from cataloglens.providers.catalog.google_catalog import GoogleCatalogProvider


def get_catalog_provider() -> CatalogProvider:
    settings = get_settings()
    provider = (settings.catalog_provider or "google").lower()

    if provider == "fake":
        return FakeCatalogProvider()
    return GoogleCatalogProvider()
