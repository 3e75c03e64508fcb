"""Catalog adapter registry.

The fulfillment service reads live prices and moves stock through
``get_catalog()``. FakeCatalog is used unless a real adapter is installed
with ``set_catalog()`` at startup.
"""

from sakura.catalog.fake_adapter import FakeCatalog
from sakura.catalog.port import CatalogPort

_current_catalog: CatalogPort | None = None


def get_catalog() -> CatalogPort:
    global _current_catalog
    if _current_catalog is None:
        _current_catalog = FakeCatalog()
    return _current_catalog


def set_catalog(catalog: CatalogPort) -> None:
    global _current_catalog
    _current_catalog = catalog


def reset_catalog() -> None:
    global _current_catalog
    _current_catalog = None
